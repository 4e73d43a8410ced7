"""
jsonapi_graph/cli.py — Command-line interface.

Usage:
    python -m jsonapi_graph import --base-url https://cms.example.com
    python -m jsonapi_graph apply --base-url https://cms.example.com webhook.json
    python -m jsonapi_graph inspect --base-url https://cms.example.com

Credentials are read from a .env file (JSONAPI_USERNAME, JSONAPI_PASSWORD,
JSONAPI_TOKEN) before falling back to the environment.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path

from jsonapi_graph.config import BasicAuth, SyncConfig
from jsonapi_graph.errors import JsonApiGraphError


# ── .env loader (stdlib only, no python-dotenv required) ────────────────────

def _load_dotenv(env_file: str | None = None) -> dict[str, str]:
    """Load key=value pairs from a .env file into the environment.

    Existing environment values are NOT overwritten. Returns the dict of
    values that were newly loaded.

    Args:
        env_file: Explicit path. If None, searches for .env from the current
                  directory up to the filesystem root.
    """
    if env_file is None:
        start = Path.cwd()
        for directory in [start, *start.parents]:
            candidate = directory / ".env"
            if candidate.is_file():
                env_file = str(candidate)
                break

    if not env_file or not Path(env_file).is_file():
        return {}

    loaded: dict[str, str] = {}
    with open(env_file, encoding="utf-8") as fh:
        for raw_line in fh:
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]
            if key and key not in os.environ:
                os.environ[key] = value
                loaded[key] = value

    return loaded


# ── Logging setup ─────────────────────────────────────────────────────────────

def _setup_logging(level: str = "INFO") -> None:
    """Configure root logger with timestamps."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    fmt = "%(asctime)s  %(levelname)-8s  %(name)s — %(message)s"
    datefmt = "%H:%M:%S"
    logging.basicConfig(level=numeric, format=fmt, datefmt=datefmt, stream=sys.stderr)
    logging.getLogger("urllib.request").setLevel(logging.WARNING)


logger = logging.getLogger("jsonapi_graph.cli")


def build_config(args: argparse.Namespace) -> SyncConfig:
    """Config file (if any), then environment credentials, then CLI flags."""
    if args.config:
        with open(args.config, encoding="utf-8") as fh:
            config = SyncConfig.from_dict(json.load(fh))
    else:
        config = SyncConfig()

    overrides: dict = {}
    username = os.environ.get("JSONAPI_USERNAME")
    password = os.environ.get("JSONAPI_PASSWORD")
    if username and password and config.basic_auth is None:
        overrides["basic_auth"] = BasicAuth(username, password)
    token = os.environ.get("JSONAPI_TOKEN")
    if token and config.bearer_token is None:
        overrides["bearer_token"] = token

    if args.base_url:
        overrides["base_url"] = args.base_url
    if args.api_base:
        overrides["api_base"] = args.api_base
    if args.disallow:
        overrides["disallowed_link_types"] = config.disallowed_link_types | frozenset(args.disallow)
    if args.filter:
        filters = dict(config.filters)
        for item in args.filter:
            entity_type, sep, query = item.partition("=")
            if not sep:
                raise JsonApiGraphError(f"--filter expects TYPE=QUERY, got {item!r}")
            filters[entity_type] = query
        overrides["filters"] = filters
    if getattr(args, "skip_files", False):
        overrides["skip_file_downloads"] = True
    if args.workers:
        overrides["fetch_workers"] = args.workers
    if args.on_fetch_error:
        overrides["on_fetch_error"] = args.on_fetch_error

    config = config.with_overrides(**overrides) if overrides else config
    config.validate()
    if not config.base_url:
        raise JsonApiGraphError("No base URL: pass --base-url or set baseUrl in --config")
    return config


def _make_engine(args: argparse.Namespace, config: SyncConfig):
    from jsonapi_graph.graph.sync import SyncEngine
    from jsonapi_graph.ingestion.file_downloader import UrllibFileDownloader

    downloader = UrllibFileDownloader(args.download_dir) if getattr(args, "download_dir", None) else None
    return SyncEngine(config=config, materialize_remote_file=downloader)


def _print_summary(engine, args: argparse.Namespace) -> int:
    from jsonapi_graph.graph.integrity import find_asymmetric_edges
    from jsonapi_graph.reports.graph_summary import export_nodes_csv, type_summary

    summary = type_summary(engine.store)
    print(summary.to_string(index=False) if not summary.empty else "(empty graph)")

    if getattr(args, "export_csv", None):
        export_nodes_csv(engine.store, args.export_csv)
        logger.info("Node table written to %s", args.export_csv)

    if getattr(args, "verify", False):
        violations = find_asymmetric_edges(engine.store)
        for v in violations[:20]:
            logger.error("  %s: %s -> %s (%s)", v.problem, v.source, v.target, v.key)
        if violations:
            logger.error("Integrity check failed: %d violations", len(violations))
            return 1
        logger.info("Integrity check passed")
    return 0


# ── Subcommand: import ────────────────────────────────────────────────────────

def cmd_import(args: argparse.Namespace) -> int:
    """Full import, then print the per-type summary."""
    _load_dotenv(args.env_file)
    _setup_logging(args.log_level)
    config = build_config(args)

    logger.info("=" * 60)
    logger.info("JSON:API graph — full import")
    logger.info("  Index        : %s", config.index_url)
    logger.info("  Credentials  : %s", "basic" if config.basic_auth else ("bearer" if config.bearer_token else "none"))
    logger.info("  Disallowed   : %s", ", ".join(sorted(config.disallowed_link_types)))
    logger.info("  File download: %s", "skipped" if config.skip_file_downloads else (args.download_dir or "no target dir"))
    logger.info("=" * 60)

    engine = _make_engine(args, config)
    t0 = time.monotonic()
    report = engine.run_full_import()
    logger.info("Import finished in %.1fs: %s", time.monotonic() - t0, report.summary())
    return _print_summary(engine, args)


# ── Subcommand: apply ─────────────────────────────────────────────────────────

def cmd_apply(args: argparse.Namespace) -> int:
    """Full import, then apply each webhook payload file in order."""
    _load_dotenv(args.env_file)
    _setup_logging(args.log_level)
    config = build_config(args)

    engine = _make_engine(args, config)
    engine.run_full_import()
    for path in args.payloads:
        with open(path, encoding="utf-8") as fh:
            payload = json.load(fh)
        report = engine.apply_incremental_update(payload)
        logger.info("%s: %s", path, report.summary())
    return _print_summary(engine, args)


# ── Subcommand: inspect ───────────────────────────────────────────────────────

def cmd_inspect(args: argparse.Namespace) -> int:
    """Print the collections the index exposes after link filtering."""
    _load_dotenv(args.env_file)
    _setup_logging(args.log_level)
    config = build_config(args)

    from jsonapi_graph.ingestion.jsonapi_client import JsonApiClient

    plan = JsonApiClient(config).fetch_index()
    width = max((len(t) for t in plan), default=0)
    for entity_type, url in plan.items():
        query = config.filters.get(entity_type, "")
        print(f"{entity_type:<{width}}  {url}{'  ?' + query if query else ''}")
    return 0


# ── Argument parser ───────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jsonapi-graph",
        description=(
            "Mirror a JSON:API content repository into a back-referenced node graph.\n"
            "Reads JSONAPI_USERNAME / JSONAPI_PASSWORD / JSONAPI_TOKEN from .env automatically."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Full import with a per-type filter, verify back-references
  python -m jsonapi_graph import --base-url https://cms.example.com \\
      --filter "node--article=filter[status]=1" --verify

  # Exclude a whole entity type
  python -m jsonapi_graph import --base-url https://cms.example.com --disallow taxonomy_term--tags

  # Import, then replay two webhook bodies
  python -m jsonapi_graph apply --base-url https://cms.example.com update.json insert.json
        """,
    )

    parser.add_argument(
        "--env-file",
        default=None,
        metavar="PATH",
        help="Path to .env file (default: auto-detect .env from the working directory up)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    def add_source_flags(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", default=None, metavar="PATH", help="JSON config file (SyncConfig keys)")
        p.add_argument("--base-url", default=None, metavar="URL", help="Site root of the JSON:API server")
        p.add_argument("--api-base", default=None, metavar="PATH", help='Index path below base URL (default: "jsonapi")')
        p.add_argument(
            "--disallow", action="append", default=[], metavar="LINK",
            help="Link relation or entity type to exclude (repeatable; self/describedby always excluded)",
        )
        p.add_argument(
            "--filter", action="append", default=[], metavar="TYPE=QUERY",
            help="Query string appended to one collection's first page (repeatable)",
        )
        p.add_argument("--workers", type=int, default=None, metavar="N", help="Concurrent collection fetches")
        p.add_argument("--on-fetch-error", choices=["abort", "skip"], default=None,
                       help="Abort the import or skip the failing type (default: abort)")

    def add_output_flags(p: argparse.ArgumentParser) -> None:
        p.add_argument("--skip-files", action="store_true", help="Do not download remote files")
        p.add_argument("--download-dir", default=None, metavar="PATH", help="Directory for downloaded files")
        p.add_argument("--export-csv", default=None, metavar="PATH", help="Write the node table to CSV")
        p.add_argument("--verify", action="store_true", help="Check back-reference symmetry after syncing")

    p_import = subparsers.add_parser("import", help="Full import and per-type summary")
    add_source_flags(p_import)
    add_output_flags(p_import)
    p_import.set_defaults(func=cmd_import)

    p_apply = subparsers.add_parser("apply", help="Full import, then apply webhook payload files")
    add_source_flags(p_apply)
    add_output_flags(p_apply)
    p_apply.add_argument("payloads", nargs="+", metavar="PAYLOAD", help="Webhook JSON files, applied in order")
    p_apply.set_defaults(func=cmd_apply)

    p_inspect = subparsers.add_parser("inspect", help="List the collections the index exposes")
    add_source_flags(p_inspect)
    p_inspect.set_defaults(func=cmd_inspect)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except JsonApiGraphError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
