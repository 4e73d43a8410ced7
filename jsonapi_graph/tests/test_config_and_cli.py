"""
Unit tests for jsonapi_graph.config and the command-line interface.

All tests are offline; the CLI is exercised through build_parser/build_config
and main() with a failing configuration, never against a live server.
"""
import json
import logging

import pytest

from jsonapi_graph import cli
from jsonapi_graph.config import BasicAuth, FileMount, SyncConfig
from jsonapi_graph.errors import ConfigError, JsonApiGraphError


# ---------------------------------------------------------------------------
# SyncConfig
# ---------------------------------------------------------------------------


def test_defaults():
    config = SyncConfig()
    assert config.disallowed_link_types == frozenset({"self", "describedby"})
    assert config.api_base == "jsonapi"
    assert config.on_fetch_error == "abort"
    assert config.basic_auth_file_systems == ("public", "private", "temporary")


def test_from_dict_camel_case():
    config = SyncConfig.from_dict({
        "baseUrl": "https://cms.example.com",
        "basicAuth": {"username": "u", "password": "p"},
        "disallowedLinkTypes": ["self", "describedby", "taxonomy_term--tags"],
        "fileMounts": {"s3": {"urlPrefix": "https://bucket/", "basicAuth": {"username": "s", "password": "t"}}},
        "filters": {"node--article": "filter[status]=1"},
        "onFetchError": "skip",
    })
    assert config.index_url == "https://cms.example.com/jsonapi"
    assert config.basic_auth == BasicAuth("u", "p")
    assert "taxonomy_term--tags" in config.disallowed_link_types
    assert config.file_mounts["s3"] == FileMount("https://bucket/", BasicAuth("s", "t"))
    assert config.on_fetch_error == "skip"


def test_from_dict_unknown_key():
    with pytest.raises(ConfigError):
        SyncConfig.from_dict({"baseURL": "x"})


def test_invalid_policy():
    with pytest.raises(ConfigError):
        SyncConfig(on_fetch_error="retry").validate()


def test_invalid_worker_count():
    with pytest.raises(ConfigError):
        SyncConfig(fetch_workers=0).validate()


def test_mount_credentials():
    auth = BasicAuth("u", "p")
    own = BasicAuth("o", "w")
    config = SyncConfig(basic_auth=auth, file_mounts={"private": FileMount(basic_auth=own), "s3": FileMount()})
    resolved = config.mount_credentials()
    assert resolved["public"] == auth
    assert resolved["private"] == own
    assert "s3" not in resolved


def test_as_htaccess():
    assert BasicAuth("u", "p").as_htaccess() == {"htaccess_user": "u", "htaccess_pass": "p"}


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@pytest.fixture
def clean_env(monkeypatch):
    # setenv first so teardown restores the original value even when a test
    # (e.g. _load_dotenv) writes os.environ directly
    for name in ("JSONAPI_USERNAME", "JSONAPI_PASSWORD", "JSONAPI_TOKEN"):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


def test_build_config_from_flags(clean_env):
    args = cli.build_parser().parse_args([
        "import", "--base-url", "http://cms", "--disallow", "taxonomy_term--tags",
        "--filter", "node--article=filter[status]=1", "--workers", "2", "--skip-files",
    ])
    config = cli.build_config(args)
    assert config.base_url == "http://cms"
    assert config.disallowed_link_types == frozenset({"self", "describedby", "taxonomy_term--tags"})
    assert config.filters == {"node--article": "filter[status]=1"}
    assert config.fetch_workers == 2
    assert config.skip_file_downloads is True


def test_build_config_env_credentials(clean_env):
    clean_env.setenv("JSONAPI_USERNAME", "editor")
    clean_env.setenv("JSONAPI_PASSWORD", "secret")
    args = cli.build_parser().parse_args(["inspect", "--base-url", "http://cms"])
    assert cli.build_config(args).basic_auth == BasicAuth("editor", "secret")


def test_build_config_file_then_flags(clean_env, tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"baseUrl": "http://file", "apiBase": "api"}))
    args = cli.build_parser().parse_args(["import", "--config", str(path), "--base-url", "http://flag"])
    config = cli.build_config(args)
    assert config.base_url == "http://flag"
    assert config.api_base == "api"


def test_build_config_requires_base_url(clean_env):
    args = cli.build_parser().parse_args(["import"])
    with pytest.raises(JsonApiGraphError):
        cli.build_config(args)


def test_bad_filter_flag(clean_env):
    args = cli.build_parser().parse_args(["import", "--base-url", "http://cms", "--filter", "nodearticle"])
    with pytest.raises(JsonApiGraphError):
        cli.build_config(args)


def test_apply_requires_payloads():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["apply", "--base-url", "http://cms"])


def test_main_returns_1_on_error(clean_env, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("")
    assert cli.main(["--env-file", str(env_file), "import"]) == 1


def test_load_dotenv(clean_env, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text('# comment\nJSONAPI_TOKEN="abc"\nBROKEN LINE\n')
    loaded = cli._load_dotenv(str(env_file))
    assert loaded == {"JSONAPI_TOKEN": "abc"}


def test_setup_logging_leaves_unrelated_loggers_alone():
    quiet = logging.getLogger("urllib.request")
    other = logging.getLogger("urllib3")
    saved = (quiet.level, other.level)
    try:
        other.setLevel(logging.NOTSET)
        cli._setup_logging("DEBUG")
        assert quiet.level == logging.WARNING
        assert other.level == logging.NOTSET
    finally:
        quiet.setLevel(saved[0])
        other.setLevel(saved[1])
