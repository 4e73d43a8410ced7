"""
jsonapi_graph/config.py — All tunable parameters for a sync run.

Every credential, filter and concurrency bound lives here so that the sync
engine never reaches for process-wide state. A SyncConfig is passed into every
SyncEngine call; construct a new one to change behaviour.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Optional

from jsonapi_graph.errors import ConfigError

FETCH_ERROR_POLICIES = ("abort", "skip")


@dataclass(frozen=True)
class BasicAuth:
    """Username/password pair for HTTP basic auth."""

    username: str
    password: str

    def as_htaccess(self) -> dict[str, str]:
        """Credential shape handed to the remote-file materializer."""
        return {"htaccess_user": self.username, "htaccess_pass": self.password}


@dataclass(frozen=True)
class FileMount:
    """
    A logical file-storage mount on the remote system (``public``, ``private``, ``s3`` …).

    url_prefix is optional: files whose uri carries a scheme (``private://``)
    are matched by name, the prefix is only consulted for files that do not.
    """

    url_prefix: Optional[str] = None
    basic_auth: Optional[BasicAuth] = None


@dataclass(frozen=True)
class SyncConfig:
    """
    Immutable configuration for full imports and incremental updates.

    Override by constructing a new SyncConfig (or calling ``with_overrides``)
    with the desired values.
    """

    # ── Remote API ────────────────────────────────────────────────────────────
    base_url: str = ""
    # Site root, e.g. "https://cms.example.com". Relative file URLs are joined
    # against it.

    api_base: str = "jsonapi"
    # Path of the JSON:API index below base_url.

    basic_auth: Optional[BasicAuth] = None
    # Sent with every API request. Also offered to the file mounts listed in
    # basic_auth_file_systems, and to no other mount.

    bearer_token: Optional[str] = None
    # Alternative to basic_auth for API requests. basic_auth wins if both set.

    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    # Extra request headers / query params added to every API request.

    request_timeout: float = 30.0

    # ── Scope ─────────────────────────────────────────────────────────────────
    disallowed_link_types: frozenset[str] = frozenset({"self", "describedby"})
    # Index link keys and reference link relations to drop. Adding an entity
    # type here ("taxonomy_term--tags") removes the whole type from the graph.

    filters: dict[str, str] = field(default_factory=dict)
    # Per-type query string appended to the first collection page,
    # e.g. {"node--article": "filter[status]=1&include=field_tags"}.

    on_fetch_error: str = "abort"
    # "abort": a failed collection fails the whole import before any commit.
    # "skip":  the failed type is dropped entirely and the import continues.

    # ── Files ─────────────────────────────────────────────────────────────────
    skip_file_downloads: bool = False

    file_types: tuple[str, ...] = ("file--file", "files")
    # Entity types whose nodes are materialized as remote files.

    file_mounts: dict[str, FileMount] = field(default_factory=dict)
    # Explicitly configured mounts, keyed by mount name.

    basic_auth_file_systems: tuple[str, ...] = ("public", "private", "temporary")
    # Mounts that inherit basic_auth when they have no credentials of their own.

    # ── Concurrency ───────────────────────────────────────────────────────────
    fetch_workers: int = 4
    # Collections fetched in parallel during a full import.

    concurrent_file_requests: int = 20
    # Remote files materialized in parallel.

    @property
    def index_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.api_base.strip('/')}"

    def mount_credentials(self) -> dict[str, BasicAuth]:
        """
        Resolve the effective basic-auth credentials per mount name.

        Explicit FileMount credentials come first. The global basic_auth only
        fills mounts named in basic_auth_file_systems. Mounts absent from the
        result receive empty credentials.
        """
        resolved: dict[str, BasicAuth] = {}
        if self.basic_auth is not None:
            for name in self.basic_auth_file_systems:
                resolved[name] = self.basic_auth
        for name, mount in self.file_mounts.items():
            if mount.basic_auth is not None:
                resolved[name] = mount.basic_auth
        return resolved

    def with_overrides(self, **changes: Any) -> "SyncConfig":
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncConfig":
        """
        Build a SyncConfig from a JSON-style mapping (camelCase keys accepted).

        Raises:
            ConfigError: on an unknown key or an invalid on_fetch_error value.
        """
        aliases = {
            "baseUrl": "base_url",
            "apiBase": "api_base",
            "basicAuth": "basic_auth",
            "bearerToken": "bearer_token",
            "disallowedLinkTypes": "disallowed_link_types",
            "skipFileDownloads": "skip_file_downloads",
            "fileTypes": "file_types",
            "fileMounts": "file_mounts",
            "basicAuthFileSystems": "basic_auth_file_systems",
            "fetchWorkers": "fetch_workers",
            "concurrentFileRequests": "concurrent_file_requests",
            "requestTimeout": "request_timeout",
            "onFetchError": "on_fetch_error",
        }
        known = set(cls.__dataclass_fields__)
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = aliases.get(key, key)
            if name not in known:
                raise ConfigError(f"Unknown config key: {key!r}")
            kwargs[name] = value

        if isinstance(kwargs.get("basic_auth"), dict):
            kwargs["basic_auth"] = BasicAuth(**kwargs["basic_auth"])
        if "disallowed_link_types" in kwargs:
            kwargs["disallowed_link_types"] = frozenset(kwargs["disallowed_link_types"])
        for name in ("file_types", "basic_auth_file_systems"):
            if name in kwargs:
                kwargs[name] = tuple(kwargs[name])
        if "file_mounts" in kwargs:
            mounts: dict[str, FileMount] = {}
            for mount_name, mount_data in kwargs["file_mounts"].items():
                if isinstance(mount_data, FileMount):
                    mounts[mount_name] = mount_data
                    continue
                mount_data = dict(mount_data or {})
                auth = mount_data.get("basic_auth") or mount_data.get("basicAuth")
                mounts[mount_name] = FileMount(
                    url_prefix=mount_data.get("url_prefix") or mount_data.get("urlPrefix"),
                    basic_auth=BasicAuth(**auth) if isinstance(auth, dict) else auth,
                )
            kwargs["file_mounts"] = mounts

        config = cls(**kwargs)
        config.validate()
        return config

    def validate(self) -> None:
        if self.on_fetch_error not in FETCH_ERROR_POLICIES:
            raise ConfigError(
                f"on_fetch_error must be one of {FETCH_ERROR_POLICIES}, "
                f"got {self.on_fetch_error!r}"
            )
        if self.fetch_workers < 1 or self.concurrent_file_requests < 1:
            raise ConfigError("fetch_workers and concurrent_file_requests must be >= 1")


# Shared default; construct a new SyncConfig to change behaviour.
DEFAULT_CONFIG = SyncConfig()
