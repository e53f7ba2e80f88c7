"""Shared configuration loader for the token overlay."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping
from urllib.parse import urlparse

import yaml

from .models import LayoutVersion


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".token-overlay.yaml"
DEFAULT_DB_PATH = Path.home() / ".token-overlay" / "tokens.sqlite"
ENV_PREFIX = "TOKEN_OVERLAY_"


@dataclass
class RPCConfig:
    """Connection details for the node that supplies transaction outputs."""

    user: str
    password: str
    host: str = "127.0.0.1"
    port: int = 8332
    use_https: bool = False

    @property
    def base_url(self) -> str:
        scheme = "https" if self.use_https else "http"
        return f"{scheme}://{self.host}:{self.port}"


@dataclass
class IndexerConfig:
    """Settings for admission rules, storage and logging."""

    database_path: str = str(DEFAULT_DB_PATH)
    protocol_marker: str = "TOKEN"
    public_key_length: int = 33
    layouts: List[LayoutVersion] = field(
        default_factory=lambda: [LayoutVersion.B, LayoutVersion.A]
    )
    strict_key_points: bool = False
    token_allowlist: List[str] | None = None
    history_limit: int = 50
    log_level: str = "INFO"
    rpc: RPCConfig | None = None


_TRUTHY = frozenset({"1", "true", "yes", "y", "on"})
_FALSY = frozenset({"0", "false", "no", "n", "off"})


def _read_yaml(path: Path, *, required: bool) -> dict[str, Any]:
    """Return the parsed config file, or ``{}`` when an optional file is absent."""

    if path.exists():
        try:
            document = yaml.safe_load(path.read_text())
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"{path} is not valid YAML: {exc}") from exc
    elif required:
        raise ConfigurationError(f"Config file not found: {path}")
    else:
        document = None

    document = document or {}
    if not isinstance(document, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML mapping")
    return document


def _section(file_config: Mapping[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = file_config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")
    return section


def _coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool) or value is None:
        return value
    word = str(value).strip().lower()
    if word in _TRUTHY:
        return True
    if word in _FALSY:
        return False
    return None


def _coerce_int(raw: Any, *, source: str) -> int | None:
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ConfigurationError(f"Invalid integer in {source}: {raw}")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid integer in {source}: {raw}") from exc


def _coerce_list(raw: Any) -> list[str] | None:
    if raw is None:
        return None
    if isinstance(raw, str):
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(raw, (list, tuple)):
        return [str(item).strip() for item in raw]
    raise ConfigurationError(f"Expected a list or comma separated string, got {raw!r}")


def _coerce_layouts(raw: Any, *, source: str) -> list[LayoutVersion] | None:
    names = _coerce_list(raw)
    if names is None:
        return None
    layouts: list[LayoutVersion] = []
    for name in names:
        try:
            layout = LayoutVersion(name.upper())
        except ValueError as exc:
            raise ConfigurationError(f"Unknown script layout {name!r} in {source}") from exc
        if layout not in layouts:
            layouts.append(layout)
    if not layouts:
        raise ConfigurationError(f"At least one script layout is required in {source}")
    return layouts


def _first_set(*values: Any, default: Any = None) -> Any:
    return next((value for value in values if value is not None), default)


def _endpoint_parts(raw: str | None) -> dict[str, Any]:
    """Split an RPC endpoint URL into the ``RPCConfig`` fields it pins down."""

    if not raw:
        return {}
    parsed = urlparse(raw)
    if not parsed.scheme and not parsed.hostname:
        raise ConfigurationError(f"Invalid RPC endpoint URL: {raw}")
    parts: dict[str, Any] = {"host": parsed.hostname, "port": parsed.port}
    if parsed.scheme:
        parts["use_https"] = parsed.scheme.lower() == "https"
    return parts


def _resolve_rpc(
    rpc_section: Mapping[str, Any], env_map: Mapping[str, str], overrides: Mapping[str, Any], path: Path
) -> RPCConfig | None:
    endpoint = _endpoint_parts(
        _first_set(
            overrides.get("endpoint"),
            env_map.get(f"{ENV_PREFIX}RPC_ENDPOINT"),
            rpc_section.get("endpoint"),
        )
    )
    user = _first_set(overrides.get("user"), env_map.get(f"{ENV_PREFIX}RPC_USER"), rpc_section.get("user"))
    password = _first_set(
        overrides.get("password"), env_map.get(f"{ENV_PREFIX}RPC_PASSWORD"), rpc_section.get("password")
    )
    if user is None and password is None:
        return None
    if not user or not password:
        raise ConfigurationError(
            "RPC credentials must include both a user and a password "
            f"({ENV_PREFIX}RPC_* environment variables or the 'rpc' section of {path})"
        )

    return RPCConfig(
        user=str(user),
        password=str(password),
        host=_first_set(
            overrides.get("host"),
            endpoint.get("host"),
            env_map.get(f"{ENV_PREFIX}RPC_HOST"),
            rpc_section.get("host"),
            "127.0.0.1",
        ),
        port=_first_set(
            _coerce_int(overrides.get("port"), source="overrides"),
            endpoint.get("port"),
            _coerce_int(env_map.get(f"{ENV_PREFIX}RPC_PORT"), source="environment"),
            _coerce_int(rpc_section.get("port"), source=f"{path} rpc.port"),
            8332,
        ),
        use_https=bool(
            _first_set(
                _coerce_bool(overrides.get("use_https")),
                endpoint.get("use_https"),
                _coerce_bool(env_map.get(f"{ENV_PREFIX}RPC_USE_HTTPS")),
                _coerce_bool(rpc_section.get("use_https")),
                False,
            )
        ),
    )


def load_indexer_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> IndexerConfig:
    """Load indexer configuration from overrides, environment and optional YAML.

    Precedence is overrides, then ``TOKEN_OVERLAY_*`` environment variables,
    then the ``indexer`` and ``rpc`` sections of the YAML file, then defaults.
    The YAML file is only required when a path is passed explicitly.
    """

    env_map = os.environ if env is None else env
    path = Path(config_path).expanduser() if config_path is not None else DEFAULT_CONFIG_PATH
    file_config = _read_yaml(path, required=config_path is not None)
    indexer_section = _section(file_config, "indexer", path)
    rpc_section = _section(file_config, "rpc", path)
    override_map = dict(overrides or {})

    def pick(key: str, env_key: str) -> Any:
        return _first_set(override_map.get(key), env_map.get(f"{ENV_PREFIX}{env_key}"), indexer_section.get(key))

    defaults = IndexerConfig()
    history_limit = _first_set(
        _coerce_int(pick("history_limit", "HISTORY_LIMIT"), source="history_limit"),
        default=defaults.history_limit,
    )
    public_key_length = _first_set(
        _coerce_int(pick("public_key_length", "PUBKEY_LENGTH"), source="public_key_length"),
        default=defaults.public_key_length,
    )
    if history_limit <= 0:
        raise ConfigurationError(f"history_limit must be positive, got {history_limit}")
    if public_key_length <= 0:
        raise ConfigurationError(f"public_key_length must be positive, got {public_key_length}")

    log_level = str(_first_set(pick("log_level", "LOG_LEVEL"), default=defaults.log_level)).upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigurationError(f"Unknown log level: {log_level}")

    raw_db_path = str(_first_set(pick("database_path", "DB_PATH"), default=defaults.database_path))
    database_path = raw_db_path if raw_db_path == ":memory:" else str(Path(raw_db_path).expanduser())

    return IndexerConfig(
        database_path=database_path,
        protocol_marker=str(_first_set(pick("protocol_marker", "PROTOCOL"), default=defaults.protocol_marker)),
        public_key_length=public_key_length,
        layouts=_first_set(
            _coerce_layouts(pick("layouts", "LAYOUTS"), source="layouts"), default=defaults.layouts
        ),
        strict_key_points=bool(
            _first_set(_coerce_bool(pick("strict_key_points", "STRICT_KEYS")), default=False)
        ),
        token_allowlist=_coerce_list(pick("token_allowlist", "TOKEN_ALLOWLIST")),
        history_limit=history_limit,
        log_level=log_level,
        rpc=_resolve_rpc(rpc_section, env_map, dict(override_map.get("rpc") or {}), path),
    )


def configure_logging(level: str | int = "INFO") -> None:
    """Install the root handler used by long-running overlay processes."""

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
