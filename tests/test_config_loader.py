from pathlib import Path

import logging

import pytest

from token_overlay.config import (
    ConfigurationError,
    IndexerConfig,
    RPCConfig,
    configure_logging,
    load_indexer_config,
)
from token_overlay.models import LayoutVersion


def test_defaults_without_file_or_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("token_overlay.config.DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")

    config = load_indexer_config(env={})

    assert isinstance(config, IndexerConfig)
    assert config.protocol_marker == "TOKEN"
    assert config.public_key_length == 33
    assert config.layouts == [LayoutVersion.B, LayoutVersion.A]
    assert config.history_limit == 50
    assert config.token_allowlist is None
    assert config.rpc is None


def test_environment_overrides_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "overlay.yaml"
    config_path.write_text(
        """
        indexer:
          database_path: /var/lib/overlay/file.sqlite
          protocol_marker: FILE
          layouts: [A]
          history_limit: 10
        rpc:
          user: file_user
          password: file_pass
          host: filehost
          port: 1111
        """
    )
    env_map = {
        "TOKEN_OVERLAY_PROTOCOL": "GOOSE",
        "TOKEN_OVERLAY_LAYOUTS": "b, a",
        "TOKEN_OVERLAY_STRICT_KEYS": "yes",
        "TOKEN_OVERLAY_TOKEN_ALLOWLIST": "aa,bb",
        "TOKEN_OVERLAY_RPC_ENDPOINT": "https://envhost:3333",
        "TOKEN_OVERLAY_RPC_USER": "env_user",
    }

    config = load_indexer_config(config_path=config_path, env=env_map)

    assert config.database_path == "/var/lib/overlay/file.sqlite"
    assert config.protocol_marker == "GOOSE"
    assert config.layouts == [LayoutVersion.B, LayoutVersion.A]
    assert config.strict_key_points is True
    assert config.token_allowlist == ["aa", "bb"]
    assert config.history_limit == 10
    assert isinstance(config.rpc, RPCConfig)
    assert config.rpc.user == "env_user"
    assert config.rpc.password == "file_pass"
    assert config.rpc.host == "envhost"
    assert config.rpc.port == 3333
    assert config.rpc.base_url == "https://envhost:3333"


def test_overrides_take_precedence(tmp_path: Path) -> None:
    config_path = tmp_path / "overlay.yaml"
    config_path.write_text("indexer:\n  history_limit: 10\n")

    config = load_indexer_config(
        config_path=config_path,
        env={"TOKEN_OVERLAY_HISTORY_LIMIT": "20", "TOKEN_OVERLAY_DB_PATH": ":memory:"},
        overrides={"history_limit": 30, "rpc": {"user": "u", "password": "p", "port": "18443"}},
    )

    assert config.history_limit == 30
    assert config.database_path == ":memory:"
    assert config.rpc is not None
    assert config.rpc.port == 18443
    assert config.rpc.base_url == "http://127.0.0.1:18443"


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        load_indexer_config(config_path=tmp_path / "nope.yaml", env={})


@pytest.mark.parametrize(
    "env_map",
    [
        {"TOKEN_OVERLAY_LAYOUTS": "C"},
        {"TOKEN_OVERLAY_HISTORY_LIMIT": "lots"},
        {"TOKEN_OVERLAY_HISTORY_LIMIT": "0"},
        {"TOKEN_OVERLAY_PUBKEY_LENGTH": "-1"},
        {"TOKEN_OVERLAY_LOG_LEVEL": "chatty"},
        {"TOKEN_OVERLAY_RPC_USER": "only_user"},
    ],
)
def test_invalid_values_raise(tmp_path: Path, env_map: dict) -> None:
    config_path = tmp_path / "overlay.yaml"
    config_path.write_text("{}\n")

    with pytest.raises(ConfigurationError):
        load_indexer_config(config_path=config_path, env=env_map)


def test_non_mapping_yaml_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "overlay.yaml"
    config_path.write_text("- just\n- a list\n")

    with pytest.raises(ConfigurationError):
        load_indexer_config(config_path=config_path, env={})


def test_configure_logging_sets_root_level(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    configure_logging("DEBUG")

    assert calls[0]["level"] == "DEBUG"


def test_endpoint_without_port_keeps_configured_port(tmp_path: Path) -> None:
    config_path = tmp_path / "overlay.yaml"
    config_path.write_text("rpc:\n  user: u\n  password: p\n  port: 9000\n  use_https: 1\n")

    config = load_indexer_config(
        config_path=config_path, env={"TOKEN_OVERLAY_RPC_ENDPOINT": "http://node.local"}
    )

    assert config.rpc is not None
    assert config.rpc.host == "node.local"
    assert config.rpc.port == 9000
    assert config.rpc.use_https is False


def test_invalid_yaml_is_a_configuration_error(tmp_path: Path) -> None:
    config_path = tmp_path / "overlay.yaml"
    config_path.write_text("indexer: [unclosed\n")

    with pytest.raises(ConfigurationError):
        load_indexer_config(config_path=config_path, env={})
