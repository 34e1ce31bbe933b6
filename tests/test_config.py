"""Tests for awakenfetch/config.py."""

from __future__ import annotations

from pathlib import Path

import pytest

from awakenfetch.config import (
    AwakenFetchConfig,
    get_default_config_path,
    load_config,
    save_config,
)
from awakenfetch.exceptions import ConfigInvalidError

# ── load_config ───────────────────────────────────────────────────────────────


def test_load_config_returns_defaults_when_no_file(tmp_path: Path) -> None:
    config = load_config(str(tmp_path / "nonexistent.toml"))
    assert isinstance(config, AwakenFetchConfig)
    assert config.http.timeout == 30.0
    assert config.http.max_retries == 3
    assert config.http.base_delay == 1.0
    assert config.output.default_format == "csv"
    assert config.api.taostats_api_key == ""


def test_load_config_from_valid_toml(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text(
        """
[api]
taostats_api_key = "tao_123"
subscan_api_key = "sub_456"

[http]
timeout = 10.0
max_retries = 5

[output]
default_format = "table"
output_dir = "/tmp/exports"
"""
    )
    config = load_config(str(config_file))
    assert config.api.taostats_api_key == "tao_123"
    assert config.api.subscan_api_key == "sub_456"
    assert config.http.timeout == 10.0
    assert config.http.max_retries == 5
    assert config.http.base_delay == 1.0
    assert config.output.default_format == "table"
    assert config.output.output_dir == "/tmp/exports"


def test_load_config_invalid_toml_raises(tmp_path: Path) -> None:
    config_file = tmp_path / "broken.toml"
    config_file.write_text("[api\ntaostats_api_key = ")
    with pytest.raises(ConfigInvalidError):
        load_config(str(config_file))


def test_load_config_invalid_format_raises(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text('[output]\ndefault_format = "xml"\n')
    with pytest.raises(ConfigInvalidError, match="default_format"):
        load_config(str(config_file))


def test_load_config_negative_retries_raises(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("[http]\nmax_retries = -1\n")
    with pytest.raises(ConfigInvalidError):
        load_config(str(config_file))


def test_load_config_non_numeric_timeout_raises(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text('[http]\ntimeout = "soon"\n')
    with pytest.raises(ConfigInvalidError):
        load_config(str(config_file))


# ── Environment overrides ─────────────────────────────────────────────────────


def test_provider_env_names_are_read(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TAOSTATS_API_KEY", "from_env")
    monkeypatch.setenv("VARIATIONAL_API_SECRET", "secret_env")
    monkeypatch.setenv("EXTENDED_API_KEY", "ext_env")
    monkeypatch.setenv("SKYMAVIS_API_KEY", "sky_env")
    config = load_config(str(tmp_path / "none.toml"))
    assert config.api.taostats_api_key == "from_env"
    assert config.api.variational_api_secret == "secret_env"
    assert config.api.extended_api_key == "ext_env"
    assert config.api.skymavis_api_key == "sky_env"


def test_prefixed_env_wins_over_provider_name(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("SUBSCAN_API_KEY", "plain")
    monkeypatch.setenv("AWAKENFETCH_SUBSCAN_API_KEY", "prefixed")
    config = load_config(str(tmp_path / "none.toml"))
    assert config.api.subscan_api_key == "prefixed"


def test_env_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("[http]\nmax_retries = 2\n")
    monkeypatch.setenv("AWAKENFETCH_MAX_RETRIES", "7")
    monkeypatch.setenv("AWAKENFETCH_HTTP_TIMEOUT", "12.5")
    config = load_config(str(config_file))
    assert config.http.max_retries == 7
    assert config.http.timeout == 12.5


def test_invalid_env_value_raises(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AWAKENFETCH_MAX_RETRIES", "many")
    with pytest.raises(ConfigInvalidError, match="AWAKENFETCH_MAX_RETRIES"):
        load_config(str(tmp_path / "none.toml"))


def test_config_path_env_var(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_file = tmp_path / "env_config.toml"
    config_file.write_text('[output]\ndefault_format = "jsonl"\n')
    monkeypatch.setenv("AWAKENFETCH_CONFIG_PATH", str(config_file))
    assert load_config().output.default_format == "jsonl"


# ── save_config ───────────────────────────────────────────────────────────────


def test_save_and_reload_config(tmp_path: Path) -> None:
    config = AwakenFetchConfig()
    config.api.variational_api_key = "vk"
    config.http.base_delay = 0.5
    config.output.default_format = "json"

    path = save_config(config, str(tmp_path / "nested" / "config.toml"))
    assert path.exists()

    reloaded = load_config(str(path))
    assert reloaded.api.variational_api_key == "vk"
    assert reloaded.http.base_delay == 0.5
    assert reloaded.output.default_format == "json"


def test_default_config_path() -> None:
    path = get_default_config_path()
    assert path.name == "config.toml"
    assert path.parent.name == ".awakenfetch"
