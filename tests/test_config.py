"""Tests for configuration loading."""

from pathlib import Path

import pytest

from bicep_bridge.config import BridgeConfig, ConfigError, get_default_config, load_config
from bicep_bridge.rpc.protocol import DEFAULT_MAX_MESSAGE_SIZE


@pytest.fixture
def isolated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, clean_env: None) -> Path:
    """Run in an empty directory with no bridge environment variables."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestDefaults:
    def test_defaults(self, isolated: Path):
        config = load_config()

        assert config.bicep_path is None
        assert config.stderr == "log"
        assert config.connect_timeout == 30.0
        assert config.shutdown_timeout == 2.0
        assert config.max_message_size == DEFAULT_MAX_MESSAGE_SIZE
        assert config.log_level is None

    def test_default_transport_matches_platform(self, isolated: Path, monkeypatch):
        monkeypatch.setattr("sys.platform", "win32")
        assert BridgeConfig().transport == "stdio"
        monkeypatch.setattr("sys.platform", "linux")
        assert BridgeConfig().transport == "pipe"


class TestFileLoading:
    def test_loads_explicit_file(self, isolated: Path):
        path = isolated / "custom.toml"
        path.write_text(
            'bicep_path = "/opt/bicep/bicep"\n'
            'transport = "socket"\n'
            "connect_timeout = 5\n"
        )

        config = load_config(path)

        assert config.bicep_path == Path("/opt/bicep/bicep")
        assert config.transport == "socket"
        assert config.connect_timeout == 5.0

    def test_finds_file_in_current_directory(self, isolated: Path):
        (isolated / "bicep-bridge.toml").write_text('stderr = "discard"\n')
        assert load_config().stderr == "discard"

    def test_finds_file_named_by_environment(
        self, isolated: Path, monkeypatch: pytest.MonkeyPatch
    ):
        path = isolated / "elsewhere.toml"
        path.write_text('transport = "stdio"\n')
        monkeypatch.setenv("BICEP_BRIDGE_CONFIG", str(path))

        assert load_config().transport == "stdio"

    def test_missing_explicit_file(self, isolated: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(isolated / "missing.toml")

    def test_invalid_toml(self, isolated: Path):
        path = isolated / "broken.toml"
        path.write_text("transport = \n")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(path)

    @pytest.mark.parametrize(
        "content",
        [
            'transport = "carrier-pigeon"\n',
            "connect_timeout = 0\n",
            "shutdown_timeout = -1\n",
            'log_level = "LOUD"\n',
        ],
    )
    def test_invalid_values(self, isolated: Path, content: str):
        path = isolated / "bad.toml"
        path.write_text(content)
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(path)


class TestEnvironmentOverrides:
    def test_environment_wins_over_file(
        self, isolated: Path, monkeypatch: pytest.MonkeyPatch
    ):
        path = isolated / "bicep-bridge.toml"
        path.write_text('bicep_path = "/from/file"\ntransport = "socket"\n')
        monkeypatch.setenv("BICEP_PATH", "/from/env")
        monkeypatch.setenv("BICEP_BRIDGE_TRANSPORT", "stdio")

        config = load_config()

        assert config.bicep_path == Path("/from/env")
        assert config.transport == "stdio"

    def test_log_level_is_case_insensitive(
        self, isolated: Path, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.setenv("BICEP_BRIDGE_LOG_LEVEL", "debug")
        assert get_default_config().log_level == "DEBUG"

    def test_blank_variables_are_ignored(
        self, isolated: Path, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.setenv("BICEP_PATH", "   ")
        assert get_default_config().bicep_path is None

    def test_invalid_environment_value(
        self, isolated: Path, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.setenv("BICEP_BRIDGE_TRANSPORT", "fax")
        with pytest.raises(ConfigError, match="environment"):
            get_default_config()
