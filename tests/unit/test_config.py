"""
Tests for hostforge.core.config module.
"""

import sys
import tempfile
from pathlib import Path

import pytest
from pydantic import ValidationError

from hostforge.core.config import (
    FileConfig,
    HostForgeConfig,
    LoggingConfig,
    ProcessConfig,
    SafetyConfig,
    ServiceConfig,
    load_config,
)


class TestLoggingConfig:
    """Tests for LoggingConfig."""

    def test_default_values(self) -> None:
        config = LoggingConfig()
        assert config.level == "INFO"
        assert config.file_enabled is True
        assert config.console_enabled is True
        assert config.json_format is False

    def test_path_expansion(self) -> None:
        config = LoggingConfig(log_directory="~/logs")
        assert "~" not in str(config.log_directory)

    def test_invalid_level(self) -> None:
        with pytest.raises(ValidationError):
            LoggingConfig(level="LOUD")


class TestSafetyConfig:
    """Tests for SafetyConfig."""

    def test_default_registry_keys(self) -> None:
        config = SafetyConfig()
        assert "HKLM:\\SYSTEM" in config.protected_registry_keys
        assert "HKCU:\\Software" in config.protected_registry_keys

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX defaults")
    def test_default_posix_paths(self) -> None:
        config = SafetyConfig()
        assert "/etc" in config.protected_paths
        assert "/usr" in config.protected_paths


class TestFileConfig:
    """Tests for FileConfig."""

    def test_default_values(self) -> None:
        config = FileConfig()
        assert config.max_read_bytes == 100 * 1024 * 1024
        assert config.binary_sample_bytes == 8192
        assert config.preserve_timestamps is True

    def test_read_limit_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            FileConfig(max_read_bytes=0)


class TestTimeoutConfigs:
    """Tests for process and service timeouts."""

    def test_process_defaults(self) -> None:
        config = ProcessConfig()
        assert config.stop_timeout_seconds == 10.0
        assert config.kill_timeout_seconds == 5.0

    def test_service_timeout_positive(self) -> None:
        with pytest.raises(ValidationError):
            ServiceConfig(timeout_seconds=0)


class TestHostForgeConfig:
    """Tests for HostForgeConfig."""

    def test_default_config(self) -> None:
        config = HostForgeConfig()
        assert isinstance(config.logging, LoggingConfig)
        assert isinstance(config.safety, SafetyConfig)
        assert isinstance(config.files, FileConfig)
        assert isinstance(config.processes, ProcessConfig)
        assert isinstance(config.services, ServiceConfig)

    def test_save_and_load(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "config.json"

            original = HostForgeConfig(
                files=FileConfig(max_read_bytes=1024),
                services=ServiceConfig(timeout_seconds=5),
            )
            original.save(config_path)

            loaded = HostForgeConfig.load(config_path)

            assert loaded.files.max_read_bytes == 1024
            assert loaded.services.timeout_seconds == 5

    def test_load_nonexistent(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config = HostForgeConfig.load(Path(tmpdir) / "nonexistent.json")
            assert config.files.max_read_bytes == 100 * 1024 * 1024

    def test_load_config_creates_directories(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "config.json"
            HostForgeConfig(
                logging=LoggingConfig(log_directory=Path(tmpdir) / "logs"),
                session_directory=Path(tmpdir) / "sessions",
            ).save(config_path)

            config = load_config(config_path)

            assert config.logging.log_directory.exists()
            assert config.session_directory.exists()

    def test_get_session_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config = HostForgeConfig(session_directory=Path(tmpdir))
            session_file = config.get_session_file()
            assert session_file.parent == Path(tmpdir).resolve()
            assert "session_" in session_file.name
            assert session_file.suffix == ".json"
