"""
HostForge configuration management.

Provides centralized configuration with validation using Pydantic.
"""

from __future__ import annotations

import json
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

MIB = 1024 * 1024


def _default_protected_paths() -> list[str]:
    if sys.platform == "win32":
        system_drive = os.environ.get("SystemDrive", "C:")
        system_root = os.environ.get("SystemRoot", f"{system_drive}\\Windows")
        program_files = os.environ.get("ProgramFiles", f"{system_drive}\\Program Files")
        program_files_x86 = os.environ.get(
            "ProgramFiles(x86)", f"{system_drive}\\Program Files (x86)"
        )
        program_data = os.environ.get("ProgramData", f"{system_drive}\\ProgramData")
        return [
            system_root,
            f"{system_root}\\System32",
            f"{system_root}\\SysWOW64",
            program_files,
            program_files_x86,
            program_data,
            f"{system_drive}\\Users",
        ]
    return [
        "/bin",
        "/boot",
        "/dev",
        "/etc",
        "/home",
        "/lib",
        "/proc",
        "/root",
        "/sbin",
        "/sys",
        "/usr",
        "/var",
    ]


def _default_protected_registry_keys() -> list[str]:
    return [
        "HKLM:\\SOFTWARE",
        "HKLM:\\SYSTEM",
        "HKLM:\\SAM",
        "HKLM:\\SECURITY",
        "HKLM:\\HARDWARE",
        "HKLM:\\BCD00000000",
        "HKLM:\\SOFTWARE\\Microsoft",
        "HKLM:\\SOFTWARE\\Microsoft\\Windows",
        "HKLM:\\SOFTWARE\\Microsoft\\Windows NT",
        "HKLM:\\SOFTWARE\\Classes",
        "HKLM:\\SOFTWARE\\Policies",
        "HKLM:\\SYSTEM\\CurrentControlSet",
        "HKLM:\\SYSTEM\\CurrentControlSet\\Control",
        "HKLM:\\SYSTEM\\CurrentControlSet\\Services",
        "HKCU:\\Software",
        "HKCU:\\Software\\Microsoft",
        "HKCU:\\Software\\Classes",
        "HKCU:\\Control Panel",
        "HKCU:\\Environment",
        "HKCR:\\CLSID",
        "HKU:\\.DEFAULT",
    ]


class LoggingConfig(BaseModel):
    """Configuration for structured logging."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    file_enabled: bool = True
    console_enabled: bool = True
    json_format: bool = False
    log_directory: Path = Field(default_factory=lambda: Path.home() / ".hostforge" / "logs")

    @field_validator("log_directory", mode="before")
    @classmethod
    def expand_path(cls, v: str | Path) -> Path:
        return Path(v).expanduser().resolve()


class SafetyConfig(BaseModel):
    """Blocklists consulted before destructive operations."""

    protected_paths: list[str] = Field(default_factory=_default_protected_paths)
    protected_registry_keys: list[str] = Field(default_factory=_default_protected_registry_keys)


class FileConfig(BaseModel):
    """Configuration for filesystem and text operations."""

    max_read_bytes: int = Field(default=100 * MIB, ge=1)
    binary_sample_bytes: int = Field(default=8192, ge=1)
    max_path_length: int = Field(default=260 if sys.platform == "win32" else 4096, ge=1)
    preserve_timestamps: bool = True


class ProcessConfig(BaseModel):
    """Timeouts used by the process lifecycle operations."""

    stop_timeout_seconds: float = Field(default=10.0, gt=0)
    kill_timeout_seconds: float = Field(default=5.0, gt=0)
    restart_settle_seconds: float = Field(default=1.0, ge=0)
    poll_interval_seconds: float = Field(default=0.25, gt=0)


class ServiceConfig(BaseModel):
    """Timeouts used by the service lifecycle operations."""

    timeout_seconds: float = Field(default=30.0, gt=0)
    poll_interval_seconds: float = Field(default=0.5, gt=0)


class HostForgeConfig(BaseModel):
    """Main HostForge configuration."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    files: FileConfig = Field(default_factory=FileConfig)
    processes: ProcessConfig = Field(default_factory=ProcessConfig)
    services: ServiceConfig = Field(default_factory=ServiceConfig)
    session_directory: Path = Field(default_factory=lambda: Path.home() / ".hostforge" / "sessions")

    @field_validator("session_directory", mode="before")
    @classmethod
    def expand_session_path(cls, v: str | Path) -> Path:
        return Path(v).expanduser().resolve()

    @classmethod
    def load(cls, config_path: Path | None = None) -> HostForgeConfig:
        """Load configuration from file or create default."""
        if config_path is None:
            config_path = Path.home() / ".hostforge" / "config.json"

        if config_path.exists():
            with open(config_path, encoding="utf-8") as f:
                data = json.load(f)
            return cls.model_validate(data)

        return cls()

    def save(self, config_path: Path | None = None) -> None:
        """Save configuration to file."""
        if config_path is None:
            config_path = Path.home() / ".hostforge" / "config.json"

        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

    def ensure_directories(self) -> None:
        """Create all required directories."""
        self.logging.log_directory.mkdir(parents=True, exist_ok=True)
        self.session_directory.mkdir(parents=True, exist_ok=True)

    def get_session_file(self) -> Path:
        """Get path for a new session log file."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return self.session_directory / f"session_{timestamp}.json"


def get_default_config() -> HostForgeConfig:
    """Get the default configuration."""
    return HostForgeConfig()


def load_config(config_path: Path | None = None) -> HostForgeConfig:
    """Load or create configuration."""
    config = HostForgeConfig.load(config_path)
    config.ensure_directories()
    return config
