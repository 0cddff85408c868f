"""
HostForge Platform Abstraction Layer.

Filesystem and process operations run anywhere; registry, service and
boot-time ledger access come from the Windows backend.
"""

from __future__ import annotations

import platform

from hostforge.platform.base import PlatformBackend


def get_platform_backend() -> PlatformBackend:
    """Get the appropriate platform backend for the current OS."""
    system = platform.system().lower()

    if system == "windows":
        from hostforge.platform.windows import WindowsBackend

        return WindowsBackend()
    raise RuntimeError(f"Unsupported platform for registry and service access: {system}")


def get_platform_name() -> str:
    """Get the current platform name."""
    return platform.system().lower()


def is_linux() -> bool:
    """Check if running on Linux."""
    return platform.system().lower() == "linux"


def is_windows() -> bool:
    """Check if running on Windows."""
    return platform.system().lower() == "windows"


def is_admin() -> bool:
    """Check if running with administrative privileges."""
    system = platform.system().lower()

    if system == "windows":
        import ctypes

        try:
            return ctypes.windll.shell32.IsUserAnAdmin() != 0
        except Exception:
            return False

    import os

    return os.geteuid() == 0


__all__ = [
    "PlatformBackend",
    "get_platform_backend",
    "get_platform_name",
    "is_linux",
    "is_windows",
    "is_admin",
]
