"""
HostForge safety checks.

Blocklists and name rules that guard destructive filesystem and registry
operations, plus the privilege check injected into operations that need an
elevated context. These are advisory pre-flight tests, not a security
boundary.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Callable
from pathlib import Path, PurePath
from typing import TYPE_CHECKING

from hostforge.core.logging import get_logger
from hostforge.core.result import ErrorKind, PreconditionError, ValidationError
from hostforge.platform.paths import RegistryPath, parse_registry_path

if TYPE_CHECKING:
    from hostforge.core.config import SafetyConfig

logger = get_logger(__name__)

PrivilegeCheck = Callable[[], bool]

RESERVED_NAMES = frozenset(
    ["CON", "PRN", "AUX", "NUL"]
    + [f"COM{i}" for i in range(1, 10)]
    + [f"LPT{i}" for i in range(1, 10)]
)


def _path_key(path: str | PurePath) -> str:
    text = os.path.normpath(str(path))
    if sys.platform == "win32":
        return os.path.normcase(text)
    return text


def is_reserved_name(name: str) -> bool:
    """Whether ``name`` is a device name such as ``CON`` or ``LPT1.txt``."""
    stem = name.split(".", 1)[0].rstrip(" ").upper()
    return stem in RESERVED_NAMES


class SafetyPolicy:
    """Answers whether a path or registry key may be touched."""

    def __init__(self, config: SafetyConfig) -> None:
        self.config = config
        self._protected_paths = {_path_key(p) for p in config.protected_paths if p}
        self._protected_keys: set[str] = set()
        for raw in config.protected_registry_keys:
            try:
                self._protected_keys.add(parse_registry_path(raw).key())
            except ValidationError:
                logger.warning("Ignoring malformed protected registry key", key=raw)

    def is_protected_path(self, path: str | Path) -> bool:
        """Drive roots, filesystem roots and the configured system directories."""
        candidate = Path(path)
        try:
            candidate = candidate.resolve()
        except OSError:
            candidate = Path(os.path.abspath(candidate))
        if candidate.parent == candidate:
            return True
        return _path_key(candidate) in self._protected_paths

    def is_protected_registry_key(self, path: RegistryPath) -> bool:
        return path.is_hive_root or path.key() in self._protected_keys

    def ensure_path_allowed(self, path: str | Path, action: str) -> None:
        if self.is_protected_path(path):
            logger.warning("Blocked operation on protected path", path=str(path), action=action)
            raise PreconditionError(f"Refusing to {action} protected system path '{path}'")

    def ensure_registry_key_allowed(self, path: RegistryPath, action: str) -> None:
        if self.is_protected_registry_key(path):
            logger.warning("Blocked operation on protected key", key=str(path), action=action)
            raise PreconditionError(f"Refusing to {action} protected registry key '{path}'")


def check_reserved_name(path: str | PurePath) -> None:
    """Reject reserved device names in any component of ``path``."""
    for part in PurePath(path).parts:
        if is_reserved_name(part):
            raise ValidationError(f"'{part}' is a reserved device name and cannot be used in '{path}'")


def check_path_length(path: str | PurePath, limit: int) -> None:
    length = len(str(path))
    if length > limit:
        raise ValidationError(f"Path is {length} characters long; the maximum is {limit}: '{path}'")


def require_elevation(is_admin: PrivilegeCheck, action: str) -> None:
    """Fail fast, with a message distinct from not-found, when not elevated."""
    if not is_admin():
        raise PreconditionError(
            f"Administrator privileges are required to {action}; "
            "rerun from an elevated session",
            kind=ErrorKind.ACCESS_DENIED,
        )
