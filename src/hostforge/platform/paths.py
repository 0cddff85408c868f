"""
Path and registry target normalization.

Filesystem paths accept either separator and come out with the platform
separator; a trailing separator is remembered as a "this is a directory"
hint. Registry paths must start with a known hive token, long hive names are
rewritten to their short form.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path

from hostforge.core.result import ValidationError

HIVE_ALIASES = {
    "HKLM": "HKLM",
    "HKCU": "HKCU",
    "HKCR": "HKCR",
    "HKU": "HKU",
    "HKCC": "HKCC",
    "HKEY_LOCAL_MACHINE": "HKLM",
    "HKEY_CURRENT_USER": "HKCU",
    "HKEY_CLASSES_ROOT": "HKCR",
    "HKEY_USERS": "HKU",
    "HKEY_CURRENT_CONFIG": "HKCC",
}

DOS_DEVICE_PREFIX = "\\??\\"
MAX_DEVICE_PATH_LENGTH = 32767

_DRIVE_ONLY = re.compile(r"^[A-Za-z]:$")


@dataclass(frozen=True)
class NormalizedPath:
    path: Path
    directory_hint: bool = False


def normalize_path(raw: str | os.PathLike[str]) -> NormalizedPath:
    """Canonicalize separators and strip trailing ones, keeping the hint."""
    text = os.fspath(raw).strip()
    if not text:
        raise ValidationError("Path must not be empty")
    if "\x00" in text:
        raise ValidationError(f"Path contains a NUL character: {text!r}")

    directory_hint = text.endswith(("/", "\\"))
    text = text.replace("\\", os.sep).replace("/", os.sep)

    stripped = text.rstrip(os.sep)
    if not stripped:
        stripped = os.sep
    elif _DRIVE_ONLY.match(stripped):
        stripped += os.sep

    return NormalizedPath(Path(os.path.expanduser(stripped)), directory_hint)


@dataclass(frozen=True)
class RegistryPath:
    """A registry key addressed as short hive plus backslash-joined subkey."""

    hive: str
    subkey: str = ""

    @property
    def is_hive_root(self) -> bool:
        return not self.subkey

    @property
    def name(self) -> str:
        return self.subkey.rpartition("\\")[2]

    @property
    def parent(self) -> RegistryPath:
        return RegistryPath(self.hive, self.subkey.rpartition("\\")[0])

    def child(self, name: str) -> RegistryPath:
        name = name.strip("\\/")
        return RegistryPath(self.hive, f"{self.subkey}\\{name}" if self.subkey else name)

    def key(self) -> str:
        """Case-insensitive identity used for comparisons."""
        return f"{self.hive}\\{self.subkey}".casefold()

    def __str__(self) -> str:
        return f"{self.hive}:\\{self.subkey}"


def parse_registry_path(raw: str) -> RegistryPath:
    """Parse ``HKLM:\\Software\\X`` (or the long hive form) into a RegistryPath."""
    text = (raw or "").strip()
    if not text:
        raise ValidationError("Registry path must not be empty")
    if text.lower().startswith("registry::"):
        text = text[len("registry::"):]

    text = text.replace("/", "\\")
    head, _, rest = text.partition("\\")
    token, colon, remainder = head.partition(":")
    if colon and remainder:
        rest = f"{remainder}\\{rest}" if rest else remainder

    hive = HIVE_ALIASES.get(token.strip().upper())
    if hive is None:
        raise ValidationError(
            f"Registry path '{raw}' must start with a hive such as HKLM:, HKCU:, HKCR:, HKU: or HKCC:"
        )

    parts = [part for part in rest.split("\\") if part]
    return RegistryPath(hive, "\\".join(parts))


def to_dos_device_path(path: str) -> str:
    """Convert an absolute path to the ``\\??\\`` form used by the boot-time mover."""
    if "\x00" in path:
        raise ValueError("path contains a NUL character")
    if path.startswith(DOS_DEVICE_PREFIX):
        converted = path
    elif path.startswith("\\\\?\\"):
        converted = DOS_DEVICE_PREFIX + path[4:]
    elif path.startswith("\\\\"):
        converted = DOS_DEVICE_PREFIX + "UNC\\" + path[2:]
    else:
        converted = DOS_DEVICE_PREFIX + path
    if len(converted) > MAX_DEVICE_PATH_LENGTH:
        raise ValueError(f"path is longer than {MAX_DEVICE_PATH_LENGTH} characters")
    return converted
