"""
Tests for hostforge.platform.paths module.
"""

import os

import pytest

from hostforge.core.result import ValidationError
from hostforge.platform.paths import (
    RegistryPath,
    normalize_path,
    parse_registry_path,
    to_dos_device_path,
)


class TestNormalizePath:
    """Tests for filesystem path normalization."""

    def test_canonical_separators(self) -> None:
        result = normalize_path("a/b\\c")
        assert str(result.path) == os.path.join("a", "b", "c")
        assert result.directory_hint is False

    def test_trailing_separator_is_directory_hint(self) -> None:
        result = normalize_path("backup/")
        assert result.directory_hint is True
        assert str(result.path) == "backup"

    def test_trailing_backslash_is_directory_hint(self) -> None:
        assert normalize_path("backup\\").directory_hint is True

    def test_root_is_kept(self) -> None:
        assert str(normalize_path("/").path) == os.sep

    def test_empty_rejected(self) -> None:
        with pytest.raises(ValidationError):
            normalize_path("  ")

    def test_nul_rejected(self) -> None:
        with pytest.raises(ValidationError, match="NUL"):
            normalize_path("a\x00b")


class TestParseRegistryPath:
    """Tests for registry path parsing."""

    def test_short_hive(self) -> None:
        path = parse_registry_path("HKCU:\\Software\\Test")
        assert path == RegistryPath("HKCU", "Software\\Test")
        assert str(path) == "HKCU:\\Software\\Test"

    def test_long_hive_rewritten(self) -> None:
        path = parse_registry_path("HKEY_LOCAL_MACHINE\\SOFTWARE\\Vendor")
        assert path.hive == "HKLM"
        assert path.subkey == "SOFTWARE\\Vendor"

    def test_long_hive_with_colon(self) -> None:
        assert parse_registry_path("HKEY_CURRENT_USER:\\Software").hive == "HKCU"

    def test_case_insensitive_hive(self) -> None:
        assert parse_registry_path("hklm:\\System").hive == "HKLM"

    def test_trailing_and_doubled_separators(self) -> None:
        path = parse_registry_path("HKCU:\\Software\\\\Test\\")
        assert path.subkey == "Software\\Test"

    def test_forward_slashes(self) -> None:
        assert parse_registry_path("HKCU:/Software/Test").subkey == "Software\\Test"

    def test_provider_prefix(self) -> None:
        assert parse_registry_path("Registry::HKEY_USERS\\.DEFAULT").hive == "HKU"

    def test_colon_without_separator(self) -> None:
        assert parse_registry_path("HKLM:Software").subkey == "Software"

    def test_hive_root(self) -> None:
        path = parse_registry_path("HKCC:")
        assert path.is_hive_root is True

    def test_unknown_hive_rejected(self) -> None:
        with pytest.raises(ValidationError, match="must start with a hive"):
            parse_registry_path("C:\\Windows")

    def test_navigation(self) -> None:
        path = parse_registry_path("HKCU:\\Software\\Test")
        assert path.name == "Test"
        assert path.parent == RegistryPath("HKCU", "Software")
        assert path.child("App") == RegistryPath("HKCU", "Software\\Test\\App")
        assert RegistryPath("HKCU").child("Software").subkey == "Software"

    def test_key_is_case_insensitive(self) -> None:
        assert parse_registry_path("HKCU:\\SOFTWARE").key() == parse_registry_path("hkcu:\\software").key()


class TestDosDevicePath:
    """Tests for DOS device path conversion."""

    def test_drive_path(self) -> None:
        assert to_dos_device_path("C:\\temp\\a.txt") == "\\??\\C:\\temp\\a.txt"

    def test_unc_path(self) -> None:
        assert to_dos_device_path("\\\\server\\share\\x") == "\\??\\UNC\\server\\share\\x"

    def test_long_path_prefix(self) -> None:
        assert to_dos_device_path("\\\\?\\C:\\x") == "\\??\\C:\\x"

    def test_already_converted(self) -> None:
        assert to_dos_device_path("\\??\\C:\\x") == "\\??\\C:\\x"

    def test_nul_rejected(self) -> None:
        with pytest.raises(ValueError):
            to_dos_device_path("C:\\a\x00b")

    def test_too_long_rejected(self) -> None:
        with pytest.raises(ValueError, match="longer than"):
            to_dos_device_path("C:\\" + "a" * 40000)
