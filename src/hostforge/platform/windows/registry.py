"""
Windows registry access.

``winreg`` covers most of the work. ``REG_MULTI_SZ`` data goes through the
raw ``RegQueryValueExW``/``RegSetValueExW`` calls instead, because ``winreg``
stops at the first empty string and the pending file rename ledger is made
of ``source, ""`` pairs.
"""

from __future__ import annotations

import ctypes
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from hostforge.core.logging import get_logger
from hostforge.core.models import LedgerEntry
from hostforge.platform.base import PendingDeletionLedger, RegistryStore
from hostforge.platform.windows.parsers import (
    decode_multi_sz,
    encode_multi_sz,
    ledger_entries_from_strings,
    ledger_entries_to_strings,
)

try:  # pragma: no cover - exercised on Windows only
    import winreg
except ImportError:  # pragma: no cover
    winreg = None  # type: ignore[assignment]

logger = get_logger(__name__)

HIVE_NAMES = {
    "HKLM": "HKEY_LOCAL_MACHINE",
    "HKCU": "HKEY_CURRENT_USER",
    "HKCR": "HKEY_CLASSES_ROOT",
    "HKU": "HKEY_USERS",
    "HKCC": "HKEY_CURRENT_CONFIG",
}

ERROR_SUCCESS = 0
ERROR_FILE_NOT_FOUND = 2
ERROR_MORE_DATA = 234

SESSION_MANAGER_KEY = r"SYSTEM\CurrentControlSet\Control\Session Manager"
PENDING_RENAME_VALUE = "PendingFileRenameOperations"


def _ensure_winreg() -> None:
    if winreg is None:  # pragma: no cover
        raise FileNotFoundError("Windows registry APIs are unavailable on this platform")


def _advapi32() -> Any:
    from ctypes import wintypes

    api = ctypes.WinDLL("advapi32", use_last_error=True)  # type: ignore[attr-defined]
    api.RegQueryValueExW.argtypes = [
        wintypes.HKEY,
        wintypes.LPCWSTR,
        wintypes.LPDWORD,
        wintypes.LPDWORD,
        ctypes.c_void_p,
        wintypes.LPDWORD,
    ]
    api.RegQueryValueExW.restype = wintypes.LONG
    api.RegSetValueExW.argtypes = [
        wintypes.HKEY,
        wintypes.LPCWSTR,
        wintypes.DWORD,
        wintypes.DWORD,
        ctypes.c_void_p,
        wintypes.DWORD,
    ]
    api.RegSetValueExW.restype = wintypes.LONG
    return api


class WinRegistryStore(RegistryStore):
    """RegistryStore backed by ``winreg``."""

    def __init__(self) -> None:
        _ensure_winreg()
        self._api: Any | None = None

    def _root(self, hive: str) -> int:
        try:
            return getattr(winreg, HIVE_NAMES[hive])
        except KeyError:
            raise ValueError(f"Unknown hive: {hive}") from None

    @contextmanager
    def _open(self, hive: str, subkey: str, access: int | None = None) -> Iterator[Any]:
        access_mask = access if access is not None else winreg.KEY_READ
        handle = winreg.OpenKey(self._root(hive), subkey, 0, access_mask)
        try:
            yield handle
        finally:
            winreg.CloseKey(handle)

    @property
    def api(self) -> Any:
        if self._api is None:
            self._api = _advapi32()
        return self._api

    def key_exists(self, hive: str, subkey: str) -> bool:
        try:
            with self._open(hive, subkey):
                return True
        except FileNotFoundError:
            return False

    def create_key(self, hive: str, subkey: str) -> None:
        handle = winreg.CreateKeyEx(self._root(hive), subkey, 0, winreg.KEY_WRITE)
        winreg.CloseKey(handle)

    def delete_key(self, hive: str, subkey: str) -> None:
        winreg.DeleteKey(self._root(hive), subkey)

    def list_subkeys(self, hive: str, subkey: str) -> list[str]:
        with self._open(hive, subkey) as handle:
            count, _, _ = winreg.QueryInfoKey(handle)
            return [winreg.EnumKey(handle, index) for index in range(count)]

    def list_values(self, hive: str, subkey: str) -> list[str]:
        with self._open(hive, subkey) as handle:
            _, count, _ = winreg.QueryInfoKey(handle)
            return [winreg.EnumValue(handle, index)[0] for index in range(count)]

    def get_value(self, hive: str, subkey: str, name: str) -> tuple[Any, int]:
        with self._open(hive, subkey) as handle:
            payload, kind = winreg.QueryValueEx(handle, name)
            if kind == winreg.REG_MULTI_SZ:
                raw, _ = self._query_raw(handle, name)
                payload = decode_multi_sz(raw)
            return payload, kind

    def set_value(self, hive: str, subkey: str, name: str, payload: Any, kind: int) -> None:
        with self._open(hive, subkey, winreg.KEY_SET_VALUE) as handle:
            if kind == winreg.REG_MULTI_SZ:
                self._set_raw(handle, name, kind, encode_multi_sz(list(payload)))
            else:
                winreg.SetValueEx(handle, name, 0, kind, payload)

    def delete_value(self, hive: str, subkey: str, name: str) -> None:
        with self._open(hive, subkey, winreg.KEY_SET_VALUE) as handle:
            winreg.DeleteValue(handle, name)

    def expand_environment(self, text: str) -> str:
        return winreg.ExpandEnvironmentStrings(text)

    def read_multi_sz(self, hive: str, subkey: str, name: str) -> list[str]:
        with self._open(hive, subkey) as handle:
            raw, _ = self._query_raw(handle, name)
        return decode_multi_sz(raw)

    def write_multi_sz(self, hive: str, subkey: str, name: str, strings: Sequence[str]) -> None:
        with self._open(hive, subkey, winreg.KEY_SET_VALUE) as handle:
            self._set_raw(handle, name, winreg.REG_MULTI_SZ, encode_multi_sz(strings))

    def _query_raw(self, handle: Any, name: str) -> tuple[bytes, int]:
        from ctypes import wintypes

        kind = wintypes.DWORD(0)
        size = wintypes.DWORD(0)
        rc = self.api.RegQueryValueExW(
            handle.handle, name, None, ctypes.byref(kind), None, ctypes.byref(size)
        )
        while True:
            if rc == ERROR_FILE_NOT_FOUND:
                raise FileNotFoundError(ERROR_FILE_NOT_FOUND, "Registry value not found", name)
            if rc not in (ERROR_SUCCESS, ERROR_MORE_DATA):
                raise ctypes.WinError(rc)  # type: ignore[attr-defined]
            buffer = ctypes.create_string_buffer(max(size.value, 1))
            rc = self.api.RegQueryValueExW(
                handle.handle, name, None, ctypes.byref(kind), buffer, ctypes.byref(size)
            )
            if rc == ERROR_SUCCESS:
                return buffer.raw[: size.value], kind.value
            # The value grew between the two calls; retry with the new size.

    def _set_raw(self, handle: Any, name: str, kind: int, data: bytes) -> None:
        buffer = ctypes.create_string_buffer(data, len(data))
        rc = self.api.RegSetValueExW(handle.handle, name, 0, kind, buffer, len(data))
        if rc != ERROR_SUCCESS:
            raise ctypes.WinError(rc)  # type: ignore[attr-defined]


class RegistryPendingLedger(PendingDeletionLedger):
    """``PendingFileRenameOperations`` under the Session Manager key."""

    def __init__(self, store: WinRegistryStore) -> None:
        self.store = store

    def read(self) -> list[LedgerEntry]:
        try:
            strings = self.store.read_multi_sz("HKLM", SESSION_MANAGER_KEY, PENDING_RENAME_VALUE)
        except FileNotFoundError:
            return []
        return ledger_entries_from_strings(strings)

    def write(self, entries: Sequence[LedgerEntry]) -> None:
        strings = ledger_entries_to_strings(entries)
        logger.debug("Writing pending rename ledger", entries=len(entries))
        self.store.write_multi_sz("HKLM", SESSION_MANAGER_KEY, PENDING_RENAME_VALUE, strings)


__all__ = [
    "RegistryPendingLedger",
    "WinRegistryStore",
]
