"""
Windows output parsers.

Parsers for PowerShell JSON output and the raw ``REG_MULTI_SZ`` layout of
the pending file rename ledger.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from hostforge.core.models import LedgerEntry
from hostforge.platform.base import ShellStartResult


def parse_powershell_json(output: str) -> list[Any]:
    """Parse JSON output from PowerShell commands.

    ``ConvertTo-Json`` emits a bare object (or scalar) for a single result
    and an array otherwise; both come back as a list.
    """
    output = output.strip()
    if not output:
        return []

    try:
        data = json.loads(output)
    except json.JSONDecodeError:
        return []
    if data is None:
        return []
    if isinstance(data, list):
        return data
    return [data]


def parse_start_output(output: str) -> ShellStartResult | None:
    """Read the ``PID=``, ``EXIT=`` and ``TIMEOUT`` lines printed by the start script."""
    pid: int | None = None
    exit_code: int | None = None
    timed_out = False
    for line in output.splitlines():
        line = line.strip()
        if line.startswith("PID="):
            value = line[4:]
            pid = int(value) if value.isdigit() else None
        elif line.startswith("EXIT="):
            try:
                exit_code = int(line[5:])
            except ValueError:
                exit_code = None
        elif line == "TIMEOUT":
            timed_out = True
    if pid is None:
        return None
    return ShellStartResult(pid, exit_code, timed_out)


def encode_multi_sz(strings: Sequence[str]) -> bytes:
    """Encode strings as a ``REG_MULTI_SZ`` buffer, keeping empty entries."""
    text = "".join(f"{item}\0" for item in strings) + "\0"
    return text.encode("utf-16-le")


def decode_multi_sz(data: bytes) -> list[str]:
    """Decode a ``REG_MULTI_SZ`` buffer, keeping empty entries.

    The ledger stores a rename target of ``""`` as an empty string between
    two terminators, so decoding cannot stop at the first double NUL.
    """
    if not data:
        return []
    text = data.decode("utf-16-le", errors="replace")
    if text.endswith("\0"):
        text = text[:-1]
    if not text:
        return []
    items = text.split("\0")
    if items and items[-1] == "":
        items.pop()
    return items


def ledger_entries_from_strings(strings: Sequence[str]) -> list[LedgerEntry]:
    """Pair up ``source, target`` strings; a dangling source becomes a deletion."""
    entries: list[LedgerEntry] = []
    for index in range(0, len(strings), 2):
        source = strings[index]
        target = strings[index + 1] if index + 1 < len(strings) else ""
        if not source:
            continue
        entries.append(LedgerEntry(source=source, target=target))
    return entries


def ledger_entries_to_strings(entries: Sequence[LedgerEntry]) -> list[str]:
    strings: list[str] = []
    for entry in entries:
        strings.extend((entry.source, entry.target))
    return strings
