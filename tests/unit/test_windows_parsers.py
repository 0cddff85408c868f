"""
Tests for the Windows output parsers and sc.exe error mapping.

These run everywhere; nothing here touches a Windows API.
"""

from typing import Any
from unittest.mock import MagicMock

import psutil
import pytest

from hostforge.core.config import HostForgeConfig
from hostforge.core.models import LedgerEntry, ServiceStatus, StartupType
from hostforge.operations.services import ServiceOperations
from hostforge.platform.base import CommandResult
from hostforge.platform.windows.parsers import (
    decode_multi_sz,
    encode_multi_sz,
    ledger_entries_from_strings,
    ledger_entries_to_strings,
    parse_powershell_json,
    parse_start_output,
)
from hostforge.platform.windows.services import WindowsServiceControl


class TestMultiSz:
    """Tests for REG_MULTI_SZ buffers."""

    def test_keeps_empty_entries(self) -> None:
        strings = ["\\??\\C:\\a", "", "\\??\\C:\\b", ""]
        assert decode_multi_sz(encode_multi_sz(strings)) == strings

    def test_layout(self) -> None:
        assert encode_multi_sz(["a", ""]) == "a\0\0\0".encode("utf-16-le")

    def test_empty(self) -> None:
        assert decode_multi_sz(b"") == []
        assert decode_multi_sz(encode_multi_sz([])) == []

    def test_missing_final_terminator(self) -> None:
        assert decode_multi_sz("a\0b\0".encode("utf-16-le")) == ["a", "b"]


class TestLedgerStrings:
    """Tests for pairing ledger strings."""

    def test_pairs(self) -> None:
        entries = ledger_entries_from_strings(["\\??\\C:\\old", "!\\??\\C:\\new", "\\??\\C:\\gone", ""])
        assert entries == [
            LedgerEntry("\\??\\C:\\old", "!\\??\\C:\\new"),
            LedgerEntry("\\??\\C:\\gone"),
        ]

    def test_dangling_source_is_deletion(self) -> None:
        assert ledger_entries_from_strings(["\\??\\C:\\x"]) == [LedgerEntry("\\??\\C:\\x")]

    def test_to_strings(self) -> None:
        entries = [LedgerEntry("a"), LedgerEntry("b", "c")]
        assert ledger_entries_to_strings(entries) == ["a", "", "b", "c"]


class TestPowerShellOutput:
    """Tests for PowerShell output parsing."""

    def test_single_object(self) -> None:
        assert parse_powershell_json('{"Name": "Spooler"}') == [{"Name": "Spooler"}]

    def test_array(self) -> None:
        assert parse_powershell_json('["a", "b"]') == ["a", "b"]

    @pytest.mark.parametrize("output", ["", "   ", "null", "not json"])
    def test_nothing(self, output: str) -> None:
        assert parse_powershell_json(output) == []

    def test_start_output_without_wait(self) -> None:
        started = parse_start_output("WARNING: something\r\nPID=4242\r\n")
        assert started is not None
        assert started.pid == 4242
        assert started.exit_code is None
        assert started.timed_out is False

    def test_start_output_with_exit_code(self) -> None:
        started = parse_start_output("PID=4242\r\nEXIT=-1073741510\r\n")
        assert started is not None
        assert started.exit_code == -1073741510

    def test_start_output_timeout(self) -> None:
        started = parse_start_output("PID=4242\r\nTIMEOUT\r\n")
        assert started is not None
        assert started.timed_out is True

    def test_start_output_without_pid(self) -> None:
        assert parse_start_output("4242\r\nno pid here") is None


class ScriptedBackend:
    """Returns queued command results and records the commands."""

    def __init__(self, *returncodes: int) -> None:
        self.returncodes = list(returncodes)
        self.commands: list[list[str]] = []
        self.scripts = 0

    def run_powershell(self, script: str, timeout: float | None = 300, **kwargs: Any) -> CommandResult:
        self.scripts += 1
        return CommandResult(0, "[]", "", ["powershell.exe"])

    def run_command(self, command: list[str], timeout: int = 300, **kwargs: Any) -> CommandResult:
        self.commands.append(command)
        code = self.returncodes.pop(0) if self.returncodes else 0
        return CommandResult(code, "", "" if code == 0 else "[SC] failed", command)


class TestScErrors:
    """Tests for sc.exe return code handling."""

    def test_already_running_is_tolerated(self) -> None:
        backend = ScriptedBackend(1056)
        WindowsServiceControl(backend, None).start("Spooler")  # type: ignore[arg-type]
        assert backend.commands == [["sc.exe", "start", "Spooler"]]

    def test_not_active_is_tolerated(self) -> None:
        WindowsServiceControl(ScriptedBackend(1062), None).stop("Spooler")  # type: ignore[arg-type]

    def test_access_denied(self) -> None:
        control = WindowsServiceControl(ScriptedBackend(5), None)  # type: ignore[arg-type]
        with pytest.raises(PermissionError):
            control.stop("Spooler")

    def test_other_error(self) -> None:
        control = WindowsServiceControl(ScriptedBackend(1060), None)  # type: ignore[arg-type]
        with pytest.raises(OSError) as exc_info:
            control.start("Ghost")
        assert exc_info.value.errno == 1060
        assert exc_info.value.filename == "Ghost"

    def test_startup_type_argument(self) -> None:
        backend = ScriptedBackend(0)
        WindowsServiceControl(backend, None).set_startup_type(  # type: ignore[arg-type]
            "Spooler", StartupType.AUTOMATIC_DELAYED
        )
        assert backend.commands == [["sc.exe", "config", "Spooler", "start=", "delayed-auto"]]


class TestServicePolling:
    """Tests for how often a service operation reaches the OS."""

    def _service(self, mocker: Any, *statuses: str) -> MagicMock:
        service = MagicMock()
        service.as_dict.return_value = {
            "name": "Spooler",
            "display_name": "Print Spooler",
            "status": "running",
            "start_type": "manual",
            "pid": 1234,
        }
        service.status.side_effect = list(statuses)
        mocker.patch.object(psutil, "win_service_get", return_value=service, create=True)
        return service

    def test_stop_lists_dependents_once(self, sample_config: HostForgeConfig, mocker: Any) -> None:
        service = self._service(mocker, "stop_pending", "stop_pending", "stop_pending", "stopped")
        backend = ScriptedBackend(0)
        ops = ServiceOperations(WindowsServiceControl(backend, None), lambda: True, sample_config)  # type: ignore[arg-type]

        result = ops.stop_service("Spooler", timeout=5)

        assert result.success, result.message
        assert backend.scripts == 1
        assert backend.commands == [["sc.exe", "stop", "Spooler"]]
        assert service.status.call_count == 4

    def test_status_of_missing_service(self, mocker: Any) -> None:
        mocker.patch.object(
            psutil, "win_service_get", side_effect=psutil.NoSuchProcess(0, "Ghost"), create=True
        )
        control = WindowsServiceControl(ScriptedBackend(), None)  # type: ignore[arg-type]
        assert control.status("Ghost") is None

    def test_status_parses_psutil_state(self, mocker: Any) -> None:
        self._service(mocker, "start_pending")
        control = WindowsServiceControl(ScriptedBackend(), None)  # type: ignore[arg-type]
        assert control.status("Spooler") is ServiceStatus.START_PENDING
