"""
Windows Platform Backend Implementation.

Wires the Windows collaborators together:
- winreg for registry access and the pending file rename ledger
- psutil, sc.exe and PowerShell for services
- user32 window messages and PowerShell Start-Process for processes
"""

from __future__ import annotations

import ctypes
import os
import subprocess
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING

from hostforge.core.logging import get_logger
from hostforge.platform.base import (
    CommandResult,
    PendingDeletionLedger,
    PlatformBackend,
    RegistryStore,
    ServiceControl,
    ShellStartResult,
)
from hostforge.platform.windows.parsers import parse_start_output

if TYPE_CHECKING:
    from hostforge.core.models import Credential

logger = get_logger(__name__)

WM_CLOSE = 0x0010

START_PROCESS_SCRIPT = """
$params = @{ FilePath = $env:HOSTFORGE_FILE; PassThru = $true }
if ($env:HOSTFORGE_ARGS) { $params.ArgumentList = $env:HOSTFORGE_ARGS }
if ($env:HOSTFORGE_CWD) { $params.WorkingDirectory = $env:HOSTFORGE_CWD }
if ($env:HOSTFORGE_VERB) { $params.Verb = $env:HOSTFORGE_VERB }
if ($env:HOSTFORGE_HIDDEN) { $params.WindowStyle = 'Hidden' }
if ($env:HOSTFORGE_USER) {
    $secure = ConvertTo-SecureString $env:HOSTFORGE_PASSWORD -AsPlainText -Force
    $params.Credential = New-Object System.Management.Automation.PSCredential($env:HOSTFORGE_USER, $secure)
    if ($env:HOSTFORGE_LOAD_PROFILE) { $params.LoadUserProfile = $true }
}
if ($env:HOSTFORGE_STDOUT) { $params.RedirectStandardOutput = $env:HOSTFORGE_STDOUT }
if ($env:HOSTFORGE_STDERR) { $params.RedirectStandardError = $env:HOSTFORGE_STDERR }
$process = Start-Process @params -ErrorAction Stop
$null = $process.Handle
"PID=$($process.Id)"
if ($env:HOSTFORGE_WAIT) {
    $limit = [int]$env:HOSTFORGE_WAIT_MS
    if ($limit -lt 0) { $process.WaitForExit(); $exited = $true } else { $exited = $process.WaitForExit($limit) }
    if ($exited) { "EXIT=$($process.ExitCode)" } else { "TIMEOUT" }
}
"""


class WindowsBackend(PlatformBackend):
    """Windows implementation of the platform collaborators."""

    POWERSHELL = "powershell.exe"
    TASKKILL = "taskkill.exe"

    def __init__(self) -> None:
        self._registry: RegistryStore | None = None
        self._services: ServiceControl | None = None
        self._ledger: PendingDeletionLedger | None = None

    @property
    def name(self) -> str:
        return "windows"

    def is_admin(self) -> bool:
        try:
            return ctypes.windll.shell32.IsUserAnAdmin() != 0  # type: ignore[attr-defined]
        except Exception:
            return False

    @property
    def registry(self) -> RegistryStore:
        if self._registry is None:
            from hostforge.platform.windows.registry import WinRegistryStore

            self._registry = WinRegistryStore()
        return self._registry

    @property
    def services(self) -> ServiceControl:
        if self._services is None:
            from hostforge.platform.windows.services import WindowsServiceControl

            self._services = WindowsServiceControl(self, self.registry)
        return self._services

    @property
    def pending_deletions(self) -> PendingDeletionLedger:
        if self._ledger is None:
            from hostforge.platform.windows.registry import RegistryPendingLedger, WinRegistryStore

            store = self.registry
            assert isinstance(store, WinRegistryStore)
            self._ledger = RegistryPendingLedger(store)
        return self._ledger

    def run_command(
        self,
        command: list[str],
        timeout: float | None = 300,
        check: bool = True,
        capture_output: bool = True,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        """Run a system command."""
        logger.debug("Running command", command=command)
        start_time = time.time()

        try:
            startupinfo = subprocess.STARTUPINFO()  # type: ignore[attr-defined]
            startupinfo.dwFlags |= subprocess.STARTF_USESHOWWINDOW  # type: ignore[attr-defined]
            startupinfo.wShowWindow = subprocess.SW_HIDE  # type: ignore[attr-defined]

            result = subprocess.run(
                command,
                capture_output=capture_output,
                text=True,
                timeout=timeout,
                startupinfo=startupinfo,
                env={**os.environ, **env} if env else None,
            )
            duration = time.time() - start_time

            cmd_result = CommandResult(
                returncode=result.returncode,
                stdout=result.stdout if capture_output else "",
                stderr=result.stderr if capture_output else "",
                command=command,
                duration_seconds=duration,
            )

            if check and result.returncode != 0:
                logger.warning(
                    "Command failed",
                    command=command,
                    returncode=result.returncode,
                    stderr=result.stderr[:500] if result.stderr else "",
                )

            return cmd_result
        except subprocess.TimeoutExpired:
            return CommandResult(
                returncode=-1,
                stdout="",
                stderr=f"Command timed out after {timeout}s",
                command=command,
                duration_seconds=time.time() - start_time,
            )
        except OSError as e:
            return CommandResult(
                returncode=-1,
                stdout="",
                stderr=str(e),
                command=command,
                duration_seconds=time.time() - start_time,
            )

    def run_powershell(
        self,
        script: str,
        timeout: float | None = 300,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        """Run a PowerShell script.

        Untrusted values reach the script through ``env`` rather than being
        spliced into its text.
        """
        cmd = [
            self.POWERSHELL,
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy", "Bypass",
            "-Command", script,
        ]
        return self.run_command(cmd, timeout=timeout, env=env)

    def _visible_windows(self, pid: int) -> list[int]:
        from ctypes import wintypes

        user32 = ctypes.windll.user32  # type: ignore[attr-defined]
        handles: list[int] = []

        @ctypes.WINFUNCTYPE(wintypes.BOOL, wintypes.HWND, wintypes.LPARAM)  # type: ignore[attr-defined]
        def collect(hwnd: int, _lparam: int) -> bool:
            owner = wintypes.DWORD()
            user32.GetWindowThreadProcessId(hwnd, ctypes.byref(owner))
            if owner.value == pid and user32.IsWindowVisible(hwnd):
                handles.append(hwnd)
            return True

        user32.EnumWindows(collect, 0)
        return handles

    def request_close(self, pid: int) -> bool:
        """Post WM_CLOSE to the process's windows, else ask taskkill without /F."""
        handles = self._visible_windows(pid)
        if handles:
            user32 = ctypes.windll.user32  # type: ignore[attr-defined]
            for hwnd in handles:
                user32.PostMessageW(hwnd, WM_CLOSE, 0, 0)
            logger.debug("Posted close request", pid=pid, windows=len(handles))
            return True

        result = self.run_command([self.TASKKILL, "/PID", str(pid)], timeout=30)
        return result.success

    def shell_start(
        self,
        executable: str,
        arguments: Sequence[str],
        *,
        working_directory: str | None = None,
        hidden: bool = False,
        verb: str | None = None,
        credential: Credential | None = None,
        load_profile: bool = False,
        stdout_path: str | None = None,
        stderr_path: str | None = None,
        wait: bool = False,
        timeout: float | None = None,
    ) -> ShellStartResult:
        env = {
            "HOSTFORGE_FILE": executable,
            "HOSTFORGE_ARGS": subprocess.list2cmdline(list(arguments)),
            "HOSTFORGE_CWD": working_directory or "",
            "HOSTFORGE_VERB": verb or "",
            "HOSTFORGE_HIDDEN": "1" if hidden else "",
            "HOSTFORGE_STDOUT": stdout_path or "",
            "HOSTFORGE_STDERR": stderr_path or "",
            "HOSTFORGE_USER": credential.qualified_name if credential else "",
            "HOSTFORGE_PASSWORD": credential.password if credential else "",
            "HOSTFORGE_LOAD_PROFILE": "1" if load_profile else "",
            "HOSTFORGE_WAIT": "1" if wait else "",
            "HOSTFORGE_WAIT_MS": str(int(timeout * 1000)) if timeout is not None else "-1",
        }
        # The script itself must outlive the wait it performs.
        limit: float | None = 120
        if wait:
            limit = None if timeout is None else timeout + 120
        result = self.run_powershell(START_PROCESS_SCRIPT, timeout=limit, env=env)
        started = parse_start_output(result.stdout) if result.success else None
        if started is None:
            raise OSError(f"Start-Process failed for '{executable}': {result.error_text}")
        return started
