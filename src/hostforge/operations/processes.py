"""
Process lifecycle operations.

Start, query, stop, kill and restart processes through psutil and
subprocess. Shell execution and alternate credentials need the Windows
backend; everything else runs on any platform.
"""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
import sys
import time
from collections.abc import Callable, Sequence
from contextlib import ExitStack
from pathlib import Path
from typing import IO, Any, TypeVar

import psutil

from hostforge.core.config import HostForgeConfig
from hostforge.core.models import (
    Credential,
    ProcessInfo,
    ProcessRestartResult,
    ProcessStartResult,
    ProcessStopResult,
)
from hostforge.core.result import (
    OperationResult,
    OperationTimeout,
    PreconditionError,
    UnsupportedOperation,
    ValidationError,
    VerificationError,
    operation,
    require,
)
from hostforge.operations.base import OperationGroup
from hostforge.platform.base import PlatformBackend

T = TypeVar("T")


def _safe(getter: Callable[[], T]) -> T | None:
    """Read a process attribute the caller may not be allowed to see."""
    try:
        return getter()
    except (psutil.AccessDenied, psutil.ZombieProcess):
        return None


def _strip_exe(name: str) -> str:
    name = name.casefold()
    return name[:-4] if name.endswith(".exe") else name


def _split_arguments(arguments: Sequence[str] | str | None) -> list[str]:
    if arguments is None:
        return []
    if isinstance(arguments, str):
        return shlex.split(arguments, posix=sys.platform != "win32")
    return [str(arg) for arg in arguments]


def _is_alive(proc: psutil.Process) -> bool:
    try:
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False


def _process_info(proc: psutil.Process) -> ProcessInfo:
    with proc.oneshot():
        return ProcessInfo(
            pid=proc.pid,
            name=proc.name(),
            path=_safe(proc.exe) or None,
            command_line=_safe(proc.cmdline) or [],
            parent_pid=_safe(proc.ppid),
            working_directory=_safe(proc.cwd) or None,
        )


class ProcessOperations(OperationGroup):
    """Process table operations."""

    logger_name = "hostforge.operations.processes"

    def __init__(
        self,
        config: HostForgeConfig | None = None,
        backend: PlatformBackend | None = None,
    ) -> None:
        super().__init__(config)
        self.backend = backend

    # ==================== Helpers ====================

    @staticmethod
    def _select(pid: int | None, name: str | None) -> None:
        if (pid is None) == (name is None or not name.strip()):
            raise ValidationError("Specify exactly one of 'pid' or 'name'")
        if pid is not None and pid <= 0:
            raise ValidationError(f"Invalid pid {pid}")

    @staticmethod
    def _timeout(timeout: float | None, default: float) -> float:
        if timeout is None:
            return default
        if timeout <= 0:
            raise ValidationError("Parameter 'timeout' must be positive")
        return timeout

    def _find(self, pid: int | None, name: str | None) -> list[psutil.Process]:
        if pid is not None:
            try:
                proc = psutil.Process(pid)
            except psutil.NoSuchProcess:
                return []
            return [proc] if _is_alive(proc) else []

        wanted = _strip_exe(name or "")
        found = []
        for proc in psutil.process_iter(["name"]):
            proc_name = proc.info.get("name") or ""
            if _strip_exe(proc_name) == wanted and _is_alive(proc):
                found.append(proc)
        return found

    @staticmethod
    def _describe(pid: int | None, name: str | None) -> str:
        return f"pid {pid}" if pid is not None else f"name '{name}'"

    def _resolve_executable(self, executable: str, shell_execute: bool) -> str:
        candidate = Path(os.path.expanduser(executable))
        if candidate.is_file():
            return str(candidate.resolve())
        has_separator = os.sep in executable or (os.altsep and os.altsep in executable)
        if not has_separator:
            found = shutil.which(executable)
            if found:
                return found
        if shell_execute and candidate.exists():
            return str(candidate.resolve())
        raise PreconditionError(f"Executable '{executable}' was not found")

    def _spawn(
        self,
        executable: str,
        arguments: list[str],
        *,
        working_directory: str | None = None,
        hidden: bool = False,
        stdout_path: str | None = None,
        stderr_path: str | None = None,
    ) -> subprocess.Popen[bytes]:
        kwargs: dict[str, Any] = {"cwd": working_directory}
        if hidden and sys.platform == "win32":
            startupinfo = subprocess.STARTUPINFO()  # type: ignore[attr-defined]
            startupinfo.dwFlags |= subprocess.STARTF_USESHOWWINDOW  # type: ignore[attr-defined]
            startupinfo.wShowWindow = subprocess.SW_HIDE  # type: ignore[attr-defined]
            kwargs["startupinfo"] = startupinfo

        with ExitStack() as stack:
            stdout: IO[bytes] | None = None
            stderr: IO[bytes] | None = None
            if stdout_path:
                stdout = stack.enter_context(open(stdout_path, "wb"))
            if stderr_path:
                if stderr_path == stdout_path:
                    stderr = stdout
                else:
                    stderr = stack.enter_context(open(stderr_path, "wb"))
            return subprocess.Popen(
                [executable, *arguments],
                stdout=stdout,
                stderr=stderr,
                **kwargs,
            )

    def _request_stop(self, proc: psutil.Process) -> None:
        """Ask a process to exit: close its windows, else send the stop signal."""
        try:
            if self.backend is not None and self.backend.request_close(proc.pid):
                return
            proc.terminate()
        except psutil.NoSuchProcess:
            self.logger.debug("Process already exited", pid=proc.pid)

    def _graceful_stop(self, targets: list[psutil.Process], timeout: float) -> ProcessStopResult:
        for proc in targets:
            self._request_stop(proc)
        gone, alive = psutil.wait_procs(targets, timeout=timeout)
        result = ProcessStopResult(
            targets=[p.pid for p in targets],
            stopped=sorted(p.pid for p in gone),
            still_running=sorted(p.pid for p in alive),
            method="graceful",
        )
        if alive:
            raise OperationTimeout(
                f"{len(alive)} of {len(targets)} processes still running after {timeout:g}s "
                f"(pids {', '.join(str(p) for p in result.still_running)})",
                data=result,
            )
        return result

    def _wait_gone(
        self, procs: list[psutil.Process], timeout: float
    ) -> tuple[list[psutil.Process], list[psutil.Process]]:
        """Wait for killed processes; poll the process table if waiting fails."""
        try:
            gone, alive = psutil.wait_procs(procs, timeout=timeout)
            return list(gone), list(alive)
        except psutil.Error as e:
            self.logger.debug("Waiting for processes failed; checking process table", error=str(e))

        deadline = time.monotonic() + timeout
        alive = [p for p in procs if _is_alive(p)]
        while alive and time.monotonic() < deadline:
            time.sleep(self.config.processes.poll_interval_seconds)
            alive = [p for p in alive if _is_alive(p)]
        return [p for p in procs if p not in alive], alive

    def _kill(
        self, targets: list[psutil.Process], include_children: bool, timeout: float
    ) -> ProcessStopResult:
        victims: list[psutil.Process] = []
        for proc in targets:
            if include_children:
                try:
                    victims.extend(reversed(proc.children(recursive=True)))
                except psutil.NoSuchProcess:
                    continue
            victims.append(proc)

        seen: set[int] = set()
        killed: list[psutil.Process] = []
        for proc in victims:
            if proc.pid in seen:
                continue
            seen.add(proc.pid)
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                continue
            killed.append(proc)

        gone, alive = self._wait_gone(killed, timeout)
        result = ProcessStopResult(
            targets=[p.pid for p in targets],
            stopped=[p.pid for p in killed if p in gone],
            still_running=[p.pid for p in alive],
            method="kill",
        )
        if alive:
            raise VerificationError(
                f"{len(alive)} processes still running after kill "
                f"(pids {', '.join(str(p) for p in result.still_running)})",
                data=result,
            )
        return result

    # ==================== Operations ====================

    @operation("start_process")
    def start_process(
        self,
        executable: str,
        arguments: Sequence[str] | str | None = None,
        *,
        working_directory: str | None = None,
        hidden: bool = False,
        wait: bool = False,
        timeout: float | None = None,
        stdout_path: str | None = None,
        stderr_path: str | None = None,
        credential: Credential | None = None,
        load_profile: bool = False,
        shell_execute: bool = False,
        verb: str | None = None,
    ) -> OperationResult[ProcessStartResult]:
        """Start a process.

        Option conflicts are rejected before anything runs: shell execution
        cannot redirect output or use alternate credentials, a verb needs
        shell execution, a timeout needs ``wait`` and ``load_profile`` needs a
        credential. Without ``wait`` the PID is returned immediately.
        """
        require(executable=executable)
        if shell_execute and (stdout_path or stderr_path):
            raise ValidationError("Shell execution cannot redirect standard output or error")
        if shell_execute and credential is not None:
            raise ValidationError("Shell execution cannot run under alternate credentials")
        if verb and not shell_execute:
            raise ValidationError("A verb requires shell_execute=True")
        if timeout is not None and not wait:
            raise ValidationError("A timeout requires wait=True")
        if load_profile and credential is None:
            raise ValidationError("load_profile requires a credential")
        if credential is not None:
            require(username=credential.username)
        wait_timeout = self._timeout(timeout, 0) if timeout is not None else None
        args = _split_arguments(arguments)

        resolved = self._resolve_executable(executable, shell_execute)
        if working_directory and not Path(working_directory).is_dir():
            raise PreconditionError(f"Working directory '{working_directory}' does not exist")

        if shell_execute or credential is not None:
            if self.backend is None:
                raise UnsupportedOperation(
                    "Shell execution and alternate credentials are only available on Windows"
                )
            started = self.backend.shell_start(
                resolved,
                args,
                working_directory=working_directory,
                hidden=hidden,
                verb=verb,
                credential=credential,
                load_profile=load_profile,
                stdout_path=stdout_path,
                stderr_path=stderr_path,
                wait=wait,
                timeout=wait_timeout,
            )
            result = ProcessStartResult(pid=started.pid, executable=resolved, arguments=args)
            self.logger.info("Started process", pid=started.pid, executable=resolved, shell=True)
            if started.timed_out:
                raise OperationTimeout(
                    f"Process {started.pid} did not exit within {wait_timeout:g}s", data=result
                )
            result.exit_code = started.exit_code
            return OperationResult.ok(result)

        popen = self._spawn(
            resolved,
            args,
            working_directory=working_directory,
            hidden=hidden,
            stdout_path=stdout_path,
            stderr_path=stderr_path,
        )
        result = ProcessStartResult(pid=popen.pid, executable=resolved, arguments=args)
        self.logger.info("Started process", pid=popen.pid, executable=resolved)
        if not wait:
            return OperationResult.ok(result)

        try:
            result.exit_code = popen.wait(wait_timeout)
        except subprocess.TimeoutExpired:
            raise OperationTimeout(
                f"Process {popen.pid} did not exit within {wait_timeout:g}s", data=result
            ) from None
        return OperationResult.ok(result)

    @operation("query_process")
    def query_process(
        self, *, pid: int | None = None, name: str | None = None
    ) -> OperationResult[list[ProcessInfo]]:
        """Find processes by PID, or by name with or without ``.exe``."""
        self._select(pid, name)
        infos = []
        for proc in self._find(pid, name):
            try:
                infos.append(_process_info(proc))
            except psutil.NoSuchProcess:
                continue
        if not infos:
            raise PreconditionError(f"No process found with {self._describe(pid, name)}")
        return OperationResult.ok(infos)

    @operation("stop_process")
    def stop_process(
        self,
        *,
        pid: int | None = None,
        name: str | None = None,
        timeout: float | None = None,
    ) -> OperationResult[ProcessStopResult]:
        """Ask processes to exit and wait for them.

        A timeout is reported as a failure; the process is not killed.
        """
        self._select(pid, name)
        wait = self._timeout(timeout, self.config.processes.stop_timeout_seconds)
        targets = self._find(pid, name)
        if not targets:
            raise PreconditionError(f"No process found with {self._describe(pid, name)}")

        result = self._graceful_stop(targets, wait)
        self.logger.info("Stopped processes", pids=result.stopped)
        return OperationResult.ok(result)

    @operation("kill_process")
    def kill_process(
        self,
        *,
        pid: int | None = None,
        name: str | None = None,
        include_children: bool = False,
        timeout: float | None = None,
    ) -> OperationResult[ProcessStopResult]:
        """Forcibly terminate processes, children first when requested.

        A process that has already exited counts as success with nothing
        killed.
        """
        self._select(pid, name)
        wait = self._timeout(timeout, self.config.processes.kill_timeout_seconds)
        targets = self._find(pid, name)
        if not targets:
            self.logger.info("No process to kill", target=self._describe(pid, name))
            return OperationResult.ok(ProcessStopResult(method="kill"))

        result = self._kill(targets, include_children, wait)
        self.logger.info("Killed processes", pids=result.stopped)
        return OperationResult.ok(result)

    @operation("restart_process")
    def restart_process(
        self,
        *,
        pid: int | None = None,
        name: str | None = None,
        force: bool = False,
        timeout: float | None = None,
    ) -> OperationResult[ProcessRestartResult]:
        """Stop a process and start it again with its original command line.

        ``force`` escalates to a kill when the graceful stop times out.
        """
        self._select(pid, name)
        wait = self._timeout(timeout, self.config.processes.stop_timeout_seconds)
        targets = self._find(pid, name)
        if not targets:
            raise PreconditionError(f"No process found with {self._describe(pid, name)}")
        if len(targets) > 1:
            raise ValidationError(
                f"{self._describe(pid, name)} matches {len(targets)} processes "
                f"(pids {', '.join(str(p.pid) for p in targets)}); restart one by pid"
            )

        proc = targets[0]
        with proc.oneshot():
            executable = _safe(proc.exe)
            command_line = _safe(proc.cmdline) or []
            working_directory = _safe(proc.cwd)
        if not executable:
            raise PreconditionError(f"Process {proc.pid} has no discoverable executable path")
        if not Path(executable).is_file():
            raise PreconditionError(f"Executable '{executable}' no longer exists")
        arguments = list(command_line[1:])

        forced = False
        try:
            self._graceful_stop([proc], wait)
        except OperationTimeout:
            if not force:
                raise
            self.logger.warning("Graceful stop timed out; killing", pid=proc.pid)
            self._kill([proc], False, self.config.processes.kill_timeout_seconds)
            forced = True

        time.sleep(self.config.processes.restart_settle_seconds)
        if working_directory and not Path(working_directory).is_dir():
            working_directory = None
        popen = self._spawn(executable, arguments, working_directory=working_directory)

        self.logger.info("Restarted process", old_pid=proc.pid, new_pid=popen.pid)
        return OperationResult.ok(
            ProcessRestartResult(
                old_pid=proc.pid,
                new_pid=popen.pid,
                executable=executable,
                arguments=arguments,
                forced=forced,
            )
        )
