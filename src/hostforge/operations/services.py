"""
Service lifecycle operations.

Run state and startup type are independent axes. Every mutating call checks
for elevation before touching a service, and asking for the state a service
is already in succeeds without touching it. Waits poll the run state only.
"""

from __future__ import annotations

import time

from hostforge.core.config import HostForgeConfig
from hostforge.core.models import ServiceChange, ServiceInfo, ServiceStatus, StartupType
from hostforge.core.result import (
    OperationResult,
    OperationTimeout,
    PreconditionError,
    ValidationError,
    VerificationError,
    advisory,
    operation,
    require,
)
from hostforge.core.safety import PrivilegeCheck, require_elevation
from hostforge.operations.base import OperationGroup
from hostforge.platform.base import ServiceControl


class ServiceOperations(OperationGroup):
    """Start, stop, restart, kill and reconfigure services."""

    logger_name = "hostforge.operations.services"

    def __init__(
        self,
        control: ServiceControl,
        is_admin: PrivilegeCheck | None = None,
        config: HostForgeConfig | None = None,
    ) -> None:
        super().__init__(config)
        self.control = control
        if is_admin is None:
            from hostforge.platform import is_admin as platform_is_admin

            is_admin = platform_is_admin
        self.is_admin = is_admin

    def _get(self, name: str) -> ServiceInfo:
        info = self.control.get(name)
        if info is None:
            raise PreconditionError(f"Service '{name}' was not found")
        return info

    def _timeout(self, timeout: float | None) -> float:
        if timeout is None:
            return self.config.services.timeout_seconds
        if timeout <= 0:
            raise ValidationError("Parameter 'timeout' must be positive")
        return timeout

    def _wait_for(self, name: str, status: ServiceStatus, timeout: float) -> ServiceStatus:
        """Poll the run state until the service reports ``status``."""
        deadline = time.monotonic() + timeout
        while True:
            current = self.control.status(name)
            if current is None:
                raise PreconditionError(f"Service '{name}' disappeared while waiting for {status.value}")
            if current is status:
                return current
            if time.monotonic() >= deadline:
                raise OperationTimeout(
                    f"Service '{name}' did not reach {status.value} within {timeout:g}s "
                    f"(currently {current.value})",
                    data=current,
                )
            time.sleep(self.config.services.poll_interval_seconds)

    def _stop_and_wait(self, name: str, timeout: float) -> None:
        self.control.stop(name)
        self._wait_for(name, ServiceStatus.STOPPED, timeout)

    def _kill_and_wait(self, name: str, timeout: float) -> None:
        self.control.kill(name)
        self._wait_for(name, ServiceStatus.STOPPED, timeout)

    def _start_and_wait(self, name: str, timeout: float) -> None:
        self.control.start(name)
        self._wait_for(name, ServiceStatus.RUNNING, timeout)

    def _stop_dependents(
        self, info: ServiceInfo, force: bool, timeout: float
    ) -> tuple[list[str], list[str]]:
        """Stop running dependents when forced; return ``(stopped, warnings)``.

        Without ``force`` a running dependent blocks the operation. With it,
        each dependent is stopped, then killed if that fails; a dependent
        that survives both only produces a warning.
        """
        running = []
        for dependent in info.dependents:
            current = self.control.status(dependent)
            if current is not None and current is not ServiceStatus.STOPPED:
                running.append(dependent)
        if not running:
            return [], []
        if not force:
            raise PreconditionError(
                f"Service '{info.name}' has running dependent services: {', '.join(running)}; "
                "pass force=True to stop them first",
                data=running,
            )

        stopped: list[str] = []
        warnings: list[str] = []
        for dependent in running:
            if advisory(
                f"Stopping dependent service '{dependent}'",
                lambda d=dependent: self._stop_and_wait(d, timeout),
            ) is None:
                stopped.append(dependent)
                continue
            warning = advisory(
                f"Killing dependent service '{dependent}'",
                lambda d=dependent: self._kill_and_wait(d, timeout),
            )
            if warning is None:
                stopped.append(dependent)
            else:
                self.logger.warning("Dependent service still running", service=dependent, error=warning)
                warnings.append(warning)
        return stopped, warnings

    @operation("query_service")
    def query_service(self, name: str) -> OperationResult[ServiceInfo]:
        require(name=name)
        return OperationResult.ok(self._get(name))

    @operation("start_service")
    def start_service(self, name: str, *, timeout: float | None = None) -> OperationResult[ServiceChange]:
        require(name=name)
        wait = self._timeout(timeout)
        require_elevation(self.is_admin, "start services")
        info = self._get(name)
        if info.is_running:
            return OperationResult.ok(
                ServiceChange(name, info.status.name, info.status.name, changed=False)
            )
        if info.startup_type is StartupType.DISABLED:
            raise PreconditionError(f"Service '{name}' is disabled; change its startup type first")

        self.control.start(name)
        after = self._wait_for(name, ServiceStatus.RUNNING, wait)
        self.logger.info("Started service", service=name)
        return OperationResult.ok(ServiceChange(name, info.status.name, after.name))

    @operation("stop_service")
    def stop_service(
        self, name: str, *, force: bool = False, timeout: float | None = None
    ) -> OperationResult[ServiceChange]:
        """Stop a service.

        Running dependents block the stop unless ``force`` is set, in which
        case they are stopped first on a best-effort basis.
        """
        require(name=name)
        wait = self._timeout(timeout)
        require_elevation(self.is_admin, "stop services")
        info = self._get(name)
        if info.is_stopped:
            return OperationResult.ok(
                ServiceChange(name, info.status.name, info.status.name, changed=False)
            )

        stopped, warnings = self._stop_dependents(info, force, wait)
        self.control.stop(name)
        after = self._wait_for(name, ServiceStatus.STOPPED, wait)
        self.logger.info("Stopped service", service=name, dependents_stopped=stopped)
        return OperationResult.ok(
            ServiceChange(
                name, info.status.name, after.name, dependents_stopped=stopped
            ),
            warnings,
        )

    @operation("restart_service")
    def restart_service(
        self, name: str, *, force: bool = False, timeout: float | None = None
    ) -> OperationResult[ServiceChange]:
        """Stop and start a service.

        Dependents stopped on the way down are started again afterwards;
        failing to restart one is a warning.
        """
        require(name=name)
        wait = self._timeout(timeout)
        require_elevation(self.is_admin, "restart services")
        info = self._get(name)
        if info.startup_type is StartupType.DISABLED:
            raise PreconditionError(f"Service '{name}' is disabled; change its startup type first")

        stopped: list[str] = []
        warnings: list[str] = []
        if not info.is_stopped:
            stopped, warnings = self._stop_dependents(info, force, wait)
            self._stop_and_wait(name, wait)

        self.control.start(name)
        after = self._wait_for(name, ServiceStatus.RUNNING, wait)

        for dependent in stopped:
            warning = advisory(
                f"Restarting dependent service '{dependent}'",
                lambda d=dependent: self._start_and_wait(d, wait),
            )
            if warning:
                warnings.append(warning)

        self.logger.info("Restarted service", service=name, dependents=stopped)
        return OperationResult.ok(
            ServiceChange(name, info.status.name, after.name, dependents_stopped=stopped),
            warnings,
        )

    @operation("kill_service")
    def kill_service(self, name: str, *, force: bool = False) -> OperationResult[ServiceChange]:
        """Terminate a service's host process without a stop request."""
        require(name=name)
        wait = self.config.services.timeout_seconds
        require_elevation(self.is_admin, "kill services")
        info = self._get(name)
        if info.is_stopped:
            return OperationResult.ok(
                ServiceChange(name, info.status.name, info.status.name, changed=False)
            )

        stopped, warnings = self._stop_dependents(info, force, wait)
        self._kill_and_wait(name, wait)
        self.logger.warning("Killed service", service=name)
        return OperationResult.ok(
            ServiceChange(
                name, info.status.name, ServiceStatus.STOPPED.name, dependents_stopped=stopped
            ),
            warnings,
        )

    @operation("set_startup_type")
    def set_startup_type(
        self, name: str, startup_type: StartupType | str
    ) -> OperationResult[ServiceChange]:
        require(name=name, startup_type=startup_type)
        if isinstance(startup_type, StartupType):
            target = startup_type
        else:
            try:
                target = StartupType.from_string(startup_type)
            except ValueError as e:
                raise ValidationError(str(e)) from None
        require_elevation(self.is_admin, "change service startup types")

        info = self._get(name)
        if info.startup_type is target:
            return OperationResult.ok(
                ServiceChange(name, target.name, target.name, changed=False)
            )

        self.control.set_startup_type(name, target)
        after = self._get(name)
        if after.startup_type is not target:
            raise VerificationError(
                f"Service '{name}' reports startup type {after.startup_type.name} after setting {target.name}"
            )
        self.logger.info("Changed startup type", service=name, startup_type=target.name)
        return OperationResult.ok(ServiceChange(name, info.startup_type.name, target.name))
