"""
Windows service control.

Queries go through psutil; start, stop and reconfiguration through
``sc.exe``; the dependent-service graph through PowerShell.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import psutil

from hostforge.core.logging import get_logger
from hostforge.core.models import ServiceInfo, ServiceStatus, StartupType
from hostforge.platform.base import CommandResult, RegistryStore, ServiceControl
from hostforge.platform.windows.parsers import parse_powershell_json

if TYPE_CHECKING:
    from hostforge.platform.windows.backend import WindowsBackend

logger = get_logger(__name__)

SERVICES_KEY = r"SYSTEM\CurrentControlSet\Services"

ERROR_ACCESS_DENIED = 5
ERROR_SERVICE_ALREADY_RUNNING = 1056
ERROR_SERVICE_NOT_ACTIVE = 1062

SC_START_TYPES = {
    StartupType.AUTOMATIC: "auto",
    StartupType.AUTOMATIC_DELAYED: "delayed-auto",
    StartupType.MANUAL: "demand",
    StartupType.DISABLED: "disabled",
}

DEPENDENTS_SCRIPT = (
    "$service = Get-Service -Name $env:HOSTFORGE_SERVICE -ErrorAction Stop; "
    "@($service.DependentServices | ForEach-Object { $_.Name }) | ConvertTo-Json -Compress"
)


def _raise_for(result: CommandResult, name: str, action: str) -> None:
    if result.returncode == ERROR_ACCESS_DENIED:
        raise PermissionError(ERROR_ACCESS_DENIED, f"cannot {action} service: {result.error_text}", name)
    raise OSError(result.returncode, f"cannot {action} service: {result.error_text}", name)


class WindowsServiceControl(ServiceControl):
    """ServiceControl backed by the service control manager."""

    SC = "sc.exe"

    def __init__(self, backend: WindowsBackend, registry: RegistryStore) -> None:
        self.backend = backend
        self.registry = registry

    def get(self, name: str) -> ServiceInfo | None:
        try:
            info = psutil.win_service_get(name).as_dict()
        except psutil.NoSuchProcess:
            return None

        service_name = info["name"]
        startup = StartupType.from_string(info.get("start_type") or "manual")
        if startup is StartupType.AUTOMATIC and self._is_delayed(service_name):
            startup = StartupType.AUTOMATIC_DELAYED

        return ServiceInfo(
            name=service_name,
            display_name=info.get("display_name") or service_name,
            status=ServiceStatus.from_string(info.get("status")),
            startup_type=startup,
            dependents=self._dependents(service_name),
            pid=info.get("pid") or None,
        )

    def _is_delayed(self, name: str) -> bool:
        try:
            value, _ = self.registry.get_value("HKLM", f"{SERVICES_KEY}\\{name}", "DelayedAutostart")
        except FileNotFoundError:
            return False
        return value == 1

    def _dependents(self, name: str) -> list[str]:
        result = self.backend.run_powershell(
            DEPENDENTS_SCRIPT, timeout=60, env={"HOSTFORGE_SERVICE": name}
        )
        if not result.success:
            logger.warning("Could not list dependent services", service=name, error=result.error_text)
            return []
        return [str(item) for item in parse_powershell_json(result.stdout) if item]

    def status(self, name: str) -> ServiceStatus | None:
        try:
            return ServiceStatus.from_string(psutil.win_service_get(name).status())
        except psutil.NoSuchProcess:
            return None

    def start(self, name: str) -> None:
        result = self.backend.run_command([self.SC, "start", name], timeout=60)
        if not result.success and result.returncode != ERROR_SERVICE_ALREADY_RUNNING:
            _raise_for(result, name, "start")

    def stop(self, name: str) -> None:
        result = self.backend.run_command([self.SC, "stop", name], timeout=60)
        if not result.success and result.returncode != ERROR_SERVICE_NOT_ACTIVE:
            _raise_for(result, name, "stop")

    def kill(self, name: str) -> None:
        try:
            pid = psutil.win_service_get(name).pid()
        except psutil.NoSuchProcess:
            return
        if not pid:
            return
        logger.warning("Killing service host process", service=name, pid=pid)
        psutil.Process(pid).kill()

    def set_startup_type(self, name: str, startup_type: StartupType) -> None:
        result = self.backend.run_command(
            [self.SC, "config", name, "start=", SC_START_TYPES[startup_type]],
            timeout=60,
        )
        if not result.success:
            _raise_for(result, name, "reconfigure")
