"""
Pytest configuration and fixtures for HostForge tests.
"""

import dataclasses
import re
import sys
import tempfile
from pathlib import Path
from typing import Any, Generator, Sequence

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from hostforge.core.config import HostForgeConfig, LoggingConfig  # noqa: E402
from hostforge.core.models import (  # noqa: E402
    LedgerEntry,
    ServiceInfo,
    ServiceStatus,
    StartupType,
)
from hostforge.platform.base import (  # noqa: E402
    PendingDeletionLedger,
    RegistryStore,
    ServiceControl,
)


class FakeRegistryStore(RegistryStore):
    """In-memory registry with the five standard hives."""

    HIVES = ("HKLM", "HKCU", "HKCR", "HKU", "HKCC")

    def __init__(self) -> None:
        self.keys: dict[tuple[str, str], str] = {}
        self.values: dict[tuple[str, str], dict[str, tuple[Any, int]]] = {}
        self.environment = {"SystemRoot": "C:\\Windows", "USERNAME": "tester"}
        for hive in self.HIVES:
            self.keys[(hive, "")] = ""
            self.values[(hive, "")] = {}

    @staticmethod
    def _id(hive: str, subkey: str) -> tuple[str, str]:
        return hive, subkey.casefold()

    def _values(self, hive: str, subkey: str) -> dict[str, tuple[Any, int]]:
        try:
            return self.values[self._id(hive, subkey)]
        except KeyError:
            raise FileNotFoundError(2, "The system cannot find the file specified", subkey) from None

    def key_exists(self, hive: str, subkey: str) -> bool:
        return self._id(hive, subkey) in self.keys

    def create_key(self, hive: str, subkey: str) -> None:
        parts = subkey.split("\\")
        for index in range(1, len(parts) + 1):
            path = "\\".join(parts[:index])
            self.keys.setdefault(self._id(hive, path), path)
            self.values.setdefault(self._id(hive, path), {})

    def delete_key(self, hive: str, subkey: str) -> None:
        if not self.key_exists(hive, subkey):
            raise FileNotFoundError(2, "The system cannot find the file specified", subkey)
        if self.list_subkeys(hive, subkey):
            raise PermissionError(5, "Access is denied", subkey)
        del self.keys[self._id(hive, subkey)]
        del self.values[self._id(hive, subkey)]

    def list_subkeys(self, hive: str, subkey: str) -> list[str]:
        if not self.key_exists(hive, subkey):
            raise FileNotFoundError(2, "The system cannot find the file specified", subkey)
        parent = subkey.casefold()
        children = []
        for (key_hive, key_id), original in self.keys.items():
            if key_hive != hive or not key_id:
                continue
            head, _, name = original.rpartition("\\")
            if head.casefold() == parent:
                children.append(name)
        return sorted(children)

    def list_values(self, hive: str, subkey: str) -> list[str]:
        return list(self._values(hive, subkey))

    def get_value(self, hive: str, subkey: str, name: str) -> tuple[Any, int]:
        values = self._values(hive, subkey)
        if name not in values:
            raise FileNotFoundError(2, "The system cannot find the file specified", name)
        payload, kind = values[name]
        return (list(payload) if isinstance(payload, list) else payload), kind

    def set_value(self, hive: str, subkey: str, name: str, payload: Any, kind: int) -> None:
        self._values(hive, subkey)[name] = (
            list(payload) if isinstance(payload, (list, tuple)) else payload,
            kind,
        )

    def delete_value(self, hive: str, subkey: str, name: str) -> None:
        values = self._values(hive, subkey)
        if name not in values:
            raise FileNotFoundError(2, "The system cannot find the file specified", name)
        del values[name]

    def expand_environment(self, text: str) -> str:
        return re.sub(
            r"%([^%]+)%",
            lambda m: self.environment.get(m.group(1), m.group(0)),
            text,
        )


class FakeServiceControl(ServiceControl):
    """Service control manager double whose services change state instantly."""

    def __init__(self) -> None:
        self.services: dict[str, ServiceInfo] = {}
        self.calls: list[tuple[str, str]] = []
        self.failing_stop: set[str] = set()
        self.failing_kill: set[str] = set()
        self.stuck: set[str] = set()

    def add(
        self,
        name: str,
        status: ServiceStatus = ServiceStatus.RUNNING,
        startup_type: StartupType = StartupType.AUTOMATIC,
        dependents: Sequence[str] = (),
    ) -> None:
        self.services[name.casefold()] = ServiceInfo(
            name=name,
            display_name=f"{name} Service",
            status=status,
            startup_type=startup_type,
            dependents=list(dependents),
            pid=1000 + len(self.services) if status is ServiceStatus.RUNNING else None,
        )

    def _set(self, name: str, status: ServiceStatus) -> None:
        if name.casefold() in self.stuck:
            return
        info = self.services[name.casefold()]
        info.status = status

    def status(self, name: str) -> ServiceStatus | None:
        info = self.services.get(name.casefold())
        return None if info is None else info.status

    def get(self, name: str) -> ServiceInfo | None:
        info = self.services.get(name.casefold())
        if info is None:
            return None
        return dataclasses.replace(info, dependents=list(info.dependents))

    def start(self, name: str) -> None:
        self.calls.append(("start", name))
        self._set(name, ServiceStatus.RUNNING)

    def stop(self, name: str) -> None:
        self.calls.append(("stop", name))
        if name.casefold() in self.failing_stop:
            raise OSError(1051, "A stop control has been sent to a service that other running services are dependent on", name)
        self._set(name, ServiceStatus.STOPPED)

    def kill(self, name: str) -> None:
        self.calls.append(("kill", name))
        if name.casefold() in self.failing_kill:
            raise PermissionError(5, "Access is denied", name)
        self._set(name, ServiceStatus.STOPPED)

    def set_startup_type(self, name: str, startup_type: StartupType) -> None:
        self.calls.append(("set_startup_type", name))
        self.services[name.casefold()].startup_type = startup_type


class InMemoryLedger(PendingDeletionLedger):
    """Pending operations ledger held in a list."""

    def __init__(self, entries: Sequence[LedgerEntry] = ()) -> None:
        self.entries = list(entries)
        self.writes = 0
        self.drop_writes = False

    def read(self) -> list[LedgerEntry]:
        return list(self.entries)

    def write(self, entries: Sequence[LedgerEntry]) -> None:
        self.writes += 1
        if not self.drop_writes:
            self.entries = list(entries)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def sample_config() -> Generator[HostForgeConfig, None, None]:
    """Create a sample configuration for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config = HostForgeConfig(
            logging=LoggingConfig(
                log_directory=Path(tmpdir) / "logs",
                file_enabled=False,
            ),
            session_directory=Path(tmpdir) / "sessions",
        )
        config.processes.restart_settle_seconds = 0.1
        config.processes.poll_interval_seconds = 0.05
        config.services.poll_interval_seconds = 0.01
        config.services.timeout_seconds = 0.2
        yield config


@pytest.fixture
def registry_store() -> FakeRegistryStore:
    return FakeRegistryStore()


@pytest.fixture
def service_control() -> FakeServiceControl:
    return FakeServiceControl()


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def elevated() -> Any:
    return lambda: True


@pytest.fixture
def not_elevated() -> Any:
    return lambda: False


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "windows: Tests requiring Windows")
    config.addinivalue_line("markers", "slow: Slow running tests")


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Skip Windows-only tests elsewhere."""
    if sys.platform == "win32":
        return
    skip_windows = pytest.mark.skip(reason="Requires Windows")
    for item in items:
        if "windows" in item.keywords:
            item.add_marker(skip_windows)
