"""
Tests for hostforge.operations.services module.
"""

from typing import Any

import pytest

from hostforge.core.config import HostForgeConfig
from hostforge.core.models import ServiceStatus, StartupType
from hostforge.core.result import ErrorKind
from hostforge.operations.services import ServiceOperations


@pytest.fixture
def ops(service_control: Any, elevated: Any, sample_config: HostForgeConfig) -> ServiceOperations:
    return ServiceOperations(service_control, elevated, sample_config)


class TestQuery:
    """Tests for service queries."""

    def test_query(self, ops: ServiceOperations, service_control: Any) -> None:
        service_control.add("Spooler")

        result = ops.query_service("spooler")

        assert result.code == 0
        assert result.data.name == "Spooler"
        assert result.data.status is ServiceStatus.RUNNING

    def test_not_found(self, ops: ServiceOperations) -> None:
        result = ops.query_service("Ghost")
        assert result.error_kind is ErrorKind.PRECONDITION
        assert "not found" in result.message


class TestStartStop:
    """Tests for starting and stopping."""

    def test_start(self, ops: ServiceOperations, service_control: Any) -> None:
        service_control.add("Spooler", ServiceStatus.STOPPED)

        result = ops.start_service("Spooler")

        assert result.success
        assert result.data.previous == "STOPPED"
        assert result.data.current == "RUNNING"
        assert service_control.status("Spooler") is ServiceStatus.RUNNING

    def test_start_running_is_noop(self, ops: ServiceOperations, service_control: Any) -> None:
        service_control.add("Spooler")

        result = ops.start_service("Spooler")

        assert result.success
        assert result.data.changed is False
        assert service_control.calls == []

    def test_start_disabled(self, ops: ServiceOperations, service_control: Any) -> None:
        service_control.add("Spooler", ServiceStatus.STOPPED, StartupType.DISABLED)
        result = ops.start_service("Spooler")
        assert result.error_kind is ErrorKind.PRECONDITION
        assert "disabled" in result.message

    def test_stop_stopped_is_noop(self, ops: ServiceOperations, service_control: Any) -> None:
        service_control.add("Spooler", ServiceStatus.STOPPED)

        result = ops.stop_service("Spooler")

        assert result.success
        assert result.data.changed is False
        assert service_control.calls == []

    def test_stop_times_out(self, ops: ServiceOperations, service_control: Any) -> None:
        service_control.add("Spooler")
        service_control.stuck.add("spooler")

        result = ops.stop_service("Spooler", timeout=0.05)

        assert result.error_kind is ErrorKind.TIMEOUT
        assert "did not reach stopped" in result.message

    def test_invalid_timeout(self, ops: ServiceOperations, service_control: Any) -> None:
        service_control.add("Spooler")
        assert ops.stop_service("Spooler", timeout=0).error_kind is ErrorKind.VALIDATION

    def test_control_error_is_reported(self, ops: ServiceOperations, service_control: Any) -> None:
        service_control.add("Spooler")
        service_control.failing_stop.add("spooler")

        result = ops.stop_service("Spooler")

        assert result.error_kind is ErrorKind.OS_ERROR
        assert "Spooler" in result.message


class TestElevation:
    """Tests for the privilege check."""

    def test_not_elevated(self, service_control: Any, not_elevated: Any, sample_config: HostForgeConfig) -> None:
        service_control.add("Spooler", ServiceStatus.STOPPED)
        ops = ServiceOperations(service_control, not_elevated, sample_config)

        result = ops.start_service("Spooler")

        assert result.error_kind is ErrorKind.ACCESS_DENIED
        assert "Administrator" in result.message
        assert service_control.calls == []

    def test_validation_before_elevation(
        self, service_control: Any, not_elevated: Any, sample_config: HostForgeConfig
    ) -> None:
        ops = ServiceOperations(service_control, not_elevated, sample_config)
        assert ops.stop_service("").error_kind is ErrorKind.VALIDATION

    def test_query_needs_no_elevation(
        self, service_control: Any, not_elevated: Any, sample_config: HostForgeConfig
    ) -> None:
        service_control.add("Spooler")
        ops = ServiceOperations(service_control, not_elevated, sample_config)
        assert ops.query_service("Spooler").success


class TestDependents:
    """Tests for dependent service handling."""

    @pytest.fixture
    def tree(self, service_control: Any) -> Any:
        service_control.add("Base", dependents=["Child", "Idle"])
        service_control.add("Child")
        service_control.add("Idle", ServiceStatus.STOPPED)
        return service_control

    def test_running_dependent_blocks_stop(self, ops: ServiceOperations, tree: Any) -> None:
        result = ops.stop_service("Base")

        assert result.error_kind is ErrorKind.PRECONDITION
        assert "Child" in result.message
        assert "Idle" not in result.message
        assert tree.status("Base") is ServiceStatus.RUNNING

    def test_force_stops_dependents(self, ops: ServiceOperations, tree: Any) -> None:
        result = ops.stop_service("Base", force=True)

        assert result.success
        assert result.data.dependents_stopped == ["Child"]
        assert tree.calls[:2] == [("stop", "Child"), ("stop", "Base")]

    def test_failed_dependent_stop_falls_back_to_kill(self, ops: ServiceOperations, tree: Any) -> None:
        tree.failing_stop.add("child")

        result = ops.stop_service("Base", force=True)

        assert result.success
        assert ("kill", "Child") in tree.calls
        assert result.data.dependents_stopped == ["Child"]

    def test_surviving_dependent_is_warning(self, ops: ServiceOperations, tree: Any) -> None:
        tree.failing_stop.add("child")
        tree.failing_kill.add("child")

        result = ops.stop_service("Base", force=True)

        assert result.code == 0
        assert result.data.dependents_stopped == []
        assert len(result.warnings) == 1
        assert "Child" in result.warnings[0]
        assert tree.status("Base") is ServiceStatus.STOPPED

    def test_restart_restarts_dependents(self, ops: ServiceOperations, tree: Any) -> None:
        result = ops.restart_service("Base", force=True)

        assert result.success
        assert result.data.dependents_stopped == ["Child"]
        assert tree.status("Child") is ServiceStatus.RUNNING
        assert tree.status("Idle") is ServiceStatus.STOPPED
        assert tree.calls == [
            ("stop", "Child"),
            ("stop", "Base"),
            ("start", "Base"),
            ("start", "Child"),
        ]

    def test_restart_stopped_service_starts_it(self, ops: ServiceOperations, service_control: Any) -> None:
        service_control.add("Spooler", ServiceStatus.STOPPED)
        result = ops.restart_service("Spooler")
        assert result.success
        assert service_control.calls == [("start", "Spooler")]

    def test_kill_service(self, ops: ServiceOperations, service_control: Any) -> None:
        service_control.add("Spooler")
        result = ops.kill_service("Spooler")
        assert result.success
        assert service_control.calls == [("kill", "Spooler")]


class TestStartupType:
    """Tests for startup type changes."""

    def test_change(self, ops: ServiceOperations, service_control: Any) -> None:
        service_control.add("Spooler", startup_type=StartupType.MANUAL)

        result = ops.set_startup_type("Spooler", "AutomaticDelayedStart")

        assert result.success
        assert result.data.previous == "MANUAL"
        assert result.data.current == "AUTOMATIC_DELAYED"
        assert service_control.get("Spooler").startup_type is StartupType.AUTOMATIC_DELAYED

    def test_run_state_untouched(self, ops: ServiceOperations, service_control: Any) -> None:
        service_control.add("Spooler")
        ops.set_startup_type("Spooler", StartupType.DISABLED)
        assert service_control.status("Spooler") is ServiceStatus.RUNNING

    def test_unchanged_is_noop(self, ops: ServiceOperations, service_control: Any) -> None:
        service_control.add("Spooler", startup_type=StartupType.MANUAL)
        result = ops.set_startup_type("Spooler", "manual")
        assert result.data.changed is False
        assert service_control.calls == []

    def test_unknown_type(self, ops: ServiceOperations, service_control: Any) -> None:
        service_control.add("Spooler")
        result = ops.set_startup_type("Spooler", "sometimes")
        assert result.error_kind is ErrorKind.VALIDATION
