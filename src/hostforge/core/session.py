"""
HostForge Session Management.

Wires configuration, logging and the platform backend into the operation
groups, and records every operation result into a session report.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from hostforge.core.config import HostForgeConfig, load_config
from hostforge.core.logging import SessionLogger, get_logger, setup_logging
from hostforge.core.result import OperationResult

if TYPE_CHECKING:
    from hostforge.operations import (
        FileOperations,
        OperationGroup,
        ProcessOperations,
        RebootScheduler,
        RegistryOperations,
        ServiceOperations,
        TextOperations,
    )
    from hostforge.platform.base import PlatformBackend

logger = get_logger(__name__)


@dataclass
class SessionReport:
    """Complete session report for audit and review."""

    session_id: str
    started_at: datetime
    ended_at: datetime | None = None
    operations: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    config_snapshot: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_seconds": (
                (self.ended_at - self.started_at).total_seconds()
                if self.ended_at
                else None
            ),
            "operations": self.operations,
            "errors": self.errors,
            "warnings": self.warnings,
            "config_snapshot": self.config_snapshot,
            "summary": {
                "total_operations": len(self.operations),
                "successful_operations": sum(1 for op in self.operations if op["code"] == 0),
                "partial_operations": sum(1 for op in self.operations if op["code"] == 1),
                "failed_operations": sum(1 for op in self.operations if op["code"] < 0),
                "total_errors": len(self.errors),
                "total_warnings": len(self.warnings),
            },
        }

    def save(self, path: Path) -> None:
        """Save report to file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, default=str)


class Session:
    """
    Entry point for HostForge operations.

    Operation groups are created on first use. Registry, service and reboot
    operations need the platform backend, which only exists on Windows.
    """

    def __init__(
        self,
        config: HostForgeConfig | None = None,
        session_id: str | None = None,
        backend: PlatformBackend | None = None,
    ) -> None:
        self.id = session_id or str(uuid.uuid4())
        self.config = config or load_config()
        self.started_at = datetime.now()

        setup_logging(self.config.logging)

        self.session_logger = SessionLogger(
            self.config.get_session_file(),
            get_logger(f"session.{self.id[:8]}"),
        )
        self._report = SessionReport(
            session_id=self.id,
            started_at=self.started_at,
            config_snapshot=self.config.model_dump(mode="json"),
        )

        self._platform_backend = backend
        self._groups: dict[str, OperationGroup] = {}

        logger.info("Session started", session_id=self.id)
        self.session_logger.info("Session started", session_id=self.id)

    @property
    def platform(self) -> PlatformBackend:
        """Get the platform-specific backend."""
        if self._platform_backend is None:
            from hostforge.platform import get_platform_backend

            self._platform_backend = get_platform_backend()
        return self._platform_backend

    def _group(self, key: str, factory: Any) -> Any:
        group = self._groups.get(key)
        if group is None:
            group = factory()
            group.add_result_callback(self._track_operation)
            self._groups[key] = group
        return group

    @property
    def files(self) -> FileOperations:
        from hostforge.operations import FileOperations

        return self._group("files", lambda: FileOperations(self.config))

    @property
    def text(self) -> TextOperations:
        from hostforge.operations import TextOperations

        return self._group("text", lambda: TextOperations(self.config))

    @property
    def processes(self) -> ProcessOperations:
        from hostforge.operations import ProcessOperations
        from hostforge.platform import is_windows

        def create() -> ProcessOperations:
            backend = self.platform if self._platform_backend is not None or is_windows() else None
            return ProcessOperations(self.config, backend)

        return self._group("processes", create)

    @property
    def registry(self) -> RegistryOperations:
        from hostforge.operations import RegistryOperations

        return self._group(
            "registry", lambda: RegistryOperations(self.platform.registry, self.config)
        )

    @property
    def services(self) -> ServiceOperations:
        from hostforge.operations import ServiceOperations

        return self._group(
            "services",
            lambda: ServiceOperations(self.platform.services, self.platform.is_admin, self.config),
        )

    @property
    def reboot(self) -> RebootScheduler:
        from hostforge.operations import RebootScheduler

        return self._group(
            "reboot",
            lambda: RebootScheduler(
                self.platform.pending_deletions, self.platform.is_admin, self.config
            ),
        )

    def _track_operation(self, name: str, result: OperationResult[Any]) -> None:
        """Track an operation in the session report."""
        record: dict[str, Any] = {
            "timestamp": datetime.now().isoformat(),
            "operation": name,
            "code": int(result.code),
        }
        if result.message:
            record["message"] = result.message
        if result.error_kind is not None:
            record["error_kind"] = result.error_kind.value

        if result.failed:
            self._report.errors.append(
                {
                    "timestamp": record["timestamp"],
                    "operation": name,
                    "error": result.message,
                }
            )
        if result.warnings:
            record["warnings"] = result.warnings
            self._report.warnings.extend(result.warnings)

        self._report.operations.append(record)

        if result.failed:
            self.session_logger.error("Operation failed", operation=name, error=result.message)
        elif result.partial:
            self.session_logger.warning("Operation partially succeeded", operation=name, error=result.message)
        else:
            self.session_logger.info("Operation completed", operation=name)

    def close(self) -> Path:
        """Close the session and save reports."""
        self._report.ended_at = datetime.now()

        self.session_logger.save()

        report_path = self.config.session_directory / f"report_{self.id[:8]}.json"
        self._report.save(report_path)

        logger.info(
            "Session closed",
            session_id=self.id,
            duration_seconds=(self._report.ended_at - self.started_at).total_seconds(),
            report_path=str(report_path),
        )

        return report_path

    def get_report(self) -> SessionReport:
        """Get the current session report."""
        return self._report

    def __enter__(self) -> Session:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
