"""
Common plumbing for operation groups.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from hostforge.core.config import HostForgeConfig, get_default_config
from hostforge.core.logging import get_logger
from hostforge.core.result import OperationResult

ResultCallback = Callable[[str, OperationResult[Any]], None]


class OperationGroup:
    """Base class for a family of operations sharing config and callbacks."""

    logger_name = "hostforge.operations"

    def __init__(self, config: HostForgeConfig | None = None) -> None:
        self.config = config or get_default_config()
        self.logger = get_logger(self.logger_name)
        self._callbacks: list[ResultCallback] = []

    def add_result_callback(self, callback: ResultCallback) -> None:
        """Register a callback invoked with every operation result."""
        self._callbacks.append(callback)

    def _notify(self, operation: str, result: OperationResult[Any]) -> None:
        for callback in self._callbacks:
            try:
                callback(operation, result)
            except Exception as e:
                self.logger.warning("Result callback failed", operation=operation, error=str(e))
