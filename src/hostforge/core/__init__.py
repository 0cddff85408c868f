"""
HostForge Core - Shared service layer.

Contains configuration, logging, the result envelope, data models,
safety checks and session management for HostForge operations.
"""

from hostforge.core.config import HostForgeConfig
from hostforge.core.logging import get_logger, setup_logging
from hostforge.core.result import BatchResult, ErrorKind, OperationResult, ResultCode
from hostforge.core.session import Session

__all__ = [
    "HostForgeConfig",
    "BatchResult",
    "ErrorKind",
    "OperationResult",
    "ResultCode",
    "Session",
    "get_logger",
    "setup_logging",
]
