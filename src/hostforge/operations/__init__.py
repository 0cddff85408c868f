"""
HostForge Operations.

Each group exposes public operations returning an OperationResult.
"""

from hostforge.operations.base import OperationGroup
from hostforge.operations.files import FileOperations
from hostforge.operations.processes import ProcessOperations
from hostforge.operations.reboot import RebootScheduler
from hostforge.operations.registry import RegistryOperations
from hostforge.operations.services import ServiceOperations
from hostforge.operations.text import TextOperations

__all__ = [
    "OperationGroup",
    "FileOperations",
    "ProcessOperations",
    "RebootScheduler",
    "RegistryOperations",
    "ServiceOperations",
    "TextOperations",
]
