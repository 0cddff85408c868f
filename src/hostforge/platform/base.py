"""
HostForge Platform Backend Base.

Defines the interfaces through which operations reach OS state that only
exists on some platforms: the registry, the service control manager and the
boot-time pending file operations ledger.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from hostforge.core.models import (
        Credential,
        LedgerEntry,
        ServiceInfo,
        ServiceStatus,
        StartupType,
    )


class CommandResult:
    """Result of a command execution."""

    def __init__(
        self,
        returncode: int,
        stdout: str,
        stderr: str,
        command: str | list[str],
        duration_seconds: float = 0.0,
    ) -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.command = command
        self.duration_seconds = duration_seconds

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def error_text(self) -> str:
        return (self.stderr or self.stdout).strip()

    def __repr__(self) -> str:
        cmd = self.command if isinstance(self.command, str) else " ".join(self.command)
        return f"CommandResult(rc={self.returncode}, cmd='{cmd[:50]}...')"


class ShellStartResult:
    """Outcome of a shell or alternate-identity process start."""

    def __init__(self, pid: int, exit_code: int | None = None, timed_out: bool = False) -> None:
        self.pid = pid
        self.exit_code = exit_code
        self.timed_out = timed_out

    def __repr__(self) -> str:
        return f"ShellStartResult(pid={self.pid}, exit_code={self.exit_code}, timed_out={self.timed_out})"


class RegistryStore(ABC):
    """Key/value access under short-named hives (``HKLM``, ``HKCU``...).

    Missing keys or values raise ``FileNotFoundError``; the caller decides
    whether that is a precondition failure.
    """

    @abstractmethod
    def key_exists(self, hive: str, subkey: str) -> bool:
        """Whether the key exists."""

    @abstractmethod
    def create_key(self, hive: str, subkey: str) -> None:
        """Create a key whose parent exists."""

    @abstractmethod
    def delete_key(self, hive: str, subkey: str) -> None:
        """Delete a key that has no child keys."""

    @abstractmethod
    def list_subkeys(self, hive: str, subkey: str) -> list[str]:
        """Names of direct child keys."""

    @abstractmethod
    def list_values(self, hive: str, subkey: str) -> list[str]:
        """Names of values stored on the key (``""`` is the default value)."""

    @abstractmethod
    def get_value(self, hive: str, subkey: str, name: str) -> tuple[Any, int]:
        """Return ``(payload, native type number)``."""

    @abstractmethod
    def set_value(self, hive: str, subkey: str, name: str, payload: Any, kind: int) -> None:
        """Create or overwrite a value."""

    @abstractmethod
    def delete_value(self, hive: str, subkey: str, name: str) -> None:
        """Remove a value."""

    @abstractmethod
    def expand_environment(self, text: str) -> str:
        """Expand ``%VAR%`` references."""

    def value_exists(self, hive: str, subkey: str, name: str) -> bool:
        try:
            self.get_value(hive, subkey, name)
        except FileNotFoundError:
            return False
        return True


class ServiceControl(ABC):
    """Access to the service control manager."""

    @abstractmethod
    def get(self, name: str) -> ServiceInfo | None:
        """Query a service; None when it does not exist."""

    @abstractmethod
    def status(self, name: str) -> ServiceStatus | None:
        """Current run state only; None when the service does not exist."""

    @abstractmethod
    def start(self, name: str) -> None:
        """Ask the service to start; does not wait."""

    @abstractmethod
    def stop(self, name: str) -> None:
        """Ask the service to stop; does not wait."""

    @abstractmethod
    def kill(self, name: str) -> None:
        """Forcibly terminate the service's host process."""

    @abstractmethod
    def set_startup_type(self, name: str, startup_type: StartupType) -> None:
        """Persist a new startup type."""


class PendingDeletionLedger(ABC):
    """The OS-global list of file operations executed at next boot.

    ``read`` and ``write`` are separate calls; nothing makes the pair atomic
    with respect to other writers on the machine.
    """

    @abstractmethod
    def read(self) -> list[LedgerEntry]:
        """Current entries, in order."""

    @abstractmethod
    def write(self, entries: Sequence[LedgerEntry]) -> None:
        """Replace the whole ledger."""


class PlatformBackend(ABC):
    """Abstract base class for platform-specific collaborators."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Platform name (e.g., 'windows')."""

    @abstractmethod
    def is_admin(self) -> bool:
        """Check if running with admin privileges."""

    @property
    @abstractmethod
    def registry(self) -> RegistryStore:
        """Registry access."""

    @property
    @abstractmethod
    def services(self) -> ServiceControl:
        """Service control manager access."""

    @property
    @abstractmethod
    def pending_deletions(self) -> PendingDeletionLedger:
        """Boot-time pending file operations ledger."""

    @abstractmethod
    def request_close(self, pid: int) -> bool:
        """Ask a process to exit on its own; True when the request was delivered."""

    @abstractmethod
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
        """Start a process through the shell or under another identity.

        With ``wait`` the call blocks until the process exits or ``timeout``
        seconds pass, and reports the exit code.
        """
