"""
HostForge data models.

Defines the payloads carried by operation results: copy records, text
contents, typed registry values, process and service handles, and pending
deletion ledger entries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

UINT32_MAX = 2**32 - 1
UINT64_MAX = 2**64 - 1


# ==================== Filesystem ====================


@dataclass
class CopyRecord:
    """A single copied file."""

    source: str
    destination: str
    size_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "destination": self.destination,
            "size_bytes": self.size_bytes,
        }


@dataclass
class DirectoryCopyResult:
    """Counts re-enumerated from the destination after a directory copy."""

    source: str
    destination: str
    file_count: int
    directory_count: int
    total_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "destination": self.destination,
            "file_count": self.file_count,
            "directory_count": self.directory_count,
            "total_bytes": self.total_bytes,
        }


@dataclass
class PathRecord:
    """An entity created or removed by a filesystem operation."""

    path: str
    kind: str  # "file" or "directory"
    size_bytes: int = 0
    existed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "kind": self.kind,
            "size_bytes": self.size_bytes,
            "existed": self.existed,
        }


@dataclass
class TextContent:
    """Decoded contents of a text file."""

    path: str
    content: str
    encoding: str
    has_bom: bool
    size_bytes: int

    @property
    def line_count(self) -> int:
        if not self.content:
            return 0
        return len(self.content.splitlines())

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "content": self.content,
            "encoding": self.encoding,
            "has_bom": self.has_bom,
            "size_bytes": self.size_bytes,
            "line_count": self.line_count,
        }


@dataclass
class EncodingInfo:
    """Encoding sniffed from a file's byte-order mark."""

    path: str
    encoding: str
    has_bom: bool

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "encoding": self.encoding, "has_bom": self.has_bom}


@dataclass
class TextWriteResult:
    path: str
    encoding: str
    bytes_written: int
    size_bytes: int
    appended: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "encoding": self.encoding,
            "bytes_written": self.bytes_written,
            "size_bytes": self.size_bytes,
            "appended": self.appended,
        }


# ==================== Registry ====================


class ValueKind(Enum):
    """Supported registry value types (native type numbers)."""

    STRING = 1
    EXPAND_STRING = 2
    BINARY = 3
    DWORD = 4
    MULTI_STRING = 7
    QWORD = 11

    @classmethod
    def from_string(cls, value: str) -> ValueKind:
        """Parse a kind name such as ``DWord``, ``REG_SZ`` or ``ExpandString``."""
        key = value.strip().upper().replace("-", "_")
        if key.startswith("REG_"):
            key = key[4:]
        aliases = {
            "SZ": cls.STRING,
            "TEXT": cls.STRING,
            "EXPAND_SZ": cls.EXPAND_STRING,
            "EXPANDSTRING": cls.EXPAND_STRING,
            "MULTI_SZ": cls.MULTI_STRING,
            "MULTISTRING": cls.MULTI_STRING,
        }
        if key in aliases:
            return aliases[key]
        try:
            return cls[key]
        except KeyError:
            raise ValueError(f"Unknown registry value kind: {value}") from None


class RegistryValue:
    """Base of the closed set of typed registry values."""

    kind: ClassVar[ValueKind]
    payload: Any

    @staticmethod
    def from_stored(kind: int | ValueKind, payload: Any) -> RegistryValue:
        """Wrap a payload read back from the registry."""
        try:
            value_kind = ValueKind(kind)
        except ValueError:
            raise ValueError(f"Unsupported registry value type {kind}") from None
        return registry_value(value_kind, payload)

    def same_payload(self, other: RegistryValue) -> bool:
        return self.kind == other.kind and self.payload == other.payload

    def to_dict(self) -> dict[str, Any]:
        payload = self.payload
        if isinstance(payload, bytes):
            payload = list(payload)
        elif isinstance(payload, tuple):
            payload = list(payload)
        return {"kind": self.kind.name, "value": payload}


@dataclass(frozen=True)
class TextValue(RegistryValue):
    kind: ClassVar[ValueKind] = ValueKind.STRING
    payload: str

    def __post_init__(self) -> None:
        if not isinstance(self.payload, str):
            raise ValueError("String values require text")


@dataclass(frozen=True)
class ExpandableTextValue(RegistryValue):
    kind: ClassVar[ValueKind] = ValueKind.EXPAND_STRING
    payload: str

    def __post_init__(self) -> None:
        if not isinstance(self.payload, str):
            raise ValueError("ExpandString values require text")


@dataclass(frozen=True)
class BinaryValue(RegistryValue):
    kind: ClassVar[ValueKind] = ValueKind.BINARY
    payload: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.payload, bytes):
            raise ValueError("Binary values require bytes")


@dataclass(frozen=True)
class DWordValue(RegistryValue):
    kind: ClassVar[ValueKind] = ValueKind.DWORD
    payload: int

    def __post_init__(self) -> None:
        _check_int(self.payload, UINT32_MAX, "DWord")


@dataclass(frozen=True)
class QWordValue(RegistryValue):
    kind: ClassVar[ValueKind] = ValueKind.QWORD
    payload: int

    def __post_init__(self) -> None:
        _check_int(self.payload, UINT64_MAX, "QWord")


@dataclass(frozen=True)
class MultiTextValue(RegistryValue):
    kind: ClassVar[ValueKind] = ValueKind.MULTI_STRING
    payload: tuple[str, ...]

    def __post_init__(self) -> None:
        if not isinstance(self.payload, tuple) or not all(
            isinstance(item, str) for item in self.payload
        ):
            raise ValueError("MultiString values require a sequence of text")


def _check_int(value: Any, upper: int, label: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{label} values require an integer")
    if value < 0 or value > upper:
        raise ValueError(f"{label} value {value} is outside 0..{upper}")


def _coerce_int(raw: Any, label: str) -> int:
    if isinstance(raw, bool):
        raise ValueError(f"{label} values require an integer, got a boolean")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        try:
            return int(text, 16) if text.lower().startswith("0x") else int(text)
        except ValueError:
            raise ValueError(f"'{raw}' is not a valid {label} value") from None
    raise ValueError(f"{label} values require an integer, got {type(raw).__name__}")


def _coerce_bytes(raw: Any) -> bytes:
    if raw is None:
        return b""
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return bytes(raw)
    if isinstance(raw, str):
        text = raw.replace(",", "").replace(" ", "")
        try:
            return bytes.fromhex(text)
        except ValueError:
            raise ValueError(f"'{raw}' is not a valid hex byte string") from None
    if isinstance(raw, int) and not isinstance(raw, bool):
        raw = [raw]
    try:
        return bytes(raw)
    except (TypeError, ValueError):
        raise ValueError("Binary values require bytes or integers in 0..255") from None


def _coerce_multi(raw: Any) -> tuple[str, ...]:
    if isinstance(raw, str):
        return (raw,)
    if raw is None:
        return ()
    try:
        return tuple(str(item) for item in raw)
    except TypeError:
        return (str(raw),)


def registry_value(kind: ValueKind, raw: Any) -> RegistryValue:
    """Coerce a loosely typed payload into the value type for ``kind``."""
    if kind is ValueKind.STRING:
        return TextValue(str(raw))
    if kind is ValueKind.EXPAND_STRING:
        return ExpandableTextValue(str(raw))
    if kind is ValueKind.BINARY:
        return BinaryValue(_coerce_bytes(raw))
    if kind is ValueKind.DWORD:
        return DWordValue(_coerce_int(raw, "DWord"))
    if kind is ValueKind.QWORD:
        return QWordValue(_coerce_int(raw, "QWord"))
    if kind is ValueKind.MULTI_STRING:
        return MultiTextValue(_coerce_multi(raw))
    raise ValueError(f"Unsupported registry value kind: {kind}")


@dataclass
class RegistryValueRecord:
    """A value as read from (or written to) a key."""

    path: str
    name: str
    value: RegistryValue
    expanded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "name": self.name, "expanded": self.expanded, **self.value.to_dict()}


@dataclass
class ValueUpdate:
    """Old and new payload of an updated value, for audit or manual rollback."""

    path: str
    name: str
    old_value: RegistryValue
    new_value: RegistryValue

    @property
    def kind(self) -> ValueKind:
        return self.new_value.kind

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "name": self.name,
            "kind": self.kind.name,
            "old_value": self.old_value.to_dict()["value"],
            "new_value": self.new_value.to_dict()["value"],
        }


@dataclass
class RegistryKeyInfo:
    path: str
    subkeys: list[str] = field(default_factory=list)
    values: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "subkeys": self.subkeys, "values": self.values}


# ==================== Processes ====================


@dataclass
class Credential:
    """Alternate identity for starting a process."""

    username: str
    password: str = field(repr=False)
    domain: str | None = None

    @property
    def qualified_name(self) -> str:
        return f"{self.domain}\\{self.username}" if self.domain else self.username


@dataclass
class ProcessInfo:
    """Live reference to a process table entry; re-query to see changes."""

    pid: int
    name: str
    path: str | None = None
    command_line: list[str] = field(default_factory=list)
    parent_pid: int | None = None
    working_directory: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "name": self.name,
            "path": self.path,
            "command_line": self.command_line,
            "parent_pid": self.parent_pid,
            "working_directory": self.working_directory,
        }


@dataclass
class ProcessStartResult:
    pid: int
    executable: str
    arguments: list[str] = field(default_factory=list)
    exit_code: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "executable": self.executable,
            "arguments": self.arguments,
            "exit_code": self.exit_code,
        }


@dataclass
class ProcessStopResult:
    """Outcome of a graceful stop or a forced kill."""

    targets: list[int] = field(default_factory=list)
    stopped: list[int] = field(default_factory=list)
    still_running: list[int] = field(default_factory=list)
    method: str = ""

    @property
    def killed_count(self) -> int:
        return len(self.stopped)

    def to_dict(self) -> dict[str, Any]:
        return {
            "targets": self.targets,
            "stopped": self.stopped,
            "still_running": self.still_running,
            "killed_count": self.killed_count,
            "method": self.method,
        }


@dataclass
class ProcessRestartResult:
    old_pid: int
    new_pid: int
    executable: str
    arguments: list[str] = field(default_factory=list)
    forced: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "old_pid": self.old_pid,
            "new_pid": self.new_pid,
            "executable": self.executable,
            "arguments": self.arguments,
            "forced": self.forced,
        }


# ==================== Services ====================


class ServiceStatus(Enum):
    """Run state of a service."""

    RUNNING = "running"
    STOPPED = "stopped"
    PAUSED = "paused"
    START_PENDING = "start_pending"
    STOP_PENDING = "stop_pending"
    CONTINUE_PENDING = "continue_pending"
    PAUSE_PENDING = "pause_pending"
    UNKNOWN = "unknown"

    @classmethod
    def from_string(cls, value: str | None) -> ServiceStatus:
        if not value:
            return cls.UNKNOWN
        key = value.strip().lower().replace(" ", "_").replace("-", "_")
        aliases = {"startpending": cls.START_PENDING, "stoppending": cls.STOP_PENDING}
        if key in aliases:
            return aliases[key]
        for status in cls:
            if status.value == key:
                return status
        return cls.UNKNOWN


class StartupType(Enum):
    """Persisted start configuration, independent of run state."""

    AUTOMATIC = "automatic"
    AUTOMATIC_DELAYED = "automatic_delayed"
    MANUAL = "manual"
    DISABLED = "disabled"

    @classmethod
    def from_string(cls, value: str) -> StartupType:
        key = value.strip().lower().replace(" ", "_").replace("-", "_")
        aliases = {
            "auto": cls.AUTOMATIC,
            "delayed_auto": cls.AUTOMATIC_DELAYED,
            "automaticdelayedstart": cls.AUTOMATIC_DELAYED,
            "automatic_delayed_start": cls.AUTOMATIC_DELAYED,
            "delayed": cls.AUTOMATIC_DELAYED,
            "demand": cls.MANUAL,
        }
        if key in aliases:
            return aliases[key]
        for startup in cls:
            if startup.value == key:
                return startup
        raise ValueError(f"Unknown startup type: {value}")


@dataclass
class ServiceInfo:
    """Live reference to a service; re-query to see changes."""

    name: str
    display_name: str
    status: ServiceStatus
    startup_type: StartupType
    dependents: list[str] = field(default_factory=list)
    pid: int | None = None

    @property
    def is_running(self) -> bool:
        return self.status is ServiceStatus.RUNNING

    @property
    def is_stopped(self) -> bool:
        return self.status is ServiceStatus.STOPPED

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "status": self.status.name,
            "startup_type": self.startup_type.name,
            "dependents": self.dependents,
            "pid": self.pid,
        }


@dataclass
class ServiceChange:
    """Before/after snapshot of a service operation."""

    name: str
    previous: str
    current: str
    changed: bool = True
    dependents_stopped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "previous": self.previous,
            "current": self.current,
            "changed": self.changed,
            "dependents_stopped": self.dependents_stopped,
        }


# ==================== Pending deletion ledger ====================


@dataclass(frozen=True)
class LedgerEntry:
    """One boot-time file operation: rename ``source`` to ``target``, or delete when empty."""

    source: str
    target: str = ""

    @property
    def is_deletion(self) -> bool:
        return self.target == ""

    def to_dict(self) -> dict[str, Any]:
        return {"source": self.source, "target": self.target}


@dataclass
class RebootRemovalResult:
    root: str
    scheduled: list[str] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)
    file_count: int = 0
    directory_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": self.root,
            "scheduled": self.scheduled,
            "failed": self.failed,
            "file_count": self.file_count,
            "directory_count": self.directory_count,
            "scheduled_count": len(self.scheduled),
        }
