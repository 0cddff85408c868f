"""
Reboot-deferred deletion.

Registers a directory tree with the boot-time pending file operations
ledger. The boot-time mover processes entries in order, so files come first,
then directories deepest-first, then the root.

The ledger is OS-global and updated by read-modify-write. Nothing stops
another program from writing between the read and the write, in which case
one side's entries are lost. Callers that need serialization can pass a
``lock`` to :meth:`RebootScheduler.remove_on_reboot`.
"""

from __future__ import annotations

import os
from collections import Counter
from contextlib import AbstractContextManager, nullcontext
from pathlib import Path
from typing import Any

from hostforge.core.config import HostForgeConfig
from hostforge.core.models import LedgerEntry, RebootRemovalResult
from hostforge.core.result import (
    ErrorKind,
    OperationResult,
    PreconditionError,
    operation,
    require,
)
from hostforge.core.safety import PrivilegeCheck, SafetyPolicy, require_elevation
from hostforge.operations.base import OperationGroup
from hostforge.platform.base import PendingDeletionLedger
from hostforge.platform.paths import normalize_path, to_dos_device_path


def _partition(root: Path) -> tuple[list[str], list[str]]:
    """Return ``(files, directories)`` below ``root`` in ledger order."""
    if not root.is_dir() or root.is_symlink():
        return [], []
    files: list[str] = []
    directories: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        files.extend(str(current / name) for name in filenames)
        directories.extend(current / name for name in dirnames)
    files.sort()
    directories.sort(key=lambda d: (-len(d.parts), str(d)))
    return files, [str(d) for d in directories]


class RebootScheduler(OperationGroup):
    """Schedules deletions for the next boot."""

    logger_name = "hostforge.operations.reboot"

    def __init__(
        self,
        ledger: PendingDeletionLedger,
        is_admin: PrivilegeCheck | None = None,
        config: HostForgeConfig | None = None,
    ) -> None:
        super().__init__(config)
        self.ledger = ledger
        if is_admin is None:
            from hostforge.platform import is_admin as platform_is_admin

            is_admin = platform_is_admin
        self.is_admin = is_admin
        self.safety = SafetyPolicy(self.config.safety)

    def plan_removal(self, path: str | Path, *, include_root: bool = True) -> list[str]:
        """Order in which the tree under ``path`` would be deleted."""
        root = Path(path)
        files, directories = _partition(root)
        plan = files + directories
        if include_root:
            plan.append(str(root))
        return plan

    @operation("remove_on_reboot")
    def remove_on_reboot(
        self,
        path: str,
        *,
        include_root: bool = True,
        lock: AbstractContextManager[Any] | None = None,
    ) -> OperationResult[RebootRemovalResult]:
        """Append deletion entries for a tree to the pending operations ledger.

        Paths that cannot be converted to device form are collected rather
        than aborting; the ledger is re-read afterwards to confirm every
        entry landed. Some failures alongside successes give code 1.
        """
        require(path=path)
        require_elevation(self.is_admin, "schedule deletions for reboot")
        root = Path(os.path.abspath(normalize_path(path).path))
        if not root.exists() and not root.is_symlink():
            raise PreconditionError(f"'{root}' does not exist")
        self.safety.ensure_path_allowed(root, "schedule deletion of")

        files, directories = _partition(root)
        plan = files + directories + ([str(root)] if include_root else [])
        result = RebootRemovalResult(
            root=str(root),
            file_count=len(files) + (1 if include_root and not root.is_dir() else 0),
            directory_count=len(directories) + (1 if include_root and root.is_dir() else 0),
        )

        entries: list[LedgerEntry] = []
        for item in plan:
            try:
                entries.append(LedgerEntry(to_dos_device_path(item)))
            except ValueError as e:
                result.failed.append({"path": item, "error": str(e)})

        if entries:
            with lock if lock is not None else nullcontext():
                current = self.ledger.read()
                self.ledger.write([*current, *entries])
                after = self.ledger.read()
            # Entries already pending before the write do not count as written.
            added = Counter(after) - Counter(current)
            for entry in entries:
                if added[entry] > 0:
                    added[entry] -= 1
                    result.scheduled.append(entry.source)
                else:
                    result.failed.append(
                        {"path": entry.source, "error": "not present in the ledger after writing"}
                    )

        self.logger.info(
            "Scheduled deletion at reboot",
            root=result.root,
            scheduled=len(result.scheduled),
            failed=len(result.failed),
        )
        if not result.failed:
            return OperationResult.ok(result)

        total = len(result.scheduled) + len(result.failed)
        first = result.failed[0]
        message = (
            f"{len(result.failed)} of {total} paths could not be scheduled "
            f"(first: {first['path']}: {first['error']})"
        )
        if not result.scheduled:
            return OperationResult.fail(ErrorKind.VERIFICATION if entries else ErrorKind.OS_ERROR, message, result)
        return OperationResult.partial_success(message, result)

    @operation("pending_deletions")
    def pending_deletions(self) -> OperationResult[list[LedgerEntry]]:
        """Entries currently waiting in the ledger, renames included."""
        return OperationResult.ok(self.ledger.read())
