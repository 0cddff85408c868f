"""
Tests for hostforge.operations.reboot module.
"""

import contextlib
from pathlib import Path
from typing import Any, Iterator, Sequence

import pytest

from hostforge.core.config import HostForgeConfig
from hostforge.core.models import LedgerEntry
from hostforge.core.result import ErrorKind
from hostforge.operations.reboot import RebootScheduler
from hostforge.platform.base import PendingDeletionLedger
from hostforge.platform.paths import to_dos_device_path


class LossyLedger(PendingDeletionLedger):
    """Ledger that silently discards entries for one file name."""

    def __init__(self, lost_name: str) -> None:
        self.entries: list[LedgerEntry] = []
        self.lost_name = lost_name

    def read(self) -> list[LedgerEntry]:
        return list(self.entries)

    def write(self, entries: Sequence[LedgerEntry]) -> None:
        self.entries = [e for e in entries if not e.source.endswith(self.lost_name)]


@pytest.fixture
def scheduler(ledger: Any, elevated: Any, sample_config: HostForgeConfig) -> RebootScheduler:
    return RebootScheduler(ledger, elevated, sample_config)


@pytest.fixture
def tree(temp_dir: Path) -> Path:
    root = temp_dir / "victim"
    (root / "sub" / "deep").mkdir(parents=True)
    (root / "a.txt").write_text("a")
    (root / "z.txt").write_text("z")
    (root / "sub" / "b.txt").write_text("b")
    (root / "sub" / "deep" / "c.txt").write_text("c")
    return root


def _expected_order(root: Path) -> list[str]:
    return [
        str(root / "a.txt"),
        str(root / "sub" / "b.txt"),
        str(root / "sub" / "deep" / "c.txt"),
        str(root / "z.txt"),
        str(root / "sub" / "deep"),
        str(root / "sub"),
        str(root),
    ]


class TestPlan:
    """Tests for deletion ordering."""

    def test_files_then_deepest_directories_then_root(self, scheduler: RebootScheduler, tree: Path) -> None:
        assert scheduler.plan_removal(tree) == _expected_order(tree)

    def test_without_root(self, scheduler: RebootScheduler, tree: Path) -> None:
        assert scheduler.plan_removal(tree, include_root=False) == _expected_order(tree)[:-1]

    def test_single_file(self, scheduler: RebootScheduler, temp_dir: Path) -> None:
        target = temp_dir / "one.txt"
        target.write_text("x")
        assert scheduler.plan_removal(target) == [str(target)]


class TestRemoveOnReboot:
    """Tests for scheduling deletions."""

    def test_schedules_tree(self, scheduler: RebootScheduler, ledger: Any, tree: Path) -> None:
        result = scheduler.remove_on_reboot(str(tree))

        assert result.code == 0
        assert result.data.file_count == 4
        assert result.data.directory_count == 3
        expected = [to_dos_device_path(p) for p in _expected_order(tree)]
        assert result.data.scheduled == expected
        assert [entry.source for entry in ledger.entries] == expected
        assert all(entry.is_deletion for entry in ledger.entries)
        assert tree.exists()

    def test_appends_to_existing_entries(
        self, ledger: Any, elevated: Any, sample_config: HostForgeConfig, tree: Path
    ) -> None:
        rename = LedgerEntry("\\??\\C:\\old.dll", "!\\??\\C:\\new.dll")
        ledger.entries = [rename, LedgerEntry("\\??\\C:\\stale.tmp")]
        scheduler = RebootScheduler(ledger, elevated, sample_config)

        scheduler.remove_on_reboot(str(tree))

        assert ledger.entries[:2] == [rename, LedgerEntry("\\??\\C:\\stale.tmp")]
        assert len(ledger.entries) == 9
        assert scheduler.pending_deletions().data[0] == rename

    def test_lost_writes_fail_verification(self, scheduler: RebootScheduler, ledger: Any, tree: Path) -> None:
        ledger.drop_writes = True

        result = scheduler.remove_on_reboot(str(tree))

        assert result.code == -1
        assert result.error_kind is ErrorKind.VERIFICATION
        assert result.data.scheduled == []
        assert len(result.data.failed) == 7

    def test_lost_write_of_already_pending_path(
        self, scheduler: RebootScheduler, ledger: Any, temp_dir: Path
    ) -> None:
        target = temp_dir / "locked.dll"
        target.write_text("x")
        ledger.entries = [LedgerEntry(to_dos_device_path(str(target)))]
        ledger.drop_writes = True

        result = scheduler.remove_on_reboot(str(target))

        assert result.error_kind is ErrorKind.VERIFICATION
        assert result.data.scheduled == []
        assert result.data.failed[0]["path"] == to_dos_device_path(str(target))

    def test_rescheduling_adds_another_entry(
        self, scheduler: RebootScheduler, ledger: Any, temp_dir: Path
    ) -> None:
        target = temp_dir / "locked.dll"
        target.write_text("x")

        assert scheduler.remove_on_reboot(str(target)).code == 0
        second = scheduler.remove_on_reboot(str(target))

        assert second.code == 0
        assert second.data.scheduled == [to_dos_device_path(str(target))]
        assert len(ledger.entries) == 2

    def test_partially_lost_writes(
        self, elevated: Any, sample_config: HostForgeConfig, tree: Path
    ) -> None:
        scheduler = RebootScheduler(LossyLedger("z.txt"), elevated, sample_config)

        result = scheduler.remove_on_reboot(str(tree))

        assert result.code == 1
        assert result.error_kind is ErrorKind.PARTIAL
        assert len(result.data.scheduled) == 6
        assert result.data.failed[0]["path"].endswith("z.txt")
        assert "1 of 7 paths" in result.message

    def test_lock_wraps_update(self, scheduler: RebootScheduler, ledger: Any, tree: Path) -> None:
        events = []

        @contextlib.contextmanager
        def lock() -> Iterator[None]:
            events.append(("enter", ledger.writes))
            yield
            events.append(("exit", ledger.writes))

        scheduler.remove_on_reboot(str(tree), lock=lock())

        assert events == [("enter", 0), ("exit", 1)]

    def test_missing_path(self, scheduler: RebootScheduler, temp_dir: Path) -> None:
        result = scheduler.remove_on_reboot(str(temp_dir / "missing"))
        assert result.error_kind is ErrorKind.PRECONDITION

    def test_protected_path(self, scheduler: RebootScheduler, temp_dir: Path) -> None:
        result = scheduler.remove_on_reboot(temp_dir.anchor)
        assert result.error_kind is ErrorKind.PRECONDITION
        assert "protected" in result.message

    def test_requires_elevation(
        self, ledger: Any, not_elevated: Any, sample_config: HostForgeConfig, tree: Path
    ) -> None:
        scheduler = RebootScheduler(ledger, not_elevated, sample_config)

        result = scheduler.remove_on_reboot(str(tree))

        assert result.error_kind is ErrorKind.ACCESS_DENIED
        assert ledger.writes == 0
