"""
Filesystem operations.

Copy, create and remove files and directories with explicit overwrite and
recursion flags, a blocklist for system locations, and size or existence
checks after each mutation.
"""

from __future__ import annotations

import fnmatch
import os
import shutil
import stat
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path
from typing import Any, TypeVar

import humanize

from hostforge.core.config import HostForgeConfig
from hostforge.core.models import CopyRecord, DirectoryCopyResult, PathRecord
from hostforge.core.result import (
    BatchResult,
    OperationError,
    OperationResult,
    PreconditionError,
    ValidationError,
    VerificationError,
    advisory,
    batch_outcome,
    operation,
    require,
    result_from_exception,
)
from hostforge.core.safety import SafetyPolicy, check_path_length, check_reserved_name
from hostforge.operations.base import OperationGroup
from hostforge.operations.text import BOM_FOR_CODEC, encode_text, resolve_encoding
from hostforge.platform.paths import NormalizedPath, normalize_path

T = TypeVar("T")


def _match_exclude(path: Path, exclude_patterns: Iterable[str]) -> bool:
    for pattern in exclude_patterns:
        if fnmatch.fnmatch(path.as_posix(), pattern) or fnmatch.fnmatch(path.name, pattern):
            return True
    return False


def _same_path(first: Path, second: Path) -> bool:
    return os.path.normcase(str(first.resolve())) == os.path.normcase(str(second.resolve()))


def _is_within(path: Path, ancestor: Path) -> bool:
    path_key = os.path.normcase(str(path.resolve()))
    ancestor_key = os.path.normcase(str(ancestor.resolve()))
    return path_key == ancestor_key or path_key.startswith(ancestor_key.rstrip(os.sep) + os.sep)


def _dir_size(path: Path) -> tuple[int, int, int]:
    """Return ``(files, directories, bytes)`` below ``path``."""
    files = directories = total = 0
    for root, dirnames, filenames in os.walk(path):
        directories += len(dirnames)
        for filename in filenames:
            files += 1
            try:
                total += (Path(root) / filename).stat().st_size
            except OSError:
                continue
    return files, directories, total


def _make_writable(func: Callable[..., Any], path: str, exc: BaseException) -> None:
    """rmtree error handler: clear the read-only bit and retry once."""
    if not isinstance(exc, PermissionError):
        raise exc
    os.chmod(path, os.stat(path).st_mode | stat.S_IWRITE)
    func(path)


def _clear_readonly(path: Path) -> None:
    mode = path.stat().st_mode
    if not mode & stat.S_IWRITE:
        os.chmod(path, mode | stat.S_IWRITE)


def _error_text(exc: Exception) -> str:
    return result_from_exception(exc).message


def _non_empty(paths: Sequence[str] | None) -> list[str]:
    items = [str(p) for p in (paths or []) if p is not None and str(p).strip()]
    if not items:
        raise ValidationError("Parameter 'paths' must contain at least one path")
    return items


class FileOperations(OperationGroup):
    """Filesystem operations over files and directory trees."""

    logger_name = "hostforge.operations.files"

    def __init__(self, config: HostForgeConfig | None = None) -> None:
        super().__init__(config)
        self.safety = SafetyPolicy(self.config.safety)

    # ==================== Copy ====================

    def _copy_target(self, source: Path, destination: NormalizedPath) -> Path:
        """Decide whether ``destination`` names the new file or its directory.

        It is a directory when it exists as one, ends in a separator, or has
        no extension and a parent that does not exist yet.
        """
        dest = destination.path
        if (
            dest.is_dir()
            or destination.directory_hint
            or (not dest.suffix and not dest.parent.exists())
        ):
            return dest / source.name
        return dest

    def _copy_one(
        self,
        source: Path,
        target: Path,
        *,
        overwrite: bool,
        preserve_timestamps: bool,
    ) -> tuple[CopyRecord, list[str]]:
        if not source.exists():
            raise PreconditionError(f"Source file '{source}' does not exist")
        if source.is_dir():
            raise PreconditionError(f"Source '{source}' is a directory; use copy_directory")
        check_path_length(target, self.config.files.max_path_length)
        if target.exists():
            if _same_path(source, target):
                raise PreconditionError(f"Cannot copy '{source}' onto itself")
            if target.is_dir():
                raise PreconditionError(f"Destination '{target}' is a directory")
            if not overwrite:
                raise PreconditionError(
                    f"Destination file '{target}' already exists; pass overwrite=True to replace it"
                )

        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)

        warnings: list[str] = []
        source_stat = source.stat()
        if preserve_timestamps:
            warning = advisory(
                "Copying timestamps",
                lambda: os.utime(target, ns=(source_stat.st_atime_ns, source_stat.st_mtime_ns)),
            )
            if warning:
                warnings.append(warning)

        copied = target.stat().st_size
        record = CopyRecord(source=str(source), destination=str(target), size_bytes=copied)
        if copied != source_stat.st_size:
            raise VerificationError(
                f"Copied '{source}' to '{target}' but sizes differ: "
                f"{humanize.naturalsize(source_stat.st_size, binary=True)} expected, "
                f"{humanize.naturalsize(copied, binary=True)} written",
                data=record,
            )
        return record, warnings

    @operation("copy_file")
    def copy_file(
        self,
        source: str,
        destination: str,
        *,
        overwrite: bool = False,
        preserve_timestamps: bool | None = None,
    ) -> OperationResult[CopyRecord]:
        """Copy a single file.

        The size of the copy is checked against the source; a mismatch is a
        failure even though bytes were written. Timestamp preservation is
        advisory and only produces a warning when it fails.
        """
        require(source=source, destination=destination)
        src = normalize_path(source).path
        target = self._copy_target(src, normalize_path(destination))
        preserve = (
            self.config.files.preserve_timestamps
            if preserve_timestamps is None
            else preserve_timestamps
        )

        record, warnings = self._copy_one(
            src, target, overwrite=overwrite, preserve_timestamps=preserve
        )
        self.logger.info(
            "Copied file",
            source=record.source,
            destination=record.destination,
            size=humanize.naturalsize(record.size_bytes, binary=True),
        )
        return OperationResult.ok(record, warnings)

    @operation("copy_directory")
    def copy_directory(
        self,
        source: str,
        destination: str,
        *,
        exclude_files: Sequence[str] = (),
        exclude_dirs: Sequence[str] = (),
        overwrite: bool = False,
    ) -> OperationResult[DirectoryCopyResult]:
        """Copy a directory tree.

        An existing destination directory receives the source as a child,
        the way a file copy into a directory keeps the file name. Counts in
        the result are taken from the destination after the copy.
        """
        require(source=source, destination=destination)
        src = normalize_path(source).path
        dest = normalize_path(destination).path

        if not src.exists():
            raise PreconditionError(f"Source directory '{src}' does not exist")
        if not src.is_dir():
            raise PreconditionError(f"Source '{src}' is a file; use copy_file")
        if dest.exists() and not dest.is_dir():
            raise PreconditionError(f"Destination '{dest}' exists and is a file")

        target = dest / src.name if dest.is_dir() else dest
        if _is_within(target, src):
            raise PreconditionError(f"Cannot copy directory '{src}' into itself ('{target}')")
        check_path_length(target, self.config.files.max_path_length)
        if target.exists():
            if not target.is_dir():
                raise PreconditionError(f"Destination '{target}' exists and is a file")
            if not overwrite:
                raise PreconditionError(
                    f"Destination directory '{target}' already exists; pass overwrite=True to merge into it"
                )

        def ignore(directory: str, names: list[str]) -> set[str]:
            ignored = set()
            for name in names:
                candidate = Path(directory) / name
                patterns = exclude_dirs if candidate.is_dir() else exclude_files
                if _match_exclude(candidate, patterns):
                    ignored.add(name)
            return ignored

        try:
            shutil.copytree(src, target, ignore=ignore, dirs_exist_ok=overwrite)
        except shutil.Error as e:
            errors = e.args[0] if e.args and isinstance(e.args[0], list) else []
            if errors:
                failed_source, _, why = errors[0]
                raise OperationError(
                    f"{len(errors)} entries of '{src}' could not be copied (first: {failed_source}: {why})",
                    data=errors,
                ) from None
            raise

        files, directories, total = _dir_size(target)
        result = DirectoryCopyResult(
            source=str(src),
            destination=str(target),
            file_count=files,
            directory_count=directories,
            total_bytes=total,
        )
        self.logger.info(
            "Copied directory",
            source=result.source,
            destination=result.destination,
            files=files,
            size=humanize.naturalsize(total, binary=True),
        )
        return OperationResult.ok(result)

    @operation("copy_files")
    def copy_files(
        self,
        sources: Sequence[str],
        destination: str,
        *,
        overwrite: bool = True,
        stop_on_error: bool = False,
    ) -> OperationResult[BatchResult[CopyRecord]]:
        """Copy many files into one directory, keeping each file name.

        Items are processed in the order given, so two sources with the same
        name overwrite each other in order, or the second fails when
        ``overwrite`` is off. With ``stop_on_error`` every source is checked
        before anything is copied and the batch stops at the first failure.
        """
        require(destination=destination)
        items = _non_empty(sources)
        dest = normalize_path(destination).path
        if dest.exists() and not dest.is_dir():
            raise PreconditionError(f"Destination '{dest}' exists and is a file")

        if stop_on_error:
            missing = [item for item in items if not normalize_path(item).path.is_file()]
            if missing:
                raise PreconditionError(
                    f"{len(missing)} source file(s) do not exist: {', '.join(missing)}",
                    data=missing,
                )

        dest.mkdir(parents=True, exist_ok=True)
        preserve = self.config.files.preserve_timestamps

        def copy_item(item: str) -> CopyRecord:
            src = normalize_path(item).path
            record, warnings = self._copy_one(
                src, dest / src.name, overwrite=overwrite, preserve_timestamps=preserve
            )
            for warning in warnings:
                self.logger.warning("Advisory step failed", path=item, warning=warning)
            return record

        batch = self._run_batch(items, copy_item, stop_on_error)
        return batch_outcome(batch, "files")

    # ==================== Create ====================

    @operation("create_directory")
    def create_directory(self, path: str, *, force: bool = False) -> OperationResult[PathRecord]:
        require(path=path)
        target = normalize_path(path).path
        check_reserved_name(target)
        check_path_length(target, self.config.files.max_path_length)

        if target.exists():
            if not target.is_dir():
                raise PreconditionError(f"A file already exists at '{target}'")
            if not force:
                raise PreconditionError(f"Directory '{target}' already exists")
            return OperationResult.ok(PathRecord(str(target), "directory", existed=True))

        target.mkdir(parents=True)
        if not target.is_dir():
            raise VerificationError(f"Directory '{target}' was not created")
        self.logger.info("Created directory", path=str(target))
        return OperationResult.ok(PathRecord(str(target), "directory"))

    @operation("create_file")
    def create_file(
        self,
        path: str,
        content: str = "",
        *,
        overwrite: bool = False,
        encoding: str = "utf-8",
    ) -> OperationResult[PathRecord]:
        require(path=path)
        codec, implied_bom = resolve_encoding(encoding)
        data = encode_text(content or "", codec)
        if implied_bom:
            data = BOM_FOR_CODEC[codec] + data

        target = normalize_path(path).path
        check_reserved_name(target)
        check_path_length(target, self.config.files.max_path_length)

        existed = target.exists()
        if existed:
            if target.is_dir():
                raise PreconditionError(f"A directory already exists at '{target}'")
            if not overwrite:
                raise PreconditionError(
                    f"File '{target}' already exists; pass overwrite=True to replace it"
                )

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

        size = target.stat().st_size
        if size != len(data):
            raise VerificationError(f"'{target}' is {size} bytes after writing; expected {len(data)}")
        self.logger.info("Created file", path=str(target), size=size)
        return OperationResult.ok(PathRecord(str(target), "file", size, existed=existed))

    # ==================== Remove ====================

    def _delete_file(self, path: str, force: bool) -> PathRecord:
        target = normalize_path(path).path
        self.safety.ensure_path_allowed(target, "delete")
        if not target.exists() and not target.is_symlink():
            raise PreconditionError(f"File '{target}' does not exist")
        if target.is_dir() and not target.is_symlink():
            raise PreconditionError(f"'{target}' is a directory; use remove_directory")

        size = target.lstat().st_size
        if force:
            _clear_readonly(target)
        target.unlink()
        if target.exists() or target.is_symlink():
            raise VerificationError(f"File '{target}' still exists after deletion")
        return PathRecord(str(target), "file", size, existed=True)

    def _remove_directory(self, path: str, recurse: bool) -> PathRecord:
        target = normalize_path(path).path
        self.safety.ensure_path_allowed(target, "remove")
        if not target.exists():
            raise PreconditionError(f"Directory '{target}' does not exist")
        if not target.is_dir():
            raise PreconditionError(f"'{target}' is not a directory")

        with os.scandir(target) as entries:
            has_entries = any(True for _ in entries)
        if has_entries and not recurse:
            raise PreconditionError(
                f"Directory '{target}' is not empty; pass recurse=True to remove its contents"
            )

        _, _, total = _dir_size(target)
        if recurse:
            shutil.rmtree(target, onexc=_make_writable)
        else:
            target.rmdir()
        if target.exists():
            raise VerificationError(f"Directory '{target}' still exists after removal")
        return PathRecord(str(target), "directory", total, existed=True)

    def _run_batch(
        self,
        items: list[str],
        action: Callable[[str], T],
        stop_on_error: bool,
    ) -> BatchResult[T]:
        batch: BatchResult[T] = BatchResult()
        for index, item in enumerate(items):
            try:
                batch.add_success(action(item))
            except (OperationError, OSError) as e:
                batch.add_failure(item, _error_text(e))
                self.logger.warning("Batch item failed", path=item, error=_error_text(e))
                if stop_on_error:
                    batch.stopped_early = True
                    batch.skipped_count = len(items) - index - 1
                    break
        return batch

    @operation("delete_file")
    def delete_file(self, path: str, *, force: bool = False) -> OperationResult[PathRecord]:
        """Delete one file; ``force`` clears a read-only attribute first."""
        require(path=path)
        record = self._delete_file(path, force)
        self.logger.info("Deleted file", path=record.path)
        return OperationResult.ok(record)

    @operation("remove_directory")
    def remove_directory(self, path: str, *, recurse: bool = False) -> OperationResult[PathRecord]:
        require(path=path)
        record = self._remove_directory(path, recurse)
        self.logger.info(
            "Removed directory",
            path=record.path,
            size=humanize.naturalsize(record.size_bytes, binary=True),
        )
        return OperationResult.ok(record)

    @operation("remove_files")
    def remove_files(
        self,
        paths: Sequence[str],
        *,
        stop_on_error: bool = False,
        force: bool = False,
    ) -> OperationResult[BatchResult[PathRecord]]:
        items = _non_empty(paths)
        batch = self._run_batch(items, lambda item: self._delete_file(item, force), stop_on_error)
        return batch_outcome(batch, "files")

    @operation("remove_directories")
    def remove_directories(
        self,
        paths: Sequence[str],
        *,
        recurse: bool = False,
        stop_on_error: bool = False,
    ) -> OperationResult[BatchResult[PathRecord]]:
        items = _non_empty(paths)
        batch = self._run_batch(
            items, lambda item: self._remove_directory(item, recurse), stop_on_error
        )
        return batch_outcome(batch, "directories")
