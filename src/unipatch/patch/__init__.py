from __future__ import annotations

import asyncio
import os
import pathlib
import posixpath
import re
import shutil
import tempfile
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from unipatch.logger import logger

from .applier import (
    apply_file_diff,
    apply_patches,
    apply_unified_diff,
    check_unified_diff,
    format_excerpt,
)
from .differ import create_diff
from .errors import (
    AmbiguousPatchError,
    ContextValidationError,
    DiffError,
    HunkMismatchError,
    MalformedDiffError,
    OverlappingPatchError,
    PatchNotFoundError,
    UnsafePathError,
)
from .locator import locate, locate_hunk, validate_context
from .models import (
    ApplyOptions,
    ContentLocator,
    FileApplyStatus,
    FileDiff,
    FileResult,
    Hunk,
    HunkLine,
    HunkConflict,
    HunkMatch,
    LineRangeLocator,
    LineSpan,
    LineTag,
    MatchMode,
    Ordering,
    PatchError,
    PatchOutcome,
    PatchResult,
    PatchSetResult,
    PatchSpec,
    PatternLocator,
    ValidationReport,
)
from .parser import lint_diff, parse_diff, parse_file_diffs

DEFAULT_ALLOWED_ROOTS: Tuple[str, ...] = ("Assets", "Packages")
DEFAULT_BACKUP_SUFFIX = ".backup"

_WINDOWS_DRIVE_RE = re.compile(r"^[A-Za-z]:[\\/]")


class PatchFileOps(ABC):
    """
    Abstract contract for file operations used by the patch workflows.
    Implementations must handle path safety and track changes map.
    """

    @abstractmethod
    def open(self, rel: str) -> str: ...

    @abstractmethod
    def write(self, rel: str, content: str) -> None: ...

    @abstractmethod
    def delete(self, rel: str) -> None: ...

    @abstractmethod
    def exists(self, rel: str) -> bool: ...

    @property
    @abstractmethod
    def changes_map(self) -> Dict[str, str]:
        """
        A map of relative file paths to change kind: 'created' | 'updated' | 'deleted'.
        """
        ...

    def backup(self, rel: str, suffix: str = DEFAULT_BACKUP_SUFFIX) -> str:
        """Copy `rel` next to itself and return the backup's relative path."""
        stamp = datetime.now().strftime("%Y%m%d%H%M%S%f")
        dest = f"{rel}{suffix}.{stamp}"
        self.write(dest, self.open(rel))
        return dest


class FileSystemPatchFileOps(PatchFileOps):
    """
    File-backed implementation that enforces path safety under base_path,
    restricts edits to the allowed top-level roots and writes atomically.
    """

    def __init__(
        self,
        base_path: pathlib.Path,
        allowed_roots: Sequence[str] = DEFAULT_ALLOWED_ROOTS,
        encoding: str = "utf-8",
    ):
        self._base_path = pathlib.Path(base_path)
        self._allowed_roots = tuple(allowed_roots)
        self._encoding = encoding
        self._changes: Dict[str, str] = {}

    @property
    def base_path(self) -> pathlib.Path:
        return self._base_path

    def _resolve_safe_path(self, rel: str) -> pathlib.Path:
        norm = (rel or "").replace("\\", "/")
        if not norm.strip():
            raise UnsafePathError("Empty path", filename=rel)
        if norm.startswith("/") or norm.startswith("~") or _WINDOWS_DRIVE_RE.match(rel):
            raise UnsafePathError(f"Absolute paths are not allowed: {rel}", filename=rel)
        base_resolved = self._base_path.resolve()
        abs_path = (base_resolved / norm).resolve()
        if not abs_path.is_relative_to(base_resolved) or abs_path == base_resolved:
            raise UnsafePathError(f"Path escapes project root: {rel}", filename=rel)
        if self._allowed_roots:
            root = abs_path.relative_to(base_resolved).parts[0]
            if root not in self._allowed_roots:
                allowed = ", ".join(self._allowed_roots)
                raise UnsafePathError(
                    f"Path is outside the editable roots ({allowed}): {rel}",
                    filename=rel,
                    hint=f"Paths must start with one of: {allowed}",
                )
        return abs_path

    def _record(self, rel: str, change: str) -> None:
        prev = self._changes.get(rel)
        if prev is None:
            self._changes[rel] = change
            return
        if change == "deleted":
            self._changes[rel] = change
        elif change == "updated" and prev != "deleted":
            self._changes[rel] = change
        elif change == "created" and prev == "deleted":
            self._changes[rel] = "updated"

    def exists(self, rel: str) -> bool:
        return self._resolve_safe_path(rel).is_file()

    def open(self, rel: str) -> str:
        path = self._resolve_safe_path(rel)
        with path.open("r", encoding=self._encoding, newline="") as fh:
            return fh.read()

    def write(self, rel: str, content: str) -> None:
        path = self._resolve_safe_path(rel)
        existed = path.exists()
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding=self._encoding, newline="") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            if existed:
                shutil.copymode(path, tmp)
            os.replace(tmp, path)
        except BaseException:
            pathlib.Path(tmp).unlink(missing_ok=True)
            raise
        self._record(rel, "updated" if existed else "created")

    def delete(self, rel: str) -> None:
        path = self._resolve_safe_path(rel)
        path.unlink(missing_ok=True)
        self._record(rel, "deleted")

    def backup(self, rel: str, suffix: str = DEFAULT_BACKUP_SUFFIX) -> str:
        src = self._resolve_safe_path(rel)
        stamp = datetime.now().strftime("%Y%m%d%H%M%S%f")
        dest_rel = f"{rel}{suffix}.{stamp}"
        dest = self._resolve_safe_path(dest_rel)
        shutil.copy2(src, dest)
        logger.debug("backup created", path=rel, backup=dest_rel)
        return dest_rel

    @property
    def changes_map(self) -> Dict[str, str]:
        return self._changes


class PathLocks:
    """
    Per-path asyncio locks. Edits of the same file are serialised; edits of
    different files run freely. A path's lock is dropped once nobody holds
    or waits for it.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        # Holders plus waiters per key
        self._users: Dict[str, int] = {}

    @staticmethod
    def key(rel: str) -> str:
        return posixpath.normpath(rel.replace("\\", "/"))

    def locked(self, rel: str) -> bool:
        lock = self._locks.get(self.key(rel))
        return lock is not None and lock.locked()

    def _enter(self, key: str) -> asyncio.Lock:
        self._users[key] = self._users.get(key, 0) + 1
        return self._locks.setdefault(key, asyncio.Lock())

    def _leave(self, key: str) -> None:
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, *paths: str) -> AsyncIterator[None]:
        # Always acquired in sorted key order
        keys = sorted({self.key(p) for p in paths})
        entered: List[str] = []
        acquired: List[asyncio.Lock] = []
        try:
            for k in keys:
                lock = self._enter(k)
                entered.append(k)
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for k in reversed(entered):
                self._leave(k)

    def __len__(self) -> int:
        return len(self._locks)


def _read(ops: PatchFileOps, rel: str) -> str:
    if not ops.exists(rel):
        raise PatchNotFoundError(f"File not found: {rel}", filename=rel)
    return ops.open(rel)


def update_file(
    rel: str,
    patches: Iterable[Union[PatchSpec, dict]],
    ops: PatchFileOps,
    options: Optional[ApplyOptions] = None,
) -> PatchResult:
    """Apply patch specs to one file and write it back unless dry-run."""
    text = _read(ops, rel)
    try:
        result = apply_patches(text, patches, options)
    except DiffError as e:
        e.filename = rel
        raise
    if not result.dry_run and result.changed:
        ops.write(rel, result.text)
        logger.info(
            "file updated",
            path=rel,
            added=result.lines_added,
            removed=result.lines_removed,
        )
    return result


def apply_diff_to_file(
    rel: str,
    diff_text: str,
    ops: PatchFileOps,
    options: Optional[ApplyOptions] = None,
    *,
    backup: bool = False,
    backup_suffix: str = DEFAULT_BACKUP_SUFFIX,
    strict: bool = True,
) -> PatchResult:
    """
    Apply a single-file unified diff to `rel`. A diff from /dev/null creates
    the file, a diff to /dev/null deletes it.
    """
    files = [
        f
        for f in parse_file_diffs(diff_text, strict=strict)
        if f.hunks or f.is_new_file or f.is_deleted
    ]
    if len(files) > 1:
        raise MalformedDiffError(
            f"Diff touches {len(files)} files; apply it as a patch set",
            filename=rel,
            hint="Split the diff per file or use apply_patch.",
        )
    target = files[0] if files else None
    creating = target is not None and target.is_new_file
    text = "" if creating and not ops.exists(rel) else _read(ops, rel)

    try:
        result = apply_file_diff(text, target, options)
    except DiffError as e:
        e.filename = rel
        raise

    if result.dry_run:
        return result
    if target is not None and target.is_deleted:
        if backup:
            result.warnings.append(f"Backup: {ops.backup(rel, backup_suffix)}")
        ops.delete(rel)
        logger.info("file deleted", path=rel)
    elif result.changed or creating:
        if backup and not creating:
            result.warnings.append(f"Backup: {ops.backup(rel, backup_suffix)}")
        ops.write(rel, result.text)
        logger.info(
            "file written",
            path=rel,
            added=result.lines_added,
            removed=result.lines_removed,
        )
    return result


def _plan_status(fd: FileDiff, result: PatchResult) -> FileApplyStatus:
    if fd.is_new_file:
        return FileApplyStatus.Create
    if fd.is_deleted:
        return FileApplyStatus.Delete
    return FileApplyStatus.Update if result.changed else FileApplyStatus.Unchanged


def _rollback(
    ops: PatchFileOps, written: List[str], originals: Dict[str, Optional[str]]
) -> List[str]:
    restored: List[str] = []
    for rel in reversed(written):
        old = originals.get(rel)
        try:
            if old is None:
                ops.delete(rel)
            else:
                ops.write(rel, old)
            restored.append(rel)
        except OSError as e:
            logger.error("rollback failed", path=rel, exc=str(e))
    return restored


def apply_patch_set(
    diff_text: str,
    ops: PatchFileOps,
    options: Optional[ApplyOptions] = None,
    *,
    atomic: bool = True,
    continue_on_error: bool = False,
    backup: bool = False,
    backup_suffix: str = DEFAULT_BACKUP_SUFFIX,
    strict: bool = True,
) -> PatchSetResult:
    """
    Apply a multi-file unified diff.

    Every file's new content is computed before anything is written. With
    `atomic`, a failure writes nothing and a failing write restores the files
    already written. Without it, files that applied cleanly are written.
    """
    options = options or ApplyOptions()
    sections = [
        f
        for f in parse_file_diffs(diff_text, strict=strict)
        if f.hunks or f.is_new_file or f.is_deleted
    ]

    files: List[FileResult] = []
    # Planned final state per path: new text, or None for deletion
    planned: Dict[str, Optional[str]] = {}
    originals: Dict[str, Optional[str]] = {}
    order: List[str] = []

    for fd in sections:
        rel = fd.path
        try:
            if rel is None:
                raise MalformedDiffError(
                    "Hunks without a '---'/'+++' file header",
                    hint="Start every file section with '--- a/<path>' and '+++ b/<path>'.",
                )
            if rel not in originals:
                originals[rel] = ops.open(rel) if ops.exists(rel) else None
            current = planned[rel] if rel in planned else originals[rel]
            if current is None and not fd.is_new_file:
                raise PatchNotFoundError(f"File not found: {rel}", filename=rel)
            if current is not None and fd.is_new_file:
                raise DiffError(f"File already exists: {rel}", filename=rel)
            result = apply_file_diff(current or "", fd, options)
        except DiffError as e:
            e.filename = e.filename or rel
            logger.warning("patch set file failed", path=rel, error=str(e))
            files.append(
                FileResult(path=rel or "<unknown>", status=FileApplyStatus.Failed, error=e.to_report())
            )
            if not continue_on_error:
                break
            continue

        planned[rel] = None if fd.is_deleted else result.preview
        if rel not in order:
            order.append(rel)
        files.append(FileResult(path=rel, status=_plan_status(fd, result), result=result))

    failed = any(f.status == FileApplyStatus.Failed for f in files)
    outcome = PatchSetResult(success=not failed, files=files)
    if options.dry_run or (atomic and failed):
        return outcome

    for rel in order:
        new_text = planned[rel]
        old_text = originals[rel]
        if new_text == old_text:
            continue
        try:
            if backup and old_text is not None:
                ops.backup(rel, backup_suffix)
            if new_text is None:
                ops.delete(rel)
            else:
                ops.write(rel, new_text)
        except (OSError, DiffError) as e:
            logger.error("write failed", path=rel, exc=str(e))
            error = e.to_report() if isinstance(e, DiffError) else PatchError(msg=str(e), filename=rel)
            outcome.files.append(FileResult(path=rel, status=FileApplyStatus.Failed, error=error))
            outcome.success = False
            if atomic:
                outcome.rolled_back = _rollback(ops, outcome.written, originals)
                break
            if not continue_on_error:
                break
            continue
        outcome.written.append(rel)
        logger.info("file written", path=rel)
    return outcome


__all__ = [
    "AmbiguousPatchError",
    "ApplyOptions",
    "ContentLocator",
    "ContextValidationError",
    "DiffError",
    "FileApplyStatus",
    "FileDiff",
    "FileResult",
    "FileSystemPatchFileOps",
    "Hunk",
    "HunkConflict",
    "HunkLine",
    "HunkMatch",
    "HunkMismatchError",
    "LineRangeLocator",
    "LineSpan",
    "LineTag",
    "MalformedDiffError",
    "MatchMode",
    "Ordering",
    "OverlappingPatchError",
    "PatchError",
    "PatchFileOps",
    "PatchNotFoundError",
    "PatchOutcome",
    "PatchResult",
    "PatchSetResult",
    "PatchSpec",
    "PathLocks",
    "PatternLocator",
    "UnsafePathError",
    "ValidationReport",
    "apply_diff_to_file",
    "apply_file_diff",
    "apply_patch_set",
    "apply_patches",
    "apply_unified_diff",
    "check_unified_diff",
    "create_diff",
    "format_excerpt",
    "lint_diff",
    "locate",
    "locate_hunk",
    "parse_diff",
    "parse_file_diffs",
    "update_file",
    "validate_context",
]
