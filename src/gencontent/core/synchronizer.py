"""
Disk synchronizer for generated content.
[CTX:PBI-1:1-5:SYNC]

Reconciles an output directory with one target's content map:
- Creates missing directories and files
- Replaces changed files only when their record allows overwriting
- Never touches files whose content is already identical, so file watchers
  are not triggered by a no-op run
- For clean targets, removes every file and empty directory the target did
  not declare

Per-file work is independent and may run concurrently (see sync_async); the
clean pass always runs after every write for the target has finished.
"""
import asyncio
import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple, Union

from .errors import SharedOutputRootError
from .registry import Content, ContentRecord, GeneratedContentRegistry, Target, TargetRef
from .telemetry import SyncAction, TelemetryRecorder, create_event, get_recorder

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

_Entry = Tuple[str, Path, ContentRecord]


@dataclass
class SyncReport:
    """
    Outcome of one sync() call.

    All paths are relative to output_root and normalized.
    """
    target: str
    output_root: Path
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    protected: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    removed_dirs: List[str] = field(default_factory=list)

    @property
    def written(self) -> List[str]:
        """Files whose content was written during this run."""
        return sorted(self.created + self.updated)

    def add(self, path: str, action: SyncAction) -> None:
        bucket = {
            SyncAction.CREATE: self.created,
            SyncAction.UPDATE: self.updated,
            SyncAction.UNCHANGED: self.unchanged,
            SyncAction.PROTECTED: self.protected,
            SyncAction.DELETE: self.deleted,
            SyncAction.REMOVE_DIR: self.removed_dirs,
        }[action]
        bucket.append(path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "output_root": str(self.output_root),
            "created": list(self.created),
            "updated": list(self.updated),
            "unchanged": list(self.unchanged),
            "protected": list(self.protected),
            "deleted": list(self.deleted),
            "removed_dirs": list(self.removed_dirs),
        }


def _encode(content: Content) -> bytes:
    if isinstance(content, bytes):
        return content
    return content.encode("utf-8")


def _normalize(path: str) -> str:
    """
    Normalize a declared output path.

    Raises:
        ValueError: If the path is absolute or leaves the output root
    """
    if os.path.isabs(path):
        raise ValueError(f'Output path "{path}" must be relative to the output root')
    normalized = os.path.normpath(path)
    if normalized in (os.curdir, os.pardir) or normalized.startswith(os.pardir + os.sep):
        raise ValueError(f'Output path "{path}" escapes the output root')
    return normalized


def _overlaps(first: Path, second: Path) -> bool:
    return first == second or first in second.parents or second in first.parents


class DiskSynchronizer:
    """
    Writes the content maps of a GeneratedContentRegistry to disk.

    Features:
    - Idempotent: a second run over an unchanged map writes nothing
    - Honors the per-file overwrite flag
    - Clean targets mirror their content map exactly
    - Bounded concurrency for async synchronization
    """

    def __init__(
        self,
        registry: GeneratedContentRegistry,
        *,
        max_concurrency: int = 4,
        recorder: Optional[TelemetryRecorder] = None,
    ):
        """
        Initialize synchronizer.

        Args:
            registry: Registry whose content maps are synchronized
            max_concurrency: Maximum parallel file operations in sync_async
            recorder: Telemetry recorder (defaults to the global recorder)
        """
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be positive")
        self.registry = registry
        self.max_concurrency = max_concurrency
        self._recorder = recorder

        # Roots synchronized so far, as (resolved root, target name)
        self._claims: Set[Tuple[Path, str]] = set()
        self._claims_lock = threading.Lock()

    @property
    def recorder(self) -> TelemetryRecorder:
        return self._recorder or get_recorder()

    # [CTX:PBI-1:1-5:SYNC] Output root ownership
    def _claim(self, target: Target, output_root: Path) -> None:
        """
        Record that target writes into output_root.

        Raises:
            SharedOutputRootError: If a clean target and another target would
                share overlapping output roots
        """
        resolved = output_root.resolve()
        with self._claims_lock:
            for other_root, other_name in self._claims:
                if other_name == target.name or not _overlaps(resolved, other_root):
                    continue
                if target.clean or self.registry.resolve_target(other_name).clean:
                    raise SharedOutputRootError(resolved, target.name, other_name, other_root)
            self._claims.add((resolved, target.name))

    def _prepare(
        self,
        target: TargetRef,
        output_root: PathLike,
    ) -> Tuple[Target, Path, List[_Entry]]:
        resolved = self.registry.resolve_target(target)
        records: Mapping[str, ContentRecord] = self.registry.content(resolved)
        root = Path(output_root)
        entries: List[_Entry] = []
        for path, record in records.items():
            relative = _normalize(path)
            entries.append((relative, root / relative, record))
        entries.sort(key=lambda entry: entry[0])
        self._claim(resolved, root)
        return resolved, root, entries

    @staticmethod
    def _ensure_dir(directory: Path) -> None:
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f'Error creating directory "{directory}": {e}')
            raise

    def _sync_file(
        self,
        target: Target,
        root: Path,
        relative: str,
        destination: Path,
        record: ContentRecord,
    ) -> SyncAction:
        """Bring one file in line with its record and return the decision taken."""
        self._ensure_dir(destination.parent)
        data = _encode(record.content)

        # lexists: a dangling link still occupies the destination
        if not record.overwrite and os.path.lexists(destination):
            action = SyncAction.PROTECTED
        else:
            try:
                existing: Optional[bytes] = destination.read_bytes()
            except FileNotFoundError:
                existing = None
            except OSError as e:
                logger.error(f'Error reading file "{destination}": {e}')
                raise

            if existing == data:
                action = SyncAction.UNCHANGED
            else:
                action = SyncAction.CREATE if existing is None else SyncAction.UPDATE
                try:
                    if existing is None and destination.is_symlink():
                        # Replace the dangling link itself, never its target
                        destination.unlink()
                        action = SyncAction.UPDATE
                    destination.write_bytes(data)
                except OSError as e:
                    logger.error(f'Error writing file "{destination}": {e}')
                    raise

        written = len(data) if action in (SyncAction.CREATE, SyncAction.UPDATE) else 0
        self.recorder.record(create_event(target.name, root, relative, action, written))
        return action

    def _clean(self, target: Target, root: Path, keep: Set[str], report: SyncReport) -> None:
        """Remove every file under root not in keep, then every empty directory."""
        for dirpath, dirnames, filenames in os.walk(root, topdown=False):
            directory = Path(dirpath)
            for name in filenames:
                path = directory / name
                relative = os.path.normpath(os.path.relpath(path, root))
                if relative in keep:
                    continue
                self._remove(path, os.unlink)
                self.recorder.record(create_event(target.name, root, relative, SyncAction.DELETE))
                report.add(relative, SyncAction.DELETE)

            for name in dirnames:
                path = directory / name
                relative = os.path.normpath(os.path.relpath(path, root))
                if path.is_symlink():
                    # os.walk does not descend into directory links
                    if relative not in keep:
                        self._remove(path, os.unlink)
                        self.recorder.record(
                            create_event(target.name, root, relative, SyncAction.DELETE)
                        )
                        report.add(relative, SyncAction.DELETE)
                    continue
                if any(path.iterdir()):
                    continue
                self._remove(path, os.rmdir)
                self.recorder.record(
                    create_event(target.name, root, relative, SyncAction.REMOVE_DIR)
                )
                report.add(relative, SyncAction.REMOVE_DIR)

    @staticmethod
    def _remove(path: Path, remove) -> None:
        try:
            remove(path)
        except OSError as e:
            logger.error(f'Error removing "{path}": {e}')
            raise

    def _finish(self, report: SyncReport) -> SyncReport:
        for paths in (report.deleted, report.removed_dirs):
            paths.sort()
        logger.info(
            f"Synchronized target {report.target} to {report.output_root}: "
            f"{len(report.created)} created, {len(report.updated)} updated, "
            f"{len(report.unchanged)} unchanged, {len(report.protected)} protected, "
            f"{len(report.deleted)} deleted"
        )
        return report

    def sync(self, output_root: PathLike, target: TargetRef = None) -> SyncReport:
        """
        Synchronize a target's content map to output_root.

        Args:
            output_root: Output root directory (created if missing)
            target: Target name or Target; None selects the default target

        Returns:
            SyncReport describing every decision

        Raises:
            UnknownTargetError: If target is not registered
            SharedOutputRootError: If a clean target would share its root
            ValueError: If a declared path is absolute or escapes output_root
            OSError: On any filesystem failure; earlier writes are kept
        """
        resolved, root, entries = self._prepare(target, output_root)
        self._ensure_dir(root)

        report = SyncReport(resolved.name, root)
        for relative, destination, record in entries:
            action = self._sync_file(resolved, root, relative, destination, record)
            report.add(relative, action)

        if resolved.clean:
            self._clean(resolved, root, {relative for relative, _, _ in entries}, report)
        return self._finish(report)

    async def sync_async(self, output_root: PathLike, target: TargetRef = None) -> SyncReport:
        """
        Asynchronous variant of sync().

        File operations run in worker threads, at most max_concurrency at a
        time. Produces the same SyncReport as sync().
        """
        resolved, root, entries = self._prepare(target, output_root)
        await asyncio.to_thread(self._ensure_dir, root)

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def sync_entry(entry: _Entry) -> SyncAction:
            relative, destination, record = entry
            async with semaphore:
                return await asyncio.to_thread(
                    self._sync_file, resolved, root, relative, destination, record
                )

        actions = await asyncio.gather(*(sync_entry(entry) for entry in entries))

        report = SyncReport(resolved.name, root)
        for (relative, _, _), action in zip(entries, actions):
            report.add(relative, action)

        if resolved.clean:
            keep = {relative for relative, _, _ in entries}
            await asyncio.to_thread(self._clean, resolved, root, keep, report)
        return self._finish(report)
