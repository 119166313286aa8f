"""Working-tree task store and writer."""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog

from branchtasks.cache import ParseCache, file_mtime
from branchtasks.codec import MarkdownTaskCodec, TaskCodec
from branchtasks.errors import DecodeFailure
from branchtasks.models.task import OrdinalUpdate, TaskRecord

logger = structlog.get_logger(__name__)

TASKS_FOLDER = "tasks"
DRAFTS_FOLDER = "drafts"
COMPLETED_FOLDER = "completed"
ARCHIVE_FOLDER = "archive/tasks"

# Precedence order when the same id shows up in more than one folder
FOLDERS = (TASKS_FOLDER, DRAFTS_FOLDER, COMPLETED_FOLDER, ARCHIVE_FOLDER)


class LocalTaskStore:
    """Reads task files from the backlog directory of the working tree.

    Decoded records are memoized in the shared ParseCache, keyed by absolute
    path and checked against the file's modification time on every read.
    """

    def __init__(
        self,
        backlog_root: Path,
        cache: Optional[ParseCache] = None,
        codec: Optional[TaskCodec] = None,
    ) -> None:
        self.backlog_root = Path(backlog_root)
        self.cache = cache if cache is not None else ParseCache()
        self.codec = codec or MarkdownTaskCodec()

    def folder_path(self, folder: str) -> Path:
        return self.backlog_root / folder

    def load_folder(self, folder: str) -> Tuple[List[TaskRecord], List[str]]:
        """Load every task file in one backlog folder.

        Files the codec rejects are skipped and reported as warnings.

        Args:
            folder: One of FOLDERS

        Returns:
            Tuple of (records sorted by filename, warnings)
        """
        folder_path = self.folder_path(folder)
        scope = str(folder_path) + os.sep
        if not folder_path.is_dir():
            self.cache.prune(scope, [])
            return [], []

        files = sorted(p for p in folder_path.iterdir() if p.is_file() and p.suffix == ".md")
        self.cache.prune(scope, [str(p) for p in files])

        records: List[TaskRecord] = []
        warnings: List[str] = []
        for file_path in files:
            record, warning = self._load_file(file_path, folder)
            if warning:
                warnings.append(warning)
            if record is not None:
                records.append(record)

        logger.debug("local_folder_loaded", folder=folder, files=len(files), tasks=len(records))
        return records, warnings

    def load(self, folders: Iterable[str] = FOLDERS) -> Tuple[List[TaskRecord], List[str]]:
        """Load several folders, keeping the first record seen for each id."""
        records: List[TaskRecord] = []
        warnings: List[str] = []
        seen = set()
        for folder in folders:
            folder_records, folder_warnings = self.load_folder(folder)
            warnings.extend(folder_warnings)
            for record in folder_records:
                if record.id in seen:
                    logger.warning("duplicate_local_task", task_id=record.id, path=record.file_path)
                    warnings.append(f"Duplicate task id {record.id} in {record.file_path} ignored")
                    continue
                seen.add(record.id)
                records.append(record)
        return records, warnings

    def tasks(self) -> List[TaskRecord]:
        return self.load_folder(TASKS_FOLDER)[0]

    def drafts(self) -> List[TaskRecord]:
        return self.load_folder(DRAFTS_FOLDER)[0]

    def completed(self) -> List[TaskRecord]:
        return self.load_folder(COMPLETED_FOLDER)[0]

    def archived(self) -> List[TaskRecord]:
        return self.load_folder(ARCHIVE_FOLDER)[0]

    def find(self, task_id: str) -> Optional[TaskRecord]:
        """Find a task by id, searching folders in precedence order."""
        task_id = task_id.upper()
        for folder in FOLDERS:
            for record in self.load_folder(folder)[0]:
                if record.id == task_id:
                    return record
        return None

    def _load_file(self, file_path: Path, folder: str) -> Tuple[Optional[TaskRecord], Optional[str]]:
        key = str(file_path)
        modified = file_mtime(key)
        if modified is None:
            return None, None

        cached = self.cache.get(key, modified)
        if cached is not None:
            return cached.model_copy(deep=True), None

        try:
            content = file_path.read_text(encoding="utf-8")
            record = self.codec.decode(content, key)
        except DecodeFailure as e:
            logger.warning("local_decode_failed", path=key, reason=e.reason)
            return None, str(e)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("local_read_failed", path=key, error=str(e))
            return None, f"Could not read {key}: {e}"

        update: Dict[str, Any] = {
            "folder": folder,
            "source": "completed" if folder == COMPLETED_FOLDER else "local",
            "last_modified": modified,
        }
        if folder == DRAFTS_FOLDER:
            update["status"] = "Draft"
        record = record.model_copy(update=update)

        self.cache.put(key, modified, record)
        return record.model_copy(deep=True), None


class TaskWriter:
    """Writes changes back to task files.

    Every write invalidates the parse cache entry of the file it touched;
    moves between folders invalidate the whole cache.
    """

    _RECORD_FIELDS = ("title", "status", "priority", "ordinal")

    def __init__(self, store: LocalTaskStore) -> None:
        self.store = store

    @property
    def cache(self) -> ParseCache:
        return self.store.cache

    def update_task(self, task_id: str, **updates: Any) -> TaskRecord:
        """Apply field updates to a task file.

        Args:
            task_id: Task to update
            **updates: title, status, priority or ordinal, or any other
                frontmatter field

        Returns:
            The updated record

        Raises:
            KeyError: If no local task has this id
        """
        record = self.store.find(task_id)
        if record is None:
            raise KeyError(f"Task {task_id} not found")

        own = {k: v for k, v in updates.items() if k in self._RECORD_FIELDS}
        extra = {k: v for k, v in updates.items() if k not in self._RECORD_FIELDS}
        fields = dict(record.fields)
        fields.update(extra)
        updated = record.model_copy(update={**own, "fields": fields})

        self._write(Path(record.file_path), self.store.codec.encode(updated))
        logger.info("task_updated", task_id=updated.id, fields=sorted(updates))
        return updated

    def update_status(self, task_id: str, status: str) -> TaskRecord:
        return self.update_task(task_id, status=status)

    def apply_ordinal_updates(self, updates: Iterable[OrdinalUpdate]) -> List[TaskRecord]:
        """Persist a batch of ordinal updates."""
        return [self.update_task(u.task_id, ordinal=u.ordinal) for u in updates]

    def archive_task(self, task_id: str) -> Path:
        """Move a task file into the archive folder.

        Returns:
            New path of the file
        """
        record = self.store.find(task_id)
        if record is None:
            raise KeyError(f"Task {task_id} not found")

        source = Path(record.file_path)
        target_dir = self.store.folder_path(ARCHIVE_FOLDER)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / source.name
        try:
            shutil.move(str(source), str(target))
        finally:
            self.cache.invalidate_all()
        logger.info("task_archived", task_id=record.id, path=str(target))
        return target

    def _write(self, path: Path, content: str) -> None:
        """Atomically replace a file and invalidate its cache entry."""
        fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".task_", suffix=".md.tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(temp_path, path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise
        finally:
            self.cache.invalidate(str(path))
