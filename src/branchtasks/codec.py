"""Task file codec: Markdown with YAML frontmatter."""

import re
from abc import ABC, abstractmethod
from pathlib import PurePath
from typing import Any, Dict, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from branchtasks.errors import DecodeFailure
from branchtasks.models.task import TaskRecord

TASK_ID_PATTERN = re.compile(r"^([a-zA-Z]+-\d+(?:\.\d+)*)")

_STATUS_GLYPHS = re.compile(r"^[○◒●◑]\s*")
_PRIORITIES = ("high", "medium", "low")
_OWN_KEYS = {"id", "title", "status", "priority", "ordinal"}


def task_id_from_filename(filename: str) -> Optional[str]:
    """Extract an upper-cased task id from a filename like ``task-1 - Title.md``."""
    match = TASK_ID_PATTERN.match(PurePath(filename).name)
    return match.group(1).upper() if match else None


class TaskCodec(ABC):
    """Turns raw task file content into records and back."""

    @abstractmethod
    def decode(self, content: Union[str, bytes], path: str) -> TaskRecord:
        """Parse file content.

        Raises:
            DecodeFailure: If the content is not a valid task file
        """

    @abstractmethod
    def encode(self, record: TaskRecord) -> str:
        """Serialize a record back to file content."""


class MarkdownTaskCodec(TaskCodec):
    """Codec for Backlog.md style task files."""

    def decode(self, content: Union[str, bytes], path: str) -> TaskRecord:
        if isinstance(content, bytes):
            try:
                content = content.decode("utf-8")
            except UnicodeDecodeError as e:
                raise DecodeFailure(path, "not valid UTF-8") from e

        frontmatter, body = self._split(content, path)

        task_id = frontmatter.get("id") or task_id_from_filename(path)
        if not task_id:
            raise DecodeFailure(path, "no task id in frontmatter or filename")

        title = frontmatter.get("title")
        if not title:
            title = self._heading_title(body)
        if not title:
            raise DecodeFailure(path, "missing title")

        status = _STATUS_GLYPHS.sub("", str(frontmatter.get("status") or "To Do")).strip()

        priority = frontmatter.get("priority")
        if priority is not None:
            priority = str(priority).strip().lower()
            if priority not in _PRIORITIES:
                priority = None

        # YAML allows non-string keys such as dates or numbers
        fields = {str(k): v for k, v in frontmatter.items() if k not in _OWN_KEYS}

        ordinal = frontmatter.get("ordinal")
        if isinstance(ordinal, bool) or not isinstance(ordinal, (int, float)):
            ordinal = None

        try:
            return TaskRecord(
                id=str(task_id),
                title=str(title).strip(),
                status=status or "To Do",
                priority=priority,
                file_path=path,
                ordinal=float(ordinal) if ordinal is not None else None,
                fields=fields,
                body=body,
            )
        except ValidationError as e:
            raise DecodeFailure(path, f"invalid task fields: {e}") from e

    def encode(self, record: TaskRecord) -> str:
        data: Dict[str, Any] = {"id": record.id, "title": record.title, "status": record.status}
        if record.priority:
            data["priority"] = record.priority
        if record.ordinal is not None:
            ordinal = record.ordinal
            data["ordinal"] = int(ordinal) if float(ordinal).is_integer() else ordinal
        for key, value in record.fields.items():
            if key not in _OWN_KEYS:
                data[key] = value

        frontmatter = yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)
        return f"---\n{frontmatter}---\n{record.body}"

    def _split(self, content: str, path: str) -> Tuple[Dict[str, Any], str]:
        lines = content.split("\n")
        if not lines or lines[0].strip() != "---":
            return {}, content

        for end in range(1, len(lines)):
            if lines[end].strip() == "---":
                break
        else:
            raise DecodeFailure(path, "unterminated frontmatter")

        try:
            data = yaml.safe_load("\n".join(lines[1:end]))
        except yaml.YAMLError as e:
            raise DecodeFailure(path, f"invalid YAML frontmatter: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise DecodeFailure(path, "frontmatter is not a mapping")
        return data, "\n".join(lines[end + 1:])

    def _heading_title(self, body: str) -> Optional[str]:
        for line in body.split("\n"):
            match = re.match(r"^#\s+(?:[a-zA-Z]+-\d+\s*-\s*)?(.+)$", line.strip())
            if match:
                return match.group(1).strip()
        return None
