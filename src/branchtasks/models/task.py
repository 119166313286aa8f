"""Data models for tasks and the cross-branch index."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

TaskSource = Literal["local", "local-branch", "remote", "completed"]

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


class TaskRecord(BaseModel):
    """Structured representation of one task file."""

    id: str = Field(..., description="Task id, upper-cased (e.g. TASK-12)")
    title: str = Field("", description="Task title")
    status: str = Field("To Do", description="Workflow status")
    priority: Optional[str] = Field(None, description="Priority: high, medium or low")
    source: TaskSource = Field("local", description="Where this copy was loaded from")
    branch: Optional[str] = Field(None, description="Branch the copy was read from")
    file_path: str = Field(..., description="Path of the task file")
    folder: Optional[str] = Field(None, description="Backlog folder: tasks, drafts, completed, archive")
    last_modified: Optional[datetime] = Field(None, description="Time used for conflict resolution")
    ordinal: Optional[float] = Field(None, description="Ordering key within a status column")

    # Codec-owned content, round-tripped but never interpreted here
    fields: Dict[str, Any] = Field(default_factory=dict, description="Other frontmatter fields")
    body: str = Field("", description="Markdown body after the frontmatter")

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        value = str(value).strip()
        if not value:
            raise ValueError("task id must not be empty")
        return value.upper()

    def modified_or_epoch(self) -> datetime:
        """Return the comparison time, treating unknown as the epoch."""
        return self.last_modified or EPOCH


class BranchDescriptor(BaseModel):
    """A branch and the time of its last commit."""

    name: str = Field(..., description="Short branch name (origin/x for remotes)")
    is_remote: bool = Field(False, description="Whether this is a remote-tracking branch")
    last_commit: datetime = Field(..., description="Committer date of the branch tip")


class IndexEntry(BaseModel):
    """A candidate task file on a branch. Carries no content."""

    branch: str
    path: str = Field(..., description="Repository-relative path of the file")
    modified: datetime = Field(..., description="Commit time of the last change to the file")
    task_id: str = Field(..., description="Id derived from the filename")
    is_remote: bool = False

    @property
    def cache_key(self) -> str:
        return f"{self.branch}:{self.path}"


class HydrationResult(BaseModel):
    """A task record read from another branch."""

    task_id: str
    branch: str
    record: TaskRecord
    timestamp: datetime = Field(..., description="Time used when comparing copies")


class CardData(BaseModel):
    """Minimal view of a card used for ordinal calculations."""

    task_id: str
    ordinal: Optional[float] = None


class OrdinalUpdate(BaseModel):
    """New ordinal to persist for a task."""

    task_id: str
    ordinal: float


class RefreshResult(BaseModel):
    """Outcome of one refresh of the task list."""

    tasks: List[TaskRecord] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    alternates: Dict[str, List[TaskRecord]] = Field(
        default_factory=dict,
        description="Read-only cross-branch copies of locally present tasks",
    )
    repository_available: bool = True
    cross_branch: bool = Field(False, description="Whether other branches were consulted")
    generation: int = 0
    stale: bool = Field(False, description="A newer refresh completed before this one")
