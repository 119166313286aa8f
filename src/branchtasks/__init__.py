"""Cross-branch task index and hydration engine for Backlog.md style boards."""

from branchtasks.cache import ParseCache
from branchtasks.codec import MarkdownTaskCodec, TaskCodec
from branchtasks.crossbranch import RefreshOptions, Resolver, TaskRefresher
from branchtasks.gitops import BranchEnumerator, GitCliGateway, GitGateway, InMemoryGateway
from branchtasks.local import LocalTaskStore, TaskWriter
from branchtasks.models import BoardConfig, RefreshResult, Settings, TaskRecord

__version__ = "0.1.0"

__all__ = [
    "BoardConfig",
    "BranchEnumerator",
    "GitCliGateway",
    "GitGateway",
    "InMemoryGateway",
    "LocalTaskStore",
    "MarkdownTaskCodec",
    "ParseCache",
    "RefreshOptions",
    "RefreshResult",
    "Resolver",
    "Settings",
    "TaskCodec",
    "TaskRecord",
    "TaskRefresher",
    "TaskWriter",
]
