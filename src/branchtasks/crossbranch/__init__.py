"""Cross-branch task loading: index, hydrate, resolve.

Builds a cheap per-branch index of task files, reads only the files that
are new or newer than the local copies, and merges them with the local
task list.
"""

from branchtasks.crossbranch.hydrator import HydrationDecision, Hydrator, decide
from branchtasks.crossbranch.indexer import IndexBuilder, index_entries
from branchtasks.crossbranch.pipeline import RefreshOptions, TaskRefresher
from branchtasks.crossbranch.resolver import Resolver, task_sort_key

__all__ = [
    "IndexBuilder",
    "index_entries",
    "Hydrator",
    "HydrationDecision",
    "decide",
    "Resolver",
    "task_sort_key",
    "RefreshOptions",
    "TaskRefresher",
]
