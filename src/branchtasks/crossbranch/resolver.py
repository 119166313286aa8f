"""Merge local tasks with copies hydrated from other branches."""

import re
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from branchtasks.models.config import DEFAULT_STATUSES, ResolutionStrategy
from branchtasks.models.task import HydrationResult, TaskRecord

logger = structlog.get_logger(__name__)

_NUMBER = re.compile(r"(\d+)")


def task_sort_key(task_id: str) -> Tuple:
    """Natural sort key so TASK-2 sorts before TASK-10."""
    parts = _NUMBER.split(task_id)
    return tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in parts if p)


class Resolver:
    """Resolves which copy of each task id survives a refresh.

    The local copy of a task always survives. Copies from other branches only
    fill in ids the local branch does not have; for ids present locally they
    are kept aside as read-only alternates.
    """

    def __init__(self, status_order: Optional[Sequence[str]] = None) -> None:
        """Initialize the resolver.

        Args:
            status_order: Statuses from least to most progressed, used by
                ``most_progressed``
        """
        self.status_order = list(status_order) if status_order is not None else ["Draft"] + DEFAULT_STATUSES
        self._rank = {status.lower(): i for i, status in enumerate(self.status_order)}

    def merge(
        self,
        local_tasks: Sequence[TaskRecord],
        results: Sequence[HydrationResult],
        strategy: ResolutionStrategy = "most_recent",
    ) -> List[TaskRecord]:
        """Produce one record per id, ordered by id.

        Args:
            local_tasks: Tasks from the working tree, in precedence order
            results: Copies hydrated from other branches
            strategy: Conflict policy for ids that only exist on branches

        Returns:
            Merged records sorted by natural id order
        """
        merged: Dict[str, TaskRecord] = {}
        for task in local_tasks:
            merged.setdefault(task.id, task)

        for task_id, copies in self._branch_groups(results).items():
            if task_id in merged:
                continue
            merged[task_id] = self.pick(copies, strategy).record

        return sorted(merged.values(), key=lambda task: task_sort_key(task.id))

    def alternates(
        self,
        local_tasks: Sequence[TaskRecord],
        results: Sequence[HydrationResult],
        strategy: ResolutionStrategy = "most_recent",
    ) -> Dict[str, List[TaskRecord]]:
        """Branch copies of locally present ids, best candidate first."""
        local_ids = {task.id for task in local_tasks}
        key = self._preference_key(strategy)
        alternates = {}
        for task_id, copies in self._branch_groups(results).items():
            if task_id in local_ids:
                alternates[task_id] = [c.record for c in sorted(copies, key=key)]
        return alternates

    def pick(self, copies: Sequence[HydrationResult], strategy: ResolutionStrategy) -> HydrationResult:
        """Choose the winning copy under a strategy.

        Raises:
            ValueError: If there are no copies or the strategy is unknown
        """
        if not copies:
            raise ValueError("No copies to resolve")
        return min(copies, key=self._preference_key(strategy))

    def rank(self, status: str) -> int:
        """Position of a status in the progression; unknown statuses rank lowest."""
        return self._rank.get(status.lower(), -1)

    def _preference_key(self, strategy: ResolutionStrategy) -> Callable[[HydrationResult], Tuple]:
        # Smaller keys are preferred; branch name keeps ties deterministic
        if strategy == "most_recent":
            return lambda c: (-c.timestamp.timestamp(), c.branch)
        if strategy == "most_progressed":
            return lambda c: (-self.rank(c.record.status), -c.timestamp.timestamp(), c.branch)
        raise ValueError(f"Unknown resolution strategy: {strategy}")

    def _branch_groups(self, results: Sequence[HydrationResult]) -> Dict[str, List[HydrationResult]]:
        groups: Dict[str, List[HydrationResult]] = {}
        for result in results:
            groups.setdefault(result.record.id, []).append(result)
        return groups
