"""Branch discovery and recency filtering."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import structlog

from branchtasks.gitops.gateway import GitGateway
from branchtasks.models.task import BranchDescriptor

logger = structlog.get_logger(__name__)

PRIMARY_BRANCH_NAMES = ("main", "master")


class BranchEnumerator:
    """Lists branches worth scanning for tasks."""

    def __init__(self, gateway: GitGateway) -> None:
        self.gateway = gateway

    async def main_branch(self) -> str:
        """Return the primary branch name.

        Prefers ``main`` then ``master``; otherwise the alphabetically first
        local branch, or ``main`` if there are no branches at all.
        """
        branches = await self.gateway.list_branches(include_remote=False)
        return self._pick_main(branches)

    async def recent_branches(
        self,
        window_days: int,
        include_remote: bool = False,
        now: Optional[datetime] = None,
    ) -> List[BranchDescriptor]:
        """List branches whose last commit falls inside the recency window.

        The current branch is always included, whatever its age. Results are
        ordered current branch first, then the main branch, then the rest by
        most recent commit.

        Args:
            window_days: Size of the window in days
            include_remote: Also consider remote-tracking branches
            now: Reference time (defaults to the current UTC time)

        Returns:
            Branch descriptors in scan order
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=window_days)

        all_branches = await self.gateway.list_branches(include_remote=include_remote)
        current = await self.gateway.current_branch()

        selected = [
            b for b in all_branches if b.last_commit > cutoff or (b.name == current and not b.is_remote)
        ]

        main = self._pick_main(all_branches)

        def scan_order(branch: BranchDescriptor):
            if branch.name == current and not branch.is_remote:
                rank = 0
            elif branch.name == main and not branch.is_remote:
                rank = 1
            else:
                rank = 2
            return (rank, -branch.last_commit.timestamp(), branch.name)

        selected.sort(key=scan_order)
        logger.debug(
            "branches_selected",
            total=len(all_branches),
            selected=len(selected),
            window_days=window_days,
            current=current,
        )
        return selected

    def _pick_main(self, branches: List[BranchDescriptor]) -> str:
        names = sorted(b.name for b in branches if not b.is_remote)
        for candidate in PRIMARY_BRANCH_NAMES:
            if candidate in names:
                return candidate
        return names[0] if names else PRIMARY_BRANCH_NAMES[0]
