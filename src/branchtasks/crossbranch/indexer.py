"""Cheap per-branch index of task files."""

import asyncio
from datetime import datetime
from typing import Dict, Iterable, List, Sequence, Tuple

import structlog

from branchtasks.codec import task_id_from_filename
from branchtasks.crossbranch.concurrency import gather_bounded
from branchtasks.errors import GatewayError
from branchtasks.gitops.gateway import GitGateway, normalize_repo_path
from branchtasks.models.task import EPOCH, BranchDescriptor, IndexEntry

logger = structlog.get_logger(__name__)

DEFAULT_INDEX_CONCURRENCY = 5

BranchIndex = Dict[str, Dict[str, datetime]]


class IndexBuilder:
    """Builds a map of candidate task paths to modification times per branch.

    Only listings and the batched timestamp query are issued; file content
    is never read here.
    """

    def __init__(
        self,
        gateway: GitGateway,
        backlog_dir: str = "backlog",
        concurrency: int = DEFAULT_INDEX_CONCURRENCY,
    ) -> None:
        self.gateway = gateway
        self.backlog_dir = normalize_repo_path(backlog_dir)
        self.concurrency = concurrency

    async def build_index(
        self,
        branches: Sequence[BranchDescriptor],
        path_prefixes: Sequence[str],
    ) -> Tuple[BranchIndex, List[str]]:
        """Index several branches with bounded concurrency.

        A branch whose queries fail or time out is left out and reported as a
        warning; the other branches are unaffected.

        Args:
            branches: Branches to index
            path_prefixes: Repository-relative directories holding task files

        Returns:
            Tuple of (branch -> {path: modified time}, warnings)
        """
        results = await gather_bounded(
            self.concurrency,
            branches,
            lambda branch: self.index_branch(branch.name, path_prefixes),
        )

        index: BranchIndex = {}
        warnings: List[str] = []
        for branch, result in zip(branches, results):
            if isinstance(result, GatewayError):
                logger.warning("branch_index_failed", branch=branch.name, error=str(result))
                warnings.append(f"Skipped branch {branch.name}: {result}")
                continue
            if isinstance(result, BaseException):
                raise result
            index[branch.name] = result

        logger.info(
            "index_built",
            branches=len(branches),
            indexed=len(index),
            entries=sum(len(paths) for paths in index.values()),
        )
        return index, warnings

    async def index_branch(self, branch: str, path_prefixes: Sequence[str]) -> Dict[str, datetime]:
        """Index one branch.

        Raises:
            GatewayError: If any query for the branch fails
        """
        if not await self.gateway.path_exists(branch, self.backlog_dir):
            return {}

        paths: Dict[str, datetime] = {}
        for prefix in path_prefixes:
            prefix = normalize_repo_path(prefix)
            filenames, modified = await asyncio.gather(
                self.gateway.list_files(branch, prefix),
                self.gateway.file_modified_map(branch, prefix),
            )
            for filename in filenames:
                if not filename.endswith(".md") or task_id_from_filename(filename) is None:
                    continue
                paths[f"{prefix}/{filename}"] = modified.get(filename, EPOCH)
        return paths


def index_entries(
    index: BranchIndex,
    remote_branches: Iterable[str] = (),
) -> List[IndexEntry]:
    """Flatten a branch index into entries, in branch then path order."""
    remote = set(remote_branches)
    entries = []
    for branch in sorted(index):
        for path in sorted(index[branch]):
            entries.append(
                IndexEntry(
                    branch=branch,
                    path=path,
                    modified=index[branch][path],
                    task_id=task_id_from_filename(path),
                    is_remote=branch in remote,
                )
            )
    return entries
