"""Refresh pipeline: local tasks merged with tasks from other branches."""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

import structlog
from pydantic import BaseModel, Field

from branchtasks.cache import ParseCache
from branchtasks.codec import MarkdownTaskCodec, TaskCodec
from branchtasks.crossbranch.hydrator import HydrationDecision, Hydrator, decide
from branchtasks.crossbranch.indexer import IndexBuilder, index_entries
from branchtasks.crossbranch.resolver import Resolver
from branchtasks.errors import GatewayError, RepositoryUnavailable
from branchtasks.gitops.branches import BranchEnumerator
from branchtasks.gitops.gateway import GitCliGateway, GitGateway
from branchtasks.local import (
    ARCHIVE_FOLDER,
    COMPLETED_FOLDER,
    DRAFTS_FOLDER,
    TASKS_FOLDER,
    LocalTaskStore,
)
from branchtasks.models.config import BoardConfig, Settings
from branchtasks.models.task import EPOCH, RefreshResult, TaskRecord

logger = structlog.get_logger(__name__)

# Folders read from other branches
CROSS_BRANCH_FOLDERS = (TASKS_FOLDER,)


class RefreshOptions(BaseModel):
    """Per-call options for a refresh."""

    config: BoardConfig = Field(default_factory=BoardConfig)
    include_drafts: bool = True
    include_completed: bool = True
    include_archived: bool = False
    now: Optional[datetime] = Field(None, description="Reference time for the branch window")

    @classmethod
    def from_raw_config(cls, raw: Optional[Mapping[str, Any]], **kwargs: Any) -> "RefreshOptions":
        return cls(config=BoardConfig.from_raw(raw), **kwargs)

    def folders(self) -> List[str]:
        folders = [TASKS_FOLDER]
        if self.include_drafts:
            folders.append(DRAFTS_FOLDER)
        if self.include_completed:
            folders.append(COMPLETED_FOLDER)
        if self.include_archived:
            folders.append(ARCHIVE_FOLDER)
        return folders


class TaskRefresher:
    """Builds the unified task list for a workspace.

    With cross-branch loading disabled only the working tree is read. When it
    is enabled, recent branches are indexed, newer or unknown task files are
    hydrated, and the results are merged with the local tasks. Any failure
    on the cross-branch side degrades to the local list plus warnings.
    """

    def __init__(
        self,
        workspace_root: Path,
        gateway: Optional[GitGateway] = None,
        cache: Optional[ParseCache] = None,
        codec: Optional[TaskCodec] = None,
        settings: Optional[Settings] = None,
        status_order: Optional[Sequence[str]] = None,
    ) -> None:
        """Initialize the refresher.

        Args:
            workspace_root: Repository working tree holding the backlog directory
            gateway: Git gateway (defaults to the git CLI gateway)
            cache: Parse cache, shared with any writer of task files
            codec: Task file codec
            settings: Runtime settings (defaults to environment)
            status_order: Status progression for ``most_progressed``; defaults
                to the board config's statuses
        """
        self.settings = settings or Settings()
        self.workspace_root = Path(workspace_root)
        self.backlog_dir = self.settings.backlog_dir.strip("/")
        self.cache = cache if cache is not None else ParseCache()
        self.codec = codec or MarkdownTaskCodec()
        self.gateway = gateway or GitCliGateway(
            self.workspace_root,
            timeout=self.settings.git_timeout_seconds,
            git_executable=self.settings.git_executable,
        )
        self.status_order = list(status_order) if status_order is not None else None

        self.store = LocalTaskStore(self.workspace_root / self.backlog_dir, self.cache, self.codec)
        self.enumerator = BranchEnumerator(self.gateway)
        self.indexer = IndexBuilder(self.gateway, self.backlog_dir, self.settings.index_concurrency)
        self.hydrator = Hydrator(
            self.gateway,
            self.codec,
            self.cache,
            workspace_root=self.workspace_root,
            concurrency=self.settings.hydrate_concurrency,
        )

        self.latest: Optional[RefreshResult] = None
        self._generation = 0
        self._completed_generation = 0

    async def refresh(self, options: Optional[RefreshOptions] = None) -> RefreshResult:
        """Load and merge tasks.

        Never raises for git or per-file problems; those come back as
        warnings. If a newer refresh finished first, the returned result is
        marked ``stale`` and ``latest`` keeps the newer one.

        Args:
            options: Refresh options (defaults to local-only)

        Returns:
            RefreshResult with the merged tasks
        """
        options = options or RefreshOptions()
        config = options.config
        self._generation += 1
        generation = self._generation

        folders = options.folders()
        local, warnings = self.store.load(folders)
        resolver = Resolver(self.status_order or config.status_order())
        strategy = config.task_resolution_strategy

        if not config.check_active_branches:
            result = RefreshResult(tasks=resolver.merge(local, [], strategy), warnings=warnings)
            return self._complete(result, generation)

        # Let the caller's event loop breathe between phases
        await asyncio.sleep(0)

        try:
            result = await self._refresh_cross_branch(local, warnings, folders, config, resolver, options.now)
        except RepositoryUnavailable as e:
            logger.info("repository_unavailable", root=str(self.workspace_root))
            result = RefreshResult(
                tasks=resolver.merge(local, [], strategy),
                warnings=warnings + [str(e)],
                repository_available=False,
            )
        except GatewayError as e:
            logger.warning("cross_branch_refresh_failed", error=str(e))
            result = RefreshResult(
                tasks=resolver.merge(local, [], strategy),
                warnings=warnings + [f"Cross-branch loading failed: {e}"],
            )
        return self._complete(result, generation)

    async def _refresh_cross_branch(
        self,
        local: List[TaskRecord],
        warnings: List[str],
        folders: Sequence[str],
        config: BoardConfig,
        resolver: Resolver,
        now: Optional[datetime],
    ) -> RefreshResult:
        strategy = config.task_resolution_strategy
        if not await self.gateway.is_repository():
            raise RepositoryUnavailable(
                f"{self.workspace_root} is not a git repository; showing local tasks only"
            )

        current = await self.gateway.current_branch()
        branches = await self.enumerator.recent_branches(
            config.active_branch_days, include_remote=config.remote_operations, now=now
        )
        local, stamp_warnings = await self._stamp_local(local, current, folders)
        warnings = warnings + stamp_warnings

        others = [b for b in branches if b.is_remote or b.name != current]
        logger.info("refresh_scanning", current=current, branches=[b.name for b in others])
        prefixes = [f"{self.backlog_dir}/{folder}" for folder in CROSS_BRANCH_FOLDERS]
        self._forget_branches({b.name for b in others}, prefixes)
        if not others:
            return RefreshResult(tasks=resolver.merge(local, [], strategy), warnings=warnings, cross_branch=True)

        await asyncio.sleep(0)
        index, index_warnings = await self.indexer.build_index(others, prefixes)
        warnings += index_warnings
        self._prune_branch_cache(index, prefixes)

        entries = index_entries(index, remote_branches=[b.name for b in others if b.is_remote])
        known = {task.id: task.last_modified or EPOCH for task in local}
        to_fetch = [e for e in entries if decide(e, known.get(e.task_id)) is HydrationDecision.FETCH]
        logger.info("hydration_planned", indexed=len(entries), fetching=len(to_fetch))

        await asyncio.sleep(0)
        results, hydrate_warnings = await self.hydrator.hydrate(to_fetch)
        warnings += hydrate_warnings

        await asyncio.sleep(0)
        return RefreshResult(
            tasks=resolver.merge(local, results, strategy),
            alternates=resolver.alternates(local, results, strategy),
            warnings=warnings,
            cross_branch=True,
        )

    async def _stamp_local(
        self,
        local: List[TaskRecord],
        current: str,
        folders: Sequence[str],
    ) -> Tuple[List[TaskRecord], List[str]]:
        """Tag local tasks with the current branch and their git commit times."""
        maps = await asyncio.gather(
            *(self.gateway.file_modified_map(current, f"{self.backlog_dir}/{folder}") for folder in folders),
            return_exceptions=True,
        )

        committed: Dict[Tuple[str, str], datetime] = {}
        warnings: List[str] = []
        for folder, modified in zip(folders, maps):
            if isinstance(modified, GatewayError):
                logger.warning("local_timestamps_failed", folder=folder, error=str(modified))
                warnings.append(f"Could not read git timestamps for {folder}: {modified}")
                continue
            if isinstance(modified, BaseException):
                raise modified
            for filename, stamp in modified.items():
                committed[(folder, filename)] = stamp

        stamped = []
        for task in local:
            update: Dict[str, Any] = {"branch": current}
            stamp = committed.get((task.folder or "", Path(task.file_path).name))
            if stamp:
                update["last_modified"] = stamp
            stamped.append(task.model_copy(update=update))
        return stamped, warnings

    def _prune_branch_cache(self, index: Dict[str, Dict[str, datetime]], prefixes: Sequence[str]) -> None:
        for branch, paths in index.items():
            for prefix in prefixes:
                self.cache.prune(f"{branch}:{prefix}/", [f"{branch}:{path}" for path in paths])

    def _forget_branches(self, scanned: Set[str], prefixes: Sequence[str]) -> None:
        """Evict cached records of branches that are no longer scanned.

        Branches that were scanned but failed to index keep their entries.
        """
        markers = [f":{prefix}/" for prefix in prefixes]
        evicted = 0
        for key in self.cache.keys():
            for marker in markers:
                branch, found, _ = key.partition(marker)
                if found and branch not in scanned:
                    self.cache.invalidate(key)
                    evicted += 1
                    break
        if evicted:
            logger.debug("branch_cache_forgotten", evicted=evicted)

    def _complete(self, result: RefreshResult, generation: int) -> RefreshResult:
        if generation > self._completed_generation:
            self._completed_generation = generation
            result = result.model_copy(update={"generation": generation})
            self.latest = result
        else:
            logger.info("stale_refresh_discarded", generation=generation, latest=self._completed_generation)
            result = result.model_copy(update={"generation": generation, "stale": True})
        return result
