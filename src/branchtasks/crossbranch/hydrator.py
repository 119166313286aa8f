"""Fetch and decode task files from other branches."""

from datetime import datetime
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import List, Optional, Sequence, Tuple

import structlog

from branchtasks.cache import ParseCache
from branchtasks.codec import TaskCodec
from branchtasks.crossbranch.concurrency import gather_bounded
from branchtasks.errors import DecodeFailure, GatewayError
from branchtasks.gitops.gateway import GitGateway
from branchtasks.models.task import HydrationResult, IndexEntry

logger = structlog.get_logger(__name__)

DEFAULT_HYDRATE_CONCURRENCY = 8


class HydrationDecision(str, Enum):
    SKIP = "skip"
    FETCH = "fetch"


class _Dropped(Exception):
    """An entry that produced no record; the message becomes a warning."""


def decide(entry: IndexEntry, known_local_time: Optional[datetime]) -> HydrationDecision:
    """Decide whether an indexed file is worth reading.

    Fetch when the id is unknown locally, or when the branch copy is strictly
    newer than the best known copy.
    """
    if known_local_time is None:
        return HydrationDecision.FETCH
    if entry.modified > known_local_time:
        return HydrationDecision.FETCH
    return HydrationDecision.SKIP


class Hydrator:
    """Reads the content of selected index entries and decodes it.

    Decoded records are shared through the ParseCache under ``branch:path``
    keys, so an unchanged file is never read twice.
    """

    def __init__(
        self,
        gateway: GitGateway,
        codec: TaskCodec,
        cache: ParseCache,
        workspace_root: Optional[Path] = None,
        concurrency: int = DEFAULT_HYDRATE_CONCURRENCY,
    ) -> None:
        """Initialize the hydrator.

        Args:
            gateway: Gateway used to read file content
            codec: Codec that turns content into records
            cache: Parse cache shared with the local store
            workspace_root: Root used to build record file paths
            concurrency: Maximum number of reads in flight
        """
        self.gateway = gateway
        self.codec = codec
        self.cache = cache
        self.workspace_root = Path(workspace_root) if workspace_root else None
        self.concurrency = concurrency
        self.reads = 0

    async def hydrate(self, entries: Sequence[IndexEntry]) -> Tuple[List[HydrationResult], List[str]]:
        """Hydrate entries with bounded concurrency.

        Failures on one entry (timeout, git error, decode failure) drop that
        entry and add a warning; the rest of the batch continues.

        Returns:
            Tuple of (results in entry order, warnings)
        """
        outcomes = await gather_bounded(self.concurrency, entries, self._hydrate_one)

        results: List[HydrationResult] = []
        warnings: List[str] = []
        for entry, outcome in zip(entries, outcomes):
            if isinstance(outcome, HydrationResult):
                results.append(outcome)
            elif isinstance(outcome, (_Dropped, GatewayError)):
                warnings.append(str(outcome))
            elif isinstance(outcome, BaseException):
                raise outcome

        logger.info(
            "hydration_complete",
            requested=len(entries),
            hydrated=len(results),
            dropped=len(entries) - len(results),
        )
        return results, warnings

    async def _hydrate_one(self, entry: IndexEntry) -> HydrationResult:
        key = entry.cache_key
        record = self.cache.get(key, entry.modified)

        if record is None:
            try:
                content = await self.gateway.read_file(entry.branch, entry.path)
            except GatewayError as e:
                logger.warning("hydrate_read_failed", branch=entry.branch, path=entry.path, error=str(e))
                raise _Dropped(f"Could not read {entry.path} on {entry.branch}: {e}") from e
            self.reads += 1

            if content is None:
                self.cache.invalidate(key)
                raise _Dropped(f"{entry.path} disappeared from {entry.branch}")

            try:
                record = self.codec.decode(content, self._record_path(entry))
            except DecodeFailure as e:
                logger.warning("hydrate_decode_failed", branch=entry.branch, path=entry.path, reason=e.reason)
                raise _Dropped(f"{e} (branch {entry.branch})") from e

            record = record.model_copy(
                update={
                    "source": "remote" if entry.is_remote else "local-branch",
                    "branch": entry.branch,
                    "folder": PurePosixPath(entry.path).parent.name or None,
                    "last_modified": entry.modified,
                }
            )
            self.cache.put(key, entry.modified, record)
        else:
            logger.debug("hydrate_cache_hit", branch=entry.branch, path=entry.path)

        return HydrationResult(
            task_id=record.id,
            branch=entry.branch,
            record=record.model_copy(deep=True),
            timestamp=entry.modified,
        )

    def _record_path(self, entry: IndexEntry) -> str:
        if self.workspace_root is None:
            return entry.path
        return str(self.workspace_root / entry.path)
