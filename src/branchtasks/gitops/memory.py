"""Deterministic in-memory gateway for tests and demos."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from branchtasks.errors import GatewayError, GatewayTimeout
from branchtasks.gitops.gateway import GitGateway, normalize_repo_path
from branchtasks.models.task import BranchDescriptor


@dataclass
class FakeBranch:
    """A branch held in memory: files map paths to (content, last change time)."""

    name: str
    last_commit: datetime
    is_remote: bool = False
    files: Dict[str, Tuple[str, datetime]] = field(default_factory=dict)


class InMemoryGateway(GitGateway):
    """Gateway over branches held in memory.

    Records every content read in ``reads`` so tests can assert on what was
    fetched. Branches or paths listed in ``failing`` raise GatewayError and
    those in ``timing_out`` raise GatewayTimeout.
    """

    def __init__(self, current: str = "main", is_repo: bool = True) -> None:
        self.current = current
        self.is_repo = is_repo
        self.branches: Dict[str, FakeBranch] = {}
        self.reads: List[Tuple[str, str]] = []
        self.modified_map_calls: List[Tuple[str, str]] = []
        self.failing: Set[str] = set()
        self.timing_out: Set[str] = set()
        self.delay: float = 0.0

    def add_branch(self, name: str, last_commit: datetime, is_remote: bool = False) -> FakeBranch:
        branch = FakeBranch(name=name, last_commit=last_commit, is_remote=is_remote)
        self.branches[name] = branch
        return branch

    def write(self, branch: str, path: str, content: str, modified: datetime) -> None:
        """Commit a file to a branch."""
        fake = self.branches[branch]
        fake.files[normalize_repo_path(path)] = (content, modified)
        if modified > fake.last_commit:
            fake.last_commit = modified

    def remove(self, branch: str, path: str) -> None:
        self.branches[branch].files.pop(normalize_repo_path(path), None)

    async def is_repository(self) -> bool:
        return self.is_repo

    async def current_branch(self) -> str:
        await self._enter(self.current)
        return self.current

    async def list_branches(self, include_remote: bool = False) -> List[BranchDescriptor]:
        await self._pause()
        return [
            BranchDescriptor(name=b.name, is_remote=b.is_remote, last_commit=b.last_commit)
            for b in self.branches.values()
            if include_remote or not b.is_remote
        ]

    async def file_modified_map(self, branch: str, path_prefix: str) -> Dict[str, datetime]:
        await self._enter(branch)
        self.modified_map_calls.append((branch, path_prefix))
        prefix = normalize_repo_path(path_prefix) + "/"
        return {
            path.rsplit("/", 1)[-1]: modified
            for path, (_, modified) in self._files(branch).items()
            if path.startswith(prefix)
        }

    async def read_file(self, branch: str, path: str) -> Optional[str]:
        path = normalize_repo_path(path)
        await self._enter(branch, path)
        self.reads.append((branch, path))
        entry = self._files(branch).get(path)
        return entry[0] if entry else None

    async def list_files(self, branch: str, path: str) -> List[str]:
        await self._enter(branch)
        prefix = normalize_repo_path(path) + "/"
        names = set()
        for file_path in self._files(branch):
            if file_path.startswith(prefix):
                names.add(file_path[len(prefix):].split("/", 1)[0])
        return sorted(names)

    async def path_exists(self, branch: str, path: str) -> bool:
        await self._enter(branch)
        path = normalize_repo_path(path)
        return any(
            file_path == path or file_path.startswith(path + "/") for file_path in self._files(branch)
        )

    def _files(self, branch: str) -> Dict[str, Tuple[str, datetime]]:
        fake = self.branches.get(branch)
        if fake is None:
            raise GatewayError(f"Unknown branch: {branch}")
        return fake.files

    async def _pause(self) -> None:
        # Every gateway call is a suspension point
        await asyncio.sleep(self.delay)

    async def _enter(self, branch: str, path: Optional[str] = None) -> None:
        await self._pause()
        keys = {branch} if path is None else {branch, f"{branch}:{path}"}
        if keys & self.timing_out:
            raise GatewayTimeout(f"Timed out reading {branch}")
        if keys & self.failing:
            raise GatewayError(f"Failed reading {branch}")
