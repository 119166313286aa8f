"""Read-only, asynchronous access to a git repository."""

import asyncio
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import git
import structlog

from branchtasks.errors import GatewayError, GatewayTimeout
from branchtasks.models.task import BranchDescriptor

logger = structlog.get_logger(__name__)

# Separates commits in the batched log output
_COMMIT_MARK = "\x1e"

_MISSING_OBJECT_HINTS = (
    "does not exist",
    "exists on disk, but not in",
    "invalid object name",
    "not a valid object name",
    "bad revision",
    "unknown revision",
)


def normalize_repo_path(path: str) -> str:
    """Convert a path to the forward-slash form git expects."""
    return path.replace("\\", "/").strip("/")


def timestamp_to_datetime(value: str) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class GitGateway(ABC):
    """Read-only queries against a repository.

    Implementations never mutate repository state, and every method is safe
    to await concurrently with any other.
    """

    @abstractmethod
    async def is_repository(self) -> bool:
        """Return True if the workspace is inside a git repository. Never raises."""

    @abstractmethod
    async def current_branch(self) -> str:
        """Return the short name of the checked-out branch."""

    @abstractmethod
    async def list_branches(self, include_remote: bool = False) -> List[BranchDescriptor]:
        """List branches with the commit time of their tips.

        Args:
            include_remote: Also list remote-tracking branches

        Returns:
            Branch descriptors in the order git reports them
        """

    @abstractmethod
    async def file_modified_map(self, branch: str, path_prefix: str) -> Dict[str, datetime]:
        """Map bare filenames under a prefix to the time they last changed on a branch.

        A single query regardless of how many files the prefix holds.
        """

    @abstractmethod
    async def read_file(self, branch: str, path: str) -> Optional[str]:
        """Return file content on a branch, or None if it does not exist there."""

    @abstractmethod
    async def list_files(self, branch: str, path: str) -> List[str]:
        """Return the names of the entries directly under a directory on a branch."""

    @abstractmethod
    async def path_exists(self, branch: str, path: str) -> bool:
        """Return True if a file or directory exists on a branch."""


class GitCliGateway(GitGateway):
    """Gateway backed by the git command line, run as asyncio subprocesses."""

    def __init__(
        self,
        workspace_root: Path,
        timeout: float = 10.0,
        git_executable: Optional[str] = None,
    ) -> None:
        """Initialize the gateway.

        Args:
            workspace_root: Directory inside the working tree
            timeout: Per-call time budget in seconds
            git_executable: Git binary to run (defaults to GitPython's)
        """
        self.workspace_root = Path(workspace_root)
        self.timeout = timeout
        self.git_executable = git_executable or git.Git.GIT_PYTHON_GIT_EXECUTABLE or "git"

    async def is_repository(self) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._detect_repository)

    def _detect_repository(self) -> bool:
        try:
            git.Repo(self.workspace_root, search_parent_directories=True)
            return True
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
            return False
        except (git.exc.GitError, OSError) as e:
            logger.debug("repository_detection_failed", root=str(self.workspace_root), error=str(e))
            return False

    async def current_branch(self) -> str:
        output = await self._run_checked(["rev-parse", "--abbrev-ref", "HEAD"])
        return output.strip()

    async def list_branches(self, include_remote: bool = False) -> List[BranchDescriptor]:
        refs = ["refs/heads/"]
        if include_remote:
            refs.append("refs/remotes/")
        output = await self._run_checked(
            [
                "for-each-ref",
                "--format=%(refname)%09%(refname:short)%09%(committerdate:unix)",
                *refs,
            ]
        )

        branches = []
        for line in output.splitlines():
            parts = line.split("\t")
            if len(parts) != 3 or not parts[2].strip():
                continue
            full_ref, name, stamp = parts
            # Symbolic refs like origin/HEAD point at another listed branch
            if full_ref.endswith("/HEAD"):
                continue
            branches.append(
                BranchDescriptor(
                    name=name,
                    is_remote=full_ref.startswith("refs/remotes/"),
                    last_commit=timestamp_to_datetime(stamp.strip()),
                )
            )
        return branches

    async def file_modified_map(self, branch: str, path_prefix: str) -> Dict[str, datetime]:
        self._check_ref(branch)
        prefix = normalize_repo_path(path_prefix)
        output = await self._run_checked(
            ["log", f"--format={_COMMIT_MARK}%ct", "--name-only", branch, "--", prefix]
        )

        modified: Dict[str, datetime] = {}
        current: Optional[datetime] = None
        for line in output.splitlines():
            if line.startswith(_COMMIT_MARK):
                current = timestamp_to_datetime(line[1:].strip())
                continue
            line = line.strip()
            if not line or current is None:
                continue
            # Log is newest first, so the first sighting is the latest change
            filename = line.rsplit("/", 1)[-1]
            modified.setdefault(filename, current)
        return modified

    async def read_file(self, branch: str, path: str) -> Optional[str]:
        self._check_ref(branch)
        revision = f"{branch}:{normalize_repo_path(path)}"
        returncode, stdout, stderr = await self._run(["show", revision])
        if returncode == 0:
            return stdout
        if self._is_missing_object(stderr):
            return None
        raise GatewayError(
            f"git show {revision} failed: {stderr.strip()}",
            command=["show", revision],
            returncode=returncode,
            stderr=stderr,
        )

    async def list_files(self, branch: str, path: str) -> List[str]:
        self._check_ref(branch)
        directory = normalize_repo_path(path) + "/"
        returncode, stdout, stderr = await self._run(["ls-tree", "--name-only", branch, directory])
        if returncode != 0:
            if self._is_missing_object(stderr):
                return []
            raise GatewayError(
                f"git ls-tree {branch} {directory} failed: {stderr.strip()}",
                command=["ls-tree", "--name-only", branch, directory],
                returncode=returncode,
                stderr=stderr,
            )
        return [line.rsplit("/", 1)[-1] for line in stdout.splitlines() if line.strip()]

    async def path_exists(self, branch: str, path: str) -> bool:
        self._check_ref(branch)
        returncode, _, _ = await self._run(["cat-file", "-e", f"{branch}:{normalize_repo_path(path)}"])
        return returncode == 0

    def _check_ref(self, branch: str) -> None:
        if not branch or branch.startswith("-"):
            raise GatewayError(f"Refusing suspicious branch name: {branch!r}")

    def _is_missing_object(self, stderr: str) -> bool:
        lowered = stderr.lower()
        return any(hint in lowered for hint in _MISSING_OBJECT_HINTS)

    async def _run_checked(self, args: Sequence[str]) -> str:
        returncode, stdout, stderr = await self._run(args)
        if returncode != 0:
            raise GatewayError(
                f"git {' '.join(args)} failed: {stderr.strip()}",
                command=args,
                returncode=returncode,
                stderr=stderr,
            )
        return stdout

    async def _run(self, args: Sequence[str]) -> Tuple[int, str, str]:
        """Run one git command with its own timeout.

        Raises:
            GatewayTimeout: If the command exceeds the time budget
            GatewayError: If git cannot be started
        """
        env = dict(os.environ, GIT_TERMINAL_PROMPT="0", LC_ALL="C")
        try:
            process = await asyncio.create_subprocess_exec(
                self.git_executable,
                # Report non-ASCII filenames verbatim instead of C-quoted
                "-c",
                "core.quotePath=false",
                *args,
                cwd=str(self.workspace_root),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise GatewayError(f"Could not run git: {e}", command=args) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            logger.warning("git_call_timed_out", command=list(args), timeout=self.timeout)
            raise GatewayTimeout(
                f"git {' '.join(args)} timed out after {self.timeout}s", command=args
            ) from e

        return (
            process.returncode,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )
