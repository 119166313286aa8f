"""Error types raised by the task index and hydration engine."""

from typing import Optional, Sequence


class BranchTasksError(Exception):
    """Base class for all branchtasks errors."""


class RepositoryUnavailable(BranchTasksError):
    """The workspace is not inside a git repository."""


class GatewayError(BranchTasksError):
    """A single git invocation failed."""

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = list(command or [])
        self.returncode = returncode
        self.stderr = stderr


class GatewayTimeout(GatewayError):
    """A single git invocation exceeded its time budget."""


class DecodeFailure(BranchTasksError):
    """The codec rejected a task file."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Could not decode {path}: {reason}")
        self.path = path
        self.reason = reason


class CacheInconsistency(BranchTasksError):
    """A parse cache entry violated its own invariants."""


class OrdinalExhaustion(BranchTasksError):
    """No ordinal fits strictly between two neighbours."""
