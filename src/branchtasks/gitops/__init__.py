"""Git access: the read-only gateway and branch enumeration."""

from branchtasks.gitops.branches import BranchEnumerator
from branchtasks.gitops.gateway import GitCliGateway, GitGateway
from branchtasks.gitops.memory import InMemoryGateway

__all__ = ["GitGateway", "GitCliGateway", "InMemoryGateway", "BranchEnumerator"]
