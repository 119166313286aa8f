"""Data models for task records, branches and configuration."""

from branchtasks.models.config import BoardConfig, ResolutionStrategy, Settings
from branchtasks.models.task import (
    BranchDescriptor,
    CardData,
    HydrationResult,
    IndexEntry,
    OrdinalUpdate,
    RefreshResult,
    TaskRecord,
    TaskSource,
)

__all__ = [
    "TaskRecord",
    "TaskSource",
    "BranchDescriptor",
    "IndexEntry",
    "HydrationResult",
    "CardData",
    "OrdinalUpdate",
    "RefreshResult",
    "BoardConfig",
    "ResolutionStrategy",
    "Settings",
]
