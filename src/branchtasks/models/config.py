"""Configuration models."""

import re
from typing import Any, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ResolutionStrategy = Literal["most_recent", "most_progressed"]

DEFAULT_STATUSES = ["To Do", "In Progress", "Done"]

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def normalize_key(key: str) -> str:
    """Turn ``checkActiveBranches`` or ``check-active-branches`` into ``check_active_branches``."""
    key = _CAMEL_BOUNDARY.sub("_", str(key).strip())
    return re.sub(r"[\s\-]+", "_", key).lower()


class BoardConfig(BaseModel):
    """Board options that drive a refresh.

    Built once at the configuration boundary; core components only ever see
    this normalized form.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    check_active_branches: bool = Field(False, description="Load tasks from other branches")
    active_branch_days: int = Field(30, ge=0, description="Recency window for branches, in days")
    remote_operations: bool = Field(False, description="Include remote-tracking branches")
    task_resolution_strategy: ResolutionStrategy = Field(
        "most_recent", description="Conflict policy: most_recent or most_progressed"
    )
    statuses: List[str] = Field(
        default_factory=lambda: list(DEFAULT_STATUSES),
        description="Status columns in workflow order",
    )
    task_prefix: str = Field("task", description="Filename prefix for task ids")

    @field_validator("task_resolution_strategy", mode="before")
    @classmethod
    def _normalize_strategy(cls, value: Any) -> Any:
        if isinstance(value, str):
            return normalize_key(value)
        return value

    @field_validator("statuses", mode="before")
    @classmethod
    def _coerce_statuses(cls, value: Any) -> Any:
        if value is None:
            return list(DEFAULT_STATUSES)
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @classmethod
    def from_raw(cls, raw: Optional[Mapping[str, Any]]) -> "BoardConfig":
        """Build a config from a loosely-typed mapping such as a parsed config file.

        Args:
            raw: Mapping with keys in any casing; None yields the defaults

        Returns:
            Normalized BoardConfig

        Raises:
            pydantic.ValidationError: If a value cannot be coerced
        """
        if not raw:
            return cls()
        normalized = {}
        for key, value in raw.items():
            if value is None:
                continue
            normalized[normalize_key(key)] = value
        return cls.model_validate(normalized)

    def status_order(self) -> List[str]:
        """Status progression used by ``most_progressed``, least progressed first."""
        order = [] if "Draft" in self.statuses else ["Draft"]
        return order + list(self.statuses)


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BRANCHTASKS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Git
    git_executable: Optional[str] = None
    git_timeout_seconds: float = 10.0

    # Concurrency budgets
    index_concurrency: int = 5
    hydrate_concurrency: int = 8

    # Layout
    backlog_dir: str = "backlog"
