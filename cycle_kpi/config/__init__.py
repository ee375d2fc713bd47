"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety. Built once at startup and
    handed to the components that need it.
    """

    # ========== Application ==========
    app_name: str = Field(default="cycle-kpi", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="sqlite+aiosqlite:///./state/kpi_state.db",
        description="Snapshot store connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Calendar & Groups ==========
    calendar_path: Path = Field(
        default=Path("config/cycle_calendar.json"),
        description="Per-group cycle calendar (JSON or YAML)"
    )
    groups_path: Path = Field(
        default=Path("config/groups.json"),
        description="Group to upstream team mapping (JSON or YAML)"
    )
    reference_group: Optional[str] = Field(
        default=None,
        description="Group whose calendar decides the current cycle (default: first group)"
    )
    config_watch_enabled: bool = Field(
        default=True,
        description="Hot-reload calendar and group files when they change"
    )

    # ========== Upstream Tracker (Linear GraphQL) ==========
    tracker_api_url: str = Field(
        default="https://api.linear.app/graphql",
        description="GraphQL endpoint of the work tracker"
    )
    tracker_api_key: Optional[str] = Field(
        default=None,
        description="Work tracker API key"
    )
    tracker_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for tracker API calls",
        ge=0.1,
        le=300
    )
    tracker_page_size: int = Field(default=100, description="GraphQL page size", ge=1, le=250)
    tracker_max_retries: int = Field(default=3, description="Attempts per GraphQL call", ge=1)
    tracker_retry_backoff_seconds: float = Field(
        default=1.0,
        description="Base delay of the exponential retry backoff",
        ge=0.0
    )

    # ========== Labels ==========
    scope_label: Optional[str] = Field(
        default="DEL",
        description="Label every tracked item must carry (empty to disable)"
    )
    cancelled_label: Optional[str] = Field(
        default="DEL-CANCELLED",
        description="Label marking cancelled items"
    )
    cycle_label_prefix: str = Field(
        default="2026Q1-",
        description="Cycle label = prefix + cycle key (e.g. 2026Q1-C1)"
    )

    # ========== KPI Policy ==========
    kpi_cycle: Optional[str] = Field(
        default=None,
        description="Override of the headline cycle (C1..C6)"
    )
    freeze_policy_cycle: str = Field(
        default="C2",
        description="Early cycles up to this one share its grace window"
    )
    kpi_evaluation_interval: int = Field(
        default=3600,
        description="Seconds between scheduled KPI runs (0 disables)",
        ge=0
    )

    # ========== Cache ==========
    items_cache_ttl_seconds: float = Field(
        default=180.0,
        description="TTL of cached upstream item fetches",
        ge=0.0
    )
    labels_cache_ttl_seconds: float = Field(
        default=300.0,
        description="TTL of the cached upstream label catalog",
        ge=0.0
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("freeze_policy_cycle")
    @classmethod
    def validate_freeze_policy_cycle(cls, v: str) -> str:
        """Normalize and validate the freeze threshold cycle."""
        key = v.strip().upper()
        if key not in CYCLE_KEYS:
            raise ValueError(f"freeze_policy_cycle must be one of {CYCLE_KEYS}")
        return key

    @field_validator("kpi_cycle")
    @classmethod
    def validate_kpi_cycle(cls, v: Optional[str]) -> Optional[str]:
        """Normalize the headline override; blank means no override."""
        if v is None or not v.strip():
            return None
        key = v.strip().upper()
        if key not in CYCLE_KEYS:
            raise ValueError(f"kpi_cycle must be one of {CYCLE_KEYS}")
        return key

    @field_validator("scope_label", "cancelled_label")
    @classmethod
    def blank_label_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# ========== Constants ==========

CYCLE_KEYS = ["C1", "C2", "C3", "C4", "C5", "C6"]


class KpiStatus(str):
    """Outcome of a (group, cycle) computation."""
    OK = "OK"
    NO_TEAM_ID = "NO_TEAM_ID"
    LABEL_UNRESOLVED = "LABEL_UNRESOLVED"
    FETCH_FAILED = "FETCH_FAILED"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"


class GroupStatus(str):
    """Outcome of a group within a run."""
    OK = "OK"
    DEGRADED = "DEGRADED"
    SKIPPED_NO_CALENDAR = "SKIPPED_NO_CALENDAR"


class SnapshotAction(str):
    """What an upsert did to a snapshot."""
    CREATED = "created"
    REFRESHED = "refreshed"
    SKIPPED_FROZEN = "skipped_frozen"
    SKIPPED_POLICY = "skipped_policy"


def cycle_index(cycle_key: str) -> Optional[int]:
    """Return 1..6 for a cycle key like "C3", None when it is not one."""
    key = str(cycle_key).strip().upper()
    if key not in CYCLE_KEYS:
        return None
    return CYCLE_KEYS.index(key) + 1
