"""Configuration settings for Evolver."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils import get_evolver_home

SAFETY_MODES = ("never", "review", "always")


class EvolverSettings(BaseSettings):
    """Settings loaded from ``EVOLVER_*`` environment variables and ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="EVOLVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Storage
    data_dir: Optional[Path] = None
    db_path: Optional[Path] = None  # ":memory:" is accepted for tests
    seed_genes: bool = True

    # Self-modification policy: never | review | always
    allow_self_modify: str = Field(
        default="always",
        validation_alias=AliasChoices(
            "EVOLVE_ALLOW_SELF_MODIFY", "EVOLVER_ALLOW_SELF_MODIFY", "allow_self_modify"
        ),
    )

    # Sync ledger and audit logs
    sync_enabled: bool = True
    event_log_enabled: bool = False
    log_level: str = "INFO"

    # Validation commands
    validation_timeout: float = 60.0

    @field_validator("allow_self_modify", mode="before")
    @classmethod
    def _normalize_mode(cls, value):
        mode = str(value or "always").strip().lower()
        if mode not in SAFETY_MODES:
            return "always"
        return mode

    def resolved_data_dir(self) -> Path:
        return Path(self.data_dir).expanduser() if self.data_dir else get_evolver_home()

    def resolved_db_path(self) -> str:
        """Database location, defaulting to ``<data_dir>/evolver.db``."""
        if self.db_path is not None:
            return str(self.db_path)
        return str(self.resolved_data_dir() / "evolver.db")


@lru_cache
def get_settings() -> EvolverSettings:
    """Get cached settings instance."""
    return EvolverSettings()
