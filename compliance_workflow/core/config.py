"""Engine configuration loaded from the environment."""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings loaded from environment."""

    # Scheduling
    max_workers: int = Field(8, ge=1, description="Concurrent Independent rules")
    default_timeout_seconds: float | None = Field(
        None, gt=0, description="Probe timeout when neither rule nor workflow sets one"
    )

    # Results
    record_skipped_rules: bool = True

    model_config = {
        "env_prefix": "COMPLIANCE_WORKFLOW_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
