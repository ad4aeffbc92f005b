"""
FlowCanvas configuration.

Values come from the environment (prefix ``FLOWCANVAS_``) or a local
``.env`` file, e.g. ``FLOWCANVAS_API_BASE_URL=http://localhost:8000``.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the catalog and execution service clients."""

    model_config = SettingsConfigDict(
        env_prefix="FLOWCANVAS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Service endpoints ---
    api_base_url: str = "http://localhost:8000"
    catalog_path: str = "/api/node/get"
    catalog_refresh_path: str = "/api/node/refresh"
    execute_path: str = "/api/workflow/execute"
    execute_stream_path: str = "/api/workflow/execute/stream"

    # --- Execution ---
    streaming: bool = True
    request_timeout: float = Field(default=30.0, gt=0)
    # Longest silence tolerated from the execution service before a run times out
    execution_idle_timeout: float = Field(default=120.0, gt=0)

    # --- Logging ---
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
