"""Runtime settings, read from ``API_WORKBENCH_*`` environment variables or ``.env``."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

# the UI offers these; any positive interval is accepted by the scheduler
POLL_INTERVAL_CHOICES = (30_000, 60_000, 300_000)


class WorkbenchSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="API_WORKBENCH_", env_file=".env", extra="ignore")

    sync_interval: float = 60.0  # seconds between re-import checks
    status_reset_delay: float = 4.5  # seconds an "updated" sync status stays visible
    poll_interval_ms: int = 60_000
    request_timeout: float | None = 30.0
    max_schema_depth: int = 8
    user_agent: str = "api-workbench"
    log_level: str = "WARNING"


@lru_cache(maxsize=1)
def get_settings() -> WorkbenchSettings:
    return WorkbenchSettings()
