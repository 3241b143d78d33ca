"""Engine configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # Recurrence expansion
    # Hard ceiling on generated occurrences per series per query
    MAX_OCCURRENCES_PER_SERIES: int = 500
    # A stored row within this distance of a generated start is the same occurrence
    MATERIALIZED_MATCH_TOLERANCE_SECONDS: int = 60

    # Google Calendar free/busy
    GOOGLE_FREEBUSY_URL: str = "https://www.googleapis.com/calendar/v3/freeBusy"
    GOOGLE_REQUEST_TIMEOUT_SECONDS: float = 10.0

    @property
    def log_level_name(self) -> str:
        """Normalized log level name for logging.basicConfig."""
        return self.LOG_LEVEL.strip().upper() or "INFO"


settings = Settings()
