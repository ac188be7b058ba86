from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """
    Runtime configuration loaded from Environment Variables or .env file.
    Every value can be overridden per process with the CONTAINERS_ prefix.
    """

    SPEC_FILE: Path = Path("service.yaml")
    DOCKER_BASE_URL: str | None = None  # Optional: Connect to remote docker
    HOST_OVERRIDE: str | None = None

    STARTUP_TIMEOUT: float = 60.0
    HTTP_POLL_INTERVAL: float = 0.1
    HTTP_REQUEST_TIMEOUT: float = 2.0
    HEALTH_POLL_INTERVAL: float = 0.1

    REMOVE_ON_FAILURE: bool = True
    PULL_MISSING_IMAGES: bool = True
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="CONTAINERS_", env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> AppSettings:
    """
    Creates a singleton instance of AppSettings.
    Uses lru_cache to ensure the .env file is read only once.
    """
    return AppSettings()
