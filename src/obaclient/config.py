"""Client configuration, read from OBA_* environment variables or a .env file."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BASE_URL = "https://api.pugetsound.onebusaway.org"


class ClientSettings(BaseSettings):
    """Connection and request-window settings for OBAClient."""

    base_url: str = DEFAULT_BASE_URL
    api_key: Optional[str] = None

    # Window for arrivals-and-departures-for-stop
    minutes_before_arrivals: int = 5
    minutes_after_arrivals: int = 125

    timeout: float = 10.0  # seconds per HTTP call
    max_workers: int = 8  # fan-out bound for vehicle aggregation

    model_config = SettingsConfigDict(
        env_prefix="OBA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )
