"""Configuration for the rental occupancy service."""

from decimal import Decimal
from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ICalService(str, Enum):
    """Where iCal feeds are fetched from."""

    DIRECT = "direct"  # Fetch and parse in-process
    PROXY = "proxy"  # Delegate to a remote /fetch-ical service


class Settings(BaseSettings):
    """Application settings.

    Built once at startup and handed to the app, database and manager.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="OCCUPANCY_",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./rental_occupancy.db"

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Feed fetching
    ical_service: ICalService = ICalService.DIRECT
    proxy_url: str = "http://localhost:3000/fetch-ical"
    fetch_timeout_seconds: float = 10.0
    user_agent: str = "Rental-Occupancy-iCal/0.1"

    # Imported reservations are tagged with this source unless the caller says otherwise
    default_source: str = "airbnb"

    # Pricing
    base_price: Decimal = Decimal("100")
