"""Application configuration"""
from typing import Annotated, List, Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Application
    APP_NAME: str = "StreamDash"
    APP_ENV: str = "development"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # InfluxDB
    INFLUX_URL: str = "http://localhost:8086"
    INFLUX_TOKEN: str = ""
    INFLUX_ORG: str = "streaming-org"
    INFLUX_BUCKET: str = "streaming-data"
    INFLUX_MEASUREMENT: str = "bandwidth_usage"
    INFLUX_STREAMING_MEASUREMENT: str = "streaming_data"
    INFLUX_STORAGE_MEASUREMENT: str = "storage_usage"
    INFLUX_QUERY_TIMEOUT: float = 10.0  # seconds

    # Redis (optional, used for filter option caching)
    REDIS_URL: Optional[str] = None
    REDIS_CACHE_DB: int = 1
    FILTER_OPTIONS_CACHE_TTL: int = 300

    # Bandwidth queries
    BANDWIDTH_COUNT_STRATEGY: str = "exact"  # exact | separate
    BANDWIDTH_MAX_ROWS: int = 10000
    BANDWIDTH_MAX_PAGE_SIZE: int = 1000

    # Stream session and storage listings
    LISTING_DEFAULT_LIMIT: int = 500
    STORAGE_LOOKBACK: str = "-30d"

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:3000", "http://localhost:8000"]

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("BANDWIDTH_COUNT_STRATEGY")
    @classmethod
    def check_count_strategy(cls, v: str) -> str:
        v = v.lower()
        if v not in ("exact", "separate"):
            raise ValueError("BANDWIDTH_COUNT_STRATEGY must be 'exact' or 'separate'")
        return v


settings = Settings()
