from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App Config
    APP_NAME: str = "IPWatch Monitoring"
    APP_ENV: str = "development"
    PORT: int = 8000
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./ipwatch.db"

    # Monitoring
    MONITORING_KEYWORDS: List[str] = Field(default_factory=lambda: [
        "Signing Naturally",
        "DawnSignPress",
        "ASL Pal",
        "DSP Publications",
        "Dawn Sign Press",
        "ASL Learning",
        "Deaf Education"
    ])
    MONITORING_DOMAINS: List[str] = Field(default_factory=lambda: [
        "oercommons.org",
        "merlot.org",
        "openstax.org",
        "khanacademy.org",
        "coursera.org",
        "edx.org",
        "youtube.com",
        "vimeo.com"
    ])
    MONITORING_FREQUENCY: str = Field(default="daily")
    MONITORING_ENABLED: bool = Field(default=True)
    MONITORING_SCHEDULER_ENABLED: bool = Field(default=False)
    MONITORING_INTERVAL_SECONDS: int = Field(default=6 * 60 * 60)
    MONITORING_FETCH_TIMEOUT_SECONDS: float = Field(default=10.0)
    MONITORING_SCAN_CONCURRENCY: int = Field(default=4)
    MONITORING_COLLECTOR_TIMEOUT_SECONDS: float = Field(default=120.0)
    MONITORING_RUN_TIMEOUT_SECONDS: float = Field(default=300.0)
    MONITORING_DEDUP_WINDOW_SECONDS: int = Field(default=24 * 60 * 60)

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
