"""
Configuration management for the DexMirror copy-trading service
"""
from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Literal
from functools import lru_cache
import os


DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    database_url: str = Field(
        default=f"sqlite:///{os.path.join(DATA_DIR, 'dexmirror.db')}"
    )

    # Fan-out Settings
    fanout_subscriber_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Seconds allowed for one subscriber's copy evaluation"
    )
    negative_value_policy: Literal["propagate", "clamp", "skip"] = Field(
        default="propagate",
        description="How copy amounts are sized when a trade's USD value is negative"
    )
    dedupe_risk_alerts: bool = Field(
        default=False,
        description="Send at most one RISK_ALERT per copier per day"
    )

    # Logging
    log_level: str = Field(default="INFO")

    # API Settings
    api_host: str = Field(default="127.0.0.1")
    api_port: int = Field(default=8000)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
