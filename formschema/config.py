from datetime import timezone, tzinfo
from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Object schemas
    default_unknown_keys: Literal["strip", "passthrough", "reject"] = "strip"

    # safe_parse
    host_fault_message: str = "Validation could not be completed"
    log_host_faults: bool = True

    # Dates
    default_timezone: str = Field(default="UTC", min_length=1)

    @property
    def tz(self) -> tzinfo:
        if self.default_timezone.upper() == "UTC":
            return timezone.utc
        return ZoneInfo(self.default_timezone)

    model_config = SettingsConfigDict(
        env_prefix="FORMSCHEMA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
