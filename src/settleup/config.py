from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from settleup.services.settlement import ALGORITHMS


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    database_url: str = Field("postgresql://localhost/settleup", alias="DATABASE_URL")
    suggestion_ttl_seconds: float = Field(300.0, alias="SUGGESTION_TTL_SECONDS")
    cache_purge_interval_seconds: float = Field(60.0, alias="CACHE_PURGE_INTERVAL_SECONDS")
    default_algorithm: str = Field("min_cash_flow", alias="DEFAULT_ALGORITHM")
    friend_weight_threshold: float = Field(0.0, alias="FRIEND_WEIGHT_THRESHOLD")
    cas_max_retries: int = Field(3, alias="CAS_MAX_RETRIES")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    @field_validator("default_algorithm")
    @classmethod
    def known_algorithm(cls, value: str) -> str:
        if value not in ALGORITHMS:
            raise ValueError(f"unknown settlement algorithm: {value}")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
