from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="POS_CLIENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    base_url: str = "http://localhost:8000/api/v1"
    token: str = ""
    request_timeout_seconds: float = 10.0
    poll_interval_seconds: float = 2.0
    poll_timeout_seconds: float = 120.0


@lru_cache
def client_settings() -> ClientSettings:
    return ClientSettings()
