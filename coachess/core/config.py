from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development"
    )
    supabase_url: str
    supabase_anon_key: str
    site_url: str = Field(default="http://localhost:3000")

    # Client-local storage standing in for the browser's localStorage
    storage_url: str = Field(default="sqlite:///coachess_storage.db")
    session_storage_key: str = Field(default="coachess_session")
    session_refresh_margin_seconds: int = Field(default=60, ge=0)

    request_timeout_seconds: float | None = Field(default=30.0)

    realtime_heartbeat_seconds: float = Field(default=30.0, gt=0)
    realtime_reconnect_initial_seconds: float = Field(default=1.0, gt=0)
    realtime_reconnect_max_seconds: float = Field(default=30.0, gt=0)

    @property
    def rest_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1"

    @property
    def realtime_url(self) -> str:
        base = self.supabase_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}/realtime/v1/websocket?apikey={self.supabase_anon_key}&vsn=1.0.0"


@lru_cache
def get_settings() -> Settings:
    return Settings()
