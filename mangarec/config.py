from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


_DEFAULT_DATA_DIR = Path.home() / ".mangarec" / "data"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="MANGAREC_",
        extra="ignore",
    )

    db_path: str = str(_DEFAULT_DATA_DIR / "mangarec.db")
    log_level: str = "INFO"

    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-2.0-flash"
    inference_timeout: float = 20.0

    candidate_pool_limit: int = 50
    inference_candidate_limit: int = 15
    description_max_chars: int = 150
    recommendation_count: int = 5
    fallback_count: int = 5
    history_limit: int = 50
    profile_top_genre_limit: int = 5
    refresh_interval_days: int = 7
    avoid_genre_policy: Literal["hint", "filter"] = "hint"
    fallback_on_unexpected_errors: bool = True
    placeholder_cover: str = "/placeholder-cover.jpg"

    scheduler_enabled: bool = True
    sweep_interval_hours: float = 24.0
    sweep_workers: int = 1


@lru_cache
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()
