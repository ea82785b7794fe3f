from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Storage
    DB_URL: str = "sqlite+aiosqlite:///./savannah.db"
    REDIS_URL: str = "redis://localhost:6379/0"
    STORE_BACKEND: Literal["memory", "redis", "sql"] = "memory"
    STORE_PREFIX: str = "savannah_emotional"
    STORE_TIMEOUT_SECONDS: float = 5.0
    BACKUP_KEEP: int = 3

    # Mood machine
    NEGLECT_SECONDS: float = 300.0
    MOOD_DECAY_STEP: float = 0.02
    STRESS_FLOOR: float = 0.1
    STRESS_DECAY_STEP: float = 0.01

    # Ledger
    CONFLICT_SEVERITY_THRESHOLD: float = 0.3
    MEMORY_BANK_SIZE: int = 20
    MEMORY_SIGNIFICANCE_FLOOR: float = 0.3
    DECAY_PRUNE_FLOOR: float = 0.1

    # Engine
    ACTOR_CACHE_SIZE: int = 1024

    # Recovery
    RECOVERY_SUCCESS_THRESHOLD: float = 0.2

    # Balance presets
    FAVOR_DIFFICULTY: Literal["easy", "normal", "hard", "realistic"] = "normal"
    DAMAGE_SENSITIVITY: Literal["low", "normal", "high", "realistic"] = "normal"

    # Host scheduler
    TICK_ENABLED: bool = True
    TICK_INTERVAL_SECONDS: float = 30.0

    model_config = SettingsConfigDict(
        env_prefix="SAVANNAH_",
        env_file=Path(__file__).resolve().parents[1].parent / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
