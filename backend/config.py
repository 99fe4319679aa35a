from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    # Bearer token the multiplier producer must present on POST routes
    socket_server_secret: str = "your-secret-token"
    socket_port: int = 3001

    # Phase pacing
    betting_phase_ms: int = 6000
    wait_phase_ms: int = 3000
    multiplier_update_interval_ms: int = 80  # fixed, independent of multiplier size
    instant_crash_threshold: float = 1.03  # below this the round crashes on takeoff
    duration_jitter_s: float = 0.5

    # Played rounds kept in the ledger for /debug and /test-round
    ledger_retention: int = 1000

    # Include crashPoint in round:start / round:flying before the round crashes
    disclose_crash_point_early: bool = False

    allowed_origins: List[str] = ["*"]
    debug: bool = False
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )


settings = Settings()
