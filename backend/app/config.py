"""
backend/app/config.py

Purpose:
    Central settings loading for backend services.

Dependencies:
    - pydantic-settings
    - pathlib
"""

from pathlib import Path

from pydantic_settings import BaseSettings

# Prefer backend/.env, fallback to project-root .env.
_BACKEND_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
_ROOT_ENV_FILE = Path(__file__).resolve().parent.parent.parent / ".env"


class Settings(BaseSettings):
    MONGO_URI: str
    MONGO_DB: str = "pronofoot"
    JWT_SECRET: str
    JWT_SECRET_OLD: str = ""  # Set during rotation; cleared after 7 days
    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    # football-data.org (V1 football feed)
    FOOTBALL_DATA_API_KEY: str = ""
    FOOTBALL_DATA_BASE_URL: str = "https://api.football-data.org/v4"
    FOOTBALL_DATA_COMPETITION_FILTER: str = "UEFA Champions League"  # empty = all competitions

    # api-sports.io (V2 football feed + rugby feed)
    USE_API_V2: bool = False
    API_SPORTS_KEY: str = ""
    API_SPORTS_RUGBY_KEY: str = ""  # falls back to API_SPORTS_KEY
    API_SPORTS_FOOTBALL_BASE_URL: str = "https://v3.football.api-sports.io"
    API_SPORTS_RUGBY_BASE_URL: str = "https://v1.rugby.api-sports.io"

    # Outbound HTTP
    HTTP_TIMEOUT_SECONDS: float = 15.0
    HTTP_MAX_RETRIES: int = 3
    HTTP_BASE_DELAY_SECONDS: float = 1.0

    # Live score sync
    LIVE_SYNC_ENABLED: bool = True
    LIVE_SYNC_INTERVAL_SECONDS: int = 20
    LIVE_AUTO_FINISH_HOURS: float = 3.0
    LIVE_SYNC_MIN_CONFIDENCE: float = 0.9

    # Game status worker: UPCOMING -> LIVE once kickoff + grace has passed
    GAME_STATUS_INTERVAL_SECONDS: int = 60
    GAME_START_GRACE_MINUTES: int = 2

    # Shooters (forgotten bets) refresh
    SHOOTERS_REFRESH_MINUTES: int = 30

    # Final winner bonus
    FINAL_WINNER_COMPETITION_KEYWORD: str = "Champions League"
    FINAL_WINNER_POINTS: int = 5

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }

    @property
    def rugby_api_key(self) -> str:
        return self.API_SPORTS_RUGBY_KEY or self.API_SPORTS_KEY


settings = Settings()
