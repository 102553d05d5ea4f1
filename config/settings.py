"""
Process-wide settings for the dashboard backend.

Values come from the environment (a local .env is loaded first).
"""
import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()

DEFAULT_USD_JPY = 154.5
DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://localhost:3000"


def _env_flag(name: str, default: str) -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes", "on")


def _split_list(raw: str) -> List[str]:
    return [item.strip() for item in (raw or "").split(",") if item.strip()]


def _env_list(name: str, default: str) -> List[str]:
    return _split_list(os.getenv(name, default))


@dataclass
class Settings:
    default_usd_jpy: float = DEFAULT_USD_JPY
    price_jitter: float = 0.05
    seed_demo_portfolio: bool = True
    refresh_on_startup: bool = True
    history_months: int = 6
    cors_origins: List[str] = field(default_factory=lambda: _split_list(DEFAULT_CORS_ORIGINS))

    @staticmethod
    def from_env() -> "Settings":
        return Settings(
            default_usd_jpy=float(os.getenv("DEFAULT_USD_JPY", str(DEFAULT_USD_JPY))),
            price_jitter=float(os.getenv("MOCK_PRICE_JITTER", "0.05")),
            seed_demo_portfolio=_env_flag("SEED_DEMO_PORTFOLIO", "1"),
            refresh_on_startup=_env_flag("REFRESH_ON_STARTUP", "1"),
            history_months=int(os.getenv("HISTORY_MONTHS", "6")),
            cors_origins=_env_list("CORS_ORIGINS", DEFAULT_CORS_ORIGINS),
        )
