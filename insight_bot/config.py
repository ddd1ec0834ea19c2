from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DATA_DIR = BASE_DIR / "data"


def _resolve_path(raw_path: str | None, default_path: Path) -> Path:
    if not raw_path:
        return default_path
    path = Path(raw_path).expanduser()
    if path.is_absolute():
        return path
    return (BASE_DIR / path).resolve()


# Load .env early so path env vars are available for module-level constants.
load_dotenv()

DATA_DIR = _resolve_path(os.getenv("DATA_DIR"), DEFAULT_DATA_DIR)
EXPORTS_DIR = DATA_DIR / "exports"
DB_PATH = _resolve_path(os.getenv("DB_PATH"), DATA_DIR / "interviews.db")


@dataclass(frozen=True)
class AppConfig:
    telegram_bot_token: str
    openai_api_key: str
    openai_model: str = "gpt-4.1-nano"
    openai_insights_model: str = "gpt-4.1"
    max_respondent_turns: int = 4
    history_limit: int = 10
    openai_max_attempts: int = 1


class ConfigError(RuntimeError):
    pass


def _int_in_range(name: str, default: str, low: int, high: int) -> int:
    raw = os.getenv(name, default).strip() or default
    try:
        value = int(raw)
        if value < low or value > high:
            raise ValueError
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer in range [{low}, {high}]") from exc
    return value


def load_config() -> AppConfig:
    load_dotenv()

    telegram_bot_token = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
    openai_api_key = os.getenv("OPENAI_API_KEY", "").strip()
    openai_model = os.getenv("OPENAI_MODEL", "gpt-4.1-nano").strip() or "gpt-4.1-nano"
    openai_insights_model = os.getenv("OPENAI_INSIGHTS_MODEL", "gpt-4.1").strip() or "gpt-4.1"

    if not telegram_bot_token:
        raise ConfigError("Missing TELEGRAM_BOT_TOKEN in environment/.env")
    if not openai_api_key:
        raise ConfigError("Missing OPENAI_API_KEY in environment/.env")

    max_respondent_turns = _int_in_range("MAX_RESPONDENT_TURNS", "4", 1, 20)
    history_limit = _int_in_range("HISTORY_LIMIT", "10", 2, 50)
    openai_max_attempts = _int_in_range("OPENAI_MAX_ATTEMPTS", "1", 1, 5)

    return AppConfig(
        telegram_bot_token=telegram_bot_token,
        openai_api_key=openai_api_key,
        openai_model=openai_model,
        openai_insights_model=openai_insights_model,
        max_respondent_turns=max_respondent_turns,
        history_limit=history_limit,
        openai_max_attempts=openai_max_attempts,
    )


def ensure_data_dirs() -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    EXPORTS_DIR.mkdir(parents=True, exist_ok=True)
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
