import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path


DEFAULT_DB_PATH = "data/chat/chat.db"
DEFAULT_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def load_project_env(override: bool = False) -> None:
    root_env = Path(__file__).resolve().parents[2] / ".env"
    if not root_env.exists():
        return

    for raw_line in root_env.read_text(encoding="utf-8-sig").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue

        if (value.startswith('"') and value.endswith('"')) or (
            value.startswith("'") and value.endswith("'")
        ):
            value = value[1:-1]

        if override or key not in os.environ:
            os.environ[key] = value


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    """Process settings resolved from the environment."""

    db_path: Path = Path(DEFAULT_DB_PATH)
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    turn_timeout_seconds: int = 120
    mock_delay_ms: int = 30
    max_text_length: int = 12000
    default_chat_title: str = "New Chat"


def build_settings() -> Settings:
    return Settings(
        db_path=Path(os.getenv("CHATSTREAM_DB_PATH", "").strip() or DEFAULT_DB_PATH),
        cors_origins=_env_list("CHATSTREAM_CORS_ORIGINS", DEFAULT_CORS_ORIGINS),
        turn_timeout_seconds=_env_int("CHATSTREAM_TURN_TIMEOUT_SECONDS", 120),
        mock_delay_ms=_env_int("CHATSTREAM_MOCK_DELAY_MS", 30),
        max_text_length=_env_int("CHATSTREAM_MAX_TEXT_LENGTH", 12000),
        default_chat_title=os.getenv("CHATSTREAM_DEFAULT_CHAT_TITLE", "").strip() or "New Chat",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return build_settings()
