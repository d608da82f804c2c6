import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

DEFAULT_DB_URL = "sqlite:///./todos.db"


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name, "") or "").strip() or default


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in _env(name, default).split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DB_URL
    cron_secret: Optional[str] = None
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the environment, reading a local .env first."""
        load_dotenv(override=False)
        port = _env("PORT", "8000")
        try:
            port_value = int(port)
        except ValueError:
            raise ValueError(f"PORT must be an integer, got {port!r}") from None
        return cls(
            database_url=_env("DATABASE_URL", DEFAULT_DB_URL),
            # an empty CRON_SECRET counts as not configured
            cron_secret=_env("CRON_SECRET") or None,
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            host=_env("HOST", "127.0.0.1"),
            port=port_value,
            cors_origins=_env_list("CORS_ORIGINS", "*"),
        )
