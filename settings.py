import os
from dataclasses import dataclass, field
from typing import Dict

from dotenv import load_dotenv

# 1. Load environment variables from .env file
load_dotenv()

BACKENDS = ("memory", "file", "database")


def _flag(value: str | None, default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def parse_calendars(raw: str) -> Dict[str, str]:
    """Parse ``id:Display Name,other:Other`` into an ordered mapping."""
    calendars: Dict[str, str] = {}
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        calendar_id, _, display = chunk.partition(":")
        calendar_id = calendar_id.strip()
        calendars[calendar_id] = display.strip() or calendar_id
    return calendars


@dataclass
class Settings:
    backend: str = "file"
    bookings_file: str = os.path.join("data", "bookings.json")
    database_url: str | None = None
    fallback: bool = True
    enforce_overlap: bool = False
    calendars: Dict[str, str] = field(default_factory=lambda: {"fastlandbox": "Fastland Box"})
    ping_message: str = "ping"
    log_level: str = "INFO"
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        env = os.environ if environ is None else environ

        backend = env.get("BOOKINGS_BACKEND", "file").strip().lower()
        if backend not in BACKENDS:
            raise ValueError(f"BOOKINGS_BACKEND must be one of {', '.join(BACKENDS)}, got {backend!r}")

        # 2. Get the URL. If the database backend is selected without one, fail fast.
        database_url = env.get("DATABASE_URL") or None
        if backend == "database" and not database_url:
            raise ValueError("DATABASE_URL is not set. Please check your .env file.")

        origins = [o.strip() for o in env.get("CORS_ORIGINS", "*").split(",") if o.strip()]

        return cls(
            backend=backend,
            bookings_file=env.get("BOOKINGS_FILE") or os.path.join("data", "bookings.json"),
            database_url=database_url,
            fallback=_flag(env.get("BOOKINGS_FALLBACK"), True),
            enforce_overlap=_flag(env.get("BOOKINGS_ENFORCE_OVERLAP"), False),
            calendars=parse_calendars(env.get("CALENDARS", "fastlandbox:Fastland Box")),
            ping_message=env.get("PING_MESSAGE", "ping"),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            cors_origins=origins or ["*"],
        )
