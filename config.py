import os
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List

from starlette.requests import Request

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 60 * 60, "d": 24 * 60 * 60}


def parse_duration(value: str) -> int:
    """Parse `90d`, `12h`, `30m`, `45s` or plain seconds into seconds."""
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return int(amount) * _UNIT_SECONDS[unit]


def build_database_url(url: str, password: str) -> str:
    return url.replace("<PASSWORD>", password)


@dataclass
class Settings:
    env: str = "development"
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "natours"
    jwt_secret: str = "dev-secret-change-me"
    jwt_expires_in: int = 90 * 24 * 60 * 60
    jwt_cookie_expires_in_days: int = 90
    email_host: str = "localhost"
    email_port: int = 25
    email_username: str = ""
    email_password: str = ""
    email_from: str = "Natours <admin@natours.io>"
    rate_limit_max: int = 100
    rate_limit_window: int = 60 * 60
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            env=os.getenv("NODE_ENV", os.getenv("APP_ENV", "development")),
            database_url=build_database_url(
                os.getenv("DATABASE", "mongodb://localhost:27017"),
                os.getenv("DATABASE_PASSWORD", ""),
            ),
            database_name=os.getenv("DATABASE_NAME", "natours"),
            jwt_secret=os.getenv("JWT_SECRET", "dev-secret-change-me"),
            jwt_expires_in=parse_duration(os.getenv("JWT_EXPIRES_IN", "90d")),
            jwt_cookie_expires_in_days=int(os.getenv("JWT_COOKIE_EXPIRES_IN", "90")),
            email_host=os.getenv("EMAIL_HOST", "localhost"),
            email_port=int(os.getenv("EMAIL_PORT", "25")),
            email_username=os.getenv("EMAIL_USERNAME", ""),
            email_password=os.getenv("EMAIL_PASSWORD", ""),
            email_from=os.getenv("EMAIL_FROM", "Natours <admin@natours.io>"),
            rate_limit_max=int(os.getenv("RATE_LIMIT_MAX", "100")),
            rate_limit_window=int(os.getenv("RATE_LIMIT_WINDOW", str(60 * 60))),
            cors_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()


def app_settings(request: Request) -> Settings:
    """Settings bound to the running app, falling back to the environment."""
    return getattr(request.app.state, "settings", None) or get_settings()
