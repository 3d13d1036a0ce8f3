import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

DEFAULT_TOKEN_TTL_HOURS = 24
DEFAULT_RADIUS_KM = 5.0


def _parse_csv_env(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes"}


def _env_positive_int(name: str, default: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


def _env_positive_float(name: str, default: float) -> float:
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


@dataclass
class Settings:
    db_path: str
    auth_secret: str
    token_ttl_hours: int = DEFAULT_TOKEN_TTL_HOURS
    auth_required: bool = False
    default_search_radius_km: float = DEFAULT_RADIUS_KM
    notify_radius_km: float = DEFAULT_RADIUS_KM
    order_id_prefix: str = "GQ_"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    trusted_hosts: List[str] = field(default_factory=lambda: ["*"])
    firebase_credentials_path: str = ""


def load_settings() -> Settings:
    default_db = str(Path(__file__).resolve().parents[1] / "data" / "market.sqlite3")
    return Settings(
        db_path=os.getenv("GROOMQUOTE_DB_PATH", default_db),
        auth_secret=os.getenv("AUTH_SECRET", "dev-insecure-secret-change-me"),
        token_ttl_hours=_env_positive_int("AUTH_TOKEN_TTL_HOURS", DEFAULT_TOKEN_TTL_HOURS),
        auth_required=_env_bool("AUTH_REQUIRED"),
        default_search_radius_km=_env_positive_float("DEFAULT_SEARCH_RADIUS_KM", DEFAULT_RADIUS_KM),
        notify_radius_km=_env_positive_float("NOTIFY_RADIUS_KM", DEFAULT_RADIUS_KM),
        order_id_prefix=os.getenv("ORDER_ID_PREFIX", "GQ_").strip() or "GQ_",
        cors_origins=_parse_csv_env("CORS_ORIGINS", "*"),
        trusted_hosts=_parse_csv_env("TRUSTED_HOSTS", "*"),
        firebase_credentials_path=os.getenv("FIREBASE_CREDENTIALS_PATH", "").strip(),
    )


settings = load_settings()
