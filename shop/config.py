from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv
import os

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"


def _str_to_bool(v: str | None, default: bool = False) -> bool:
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


# === Режим приложения ===
# - APP_ENV=prod  → прод (PostgreSQL)
# - APP_ENV=test  → тест (JSON-файл со скидками)
APP_ENV = (os.getenv("APP_ENV") or "prod").strip().lower()
IS_PROD = APP_ENV == "prod"
IS_TEST = not IS_PROD

DISCOUNTS_PATH = os.getenv("DISCOUNTS_PATH") or str(DATA_DIR / "discounts.json")


def _env_int(name: str, *, required: bool = False, default: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        if required:
            raise RuntimeError(f"{name} is not set")
        return default
    try:
        return int(raw)
    except ValueError as e:
        if required:
            raise RuntimeError(f"{name} must be an integer") from e
        return default


@dataclass(frozen=True)
class PgConfig:
    host: str
    port: int
    database: str
    user: str
    password: str
    sslmode: str = "disable"
    min_size: int = 1
    max_size: int = 10

    def describe(self) -> str:
        # без пароля, для логов
        return f"{self.user}@{self.host}:{self.port}/{self.database}"


@dataclass
class Config:
    discounts_path: str
    code_length: int = 8
    code_attempts: int = 10
    log_level: str = "INFO"
    ensure_schema: bool = False
    pg: PgConfig | None = None


def _load_pg_config() -> PgConfig:
    missing = [name for name in ("PG_HOST", "PG_DB", "PG_USER", "PG_PASS") if not os.getenv(name)]
    if missing:
        raise RuntimeError(f"{', '.join(missing)} is not set (APP_ENV=prod)")

    return PgConfig(
        host=os.getenv("PG_HOST"),
        port=_env_int("PG_PORT", default=5432),
        database=os.getenv("PG_DB"),
        user=os.getenv("PG_USER"),
        password=os.getenv("PG_PASS"),
        sslmode=os.getenv("PG_SSLMODE", "disable"),
    )


def load_config() -> Config:
    code_length = _env_int("DISCOUNT_CODE_LENGTH", default=8)
    code_attempts = _env_int("DISCOUNT_CODE_ATTEMPTS", default=10)
    if code_length < 4:
        raise RuntimeError("DISCOUNT_CODE_LENGTH must be at least 4")
    if code_attempts < 1:
        raise RuntimeError("DISCOUNT_CODE_ATTEMPTS must be positive")

    return Config(
        discounts_path=os.getenv("DISCOUNTS_PATH") or DISCOUNTS_PATH,
        code_length=code_length,
        code_attempts=code_attempts,
        log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
        ensure_schema=_str_to_bool(os.getenv("PG_ENSURE_SCHEMA"), default=False),
        pg=_load_pg_config() if IS_PROD else None,
    )
