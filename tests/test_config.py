import os
import subprocess
import sys
from pathlib import Path

import pytest

from shop import config


def test_test_mode_has_no_pg(monkeypatch):
    monkeypatch.setenv("DISCOUNTS_PATH", "/tmp/shop/discounts.json")
    monkeypatch.setenv("LOG_LEVEL", " debug ")

    cfg = config.load_config()

    assert config.IS_TEST
    assert cfg.pg is None
    assert cfg.discounts_path == "/tmp/shop/discounts.json"
    assert cfg.log_level == "DEBUG"
    assert (cfg.code_length, cfg.code_attempts) == (8, 10)


@pytest.mark.parametrize(
    "name, value",
    [("DISCOUNT_CODE_LENGTH", "3"), ("DISCOUNT_CODE_ATTEMPTS", "0")],
)
def test_code_generation_settings_are_checked(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(RuntimeError):
        config.load_config()


def test_pg_config_lists_missing_variables(monkeypatch):
    for name in ("PG_HOST", "PG_DB", "PG_USER", "PG_PASS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PG_HOST", "db")

    with pytest.raises(RuntimeError) as exc:
        config._load_pg_config()

    assert "PG_DB, PG_USER, PG_PASS" in str(exc.value)


def test_pg_config_defaults(monkeypatch):
    monkeypatch.setenv("PG_HOST", "db")
    monkeypatch.setenv("PG_DB", "shop")
    monkeypatch.setenv("PG_USER", "shop")
    monkeypatch.setenv("PG_PASS", "secret")
    monkeypatch.delenv("PG_PORT", raising=False)
    monkeypatch.delenv("PG_SSLMODE", raising=False)

    pg = config._load_pg_config()

    assert pg.port == 5432
    assert pg.sslmode == "disable"
    assert "secret" not in pg.describe()


@pytest.mark.parametrize(
    "raw, expected",
    [(None, False), ("1", True), (" Yes ", True), ("on", True), ("0", False), ("nope", False)],
)
def test_str_to_bool(raw, expected):
    assert config._str_to_bool(raw) is expected


def test_env_int(monkeypatch):
    monkeypatch.setenv("SHOP_N", "12")
    assert config._env_int("SHOP_N") == 12

    monkeypatch.setenv("SHOP_N", "twelve")
    assert config._env_int("SHOP_N", default=7) == 7
    with pytest.raises(RuntimeError):
        config._env_int("SHOP_N", required=True)

    monkeypatch.delenv("SHOP_N")
    with pytest.raises(RuntimeError):
        config._env_int("SHOP_N", required=True)


def test_config_import_does_not_pull_in_the_database_driver():
    root = Path(__file__).resolve().parent.parent
    script = "import sys, shop.config; sys.exit('asyncpg' in sys.modules)"
    env = {**os.environ, "APP_ENV": "test", "PYTHONPATH": str(root)}

    result = subprocess.run([sys.executable, "-c", script], cwd=root, env=env)

    assert result.returncode == 0
