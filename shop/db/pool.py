from __future__ import annotations

import json
import logging

import asyncpg

from shop.config import PgConfig

logger = logging.getLogger(__name__)


def _ssl_arg(sslmode: str):
    return None if sslmode == "disable" else True


async def _init_connection(conn: asyncpg.Connection) -> None:
    # jsonb с определениями скидок сразу в dict
    await conn.set_type_codec("jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog")


async def create_pool(cfg: PgConfig) -> asyncpg.Pool:
    pool = await asyncpg.create_pool(
        host=cfg.host,
        port=cfg.port,
        database=cfg.database,
        user=cfg.user,
        password=cfg.password,
        ssl=_ssl_arg(cfg.sslmode),
        min_size=cfg.min_size,
        max_size=cfg.max_size,
        command_timeout=30,
        init=_init_connection,
    )
    logger.info("PG pool ready: %s", cfg.describe())
    return pool


async def check_connection(pool: asyncpg.Pool) -> None:
    await pool.execute("select 1;")
