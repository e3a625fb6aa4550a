from __future__ import annotations

import json
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncIterator, Dict, List, Optional

import asyncpg

from shop.discounts.codes import normalize_code
from shop.discounts.errors import DiscountNotFound, DuplicateCodeError
from shop.discounts.model import DiscountDefinition, DiscountStatus, UsageDelta
from shop.discounts.schema import dump_discount, parse_discount

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS discounts (
    id                 text PRIMARY KEY,
    code               text UNIQUE,
    definition         jsonb NOT NULL,
    status             text NOT NULL,
    is_automatic       boolean NOT NULL DEFAULT false,
    current_usage      integer NOT NULL DEFAULT 0,
    total_savings      numeric(14, 2) NOT NULL DEFAULT 0,
    total_order_value  numeric(14, 2) NOT NULL DEFAULT 0,
    views              integer NOT NULL DEFAULT 0,
    last_used          timestamptz,
    created_at         timestamptz NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS discount_usages (
    id               bigserial PRIMARY KEY,
    discount_id      text NOT NULL REFERENCES discounts (id),
    order_id         text,
    customer_id      text,
    discount_amount  numeric(14, 2) NOT NULL,
    order_value      numeric(14, 2) NOT NULL,
    used_at          timestamptz NOT NULL
);

CREATE INDEX IF NOT EXISTS discount_usages_discount_customer
    ON discount_usages (discount_id, customer_id);
"""

_SELECT = """
SELECT
    id,
    code,
    definition,
    status,
    current_usage,
    total_savings,
    total_order_value,
    views,
    last_used,
    created_at
FROM discounts
"""

# счётчики живут в колонках, а не в JSON-определении
_COUNTER_KEYS = (
    "currentUsage",
    "customerUsage",
    "totalSavings",
    "totalOrderValue",
    "views",
    "lastUsed",
    "createdAt",
)


def _definition(row) -> dict:
    raw = row["definition"]
    # пул из shop.db.pool отдаёт dict, голый asyncpg строку
    if isinstance(raw, str):
        raw = json.loads(raw)
    return dict(raw)


def row_to_discount(row, customer_usage: Optional[Dict[str, int]] = None) -> DiscountDefinition:
    raw = _definition(row)
    raw.update(
        id=row["id"],
        code=row["code"],
        status=row["status"],
        currentUsage=row["current_usage"],
        customerUsage=customer_usage or {},
        totalSavings=row["total_savings"],
        totalOrderValue=row["total_order_value"],
        views=row["views"],
        lastUsed=row["last_used"],
        createdAt=row["created_at"],
    )
    return parse_discount(raw)


class PgRedemption:
    def __init__(self, storage: "PgDiscountStorage", conn, discount: Optional[DiscountDefinition]):
        self._storage = storage
        self._conn = conn
        self.discount = discount

    async def increment(self, delta: UsageDelta, order_id: Optional[str] = None) -> DiscountDefinition:
        # та же транзакция, что и SELECT ... FOR UPDATE в locked()
        self.discount = await self._storage._increment(self._conn, delta, order_id)
        return self.discount


class PgDiscountStorage:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def ensure_schema(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)

    async def _customer_usage(self, conn, discount_id: str) -> Dict[str, int]:
        sql = """
        SELECT customer_id, COUNT(*) AS uses
        FROM discount_usages
        WHERE discount_id = $1 AND customer_id IS NOT NULL
        GROUP BY customer_id
        """
        rows = await conn.fetch(sql, discount_id)
        return {str(r["customer_id"]): int(r["uses"]) for r in rows}

    async def _load(self, conn, row) -> Optional[DiscountDefinition]:
        if not row:
            return None
        return row_to_discount(row, await self._customer_usage(conn, row["id"]))

    async def find_by_code(self, code: str) -> Optional[DiscountDefinition]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(_SELECT + "WHERE code = $1", normalize_code(code))
            return await self._load(conn, row)

    async def get(self, discount_id: str) -> Optional[DiscountDefinition]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(_SELECT + "WHERE id = $1", discount_id)
            return await self._load(conn, row)

    async def list_all(self, status: Optional[DiscountStatus] = None) -> List[DiscountDefinition]:
        async with self.pool.acquire() as conn:
            if status is None:
                rows = await conn.fetch(_SELECT + "ORDER BY created_at")
            else:
                rows = await conn.fetch(_SELECT + "WHERE status = $1 ORDER BY created_at", status.value)
            return [await self._load(conn, row) for row in rows]

    async def code_exists(self, code: str) -> bool:
        sql = "SELECT EXISTS (SELECT 1 FROM discounts WHERE code = $1)"
        async with self.pool.acquire() as conn:
            return bool(await conn.fetchval(sql, normalize_code(code)))

    async def create(self, discount: DiscountDefinition) -> DiscountDefinition:
        definition = {k: v for k, v in dump_discount(discount).items() if k not in _COUNTER_KEYS}
        created_at = discount.created_at or datetime.now(timezone.utc)

        sql = """
        INSERT INTO discounts (id, code, definition, status, is_automatic, created_at)
        VALUES ($1, $2, $3::jsonb, $4, $5, $6)
        """
        async with self.pool.acquire() as conn:
            try:
                await conn.execute(
                    sql,
                    discount.id,
                    discount.code,
                    definition,
                    discount.status.value,
                    discount.is_automatic,
                    created_at,
                )
            except asyncpg.UniqueViolationError as e:
                raise DuplicateCodeError(discount.code or discount.id) from e

        return replace(discount, created_at=created_at)

    async def record_view(self, discount_id: str) -> None:
        sql = "UPDATE discounts SET views = views + 1 WHERE id = $1"
        async with self.pool.acquire() as conn:
            await conn.execute(sql, discount_id)

    async def usage_history(self, discount_id: str) -> List[dict]:
        sql = """
        SELECT order_id, customer_id, discount_amount, order_value, used_at
        FROM discount_usages
        WHERE discount_id = $1
        ORDER BY used_at
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql, discount_id)
        return [
            {
                "orderId": r["order_id"],
                "customerId": r["customer_id"],
                "discountAmount": str(r["discount_amount"]),
                "originalAmount": str(r["order_value"]),
                "appliedAt": r["used_at"].isoformat(),
            }
            for r in rows
        ]

    async def _increment(self, conn, delta: UsageDelta, order_id: Optional[str]) -> DiscountDefinition:
        now = datetime.now(timezone.utc)

        row = await conn.fetchrow(
            """
            UPDATE discounts
               SET current_usage = current_usage + 1,
                   total_savings = total_savings + $2,
                   total_order_value = total_order_value + $3,
                   last_used = $4
             WHERE id = $1
         RETURNING id, code, definition, status, current_usage, total_savings,
                   total_order_value, views, last_used, created_at
            """,
            delta.discount_id,
            Decimal(delta.discount_amount),
            Decimal(delta.order_value),
            now,
        )
        if row is None:
            raise DiscountNotFound(delta.discount_id)

        await conn.execute(
            """
            INSERT INTO discount_usages
                (discount_id, order_id, customer_id, discount_amount, order_value, used_at)
            VALUES ($1, $2, $3, $4, $5, $6)
            """,
            delta.discount_id,
            order_id,
            delta.customer_id,
            Decimal(delta.discount_amount),
            Decimal(delta.order_value),
            now,
        )

        return await self._load(conn, row)

    async def increment_usage(self, delta: UsageDelta, order_id: Optional[str] = None) -> DiscountDefinition:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                return await self._increment(conn, delta, order_id)

    @asynccontextmanager
    async def locked(
        self, code: Optional[str] = None, *, discount_id: Optional[str] = None
    ) -> AsyncIterator[PgRedemption]:
        """
        Транзакция с блокировкой строки скидки: параллельные заказы по тому же
        коду ждут, пока эта проверка+инкремент не закоммитится.
        """
        if code:
            where, key = "WHERE code = $1", normalize_code(code)
        else:
            where, key = "WHERE id = $1", discount_id

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(_SELECT + where + " FOR UPDATE", key)
                discount = await self._load(conn, row)
                yield PgRedemption(self, conn, discount)
