from shop.config import DISCOUNTS_PATH
from shop.discounts.service import DiscountService
from shop.discounts.storage import JsonDiscountStorage

# JSON-хранилище (test-режим / без PostgreSQL)
json_storage = JsonDiscountStorage(DISCOUNTS_PATH)

_pg_pool = None


def set_pg_pool(pool) -> None:
    global _pg_pool
    _pg_pool = pool


class DiscountStoreProxy:
    """
    Если пул PostgreSQL выставлен, всё идёт в PG, иначе в JSON.
    Счётчики из разных хранилищ не смешиваем: иначе атомарный инкремент теряет смысл.
    """

    def __init__(self, json_store: JsonDiscountStorage = json_storage):
        self._json = json_store
        self._pg_storage = None

    def _backend(self):
        # Ленивая инициализация, чтобы в test-режиме вообще не трогать PG-код.
        if self._pg_storage is None and _pg_pool is not None:
            from shop.discounts.pg_storage import PgDiscountStorage  # lazy import
            self._pg_storage = PgDiscountStorage(_pg_pool)
        return self._pg_storage or self._json

    async def find_by_code(self, code):
        return await self._backend().find_by_code(code)

    async def get(self, discount_id):
        return await self._backend().get(discount_id)

    async def list_all(self, status=None):
        return await self._backend().list_all(status)

    async def code_exists(self, code):
        return await self._backend().code_exists(code)

    async def create(self, discount):
        return await self._backend().create(discount)

    async def record_view(self, discount_id):
        await self._backend().record_view(discount_id)

    async def usage_history(self, discount_id):
        return await self._backend().usage_history(discount_id)

    async def increment_usage(self, delta, order_id=None):
        return await self._backend().increment_usage(delta, order_id)

    def locked(self, code=None, *, discount_id=None):
        return self._backend().locked(code, discount_id=discount_id)


discount_service = DiscountService(DiscountStoreProxy())
