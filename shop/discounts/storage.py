import asyncio
import json
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncIterator, Dict, List, Optional

from shop.discounts.codes import normalize_code
from shop.discounts.errors import ConfigurationError, DiscountNotFound, DuplicateCodeError
from shop.discounts.model import DiscountDefinition, DiscountStatus, UsageDelta
from shop.discounts.schema import dump_discount, parse_discount


class JsonRedemption:
    """Ручка на скидку, взятую под замок хранилища (см. JsonDiscountStorage.locked)."""

    def __init__(self, storage: "JsonDiscountStorage", discount: Optional[DiscountDefinition]):
        self._storage = storage
        self.discount = discount

    async def increment(self, delta: UsageDelta, order_id: Optional[str] = None) -> DiscountDefinition:
        # замок уже взят в locked()
        self.discount = self._storage._increment_unlocked(delta, order_id)
        return self.discount


class JsonDiscountStorage:
    """
    Скидки в одном JSON-файле: {"discounts": [...]}.
    Все read-modify-write идут под asyncio.Lock, запись атомарная (tmp + os.replace).
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = asyncio.Lock()

    def _read_json(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        # битый файл: ошибка, а не пустой список
        with open(self.path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Discounts file {self.path} is not valid JSON: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("discounts", []), list):
            raise ConfigurationError(f"Discounts file {self.path} has unexpected structure")
        return data

    def _atomic_write_json(self, data: dict) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp = f"{self.path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp, self.path)

    def _raw_discounts(self) -> List[dict]:
        return list(self._read_json().get("discounts", []))

    def _write_discounts(self, discounts: List[dict]) -> None:
        data = self._read_json()
        data["discounts"] = discounts
        self._atomic_write_json(data)

    @staticmethod
    def _find_index(discounts: List[dict], *, code: Optional[str] = None, discount_id: Optional[str] = None) -> int:
        for i, raw in enumerate(discounts):
            if code is not None and raw.get("code") and normalize_code(raw["code"]) == code:
                return i
            if discount_id is not None and str(raw.get("id")) == discount_id:
                return i
        return -1

    async def find_by_code(self, code: str) -> Optional[DiscountDefinition]:
        code = normalize_code(code)
        async with self._lock:
            discounts = self._raw_discounts()

        idx = self._find_index(discounts, code=code)
        if idx == -1:
            return None
        return parse_discount(discounts[idx])

    async def get(self, discount_id: str) -> Optional[DiscountDefinition]:
        async with self._lock:
            discounts = self._raw_discounts()

        idx = self._find_index(discounts, discount_id=discount_id)
        if idx == -1:
            return None
        return parse_discount(discounts[idx])

    async def list_all(self, status: Optional[DiscountStatus] = None) -> List[DiscountDefinition]:
        async with self._lock:
            discounts = [parse_discount(raw) for raw in self._raw_discounts()]

        if status is None:
            return discounts
        return [d for d in discounts if d.status == status]

    async def code_exists(self, code: str) -> bool:
        code = normalize_code(code)
        async with self._lock:
            return self._find_index(self._raw_discounts(), code=code) != -1

    async def create(self, discount: DiscountDefinition) -> DiscountDefinition:
        async with self._lock:
            discounts = self._raw_discounts()
            if discount.code and self._find_index(discounts, code=normalize_code(discount.code)) != -1:
                raise DuplicateCodeError(discount.code)
            discounts.append(dump_discount(discount))
            self._write_discounts(discounts)
        return discount

    async def record_view(self, discount_id: str) -> None:
        async with self._lock:
            discounts = self._raw_discounts()
            idx = self._find_index(discounts, discount_id=discount_id)
            if idx == -1:
                return
            discounts[idx]["views"] = int(discounts[idx].get("views", 0)) + 1
            discounts[idx]["lastViewed"] = datetime.now(timezone.utc).isoformat()
            self._write_discounts(discounts)

    async def usage_history(self, discount_id: str) -> List[dict]:
        async with self._lock:
            discounts = self._raw_discounts()
        idx = self._find_index(discounts, discount_id=discount_id)
        if idx == -1:
            raise DiscountNotFound(discount_id)
        return list(discounts[idx].get("usageHistory", []))

    def _increment_unlocked(self, delta: UsageDelta, order_id: Optional[str]) -> DiscountDefinition:
        discounts = self._raw_discounts()
        idx = self._find_index(discounts, discount_id=delta.discount_id)
        if idx == -1:
            raise DiscountNotFound(delta.discount_id)

        raw = discounts[idx]
        now = datetime.now(timezone.utc).isoformat()

        raw["currentUsage"] = int(raw.get("currentUsage") or 0) + 1
        raw["totalSavings"] = str(Decimal(str(raw.get("totalSavings") or 0)) + delta.discount_amount)
        raw["totalOrderValue"] = str(Decimal(str(raw.get("totalOrderValue") or 0)) + delta.order_value)

        if delta.customer_id:
            usage: Dict[str, int] = dict(raw.get("customerUsage") or {})
            usage[delta.customer_id] = int(usage.get(delta.customer_id, 0)) + 1
            raw["customerUsage"] = usage

        raw["lastUsed"] = now
        raw.setdefault("usageHistory", []).append(
            {
                "orderId": order_id,
                "customerId": delta.customer_id,
                "discountAmount": str(delta.discount_amount),
                "originalAmount": str(delta.order_value),
                "appliedAt": now,
            }
        )

        self._write_discounts(discounts)
        return parse_discount(raw)

    async def increment_usage(self, delta: UsageDelta, order_id: Optional[str] = None) -> DiscountDefinition:
        async with self._lock:
            return self._increment_unlocked(delta, order_id)

    @asynccontextmanager
    async def locked(
        self, code: Optional[str] = None, *, discount_id: Optional[str] = None
    ) -> AsyncIterator[JsonRedemption]:
        """
        Чтение + проверка + инкремент одним куском: пока ручка жива,
        никто другой не может поменять файл.
        """
        code = normalize_code(code) if code else None
        async with self._lock:
            discounts = self._raw_discounts()
            idx = self._find_index(discounts, code=code, discount_id=discount_id)
            discount = parse_discount(discounts[idx]) if idx != -1 else None
            yield JsonRedemption(self, discount)
