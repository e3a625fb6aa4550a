from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from shop.discounts.model import DiscountDefinition, DiscountStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # naive datetime из хранилища считаем UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def effective_status(discount: DiscountDefinition, now: Optional[datetime] = None) -> DiscountStatus:
    """
    Статус с поправкой на текущее время.
    Фоновой задачи, которая бы переключала статусы, нет, поэтому каждое
    чтение само исправляет снимок: active с прошедшим valid_until -> expired,
    scheduled с наступившим valid_from -> active.
    """
    now = as_utc(now) or utc_now()
    status = discount.status
    valid_from = as_utc(discount.valid_from)
    valid_until = as_utc(discount.valid_until)

    if status == DiscountStatus.SCHEDULED and valid_from is not None and valid_from <= now:
        status = DiscountStatus.ACTIVE

    if status == DiscountStatus.ACTIVE and valid_until is not None and valid_until <= now:
        status = DiscountStatus.EXPIRED

    return status


def refresh_status(discount: DiscountDefinition, now: Optional[datetime] = None) -> DiscountDefinition:
    status = effective_status(discount, now)
    if status == discount.status:
        return discount
    return replace(discount, status=status)


def refresh_all(discounts: Iterable[DiscountDefinition], now: Optional[datetime] = None) -> List[DiscountDefinition]:
    now = as_utc(now) or utc_now()
    return [refresh_status(d, now) for d in discounts]
