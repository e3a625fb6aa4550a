"""
Аналитика по истории применений скидок.

Функции чистые: на вход записи UsageRecord (или сами скидки), на выход
готовые агрегаты для отчёта. Время везде в UTC.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from shop.discounts.model import (
    CustomerUsage,
    DayUsage,
    DiscountConversion,
    DiscountDefinition,
    DiscountKind,
    DiscountStatus,
    GroupBy,
    KindUsage,
    MonthTrend,
    PeriodUsage,
    UsageRecord,
)
from shop.discounts.status import as_utc
from shop.utils.money import ZERO, round_money

TOP_CUSTOMERS = 10
PEAK_DAYS = 10
RECENT_USAGE = 10
LEAST_PERFORMING = 5
LEAST_PERFORMING_MIN_VIEWS = 10
TREND_MONTHS = 12


def conversion_rate(usage: int, views: int) -> Decimal:
    if not views:
        return round_money(ZERO)
    return round_money(Decimal(usage) / Decimal(views) * 100)


def average(total: Decimal, count: int) -> Decimal:
    return round_money(total / count if count else ZERO)


def _month_key(year: int, month: int) -> str:
    return f"{year}-{month:02d}"


def period_key(moment: datetime, group_by: GroupBy) -> str:
    moment = as_utc(moment)
    if group_by == GroupBy.DAY:
        return moment.date().isoformat()
    if group_by == GroupBy.WEEK:
        # ISO-неделя: 2026-W01 начинается с понедельника
        year, week, _ = moment.isocalendar()
        return f"{year}-W{week:02d}"
    return _month_key(moment.year, moment.month)


def filter_by_date(
    records: Iterable[UsageRecord],
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> List[UsageRecord]:
    # обе границы включительно
    date_from, date_to = as_utc(date_from), as_utc(date_to)
    return [
        r
        for r in records
        if (date_from is None or r.applied_at >= date_from) and (date_to is None or r.applied_at <= date_to)
    ]


def _chronological(records: Iterable[UsageRecord]) -> List[UsageRecord]:
    return sorted(records, key=lambda r: r.applied_at)


def usage_by_period(records: Iterable[UsageRecord], group_by: GroupBy = GroupBy.DAY) -> Tuple[PeriodUsage, ...]:
    buckets: Dict[str, dict] = {}
    for r in records:
        key = period_key(r.applied_at, group_by)
        bucket = buckets.setdefault(key, {"usage": 0, "savings": ZERO, "order_value": ZERO, "customers": set()})
        bucket["usage"] += 1
        bucket["savings"] += r.discount_amount
        bucket["order_value"] += r.order_value
        if r.customer_id:
            bucket["customers"].add(r.customer_id)

    return tuple(
        PeriodUsage(
            period=key,
            usage=b["usage"],
            savings=round_money(b["savings"]),
            order_value=round_money(b["order_value"]),
            unique_customers=len(b["customers"]),
        )
        for key, b in sorted(buckets.items())
    )


def top_customers(records: Iterable[UsageRecord], limit: int = TOP_CUSTOMERS) -> Tuple[CustomerUsage, ...]:
    """Покупатели по сумме сэкономленного, при равенстве в порядке первого заказа."""
    stats: Dict[str, List] = {}
    for r in _chronological(records):
        if not r.customer_id:
            continue
        row = stats.setdefault(r.customer_id, [0, ZERO, ZERO])
        row[0] += 1
        row[1] += r.discount_amount
        row[2] += r.order_value

    ranked = sorted(stats.items(), key=lambda kv: kv[1][1], reverse=True)
    return tuple(
        CustomerUsage(
            customer_id=customer_id,
            usage=usage,
            savings=round_money(savings),
            order_value=round_money(order_value),
        )
        for customer_id, (usage, savings, order_value) in ranked[:limit]
    )


def peak_usage_days(records: Iterable[UsageRecord], limit: int = PEAK_DAYS) -> Tuple[DayUsage, ...]:
    daily: Dict[str, int] = {}
    for r in _chronological(records):
        key = period_key(r.applied_at, GroupBy.DAY)
        daily[key] = daily.get(key, 0) + 1

    ranked = sorted(daily.items(), key=lambda kv: kv[1], reverse=True)
    return tuple(DayUsage(date=day, usage=count) for day, count in ranked[:limit])


def recent_usage(records: Iterable[UsageRecord], limit: int = RECENT_USAGE) -> Tuple[UsageRecord, ...]:
    return tuple(sorted(records, key=lambda r: r.applied_at, reverse=True)[:limit])


def monthly_trends(records: Iterable[UsageRecord], now: datetime, months: int = TREND_MONTHS) -> Tuple[MonthTrend, ...]:
    """Последние `months` месяцев, включая текущий, от старого к новому; пустые месяцы тоже есть."""
    now = as_utc(now)
    keys = []
    for back in range(months - 1, -1, -1):
        year, month0 = divmod(now.year * 12 + now.month - 1 - back, 12)
        keys.append(_month_key(year, month0 + 1))

    usage = {key: 0 for key in keys}
    savings = {key: ZERO for key in keys}
    for r in records:
        key = period_key(r.applied_at, GroupBy.MONTH)
        if key in usage:
            usage[key] += 1
            savings[key] += r.discount_amount

    return tuple(MonthTrend(month=key, usage=usage[key], savings=round_money(savings[key])) for key in keys)


def usage_by_type(discounts: Sequence[DiscountDefinition]) -> Tuple[KindUsage, ...]:
    result = []
    for kind in DiscountKind:
        of_kind = [d for d in discounts if d.kind == kind]
        if not of_kind:
            continue
        result.append(
            KindUsage(
                kind=kind,
                count=len(of_kind),
                usage=sum(d.current_usage for d in of_kind),
                savings=round_money(sum((d.total_savings for d in of_kind), ZERO)),
            )
        )
    return tuple(result)


def least_performing(
    discounts: Sequence[DiscountDefinition],
    limit: int = LEAST_PERFORMING,
) -> Tuple[DiscountConversion, ...]:
    """Активные скидки, которые часто смотрят (> 10 просмотров), но редко применяют."""
    seen = [
        d for d in discounts if d.status == DiscountStatus.ACTIVE and d.views > LEAST_PERFORMING_MIN_VIEWS
    ]
    ranked = sorted(seen, key=lambda d: Decimal(d.current_usage) / Decimal(d.views))
    return tuple(
        DiscountConversion(
            id=d.id,
            code=d.code,
            name=d.name,
            views=d.views,
            usage=d.current_usage,
            conversion_rate=conversion_rate(d.current_usage, d.views),
        )
        for d in ranked[:limit]
    )
