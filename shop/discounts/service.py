from __future__ import annotations

import logging
import secrets
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Union

from shop.discounts.calculator import compute_discount, usage_delta
from shop.discounts.codes import CODE_LENGTH, MAX_ATTEMPTS, generate_unique_code, normalize_code
from shop.discounts.errors import (
    ConfigurationError,
    DiscountNotFound,
    DuplicateCodeError,
    RedemptionRejected,
)
from shop.discounts.model import (
    AutomaticDiscounts,
    CalculationResult,
    CartSnapshot,
    DiscountDefinition,
    DiscountListing,
    DiscountStats,
    DiscountStatus,
    Evaluation,
    GroupBy,
    StoreAnalytics,
    TopDiscount,
    UsageRecord,
    UsageReport,
)
from shop.discounts import usage
from shop.discounts.schema import parse_dt, parse_discount, parse_usage
from shop.discounts.status import as_utc, refresh_all, refresh_status, utc_now
from shop.discounts.validator import validate_eligibility
from shop.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)

TOP_PERFORMING = 5


def _new_id() -> str:
    return f"discount_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


def _new_subtotal(cart: CartSnapshot, calculation: Optional[CalculationResult]) -> Decimal:
    if calculation is None:
        return round_money(cart.subtotal)
    return round_money(max(ZERO, cart.subtotal - calculation.discount_amount))


class DiscountService:
    """
    Проверка и применение скидок поверх хранилища.

    Хранилище: JsonDiscountStorage, PgDiscountStorage или прокси над ними;
    сам расчёт (validate_eligibility/compute_discount) чистый и счётчики не трогает.
    """

    def __init__(self, storage, *, code_length: int = CODE_LENGTH, code_attempts: int = MAX_ATTEMPTS):
        self.storage = storage
        self.code_length = code_length
        self.code_attempts = code_attempts

    def _compute(self, discount: DiscountDefinition, cart: CartSnapshot) -> CalculationResult:
        try:
            return compute_discount(discount, cart)
        except ConfigurationError:
            logger.error("Broken discount definition %s (%s)", discount.id, discount.code, exc_info=True)
            raise

    def _check(self, discount: DiscountDefinition, cart: CartSnapshot, now: datetime) -> Evaluation:
        eligibility = validate_eligibility(discount, cart, now)
        if not eligibility.valid:
            return Evaluation(discount, eligibility, None, _new_subtotal(cart, None))

        calculation = self._compute(discount, cart)
        return Evaluation(discount, eligibility, calculation, _new_subtotal(cart, calculation))

    async def evaluate(self, code: str, cart: CartSnapshot, now: Optional[datetime] = None) -> Evaluation:
        """Проверка кода для корзины. Отказ возвращается результатом, не исключение."""
        now = as_utc(now) or utc_now()

        discount = await self.storage.find_by_code(code)
        if discount is None:
            raise DiscountNotFound(code)

        evaluation = self._check(discount, cart, now)
        if not evaluation.valid:
            logger.debug("Discount %s rejected: %s", discount.code, evaluation.reason)
            return evaluation

        await self.storage.record_view(discount.id)
        logger.debug("Discount %s gives %s", discount.code, evaluation.discount_amount)
        return evaluation

    async def automatic_discounts(self, cart: CartSnapshot, now: Optional[datetime] = None) -> AutomaticDiscounts:
        now = as_utc(now) or utc_now()

        candidates = [
            d
            for d in refresh_all(await self.storage.list_all(), now)
            if d.is_automatic and d.status == DiscountStatus.ACTIVE
        ]

        applicable = []
        for discount in candidates:
            evaluation = self._check(discount, cart, now)
            if not evaluation.valid:
                continue
            if evaluation.discount_amount > 0 or evaluation.free_shipping:
                applicable.append(evaluation)

        # по убыванию приоритета, равные в исходном порядке
        applicable.sort(key=lambda e: e.discount.priority, reverse=True)

        return AutomaticDiscounts(
            applicable=tuple(applicable),
            total_savings=round_money(sum((e.discount_amount for e in applicable), ZERO)),
            free_shipping=any(e.free_shipping for e in applicable),
        )

    async def _redeem(self, key: str, cart: CartSnapshot, order_id: Optional[str], now: datetime, **lookup) -> Evaluation:
        async with self.storage.locked(**lookup) as handle:
            discount = handle.discount
            if discount is None:
                raise DiscountNotFound(key)

            evaluation = self._check(discount, cart, now)
            if not evaluation.valid:
                logger.warning("Redemption of %s for order %s rejected: %s", key, order_id, evaluation.reason)
                raise RedemptionRejected(key, evaluation.reason)

            updated = await handle.increment(usage_delta(discount, cart, evaluation.calculation), order_id)

        logger.info(
            "Discount %s redeemed for order %s: -%s (usage %d)",
            key,
            order_id,
            evaluation.discount_amount,
            updated.current_usage,
        )
        return Evaluation(updated, evaluation.eligibility, evaluation.calculation, evaluation.new_subtotal)

    async def redeem(
        self,
        code: str,
        cart: CartSnapshot,
        order_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Evaluation:
        """
        Подтверждённый заказ: перечитать, проверить, посчитать и увеличить
        счётчики под одной блокировкой скидки.
        """
        now = as_utc(now) or utc_now()
        return await self._redeem(normalize_code(code), cart, order_id, now, code=code)

    async def redeem_automatic(
        self,
        discount_id: str,
        cart: CartSnapshot,
        order_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Evaluation:
        now = as_utc(now) or utc_now()
        return await self._redeem(discount_id, cart, order_id, now, discount_id=discount_id)

    async def create_discount(self, data: Dict[str, Any], now: Optional[datetime] = None) -> DiscountDefinition:
        now = as_utc(now) or utc_now()
        data = dict(data)

        code = data.get("code")
        if code:
            code = normalize_code(code)
            if await self.storage.code_exists(code):
                raise DuplicateCodeError(code)
        elif not data.get("isAutomatic"):
            code = await generate_unique_code(
                self.storage.code_exists,
                length=self.code_length,
                attempts=self.code_attempts,
            )

        if "status" not in data:
            valid_from = parse_dt(data.get("validFrom", data.get("startsAt")))
            data["status"] = (
                DiscountStatus.SCHEDULED.value
                if valid_from is not None and valid_from > now
                else DiscountStatus.ACTIVE.value
            )

        data.update(
            id=data.get("id") or _new_id(),
            code=code or None,
            currentUsage=0,
            customerUsage={},
            totalSavings=0,
            totalOrderValue=0,
            views=0,
            lastUsed=None,
            createdAt=now.isoformat(),
        )

        discount = await self.storage.create(parse_discount(data))
        logger.info("Created discount %s (%s, %s)", discount.id, discount.code, discount.kind.value)
        return discount

    async def _usage(self, discount_id: str) -> List[UsageRecord]:
        return [parse_usage(raw) for raw in await self.storage.usage_history(discount_id)]

    async def list_discounts(
        self,
        status: Union[DiscountStatus, str, None] = None,
        now: Optional[datetime] = None,
    ) -> DiscountListing:
        now = as_utc(now) or utc_now()

        discounts = refresh_all(await self.storage.list_all(), now)
        if status is not None and status != "all":
            wanted = DiscountStatus(status)
            discounts = [d for d in discounts if d.status == wanted]

        history: List[UsageRecord] = []
        for d in discounts:
            history.extend(await self._usage(d.id))

        return DiscountListing(
            discounts=tuple(self.stats(d) for d in discounts),
            analytics=self.analytics(discounts, history, now),
        )

    async def get_discount(self, discount_id: str, now: Optional[datetime] = None) -> DiscountDefinition:
        discount = await self.storage.get(discount_id)
        if discount is None:
            raise DiscountNotFound(discount_id)
        return refresh_status(discount, now)

    async def usage_report(
        self,
        discount_id: str,
        date_from: Union[datetime, str, None] = None,
        date_to: Union[datetime, str, None] = None,
        group_by: Union[GroupBy, str] = GroupBy.DAY,
        now: Optional[datetime] = None,
    ) -> UsageReport:
        """
        Аналитика одной скидки по её истории применений.

        date_from/date_to (включительно) ограничивают историю; group_by: day, week или month.
        Конверсия считается по отфильтрованным применениям к общему числу просмотров.
        """
        group_by = GroupBy(group_by)
        discount = await self.get_discount(discount_id, now)

        records = usage.filter_by_date(await self._usage(discount_id), parse_dt(date_from), parse_dt(date_to))
        savings = sum((r.discount_amount for r in records), ZERO)
        order_value = sum((r.order_value for r in records), ZERO)

        return UsageReport(
            discount=discount,
            total_usage=len(records),
            total_savings=round_money(savings),
            total_order_value=round_money(order_value),
            unique_customers=len({r.customer_id for r in records if r.customer_id}),
            average_discount=usage.average(savings, len(records)),
            average_order_value=usage.average(order_value, len(records)),
            conversion_rate=usage.conversion_rate(len(records), discount.views),
            usage_by_period=usage.usage_by_period(records, group_by),
            top_customers=usage.top_customers(records),
            peak_usage_days=usage.peak_usage_days(records),
            recent_usage=usage.recent_usage(records),
        )

    @staticmethod
    def stats(discount: DiscountDefinition) -> DiscountStats:
        count = discount.current_usage
        return DiscountStats(
            discount=discount,
            usage_count=count,
            unique_customers=len(discount.customer_usage),
            remaining_uses=discount.remaining_uses,
            total_savings=round_money(discount.total_savings),
            average_order_value=usage.average(discount.total_order_value, count),
            conversion_rate=usage.conversion_rate(count, discount.views),
        )

    @staticmethod
    def analytics(
        discounts: Iterable[DiscountDefinition],
        history: Iterable[UsageRecord] = (),
        now: Optional[datetime] = None,
    ) -> StoreAnalytics:
        discounts = list(discounts)
        now = as_utc(now) or utc_now()

        def count(status: DiscountStatus) -> int:
            return sum(1 for d in discounts if d.status == status)

        used = sorted(
            (d for d in discounts if d.current_usage > 0),
            key=lambda d: d.current_usage,
            reverse=True,
        )
        total_usage = sum(d.current_usage for d in discounts)
        total_savings = sum((d.total_savings for d in discounts), ZERO)

        return StoreAnalytics(
            total=len(discounts),
            active=count(DiscountStatus.ACTIVE),
            expired=count(DiscountStatus.EXPIRED),
            scheduled=count(DiscountStatus.SCHEDULED),
            inactive=count(DiscountStatus.INACTIVE),
            total_usage=total_usage,
            total_savings=round_money(total_savings),
            top_performing=tuple(
                TopDiscount(
                    code=d.code,
                    name=d.name,
                    usage=d.current_usage,
                    kind=d.kind,
                    savings=round_money(d.total_savings),
                )
                for d in used[:TOP_PERFORMING]
            ),
            total_order_value=round_money(sum((d.total_order_value for d in discounts), ZERO)),
            average_savings_per_order=usage.average(total_savings, total_usage),
            least_performing=usage.least_performing(discounts),
            usage_by_type=usage.usage_by_type(discounts),
            monthly_trends=usage.monthly_trends(history, now),
        )
