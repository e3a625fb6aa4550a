from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Mapping, Optional, Sequence, Tuple

from shop.utils.money import to_decimal


class DiscountKind(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FREE_SHIPPING = "free_shipping"
    BUY_X_GET_Y = "buy_x_get_y"


class GetDiscountKind(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FREE = "free"


class DiscountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SCHEDULED = "scheduled"
    EXPIRED = "expired"


class AppliesTo(str, Enum):
    ALL = "all"
    SPECIFIC_PRODUCTS = "specific_products"
    SPECIFIC_CATEGORIES = "specific_categories"
    SPECIFIC_CUSTOMERS = "specific_customers"


class RequirementType(str, Enum):
    NONE = "none"
    MINIMUM_AMOUNT = "minimum_amount"
    MINIMUM_QUANTITY = "minimum_quantity"


class GroupBy(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


@dataclass(frozen=True)
class MinimumRequirement:
    type: RequirementType = RequirementType.NONE
    value: Decimal = Decimal("0")


@dataclass(frozen=True)
class BuyXGetY:
    buy_quantity: int
    get_quantity: int = 1
    get_discount_kind: GetDiscountKind = GetDiscountKind.FREE
    get_discount_value: Decimal = Decimal("100")


@dataclass(frozen=True)
class DiscountDefinition:
    id: str
    kind: DiscountKind
    value: Decimal
    code: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    max_discount_amount: Optional[Decimal] = None
    buy_x_get_y: Optional[BuyXGetY] = None

    usage_limit: Optional[int] = None
    usage_limit_per_customer: Optional[int] = None
    minimum_requirement: MinimumRequirement = MinimumRequirement()

    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None

    applies_to: AppliesTo = AppliesTo.ALL
    product_ids: frozenset = frozenset()
    category_ids: frozenset = frozenset()
    customer_ids: frozenset = frozenset()

    status: DiscountStatus = DiscountStatus.ACTIVE
    is_automatic: bool = False
    priority: int = 0

    # счётчики меняет только хранилище (атомарный инкремент)
    current_usage: int = 0
    customer_usage: Mapping[str, int] = field(default_factory=dict)
    total_savings: Decimal = Decimal("0")
    total_order_value: Decimal = Decimal("0")
    views: int = 0
    last_used: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def usage_for(self, customer_id: Optional[str]) -> int:
        if not customer_id:
            return 0
        return int(self.customer_usage.get(customer_id, 0))

    @property
    def remaining_uses(self) -> Optional[int]:
        if self.usage_limit is None:
            return None
        return max(0, self.usage_limit - self.current_usage)


@dataclass(frozen=True)
class CartItem:
    product_id: str
    quantity: int
    price: Decimal
    category_id: Optional[str] = None
    variant_id: Optional[str] = None
    title: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class CartSnapshot:
    items: Tuple[CartItem, ...]
    subtotal: Decimal
    customer_id: Optional[str] = None
    requires_shipping: bool = True
    currency: str = "USD"

    @classmethod
    def build(
        cls,
        items: Sequence[Mapping],
        subtotal=None,
        *,
        customer_id: Optional[str] = None,
        requires_shipping: bool = True,
        currency: str = "USD",
    ) -> "CartSnapshot":
        """Собирает корзину из обычных dict (productId/product_id, price, quantity...).

        Если subtotal не передан, считается по строкам.
        """
        parsed = []
        for raw in items:
            raw_quantity = to_decimal(raw["quantity"])
            # 1.9 -> ошибка, а не 1
            if not raw_quantity.is_finite() or raw_quantity != raw_quantity.to_integral_value():
                raise ValueError(f"quantity must be a whole number, got {raw['quantity']!r}")
            quantity = int(raw_quantity)
            price = to_decimal(raw["price"])
            if quantity < 1:
                raise ValueError(f"quantity must be >= 1, got {quantity}")
            if price < 0:
                raise ValueError(f"price must be >= 0, got {price}")
            parsed.append(
                CartItem(
                    product_id=str(raw.get("product_id", raw.get("productId"))),
                    quantity=quantity,
                    price=price,
                    category_id=raw.get("category_id", raw.get("categoryId")),
                    variant_id=raw.get("variant_id", raw.get("variantId")),
                    title=raw.get("title"),
                )
            )

        if subtotal is None:
            total = sum((i.line_total for i in parsed), Decimal("0"))
        else:
            total = to_decimal(subtotal)
            if total < 0:
                raise ValueError(f"subtotal must be >= 0, got {total}")

        return cls(
            items=tuple(parsed),
            subtotal=total,
            customer_id=customer_id or None,
            requires_shipping=requires_shipping,
            currency=currency,
        )

    @property
    def total_quantity(self) -> int:
        return sum(i.quantity for i in self.items)


@dataclass(frozen=True)
class EligibilityResult:
    valid: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "EligibilityResult":
        return cls(valid=True)

    @classmethod
    def fail(cls, reason: str) -> "EligibilityResult":
        return cls(valid=False, reason=reason)


@dataclass(frozen=True)
class AppliedLine:
    product_id: str
    quantity: int
    amount: Decimal
    title: Optional[str] = None


@dataclass(frozen=True)
class CalculationResult:
    discount_amount: Decimal
    free_shipping: bool = False
    applied_to: Tuple[AppliedLine, ...] = ()
    applications: int = 0
    limit_applied: bool = False
    before_limit: Optional[Decimal] = None


@dataclass(frozen=True)
class UsageDelta:
    """Что нужно прибавить к счётчикам после подтверждённого заказа."""

    discount_id: str
    customer_id: Optional[str]
    discount_amount: Decimal
    order_value: Decimal


@dataclass(frozen=True)
class Evaluation:
    discount: DiscountDefinition
    eligibility: EligibilityResult
    calculation: Optional[CalculationResult]
    new_subtotal: Decimal

    @property
    def valid(self) -> bool:
        return self.eligibility.valid

    @property
    def reason(self) -> Optional[str]:
        return self.eligibility.reason

    @property
    def discount_amount(self) -> Decimal:
        if self.calculation is None:
            return Decimal("0.00")
        return self.calculation.discount_amount

    @property
    def free_shipping(self) -> bool:
        return self.calculation is not None and self.calculation.free_shipping


@dataclass(frozen=True)
class AutomaticDiscounts:
    applicable: Tuple[Evaluation, ...]
    total_savings: Decimal
    free_shipping: bool


@dataclass(frozen=True)
class DiscountStats:
    discount: DiscountDefinition
    usage_count: int
    unique_customers: int
    remaining_uses: Optional[int]
    total_savings: Decimal
    average_order_value: Decimal
    conversion_rate: Decimal


@dataclass(frozen=True)
class TopDiscount:
    code: Optional[str]
    name: str
    usage: int
    kind: DiscountKind
    savings: Decimal


@dataclass(frozen=True)
class UsageRecord:
    """Одно применение скидки из истории заказов."""

    applied_at: datetime
    discount_amount: Decimal
    order_value: Decimal
    order_id: Optional[str] = None
    customer_id: Optional[str] = None


@dataclass(frozen=True)
class PeriodUsage:
    period: str
    usage: int
    savings: Decimal
    order_value: Decimal
    unique_customers: int


@dataclass(frozen=True)
class CustomerUsage:
    customer_id: str
    usage: int
    savings: Decimal
    order_value: Decimal


@dataclass(frozen=True)
class DayUsage:
    date: str
    usage: int


@dataclass(frozen=True)
class UsageReport:
    discount: DiscountDefinition
    total_usage: int
    total_savings: Decimal
    total_order_value: Decimal
    unique_customers: int
    average_discount: Decimal
    average_order_value: Decimal
    conversion_rate: Decimal
    usage_by_period: Tuple[PeriodUsage, ...]
    top_customers: Tuple[CustomerUsage, ...]
    peak_usage_days: Tuple[DayUsage, ...]
    recent_usage: Tuple[UsageRecord, ...]


@dataclass(frozen=True)
class KindUsage:
    kind: DiscountKind
    count: int
    usage: int
    savings: Decimal


@dataclass(frozen=True)
class DiscountConversion:
    id: str
    code: Optional[str]
    name: str
    views: int
    usage: int
    conversion_rate: Decimal


@dataclass(frozen=True)
class MonthTrend:
    month: str
    usage: int
    savings: Decimal


@dataclass(frozen=True)
class StoreAnalytics:
    total: int
    active: int
    expired: int
    scheduled: int
    inactive: int
    total_usage: int
    total_savings: Decimal
    top_performing: Tuple[TopDiscount, ...]
    total_order_value: Decimal = Decimal("0.00")
    average_savings_per_order: Decimal = Decimal("0.00")
    least_performing: Tuple[DiscountConversion, ...] = ()
    usage_by_type: Tuple[KindUsage, ...] = ()
    monthly_trends: Tuple[MonthTrend, ...] = ()


@dataclass(frozen=True)
class DiscountListing:
    discounts: Tuple[DiscountStats, ...]
    analytics: StoreAnalytics
