from __future__ import annotations

from datetime import datetime
from typing import Optional

from shop.discounts.model import (
    AppliesTo,
    CartSnapshot,
    DiscountDefinition,
    DiscountStatus,
    EligibilityResult,
    RequirementType,
)
from shop.discounts.status import as_utc, utc_now
from shop.utils.money import format_number

NOT_ACTIVE = "Discount is not active"
NOT_YET_VALID = "Discount is not yet valid"
EXPIRED = "Discount has expired"
USAGE_LIMIT_REACHED = "Discount usage limit reached"
CUSTOMER_LIMIT_REACHED = "Customer usage limit reached"
NO_QUALIFYING_PRODUCTS = "No qualifying products in cart"
CUSTOMER_NOT_ELIGIBLE = "Discount not available for this customer"


def _status_at(discount: DiscountDefinition, now: datetime) -> DiscountStatus:
    # scheduled с наступившим valid_from уже считается active;
    # active с прошедшим valid_until отлавливает проверка срока ниже
    valid_from = as_utc(discount.valid_from)
    if discount.status == DiscountStatus.SCHEDULED and valid_from is not None and valid_from <= now:
        return DiscountStatus.ACTIVE
    return discount.status


def validate_eligibility(
    discount: DiscountDefinition,
    cart: CartSnapshot,
    now: Optional[datetime] = None,
) -> EligibilityResult:
    """
    Можно ли применить скидку к корзине.

    Проверки идут строго по порядку и возвращают первую причину отказа,
    чтобы покупатель всегда видел одно и то же сообщение.
    """
    now = as_utc(now) or utc_now()
    customer_id = cart.customer_id

    if _status_at(discount, now) != DiscountStatus.ACTIVE:
        return EligibilityResult.fail(NOT_ACTIVE)

    valid_from = as_utc(discount.valid_from)
    if valid_from is not None and now < valid_from:
        return EligibilityResult.fail(NOT_YET_VALID)

    valid_until = as_utc(discount.valid_until)
    if valid_until is not None and now >= valid_until:
        return EligibilityResult.fail(EXPIRED)

    if discount.usage_limit is not None and discount.current_usage >= discount.usage_limit:
        return EligibilityResult.fail(USAGE_LIMIT_REACHED)

    # анонимную корзину по покупателю не ограничить
    if discount.usage_limit_per_customer is not None and customer_id:
        if discount.usage_for(customer_id) >= discount.usage_limit_per_customer:
            return EligibilityResult.fail(CUSTOMER_LIMIT_REACHED)

    requirement = discount.minimum_requirement
    if requirement.type == RequirementType.MINIMUM_AMOUNT:
        if cart.subtotal < requirement.value:
            return EligibilityResult.fail(
                f"Minimum order amount of ${format_number(requirement.value)} required"
            )

    if requirement.type == RequirementType.MINIMUM_QUANTITY:
        if cart.total_quantity < requirement.value:
            return EligibilityResult.fail(f"Minimum {format_number(requirement.value)} items required")

    if discount.applies_to == AppliesTo.SPECIFIC_PRODUCTS:
        if not any(item.product_id in discount.product_ids for item in cart.items):
            return EligibilityResult.fail(NO_QUALIFYING_PRODUCTS)

    if discount.applies_to == AppliesTo.SPECIFIC_CATEGORIES:
        if not any(
            item.category_id is not None and item.category_id in discount.category_ids
            for item in cart.items
        ):
            return EligibilityResult.fail(NO_QUALIFYING_PRODUCTS)

    if discount.applies_to == AppliesTo.SPECIFIC_CUSTOMERS:
        if not customer_id or customer_id not in discount.customer_ids:
            return EligibilityResult.fail(CUSTOMER_NOT_ELIGIBLE)

    return EligibilityResult.ok()
