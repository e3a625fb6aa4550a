"""
Граница хранилища: JSON-блобы скидок <-> DiscountDefinition.

Скидки хранятся в том же виде, что и в настройках магазина витрины
(camelCase, `type` вместо kind, `startsAt`/`endsAt` как старые имена
для validFrom/validUntil). Всё, что не удаётся разобрать, поднимает
ConfigurationError: это порча данных, а не ошибка покупателя.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Type, TypeVar

from shop.discounts.codes import is_valid_code, normalize_code
from shop.discounts.errors import ConfigurationError
from shop.discounts.model import (
    AppliesTo,
    BuyXGetY,
    DiscountDefinition,
    DiscountKind,
    DiscountStatus,
    GetDiscountKind,
    MinimumRequirement,
    RequirementType,
    UsageRecord,
)
from shop.discounts.status import as_utc
from shop.utils.money import to_decimal

E = TypeVar("E", bound=Enum)


def parse_dt(value: Any) -> Optional[datetime]:
    if value in (None, "", 0):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        # ISO-строка, в т.ч. с "Z" от JS toISOString()
        return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError as e:
        raise ConfigurationError(f"Invalid datetime: {value!r}") from e


def _dump_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _enum(enum_cls: Type[E], value: Any, field: str) -> E:
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ConfigurationError(f"Invalid {field}: {value!r}") from e


def _money(value: Any, field: str, *, required: bool = False) -> Optional[Decimal]:
    if value is None:
        if required:
            raise ConfigurationError(f"{field} is required")
        return None
    try:
        amount = to_decimal(value)
    except ValueError as e:
        raise ConfigurationError(f"Invalid {field}: {value!r}") from e
    if amount < 0:
        raise ConfigurationError(f"{field} must be >= 0, got {value!r}")
    return amount


def _int(value: Any, field: str, *, minimum: int = 0) -> Optional[int]:
    if value is None:
        return None
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid {field}: {value!r}") from e
    if number < minimum:
        raise ConfigurationError(f"{field} must be >= {minimum}, got {value!r}")
    return number


def _ids(value: Any) -> frozenset:
    return frozenset(str(v) for v in (value or ()))


def _parse_buy_x_get_y(discount_id: str, raw: Dict[str, Any]) -> BuyXGetY:
    buy_quantity = _int(raw.get("buyQuantity"), "buyQuantity", minimum=1)
    if buy_quantity is None:
        raise ConfigurationError(f"Discount {discount_id}: buy_x_get_y requires buyQuantity")

    get_quantity = _int(raw.get("getQuantity"), "getQuantity", minimum=1) or 1

    if raw.get("getDiscountType") is None:
        raise ConfigurationError(f"Discount {discount_id}: buy_x_get_y requires getDiscountType")
    get_kind = _enum(GetDiscountKind, raw["getDiscountType"], "getDiscountType")

    get_value = _money(raw.get("getDiscountValue"), "getDiscountValue")
    if get_value is None:
        if get_kind != GetDiscountKind.FREE:
            raise ConfigurationError(
                f"Discount {discount_id}: getDiscountValue is required for {get_kind.value}"
            )
        get_value = Decimal("100")

    if get_kind == GetDiscountKind.PERCENTAGE and get_value > 100:
        raise ConfigurationError(f"Discount {discount_id}: getDiscountValue over 100%")

    return BuyXGetY(
        buy_quantity=buy_quantity,
        get_quantity=get_quantity,
        get_discount_kind=get_kind,
        get_discount_value=get_value,
    )


def _parse_requirement(raw: Any) -> MinimumRequirement:
    if not raw:
        return MinimumRequirement()
    req_type = _enum(RequirementType, raw.get("type", "none"), "minimumRequirement.type")
    if req_type == RequirementType.NONE:
        return MinimumRequirement()
    value = _money(raw.get("value"), "minimumRequirement.value", required=True)
    return MinimumRequirement(type=req_type, value=value)


def parse_discount(raw: Dict[str, Any]) -> DiscountDefinition:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Discount must be an object, got {type(raw).__name__}")

    discount_id = raw.get("id")
    if not discount_id:
        raise ConfigurationError("Discount id is missing")
    discount_id = str(discount_id)

    kind = _enum(DiscountKind, raw.get("type", raw.get("kind")), "type")
    value = _money(raw.get("value", 0), "value", required=True)
    if kind == DiscountKind.PERCENTAGE and value > 100:
        raise ConfigurationError(f"Discount {discount_id}: percentage over 100")

    code = raw.get("code") or None
    if code is not None:
        if not is_valid_code(code):
            raise ConfigurationError(f"Discount {discount_id}: invalid code {code!r}")
        code = normalize_code(code)

    is_automatic = bool(raw.get("isAutomatic", False))
    if code is None and not is_automatic:
        raise ConfigurationError(f"Discount {discount_id}: code is required for non-automatic discounts")

    buy_x_get_y = _parse_buy_x_get_y(discount_id, raw) if kind == DiscountKind.BUY_X_GET_Y else None

    customer_usage = {
        str(k): _int(v, "customerUsage", minimum=0) for k, v in (raw.get("customerUsage") or {}).items()
    }

    return DiscountDefinition(
        id=discount_id,
        kind=kind,
        value=value,
        code=code,
        name=str(raw.get("name") or code or ""),
        description=raw.get("description"),
        max_discount_amount=_money(raw.get("maxDiscountAmount"), "maxDiscountAmount"),
        buy_x_get_y=buy_x_get_y,
        usage_limit=_int(raw.get("usageLimit"), "usageLimit", minimum=1),
        usage_limit_per_customer=_int(raw.get("usageLimitPerCustomer"), "usageLimitPerCustomer", minimum=1),
        minimum_requirement=_parse_requirement(raw.get("minimumRequirement")),
        valid_from=parse_dt(raw.get("validFrom", raw.get("startsAt"))),
        valid_until=parse_dt(raw.get("validUntil", raw.get("endsAt"))),
        applies_to=_enum(AppliesTo, raw.get("appliesTo", "all"), "appliesTo"),
        product_ids=_ids(raw.get("productIds")),
        category_ids=_ids(raw.get("categoryIds")),
        customer_ids=_ids(raw.get("customerIds")),
        status=_enum(DiscountStatus, raw.get("status", "active"), "status"),
        is_automatic=is_automatic,
        priority=_int(raw.get("priority", 0), "priority") or 0,
        current_usage=_int(raw.get("currentUsage", 0), "currentUsage") or 0,
        customer_usage=customer_usage,
        total_savings=_money(raw.get("totalSavings", 0), "totalSavings"),
        total_order_value=_money(raw.get("totalOrderValue", 0), "totalOrderValue"),
        views=_int(raw.get("views", 0), "views") or 0,
        last_used=parse_dt(raw.get("lastUsed")),
        created_at=parse_dt(raw.get("createdAt")),
    )


def parse_usage(raw: Dict[str, Any]) -> UsageRecord:
    """Запись usageHistory (JSON) или строка discount_usages (PG) -> UsageRecord."""
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Usage record must be an object, got {type(raw).__name__}")

    applied_at = parse_dt(raw.get("appliedAt"))
    if applied_at is None:
        raise ConfigurationError(f"Usage record without appliedAt: {raw!r}")

    customer_id = raw.get("customerId")
    return UsageRecord(
        applied_at=applied_at,
        discount_amount=_money(raw.get("discountAmount"), "discountAmount", required=True),
        order_value=_money(raw.get("originalAmount"), "originalAmount", required=True),
        order_id=raw.get("orderId"),
        customer_id=str(customer_id) if customer_id else None,
    )


def _num(value: Optional[Decimal]) -> Optional[str]:
    # деньги храним строкой, чтобы не терять центы через float
    return str(value) if value is not None else None


def dump_discount(discount: DiscountDefinition) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": discount.id,
        "code": discount.code,
        "name": discount.name,
        "description": discount.description,
        "type": discount.kind.value,
        "value": _num(discount.value),
        "maxDiscountAmount": _num(discount.max_discount_amount),
        "usageLimit": discount.usage_limit,
        "usageLimitPerCustomer": discount.usage_limit_per_customer,
        "minimumRequirement": {
            "type": discount.minimum_requirement.type.value,
            "value": _num(discount.minimum_requirement.value),
        },
        "validFrom": _dump_dt(discount.valid_from),
        "validUntil": _dump_dt(discount.valid_until),
        "appliesTo": discount.applies_to.value,
        "productIds": sorted(discount.product_ids),
        "categoryIds": sorted(discount.category_ids),
        "customerIds": sorted(discount.customer_ids),
        "status": discount.status.value,
        "isAutomatic": discount.is_automatic,
        "priority": discount.priority,
        "currentUsage": discount.current_usage,
        "customerUsage": dict(discount.customer_usage),
        "totalSavings": _num(discount.total_savings),
        "totalOrderValue": _num(discount.total_order_value),
        "views": discount.views,
        "lastUsed": _dump_dt(discount.last_used),
        "createdAt": _dump_dt(discount.created_at),
    }

    rule = discount.buy_x_get_y
    if rule is not None:
        data.update(
            buyQuantity=rule.buy_quantity,
            getQuantity=rule.get_quantity,
            getDiscountType=rule.get_discount_kind.value,
            getDiscountValue=_num(rule.get_discount_value),
        )

    return data
