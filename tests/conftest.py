import os

# до импорта shop: без PostgreSQL, JSON-хранилище
os.environ.setdefault("APP_ENV", "test")

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from shop.discounts.model import (
    BuyXGetY,
    CartSnapshot,
    DiscountDefinition,
    DiscountKind,
    DiscountStatus,
    GetDiscountKind,
    MinimumRequirement,
    RequirementType,
)
from shop.discounts.service import DiscountService
from shop.discounts.storage import JsonDiscountStorage

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
DAY = timedelta(days=1)


def make_discount(**overrides) -> DiscountDefinition:
    data = dict(
        id="discount_1",
        code="SAVE10",
        kind=DiscountKind.PERCENTAGE,
        value=Decimal("10"),
        status=DiscountStatus.ACTIVE,
    )
    data.update(overrides)
    for key in ("value", "max_discount_amount"):
        if data.get(key) is not None:
            data[key] = Decimal(str(data[key]))
    for key in ("product_ids", "category_ids", "customer_ids"):
        if key in data:
            data[key] = frozenset(data[key])
    return DiscountDefinition(**data)


def make_bxgy(buy=2, get=1, kind=GetDiscountKind.FREE, value="100", **overrides) -> DiscountDefinition:
    return make_discount(
        kind=DiscountKind.BUY_X_GET_Y,
        value=0,
        buy_x_get_y=BuyXGetY(
            buy_quantity=buy,
            get_quantity=get,
            get_discount_kind=kind,
            get_discount_value=Decimal(value),
        ),
        **overrides,
    )


def min_amount(value) -> MinimumRequirement:
    return MinimumRequirement(type=RequirementType.MINIMUM_AMOUNT, value=Decimal(str(value)))


def min_quantity(value) -> MinimumRequirement:
    return MinimumRequirement(type=RequirementType.MINIMUM_QUANTITY, value=Decimal(str(value)))


def item(product_id="p1", price="10", quantity=1, category_id=None, title=None) -> dict:
    return {
        "productId": product_id,
        "price": price,
        "quantity": quantity,
        "categoryId": category_id,
        "title": title,
    }


def make_cart(items=None, subtotal=None, customer_id=None, **kwargs) -> CartSnapshot:
    if items is None:
        items = [item(price="100", quantity=2)]
    return CartSnapshot.build(items, subtotal, customer_id=customer_id, **kwargs)


def raw_discount(**overrides) -> dict:
    """Скидка в том виде, как она лежит в JSON-настройках магазина."""
    data = {
        "id": "discount_1",
        "code": "save10",
        "name": "Spring sale",
        "type": "percentage",
        "value": 10,
        "appliesTo": "all",
        "status": "active",
        "minimumRequirement": {"type": "none"},
        "currentUsage": 0,
        "customerUsage": {},
    }
    data.update(overrides)
    return data


@pytest.fixture
def json_store(tmp_path):
    return JsonDiscountStorage(str(tmp_path / "discounts.json"))


@pytest.fixture
def seed(json_store):
    """Записывает сырые скидки в файл хранилища."""

    def _seed(*discounts):
        json_store._atomic_write_json({"discounts": list(discounts)})
        return json_store

    return _seed


@pytest.fixture
def service(json_store):
    return DiscountService(json_store)
