from decimal import Decimal

import pytest

from shop.discounts.model import CartSnapshot


def test_build_sums_lines_and_accepts_both_key_styles():
    cart = CartSnapshot.build(
        [
            {"productId": "a", "price": "10.50", "quantity": 2, "categoryId": "shoes"},
            {"product_id": "b", "price": 3, "quantity": "1"},
        ],
        customer_id="",
    )

    assert cart.subtotal == Decimal("24.00")
    assert cart.total_quantity == 3
    assert cart.items[0].category_id == "shoes"
    assert cart.items[1].product_id == "b"
    assert cart.customer_id is None


@pytest.mark.parametrize("quantity", [2.0, "3", Decimal("4.00")])
def test_whole_quantities_in_any_form(quantity):
    cart = CartSnapshot.build([{"productId": "a", "price": "1", "quantity": quantity}])
    assert cart.items[0].quantity == int(Decimal(str(quantity)))


@pytest.mark.parametrize("quantity", [1.9, "2.5", Decimal("0.5"), "NaN", "Infinity"])
def test_fractional_quantity_is_rejected_not_truncated(quantity):
    with pytest.raises(ValueError):
        CartSnapshot.build([{"productId": "a", "price": "10", "quantity": quantity}])


@pytest.mark.parametrize(
    "line, subtotal",
    [
        ({"productId": "a", "price": "10", "quantity": 0}, None),
        ({"productId": "a", "price": "-1", "quantity": 1}, None),
        ({"productId": "a", "price": "10", "quantity": 1}, "-5"),
        ({"productId": "a", "price": "10", "quantity": True}, None),
    ],
)
def test_invalid_lines_are_rejected(line, subtotal):
    with pytest.raises(ValueError):
        CartSnapshot.build([line], subtotal)
