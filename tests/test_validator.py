import pytest

from conftest import DAY, NOW, item, make_cart, make_discount, min_amount, min_quantity
from shop.discounts.model import AppliesTo, DiscountStatus, RequirementType
from shop.discounts.validator import validate_eligibility


def test_plain_discount_is_valid():
    result = validate_eligibility(make_discount(), make_cart(), NOW)
    assert result.valid
    assert result.reason is None


@pytest.mark.parametrize("status", [DiscountStatus.INACTIVE, DiscountStatus.EXPIRED, DiscountStatus.SCHEDULED])
def test_non_active_status_rejected(status):
    result = validate_eligibility(make_discount(status=status), make_cart(), NOW)
    assert not result.valid
    assert result.reason == "Discount is not active"


def test_scheduled_discount_whose_start_has_arrived_is_active():
    discount = make_discount(status=DiscountStatus.SCHEDULED, valid_from=NOW - DAY)
    assert validate_eligibility(discount, make_cart(), NOW).valid


def test_not_yet_valid():
    discount = make_discount(valid_from=NOW + DAY)
    assert validate_eligibility(discount, make_cart(), NOW).reason == "Discount is not yet valid"


def test_valid_from_is_inclusive():
    discount = make_discount(valid_from=NOW)
    assert validate_eligibility(discount, make_cart(), NOW).valid


def test_expired_at_or_after_valid_until():
    assert validate_eligibility(make_discount(valid_until=NOW), make_cart(), NOW).reason == "Discount has expired"
    assert validate_eligibility(make_discount(valid_until=NOW - DAY), make_cart(), NOW).reason == "Discount has expired"
    assert validate_eligibility(make_discount(valid_until=NOW + DAY), make_cart(), NOW).valid


def test_naive_datetimes_are_treated_as_utc():
    discount = make_discount(valid_until=NOW.replace(tzinfo=None) + DAY)
    assert validate_eligibility(discount, make_cart(), NOW).valid


def test_usage_limit_reached():
    discount = make_discount(usage_limit=5, current_usage=5)
    assert validate_eligibility(discount, make_cart(), NOW).reason == "Discount usage limit reached"

    discount = make_discount(usage_limit=5, current_usage=4)
    assert validate_eligibility(discount, make_cart(), NOW).valid


def test_customer_usage_limit_per_customer():
    discount = make_discount(usage_limit_per_customer=1, customer_usage={"cust_1": 1})

    first = validate_eligibility(discount, make_cart(customer_id="cust_1"), NOW)
    assert not first.valid
    assert first.reason == "Customer usage limit reached"

    assert validate_eligibility(discount, make_cart(customer_id="cust_2"), NOW).valid


def test_customer_limit_skipped_for_anonymous_cart():
    discount = make_discount(usage_limit_per_customer=1, customer_usage={"cust_1": 3})
    assert validate_eligibility(discount, make_cart(customer_id=None), NOW).valid


def test_minimum_amount():
    discount = make_discount(minimum_requirement=min_amount(50))

    result = validate_eligibility(discount, make_cart([item(price="49.99")]), NOW)
    assert result.reason == "Minimum order amount of $50 required"

    assert validate_eligibility(discount, make_cart([item(price="50")]), NOW).valid


def test_minimum_amount_message_keeps_cents():
    discount = make_discount(minimum_requirement=min_amount("49.50"))
    result = validate_eligibility(discount, make_cart([item(price="10")]), NOW)
    assert result.reason == "Minimum order amount of $49.5 required"


def test_minimum_quantity_counts_units_not_lines():
    discount = make_discount(minimum_requirement=min_quantity(3))

    result = validate_eligibility(discount, make_cart([item(quantity=1), item("p2", quantity=1)]), NOW)
    assert result.reason == "Minimum 3 items required"

    assert validate_eligibility(discount, make_cart([item(quantity=2), item("p2", quantity=1)]), NOW).valid


def test_requirement_none_always_passes():
    discount = make_discount()
    assert discount.minimum_requirement.type == RequirementType.NONE
    assert validate_eligibility(discount, make_cart([item(price="0.01")]), NOW).valid


def test_specific_products():
    discount = make_discount(applies_to=AppliesTo.SPECIFIC_PRODUCTS, product_ids={"shoe"})

    result = validate_eligibility(discount, make_cart([item("hat")]), NOW)
    assert result.reason == "No qualifying products in cart"

    assert validate_eligibility(discount, make_cart([item("hat"), item("shoe")]), NOW).valid


def test_specific_products_with_empty_list_matches_nothing():
    discount = make_discount(applies_to=AppliesTo.SPECIFIC_PRODUCTS, product_ids=set())
    assert validate_eligibility(discount, make_cart(), NOW).reason == "No qualifying products in cart"


def test_specific_categories_ignore_lines_without_category():
    discount = make_discount(applies_to=AppliesTo.SPECIFIC_CATEGORIES, category_ids={"shoes"})

    result = validate_eligibility(discount, make_cart([item("a"), item("b", category_id="hats")]), NOW)
    assert result.reason == "No qualifying products in cart"

    assert validate_eligibility(discount, make_cart([item("b", category_id="shoes")]), NOW).valid


def test_specific_customers():
    discount = make_discount(applies_to=AppliesTo.SPECIFIC_CUSTOMERS, customer_ids={"vip"})

    assert validate_eligibility(discount, make_cart(), NOW).reason == "Discount not available for this customer"
    assert (
        validate_eligibility(discount, make_cart(customer_id="other"), NOW).reason
        == "Discount not available for this customer"
    )
    assert validate_eligibility(discount, make_cart(customer_id="vip"), NOW).valid


def test_first_failing_check_wins():
    # истёк, исчерпан и ниже минимума одновременно
    discount = make_discount(
        valid_until=NOW - DAY,
        usage_limit=1,
        current_usage=1,
        minimum_requirement=min_amount(1000),
    )
    assert validate_eligibility(discount, make_cart(), NOW).reason == "Discount has expired"

    discount = make_discount(
        usage_limit=1,
        current_usage=1,
        minimum_requirement=min_amount(1000),
    )
    assert validate_eligibility(discount, make_cart(), NOW).reason == "Discount usage limit reached"


def test_minimum_and_product_restriction_compose_as_and():
    discount = make_discount(
        minimum_requirement=min_amount(100),
        applies_to=AppliesTo.SPECIFIC_PRODUCTS,
        product_ids={"shoe"},
    )
    # минимум выполнен, товара нет
    assert validate_eligibility(discount, make_cart([item("hat", price="500")]), NOW).reason == (
        "No qualifying products in cart"
    )
    # товар есть, минимум не выполнен
    assert validate_eligibility(discount, make_cart([item("shoe", price="5")]), NOW).reason == (
        "Minimum order amount of $100 required"
    )
    assert validate_eligibility(discount, make_cart([item("shoe", price="100")]), NOW).valid
