from shop.discounts.model import DiscountDefinition, DiscountKind, GetDiscountKind
from shop.utils.money import format_money, format_number


def describe_discount(discount: DiscountDefinition, currency: str = "USD") -> str:
    if discount.kind == DiscountKind.PERCENTAGE:
        text = f"{format_number(discount.value)}% off"
        if discount.max_discount_amount is not None:
            text += f" (up to {format_money(discount.max_discount_amount, currency)})"
    elif discount.kind == DiscountKind.FIXED_AMOUNT:
        text = f"{format_money(discount.value, currency)} off"
    elif discount.kind == DiscountKind.FREE_SHIPPING:
        text = "Free shipping"
    else:
        rule = discount.buy_x_get_y
        if rule is None:
            text = "Buy X get Y"
        elif rule.get_discount_kind == GetDiscountKind.FREE:
            text = f"Buy {rule.buy_quantity}, get {rule.get_quantity} free"
        elif rule.get_discount_kind == GetDiscountKind.PERCENTAGE:
            text = f"Buy {rule.buy_quantity}, get {rule.get_quantity} at {format_number(rule.get_discount_value)}% off"
        else:
            text = (
                f"Buy {rule.buy_quantity}, get {rule.get_quantity} "
                f"with {format_money(rule.get_discount_value, currency)} off each"
            )

    return f"{text} with {discount.code}" if discount.code else text
