from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import List, Tuple

from shop.discounts.errors import ConfigurationError
from shop.discounts.model import (
    AppliedLine,
    AppliesTo,
    CalculationResult,
    CartItem,
    CartSnapshot,
    DiscountDefinition,
    DiscountKind,
    GetDiscountKind,
    UsageDelta,
)
from shop.utils.money import ZERO, round_money

HUNDRED = Decimal("100")


def line_matches(discount: DiscountDefinition, item: CartItem) -> bool:
    if discount.applies_to == AppliesTo.SPECIFIC_PRODUCTS:
        return item.product_id in discount.product_ids
    if discount.applies_to == AppliesTo.SPECIFIC_CATEGORIES:
        return item.category_id is not None and item.category_id in discount.category_ids
    # all / specific_customers: ограничение не по товарам
    return True


def _whole_cart(discount: DiscountDefinition) -> bool:
    return discount.applies_to in (AppliesTo.ALL, AppliesTo.SPECIFIC_CUSTOMERS)


def _fit_lines(lines: List[AppliedLine], total: Decimal) -> Tuple[AppliedLine, ...]:
    """
    Подгоняет разбивку по строкам под итоговую сумму скидки.
    При срабатывании max_discount_amount строки уменьшаются пропорционально,
    копейки от округления уходят в последнюю строку.
    """
    current = sum((line.amount for line in lines), ZERO)
    if not lines or current == total or current == 0:
        return tuple(lines)

    fitted = [replace(line, amount=round_money(line.amount * total / current)) for line in lines[:-1]]
    rest = total - sum((line.amount for line in fitted), ZERO)
    fitted.append(replace(lines[-1], amount=round_money(rest)))
    return tuple(fitted)


def _percentage(discount: DiscountDefinition, cart: CartSnapshot) -> CalculationResult:
    rate = discount.value / HUNDRED
    applied: List[AppliedLine] = []

    if _whole_cart(discount):
        base = cart.subtotal
    else:
        base = ZERO
        for item in cart.items:
            if not line_matches(discount, item):
                continue
            base += item.line_total
            applied.append(
                AppliedLine(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    amount=round_money(item.line_total * rate),
                    title=item.title,
                )
            )

    amount = min(base * rate, base)
    before_limit = amount
    limit_applied = False

    cap = discount.max_discount_amount
    if cap is not None and amount > cap:
        amount = cap
        limit_applied = True

    return CalculationResult(
        discount_amount=round_money(amount),
        applied_to=_fit_lines(applied, round_money(amount)),
        limit_applied=limit_applied,
        before_limit=round_money(before_limit),
    )


def _fixed_amount(discount: DiscountDefinition, cart: CartSnapshot) -> CalculationResult:
    amount = min(discount.value, cart.subtotal)
    return CalculationResult(
        discount_amount=round_money(amount),
        limit_applied=discount.value > cart.subtotal,
        before_limit=round_money(discount.value),
    )


def _free_shipping(discount: DiscountDefinition, cart: CartSnapshot) -> CalculationResult:
    # стоимость доставки движок не знает: только флаг для вызывающего
    return CalculationResult(discount_amount=round_money(ZERO), free_shipping=True)


def _buy_x_get_y(discount: DiscountDefinition, cart: CartSnapshot) -> CalculationResult:
    rule = discount.buy_x_get_y
    if rule is None:
        raise ConfigurationError(f"Discount {discount.id}: buy_x_get_y without buy/get settings")
    if rule.buy_quantity < 1 or rule.get_quantity < 1:
        raise ConfigurationError(
            f"Discount {discount.id}: buy_quantity and get_quantity must be >= 1 "
            f"(got {rule.buy_quantity}/{rule.get_quantity})"
        )

    qualifying = [item for item in cart.items if line_matches(discount, item)]
    total_quantity = sum(item.quantity for item in qualifying)
    applications = total_quantity // rule.buy_quantity

    if applications == 0:
        return CalculationResult(discount_amount=round_money(ZERO))

    remaining = applications * rule.get_quantity
    amount = ZERO
    applied: List[AppliedLine] = []

    # самые дешёвые единицы первыми; sorted стабилен, так что при равной
    # цене сохраняется порядок корзины
    for item in sorted(qualifying, key=lambda i: i.price):
        if remaining <= 0:
            break

        qty = min(remaining, item.quantity)
        line_value = item.price * qty

        if rule.get_discount_kind == GetDiscountKind.PERCENTAGE:
            line_discount = line_value * (rule.get_discount_value / HUNDRED)
        elif rule.get_discount_kind == GetDiscountKind.FIXED_AMOUNT:
            line_discount = min(rule.get_discount_value * qty, line_value)
        elif rule.get_discount_kind == GetDiscountKind.FREE:
            line_discount = line_value
        else:
            raise ConfigurationError(
                f"Discount {discount.id}: unknown get discount kind {rule.get_discount_kind!r}"
            )

        amount += line_discount
        applied.append(
            AppliedLine(
                product_id=item.product_id,
                quantity=qty,
                amount=round_money(line_discount),
                title=item.title,
            )
        )
        remaining -= qty

    return CalculationResult(
        discount_amount=round_money(amount),
        applied_to=_fit_lines(applied, round_money(amount)),
        applications=applications,
    )


_CALCULATORS = {
    DiscountKind.PERCENTAGE: _percentage,
    DiscountKind.FIXED_AMOUNT: _fixed_amount,
    DiscountKind.FREE_SHIPPING: _free_shipping,
    DiscountKind.BUY_X_GET_Y: _buy_x_get_y,
}


def compute_discount(discount: DiscountDefinition, cart: CartSnapshot) -> CalculationResult:
    """
    Сумма скидки и разбивка по строкам.
    Пригодность не перепроверяется: validate_eligibility вызывается до этого.
    """
    calculator = _CALCULATORS.get(discount.kind)
    if calculator is None:
        raise ConfigurationError(f"Discount {discount.id}: unknown kind {discount.kind!r}")
    return calculator(discount, cart)


def usage_delta(discount: DiscountDefinition, cart: CartSnapshot, result: CalculationResult) -> UsageDelta:
    # движок счётчики не трогает, только говорит, что прибавить
    return UsageDelta(
        discount_id=discount.id,
        customer_id=cart.customer_id,
        discount_amount=result.discount_amount,
        order_value=cart.subtotal,
    )
