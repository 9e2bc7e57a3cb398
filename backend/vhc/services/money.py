"""Decimal money helpers for labour and parts lines."""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP


ZERO = Decimal("0")
_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")


def to_decimal(value: object) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # str() keeps 45.1 as 45.1 instead of its binary expansion.
        return Decimal(str(value))
    return Decimal(value)


def round_currency(value: object) -> Decimal:
    """Round once, at presentation/aggregation time, to whole pence."""
    return to_decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def _discount_factor(discount_percent: object) -> Decimal:
    discount = to_decimal(discount_percent)
    if discount < 0 or discount > _HUNDRED:
        raise ValueError("discount_percent must be between 0 and 100")
    return (_HUNDRED - discount) / _HUNDRED


def labour_line_total(*, hours: object, rate: object, discount_percent: object = 0) -> Decimal:
    hours_d = to_decimal(hours)
    rate_d = to_decimal(rate)
    if hours_d < 0 or rate_d < 0:
        raise ValueError("hours and rate must not be negative")
    return hours_d * rate_d * _discount_factor(discount_percent)


def part_line_total(*, quantity: object, sell_price: object, discount_percent: object = 0) -> Decimal:
    qty = to_decimal(quantity)
    price = to_decimal(sell_price)
    if qty <= 0:
        raise ValueError("quantity must be positive")
    if price < 0:
        raise ValueError("sell_price must not be negative")
    return qty * price * _discount_factor(discount_percent)


def margin_percent(*, cost_price: object, sell_price: object) -> Decimal | None:
    """Profit as a share of the sell price; None when the sell price is zero."""
    sell = to_decimal(sell_price)
    if sell == 0:
        return None
    return round_currency((sell - to_decimal(cost_price)) / sell * _HUNDRED)


def markup_percent(*, cost_price: object, sell_price: object) -> Decimal | None:
    """Profit relative to cost; None when the cost is zero."""
    cost = to_decimal(cost_price)
    if cost == 0:
        return None
    return round_currency((to_decimal(sell_price) - cost) / cost * _HUNDRED)


def vat_amount(taxable: object, *, rate_percent: object) -> Decimal:
    """VAT on a taxable amount, rounded to pence."""
    rate = to_decimal(rate_percent)
    if rate < 0:
        raise ValueError("VAT rate must not be negative")
    return round_currency(to_decimal(taxable) * rate / _HUNDRED)
