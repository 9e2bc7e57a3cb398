from __future__ import annotations

from decimal import Decimal

import pytest

from vhc.services.money import (
    labour_line_total,
    margin_percent,
    markup_percent,
    part_line_total,
    round_currency,
    vat_amount,
)


def test_labour_discount_stays_unrounded_until_aggregation() -> None:
    total = labour_line_total(hours=Decimal("3.25"), rate=Decimal("45.00"), discount_percent=Decimal("10"))

    assert total == Decimal("131.625")
    assert round_currency(total) == Decimal("131.63")


def test_round_currency_uses_half_up() -> None:
    assert round_currency(Decimal("0.005")) == Decimal("0.01")
    assert round_currency(Decimal("2.345")) == Decimal("2.35")
    assert round_currency(None) == Decimal("0.00")


def test_float_inputs_do_not_leak_binary_noise() -> None:
    assert labour_line_total(hours=1.1, rate=3) == Decimal("3.3")


def test_part_line_total_multiplies_quantity_price_and_discount() -> None:
    assert part_line_total(quantity=2, sell_price=Decimal("19.99"), discount_percent=Decimal("5")) == Decimal("37.981")


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"hours": -1, "rate": 10}, "must not be negative"),
        ({"hours": 1, "rate": 10, "discount_percent": 101}, "between 0 and 100"),
    ],
)
def test_labour_line_rejects_invalid_input(kwargs, message) -> None:
    with pytest.raises(ValueError, match=message):
        labour_line_total(**kwargs)


def test_part_line_rejects_zero_quantity() -> None:
    with pytest.raises(ValueError, match="quantity must be positive"):
        part_line_total(quantity=0, sell_price=10)


def test_margin_and_markup() -> None:
    assert margin_percent(cost_price=Decimal("60"), sell_price=Decimal("100")) == Decimal("40.00")
    assert markup_percent(cost_price=Decimal("60"), sell_price=Decimal("100")) == Decimal("66.67")
    assert margin_percent(cost_price=Decimal("5"), sell_price=Decimal("0")) is None
    assert markup_percent(cost_price=Decimal("0"), sell_price=Decimal("10")) is None


def test_vat_is_rounded_half_up_to_pence() -> None:
    assert vat_amount(Decimal("131.625"), rate_percent=Decimal("20")) == Decimal("26.33")
    assert vat_amount(Decimal("0"), rate_percent=Decimal("20")) == Decimal("0.00")


def test_vat_rejects_negative_rate() -> None:
    with pytest.raises(ValueError):
        vat_amount(Decimal("10"), rate_percent=Decimal("-1"))
