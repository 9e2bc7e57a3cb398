"""Which lines price a repair item: its own, or the option chosen for it."""

from __future__ import annotations

from decimal import Decimal

from .money import ZERO, to_decimal, vat_amount


def pricing_source(item):
    """The selected option when one is chosen, else the item itself."""
    option = item.selected_option
    return option if option is not None else item


def own_labour_total(item) -> Decimal:
    return to_decimal(pricing_source(item).labour_total)


def own_parts_total(item) -> Decimal:
    return to_decimal(pricing_source(item).parts_total)


def own_vat_amount(item) -> Decimal:
    return to_decimal(pricing_source(item).vat_amount)


def line_totals(labour_entries, part_entries, *, vat_rate) -> tuple[Decimal, Decimal, Decimal]:
    """(labour, parts, vat) over a set of lines. Exempt labour carries no VAT."""
    labour = sum((to_decimal(e.total) for e in labour_entries), ZERO)
    exempt = sum((to_decimal(e.total) for e in labour_entries if e.is_vat_exempt), ZERO)
    parts = sum((to_decimal(p.line_total) for p in part_entries), ZERO)
    return labour, parts, vat_amount(labour - exempt + parts, rate_percent=vat_rate)


def recalculate_line_totals(owner, *, vat_rate) -> None:
    """Refresh the stored sums of a repair item or option from its lines."""
    owner.labour_total, owner.parts_total, owner.vat_amount = line_totals(
        owner.labour_entries,
        owner.part_entries,
        vat_rate=vat_rate,
    )
