# Overview: Two-tier pricing for quote lines and quote aggregates.

"""
Pricing Engine

Every quote line carries two unit prices:
- partner price: what the provider is owed by the partner
- customer price: what the partner charges its customer

Rules:
1. Privileged roles may supply the partner unit price; everyone else gets
   the partner's resolved price (see catalog_service.resolve_partner_price_cents).
   A partner-scoped caller may echo that price back but not change it.
2. partner_admin / partner_user must supply a customer unit price for every
   line, and it may not be lower than the partner unit price (no
   negative-margin lines; equal is allowed). Other roles default the
   customer price to the partner price and are held to the same bound if
   they supply one.
3. Line totals are quantity x unit price. Aggregates are plain sums; the
   discount is always 0 for now.

All amounts are integer cents, so aggregates are exact.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..models import Partner, Product
from ..money import margin_pct
from ..permissions import Role, PARTNER_SELLER_ROLES, can_bypass_partner_isolation
from ..validation import (
    ValidationError,
    NotFoundError,
    clean_str,
    coerce_int,
    coerce_price_cents,
    coerce_quantity,
)
from .catalog_service import get_active_product, resolve_partner_price_cents


@dataclass
class PricedLine:
    product: Product
    quantity: int
    partner_unit_price_cents: int
    customer_unit_price_cents: int
    notes: str | None = None

    @property
    def partner_line_total_cents(self) -> int:
        return self.quantity * self.partner_unit_price_cents

    @property
    def customer_line_total_cents(self) -> int:
        return self.quantity * self.customer_unit_price_cents


@dataclass
class QuoteTotals:
    partner_subtotal_cents: int
    customer_subtotal_cents: int
    discount_cents: int
    customer_total_cents: int
    partner_total_cents: int

    @property
    def profit_margin_pct(self) -> float:
        return margin_pct(self.customer_total_cents, self.partner_total_cents)

    def to_dict(self) -> dict:
        return {
            "partner_subtotal_cents": self.partner_subtotal_cents,
            "customer_subtotal_cents": self.customer_subtotal_cents,
            "discount_cents": self.discount_cents,
            "customer_total_cents": self.customer_total_cents,
            "partner_total_cents": self.partner_total_cents,
            "profit_margin_pct": self.profit_margin_pct,
        }


def price_line(role: Role | str, partner: Partner | None, item: dict, index: int = 0) -> PricedLine:
    """Resolve both unit prices for one requested line."""
    label = f"items[{index}]"
    if not isinstance(item, dict):
        raise ValidationError(f"{label} must be an object")
    if item.get("product_id") in (None, ""):
        raise ValidationError(f"{label}.product_id is required")
    if item.get("quantity") in (None, ""):
        raise ValidationError(f"{label}.quantity is required")

    product_id = coerce_int(item["product_id"], f"{label}.product_id")
    quantity = coerce_quantity(item["quantity"], f"{label}.quantity")

    product = get_active_product(product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")

    resolved_partner_price = resolve_partner_price_cents(partner, product)
    supplied_unit = item.get("unit_price_cents")

    if can_bypass_partner_isolation(role):
        if supplied_unit is not None:
            partner_unit = coerce_price_cents(supplied_unit, f"{label}.unit_price_cents")
        else:
            partner_unit = resolved_partner_price
    else:
        partner_unit = resolved_partner_price
        if supplied_unit is not None:
            supplied = coerce_price_cents(supplied_unit, f"{label}.unit_price_cents")
            if supplied != resolved_partner_price:
                raise ValidationError(
                    f"{label}.unit_price_cents must match the partner price ({resolved_partner_price})"
                )

    supplied_customer = item.get("customer_unit_price_cents")
    if Role.parse(role) in PARTNER_SELLER_ROLES and supplied_customer is None:
        raise ValidationError(f"{label}.customer_unit_price_cents is required for partner quotes")

    if supplied_customer is None:
        customer_unit = partner_unit
    else:
        customer_unit = coerce_price_cents(supplied_customer, f"{label}.customer_unit_price_cents")
        if customer_unit < partner_unit:
            raise ValidationError(
                f"{label}.customer_unit_price_cents ({customer_unit}) cannot be below "
                f"the partner price ({partner_unit})"
            )

    return PricedLine(
        product=product,
        quantity=quantity,
        partner_unit_price_cents=partner_unit,
        customer_unit_price_cents=customer_unit,
        notes=clean_str(item.get("notes"), f"{label}.notes"),
    )


def price_lines(role: Role | str, partner: Partner | None, items) -> list[PricedLine]:
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required")
    return [price_line(role, partner, item, index) for index, item in enumerate(items)]


def compute_totals(lines: list[PricedLine], discount_cents: int = 0) -> QuoteTotals:
    partner_subtotal = sum(line.partner_line_total_cents for line in lines)
    customer_subtotal = sum(line.customer_line_total_cents for line in lines)
    return QuoteTotals(
        partner_subtotal_cents=partner_subtotal,
        customer_subtotal_cents=customer_subtotal,
        discount_cents=discount_cents,
        customer_total_cents=customer_subtotal - discount_cents,
        partner_total_cents=partner_subtotal - discount_cents,
    )


def price_quote(role: Role | str, partner: Partner | None, items) -> tuple[list[PricedLine], QuoteTotals]:
    lines = price_lines(role, partner, items)
    return lines, compute_totals(lines)
