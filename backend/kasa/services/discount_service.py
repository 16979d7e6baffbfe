# Overview: Pure discount arithmetic applied to a cart total before settlement.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from ..validation import ValidationError


DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_AMOUNT = "amount"

VALID_DISCOUNT_TYPES = [DISCOUNT_PERCENTAGE, DISCOUNT_AMOUNT]


@dataclass(frozen=True)
class Discount:
    """
    Discount chosen at the till.

    percentage: value is a percent (may be fractional, e.g. 12.5)
    amount: value is in cents
    """
    type: str
    value: Decimal

    @classmethod
    def from_dict(cls, data: dict | None) -> "Discount | None":
        if not data:
            return None
        discount_type = data.get("type")
        if discount_type not in VALID_DISCOUNT_TYPES:
            raise ValidationError(f"Invalid discount type: {discount_type}. Must be one of {VALID_DISCOUNT_TYPES}")
        try:
            value = Decimal(str(data.get("value", 0)))
        except InvalidOperation:
            raise ValidationError("discount value must be a number")
        if value < 0:
            raise ValidationError("discount value must be >= 0")
        return cls(type=discount_type, value=value)

    def to_dict(self) -> dict:
        return {"type": self.type, "value": float(self.value)}


def apply_discount(raw_total_cents: int, discount: Discount | None) -> int:
    """
    Return the discounted total in cents, always within [0, raw_total_cents].

    Percentage discounts round half-up to the cent. No discount means the raw
    total is returned unchanged.
    """
    raw_total_cents = max(0, raw_total_cents)
    if discount is None:
        return raw_total_cents

    if discount.type == DISCOUNT_PERCENTAGE:
        factor = Decimal(1) - (discount.value / Decimal(100))
        discounted = (Decimal(raw_total_cents) * factor).quantize(Decimal(1), rounding=ROUND_HALF_UP)
        result = int(discounted)
    else:
        result = raw_total_cents - int(discount.value.quantize(Decimal(1), rounding=ROUND_HALF_UP))

    return min(raw_total_cents, max(0, result))
