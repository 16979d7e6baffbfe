# Overview: Cart value objects and tax arithmetic feeding the settlement engine.

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from ..validation import ValidationError, coerce_cents, coerce_int
from .discount_service import Discount, apply_discount


VALID_TAX_RATES = [0, 1, 8, 10, 18, 20]


def price_with_tax(price_cents: int, tax_rate: int) -> int:
    """Tax-inclusive unit price, rounded half-up to the cent."""
    gross = Decimal(price_cents) * (Decimal(100 + tax_rate) / Decimal(100))
    return int(gross.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def price_without_tax(price_with_tax_cents: int, tax_rate: int) -> int:
    net = Decimal(price_with_tax_cents) / (Decimal(100 + tax_rate) / Decimal(100))
    return int(net.quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class CartLine:
    product_id: int
    name: str
    unit_price_cents: int
    unit_price_with_tax_cents: int
    tax_rate: int
    quantity: int

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    @property
    def total_cents(self) -> int:
        return self.unit_price_with_tax_cents * self.quantity

    @property
    def tax_cents(self) -> int:
        return self.total_cents - self.subtotal_cents

    @classmethod
    def from_dict(cls, data: dict) -> "CartLine":
        if not isinstance(data, dict):
            raise ValidationError("Each cart line must be an object")
        product_id = data.get("product_id")
        if product_id is None:
            raise ValidationError("product_id is required on each cart line")
        tax_rate = coerce_int(data.get("tax_rate", 0), "tax_rate")
        if tax_rate not in VALID_TAX_RATES:
            raise ValidationError(f"Invalid tax_rate: {tax_rate}. Must be one of {VALID_TAX_RATES}")
        quantity = coerce_int(data.get("quantity"), "quantity")
        if quantity <= 0:
            raise ValidationError("quantity must be > 0")

        unit_price = coerce_cents(data.get("unit_price_cents"), "unit_price_cents")
        gross = data.get("unit_price_with_tax_cents")
        gross = coerce_cents(gross, "unit_price_with_tax_cents") if gross is not None else price_with_tax(unit_price, tax_rate)

        return cls(
            product_id=coerce_int(product_id, "product_id"),
            name=str(data.get("name") or f"Product {product_id}").strip(),
            unit_price_cents=unit_price,
            unit_price_with_tax_cents=gross,
            tax_rate=tax_rate,
            quantity=quantity,
        )


@dataclass(frozen=True)
class Cart:
    """
    Cart handed to settlement: lines plus an optional discount.

    total_cents is tax inclusive and pre discount; discounted_total_cents is
    what the payment plan has to cover.
    """
    lines: tuple[CartLine, ...]
    discount: Discount | None = None

    @property
    def subtotal_cents(self) -> int:
        return sum(line.subtotal_cents for line in self.lines)

    @property
    def tax_cents(self) -> int:
        return self.total_cents - self.subtotal_cents

    @property
    def total_cents(self) -> int:
        return sum(line.total_cents for line in self.lines)

    @property
    def discounted_total_cents(self) -> int:
        return apply_discount(self.total_cents, self.discount)

    def line(self, product_id: int) -> CartLine:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        raise KeyError(product_id)

    def split_line_amounts(self) -> dict[int, int]:
        """
        Per-line amounts a product split must collect.

        Without a discount these are the tax-inclusive line totals. With one,
        each line is scaled pro-rata and the last line absorbs rounding so the
        amounts always add up to the discounted total.
        """
        target = self.discounted_total_cents
        total = self.total_cents
        amounts: dict[int, int] = {}
        if total == 0 or target == total:
            for line in self.lines:
                amounts[line.product_id] = line.total_cents
            return amounts

        allocated = 0
        for i, line in enumerate(self.lines):
            if i == len(self.lines) - 1:
                amounts[line.product_id] = target - allocated
                break
            share = (Decimal(line.total_cents) * Decimal(target) / Decimal(total)).quantize(
                Decimal(1), rounding=ROUND_HALF_UP
            )
            amounts[line.product_id] = int(share)
            allocated += int(share)
        return amounts

    def summary(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "discounted_total_cents": self.discounted_total_cents,
            "discount": self.discount.to_dict() if self.discount else None,
            "tax_breakdown": tax_breakdown(self.lines),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Cart":
        if not isinstance(data, dict):
            raise ValidationError("cart must be an object")
        raw_lines = data.get("lines") or []
        if not raw_lines:
            raise ValidationError("cart has no lines")
        lines = tuple(CartLine.from_dict(item) for item in raw_lines)
        seen: set[int] = set()
        for line in lines:
            if line.product_id in seen:
                raise ValidationError(f"Duplicate cart line for product {line.product_id}")
            seen.add(line.product_id)
        return cls(lines=lines, discount=Discount.from_dict(data.get("discount")))


def tax_breakdown(lines) -> list[dict]:
    """Base/tax/total amounts grouped by tax rate, sorted by rate."""
    groups: dict[int, dict] = {}
    for line in lines:
        group = groups.setdefault(line.tax_rate, {"rate": line.tax_rate, "base_cents": 0, "tax_cents": 0, "total_cents": 0})
        group["base_cents"] += line.subtotal_cents
        group["tax_cents"] += line.tax_cents
        group["total_cents"] += line.total_cents
    return [groups[rate] for rate in sorted(groups)]
