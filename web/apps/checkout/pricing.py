"""Order price calculation and amount-integrity validation.

The server is authoritative for price: the storefront submits the total it
displayed, and ``PriceCalculator.validate_amount`` recomputes it from
catalog prices to detect tampering or stale carts.
"""

from dataclasses import asdict, dataclass
from typing import Iterable, Mapping, Optional, Union

FREE_SHIPPING_THRESHOLD_CENTS = 5_000_000
SHIPPING_COST_CENTS = 1_000_000
TAX_RATE_PERCENT = 19
DEFAULT_TOLERANCE_CENTS = 100


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal_cents: int
    shipping_cents: int
    tax_cents: int
    total_cents: int

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class AmountValidation:
    valid: bool
    calculated: int
    claimed: int
    difference: int
    breakdown: PriceBreakdown

    def as_dict(self) -> dict:
        return {
            "valid": self.valid,
            "calculated": self.calculated,
            "claimed": self.claimed,
            "difference": self.difference,
            "breakdown": self.breakdown.as_dict(),
        }


PricedItem = Union[Mapping, object]


def _field(item: PricedItem, name: str) -> int:
    value = item[name] if isinstance(item, Mapping) else getattr(item, name)
    return int(value)


class PriceCalculator:
    """Computes subtotal, shipping, tax and total from priced items.

    Items may be mappings or objects exposing ``unit_price_cents`` and
    ``quantity``. Tax is 19% of the subtotal, truncated to whole cents.
    Shipping is waived from ``FREE_SHIPPING_THRESHOLD_CENTS`` upwards.
    """

    def __init__(
        self,
        free_shipping_threshold_cents: int = FREE_SHIPPING_THRESHOLD_CENTS,
        shipping_cost_cents: int = SHIPPING_COST_CENTS,
        tax_rate_percent: int = TAX_RATE_PERCENT,
    ):
        self.free_shipping_threshold_cents = free_shipping_threshold_cents
        self.shipping_cost_cents = shipping_cost_cents
        self.tax_rate_percent = tax_rate_percent

    def calculate(self, items: Optional[Iterable[PricedItem]]) -> PriceBreakdown:
        items = list(items or [])
        if not items:
            # Empty carts still carry the flat shipping fee.
            return PriceBreakdown(0, self.shipping_cost_cents, 0, self.shipping_cost_cents)

        subtotal = sum(_field(it, "unit_price_cents") * _field(it, "quantity") for it in items)
        shipping = 0 if subtotal >= self.free_shipping_threshold_cents else self.shipping_cost_cents
        tax = subtotal * self.tax_rate_percent // 100
        return PriceBreakdown(subtotal, shipping, tax, subtotal + shipping + tax)

    def validate_amount(
        self,
        items: Optional[Iterable[PricedItem]],
        claimed_total_cents: int,
        tolerance_cents: int = DEFAULT_TOLERANCE_CENTS,
    ) -> AmountValidation:
        """Recompute the total and compare it with the client's claim.

        Returns:
            AmountValidation: ``valid`` is True iff
            ``|calculated - claimed| <= tolerance_cents``.
        """
        breakdown = self.calculate(items)
        difference = abs(breakdown.total_cents - int(claimed_total_cents))
        return AmountValidation(
            valid=difference <= tolerance_cents,
            calculated=breakdown.total_cents,
            claimed=int(claimed_total_cents),
            difference=difference,
            breakdown=breakdown,
        )
