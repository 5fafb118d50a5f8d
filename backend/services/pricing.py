"""Line pricing and document totals.

Everything here is pure: no session, no I/O. services.totals feeds it the
persisted items of a document and writes the result back.

Rounding policy: billing inputs are stored with two decimals, so they are
quantized before the line total is computed. Item totals and the subtotal then
keep full precision. Rounding to cents (ROUND_HALF_UP) happens once per tax
amount, once on the discount and once on the total:

    total == round2(subtotal - discount_amount + tps_amount + tvq_amount + late_fee_amount)
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional, Sequence

from errors import ValidationError
from models import BillingMode, QuoteItemType, ZERO

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_decimal(value) -> Decimal:
    """Coerce a user-supplied number to Decimal. Empty values become 0."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so 0.1 stays 0.1 instead of its binary expansion
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"'{value}' is not a valid number")


def round_money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class TaxPolicy:
    """The two tax rates applied to a document (e.g. TPS 5% and TVQ 9.975%)."""
    tps_rate: Decimal
    tvq_rate: Decimal

    @classmethod
    def of(cls, document) -> "TaxPolicy":
        """The policy frozen onto a quote or invoice."""
        return cls(to_decimal(document.tps_rate), to_decimal(document.tvq_rate))

    @property
    def multiplier(self) -> Decimal:
        return 1 + self.tps_rate + self.tvq_rate

    def apply_to(self, document) -> None:
        document.tps_rate = self.tps_rate
        document.tvq_rate = self.tvq_rate


@dataclass(frozen=True)
class Line:
    total: Decimal
    include_in_total: bool = True


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    discount_amount: Decimal
    tps_amount: Decimal
    tvq_amount: Decimal
    late_fee_amount: Decimal
    total: Decimal

    @property
    def tax_amounts(self) -> tuple:
        return (self.tps_amount, self.tvq_amount)


def parse_billing_mode(value) -> str:
    if value is None:
        return BillingMode.FIXED.value
    try:
        return BillingMode(value).value
    except ValueError:
        raise ValidationError(f"billing_mode must be one of: {', '.join(m.value for m in BillingMode)}")


def parse_item_type(value) -> str:
    if value is None:
        return QuoteItemType.SERVICE.value
    try:
        return QuoteItemType(value).value
    except ValueError:
        raise ValidationError(f"item_type must be one of: {', '.join(t.value for t in QuoteItemType)}")


def counts_toward_total(item) -> bool:
    """Whether a quote item is billed.

    Excluded and FREE items never are. A_LA_CARTE items are billed only while
    the client keeps them selected.
    """
    if not item.include_in_total:
        return False
    item_type = parse_item_type(getattr(item, "item_type", None))
    if item_type == QuoteItemType.FREE.value:
        return False
    if item_type == QuoteItemType.A_LA_CARTE.value:
        return bool(getattr(item, "is_selected", True))
    return True


def line_total(billing_mode, quantity, unit_price, hourly_rate, hours) -> Decimal:
    """quantity × unit_price for FIXED lines, hours × hourly_rate for HOURLY ones."""
    if parse_billing_mode(billing_mode) == BillingMode.HOURLY.value:
        return to_decimal(hours) * to_decimal(hourly_rate)
    return to_decimal(quantity) * to_decimal(unit_price)


def apply_line_total(item) -> Decimal:
    """Normalize an item's billing inputs and recompute its total in place.

    Inputs are rounded to the two decimals their columns store, so the total
    always matches what is read back.
    """
    item.billing_mode = parse_billing_mode(item.billing_mode)
    item.quantity = round_money(item.quantity)
    item.unit_price = round_money(item.unit_price)
    item.hourly_rate = round_money(item.hourly_rate)
    item.hours = round_money(item.hours)
    item.total = line_total(item.billing_mode, item.quantity, item.unit_price, item.hourly_rate, item.hours)
    return item.total


def discount_amount(subtotal: Decimal, discounts: Optional[Sequence[dict]]) -> Decimal:
    """Sum of quote discounts. PERCENTAGE entries apply to the subtotal, others are flat."""
    amount = ZERO
    for discount in discounts or []:
        value = to_decimal(discount.get("value"))
        if discount.get("type") == "PERCENTAGE":
            amount += subtotal * value / HUNDRED
        else:
            amount += value
    return round_money(amount)


def compute_totals(
    lines: Iterable[Line],
    tax_policy: TaxPolicy,
    discounts: Optional[Sequence[dict]] = None,
    late_fee=ZERO,
) -> Totals:
    """Reduce the full current item set of a document to its derived amounts."""
    subtotal = sum((to_decimal(line.total) for line in lines if line.include_in_total), ZERO)
    discount = discount_amount(subtotal, discounts)
    taxable = subtotal - discount
    tps_amount = round_money(taxable * tax_policy.tps_rate)
    tvq_amount = round_money(taxable * tax_policy.tvq_rate)
    late_fee_amount = round_money(late_fee)

    return Totals(
        subtotal=subtotal,
        discount_amount=discount,
        tps_amount=tps_amount,
        tvq_amount=tvq_amount,
        late_fee_amount=late_fee_amount,
        total=round_money(taxable + tps_amount + tvq_amount + late_fee_amount),
    )
