"""
Retail pricing and eligibility rules.

All arithmetic is done in Decimal at full precision; values are rounded to
two places only when they are written to the catalog (see to_money).
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Tuple, Union

from ..models import CandidateProduct, SyncSettings


Number = Union[Decimal, int, str]

HUNDRED = Decimal("100")
CENTS = Decimal("0.01")


def _d(value: Number) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def retail_price(wholesale: Number, margin_percent: Number) -> Decimal:
    """Retail price for a wholesale cost marked up by margin_percent."""
    return _d(wholesale) * (1 + _d(margin_percent) / HUNDRED)


def margin_percent(wholesale: Number, retail: Number) -> Decimal:
    """
    Markup of retail over wholesale, as a percentage of wholesale.

    Raises:
        ValueError: If wholesale is zero or negative.
    """
    wholesale = _d(wholesale)
    if wholesale <= 0:
        raise ValueError(f"Wholesale price must be positive, got {wholesale}")
    return (_d(retail) - wholesale) / wholesale * HUNDRED


def to_money(value: Number) -> Decimal:
    """Round half-up to two decimal places."""
    return _d(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def is_eligible(candidate: CandidateProduct, computed_retail: Number, settings: SyncSettings) -> bool:
    """
    Decide whether a new candidate may enter the catalog.

    A blank brand or category means the supplier didn't say, so it is not
    filtered; a known value must be in the allow-list. The margin implied by
    computed_retail must reach the configured minimum.
    """
    if candidate.brand and candidate.brand not in settings.brands:
        return False
    if candidate.category and candidate.category not in settings.categories:
        return False
    try:
        margin = margin_percent(candidate.wholesale_price, computed_retail)
    except ValueError:
        return False
    return margin >= _d(settings.min_margin_percent)


def reprice(wholesale: Number,
            margin: Optional[Number] = None,
            retail: Optional[Number] = None) -> Tuple[Decimal, Decimal]:
    """
    Compute the (retail, margin) pair for a manual price override.

    Exactly one of margin or retail must be given; the other is derived.
    Both results are rounded for storage.
    """
    if (margin is None) == (retail is None):
        raise ValueError("Provide exactly one of margin or retail")
    if margin is not None:
        new_retail = to_money(retail_price(wholesale, margin))
    else:
        new_retail = to_money(retail)
    # Margin always follows the stored retail price
    return new_retail, to_money(margin_percent(wholesale, new_retail))
