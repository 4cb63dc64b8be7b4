"""
Price change evaluation.

Pure functions deciding whether a freshly fetched price is worth
recording and whether it should raise an alert.
"""

from decimal import Decimal

from ..models import ChangeAction, PriceUpdateSettings


ZERO = Decimal("0")


def _as_decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def signed_percent_change(old_price, new_price) -> Decimal:
    """((new - old) / old) * 100, or 0 when there is no prior price."""
    old = _as_decimal(old_price)
    new = _as_decimal(new_price)
    if old <= ZERO:
        return ZERO
    return (new - old) / old * 100


def percent_change(old_price, new_price) -> Decimal:
    """
    Absolute percentage change between two prices.

    An old price of 0 means no baseline and yields 0, not an infinite jump.
    """
    return abs(signed_percent_change(old_price, new_price))


def classify_change(change_pct: Decimal, settings: PriceUpdateSettings) -> ChangeAction:
    """
    Map an absolute change onto the recording decision.

    Below min_change_percentage_to_record -> SKIP
    Below alert_threshold_percentage      -> RECORD
    Otherwise                             -> ALERT (record and alert)
    """
    change_pct = _as_decimal(change_pct)
    if change_pct < settings.min_change_percentage_to_record:
        return ChangeAction.SKIP
    if change_pct < settings.alert_threshold_percentage:
        return ChangeAction.RECORD
    return ChangeAction.ALERT
