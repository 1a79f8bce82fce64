import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from hepeco_server.config import settings
from hepeco_server.models import Quote


SERVICE_PRICES = {
    "basic_website": 250_000,
    "business_website": 450_000,
    "ecommerce_store": 750_000,
    "marketing_package": 300_000,
    "premium_package": 1_200_000,
}

DEFAULT_TIMELINE_DAYS = 14

# Rush delivery surcharges keyed by timeline in days
TIMELINE_MULTIPLIERS = {
    14: Decimal("1.0"),
    7: Decimal("1.25"),
    3: Decimal("1.5"),
}

_DAYS_RE = re.compile(r"^\s*(\d+)")


def parse_timeline(value: Union[int, str, None]) -> int:
    """Accept ``7``, ``"7"`` or ``"7 days"``; anything else falls back to the default."""
    if isinstance(value, bool) or value is None:
        return DEFAULT_TIMELINE_DAYS
    if isinstance(value, int):
        return value
    match = _DAYS_RE.match(str(value))
    if not match:
        return DEFAULT_TIMELINE_DAYS
    return int(match.group(1))


def compute_quote(service: str, timeline_days: int, default_base_price: Optional[int] = None) -> Quote:
    """Price a service for a delivery timeline.

    Unknown services use the configured default base price and unrecognised
    timelines carry no surcharge. Totals are rounded half-up to whole units.
    """
    if default_base_price is None:
        default_base_price = settings.DEFAULT_BASE_PRICE

    base_price = SERVICE_PRICES.get(service, default_base_price)
    multiplier = TIMELINE_MULTIPLIERS.get(timeline_days, Decimal("1.0"))
    total = int((Decimal(base_price) * multiplier).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    return Quote(
        service=service,
        timeline_days=timeline_days,
        base_price=base_price,
        surcharge=total - base_price,
        total=total,
    )
