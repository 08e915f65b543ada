import re
from typing import Optional


CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")
COLOR_PATTERN = re.compile(r"^#([0-9A-Fa-f]{3}|[0-9A-Fa-f]{6})$")


def currency_code(value: Optional[str]) -> Optional[str]:
    if value is not None and not CURRENCY_PATTERN.match(value):
        raise ValueError("Currency must be a 3-letter upper-case code")
    return value


def hex_color(value: Optional[str]) -> Optional[str]:
    if value is not None and not COLOR_PATTERN.match(value):
        raise ValueError("Color must be a hex color like #RGB or #RRGGBB")
    return value


def money(value: Optional[float]) -> Optional[float]:
    """Amounts are kept to cents."""
    if value is None:
        return value
    return round(value, 2)
