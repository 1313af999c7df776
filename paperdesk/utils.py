# paperdesk/utils.py
import math
import time
from datetime import datetime, timezone

NAN = float('nan')


def now_ms() -> int:
    return int(time.time() * 1000)


def parse_decimal(value) -> float:
    """
    Parses an exchange decimal string into a float.

    Malformed input yields NaN instead of raising so that one bad field never
    stops a message from being dispatched. Consumers that need finite values
    (the paper engine) validate on their side.
    """
    if value is None:
        return NAN
    try:
        return float(value)
    except (TypeError, ValueError):
        return NAN


def parse_iso_ms(value) -> float:
    """ISO-8601 timestamp -> epoch milliseconds, NaN when it cannot be parsed."""
    if not isinstance(value, str) or not value:
        return NAN
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return NAN
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp() * 1000


def is_positive_number(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0
