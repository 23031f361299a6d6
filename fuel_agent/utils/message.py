import math
from typing import Optional, Union
from urllib.parse import quote

Number = Union[int, float, str, None]


class MessageError(ValueError):
    pass


# Format one field: user-typed strings go out as typed, numbers at fixed precision
def _format_value(name: str, raw: Number, decimals: int) -> str:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise MessageError(f"{name} is required")
    text = raw.strip() if isinstance(raw, str) else None
    try:
        num = float(text if text is not None else raw)
    except (TypeError, ValueError):
        raise MessageError(f"{name} must be a number") from None
    if not math.isfinite(num) or num <= 0:
        raise MessageError(f"{name} must be greater than zero")
    if text is not None:
        return text
    return f"{num:.{decimals}f}" if decimals else str(int(round(num)))


# Build the fill-up log line: "<miles> <price> <gallons>"
def compose_fillup_message(miles: Number, price: Number, gallons: Number) -> str:
    return " ".join([
        _format_value("miles", miles, 0),
        _format_value("price", price, 3),
        _format_value("gallons", gallons, 3),
    ])


def sms_link(recipient: Optional[str], body: str) -> str:
    """sms: URI that opens the messaging app with the body prefilled."""
    return f"sms:{(recipient or '').strip()}&body={quote(body)}"
