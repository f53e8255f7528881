import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from ..logging import get_logger

_LOG = get_logger("normalize")

_EDGE_PUNCT = re.compile(r"^[^\w]+|[^\w]+$", re.UNICODE)


def canonical_name(name: Any) -> str:
    """Return the ledger key for an item name.

    Lowercase, trimmed, internal whitespace collapsed, leading/trailing
    punctuation removed ("Solar  Panels?" -> "solar panels").
    """
    if name is None:
        return ""
    s = " ".join(str(name).split()).lower()
    return _EDGE_PUNCT.sub("", s).strip()


def coerce_quantity(value: Any) -> Optional[float]:
    """Convert numbers and numeric strings ("2,5", " 10 ") to float.

    Returns None for anything that is not a finite number. Booleans are
    rejected even though they are ints.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        f = float(value)
    elif isinstance(value, str):
        s = value.strip().replace(",", ".")
        if not s:
            return None
        try:
            f = float(Decimal(s))
        except (InvalidOperation, ValueError):
            _LOG.debug(f"Not a quantity: {value!r}")
            return None
    else:
        return None
    if f != f or f in (float("inf"), float("-inf")):
        return None
    return f


def format_quantity(q: Any) -> str:
    """10.0 -> '10', 2.5 -> '2.5', 1/3 -> '0.33'."""
    f = coerce_quantity(q)
    if f is None:
        return str(q)
    if f.is_integer():
        return str(int(f))
    text = f"{f:.2f}".rstrip("0").rstrip(".")
    return text


def format_phone_number(raw: Optional[str]) -> str:
    """Normalize a WhatsApp sender id: drop 'whatsapp:', '+', spaces, dashes and a leading 0."""
    if not raw:
        return ""
    s = str(raw).replace("whatsapp:", "")
    s = re.sub(r"[\s\-+]", "", s)
    return re.sub(r"^0", "", s)


def truncate(text: str, limit: int = 100) -> str:
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 3)] + "..."
