from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def to_decimal(value: Any) -> Optional[Decimal]:
    """Parse provider amounts, which arrive as numbers or numeric strings."""
    if value is None or value == "":
        return None
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    return parsed if parsed.is_finite() else None


def to_float(value: Any, default: float = 0.0) -> float:
    parsed = to_decimal(value)
    return float(parsed) if parsed is not None else default
