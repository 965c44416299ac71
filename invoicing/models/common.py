from __future__ import annotations
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
import uuid


def gen_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_decimal(val: Any) -> Optional[Decimal]:
    """Convertit int/float/str ("18,50") en Decimal fini, sinon None."""
    if val is None or isinstance(val, bool):
        return None
    if isinstance(val, Decimal):
        d = val
    else:
        s = str(val).strip().replace(",", ".")
        if s == "":
            return None
        try:
            d = Decimal(s)
        except (InvalidOperation, ValueError):
            return None
    return d if d.is_finite() else None
