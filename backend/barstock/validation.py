from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any


# Quantities are stored as NUMERIC(10, 2)
QUANTITY_QUANT = Decimal("0.01")
MAX_QUANTITY = Decimal("99999999.99")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (stale status, concurrent change)."""


class NotFoundError(LookupError):
    """404-level missing entity."""


class ForbiddenError(PermissionError):
    """403-level: actor may not act on this store's records."""


def require_text(value: Any, field: str) -> str:
    """
    Require a non-blank string and return it stripped.

    Used for rejection reasons, explanations and owner notes, which are all
    mandatory where the workflow asks for them.
    """
    if value is None or not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


def optional_text(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def parse_flag(value: Any, field: str, *, default: bool = False) -> bool:
    """JSON booleans only; the string "false" would otherwise read as true."""
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be true or false")
    return value


def parse_quantity(value: Any, field: str = "quantity", *, minimum: Decimal | int = 0, allow_equal: bool = False) -> Decimal:
    """
    Coerce an incoming quantity to a 2-place Decimal and range-check it.

    - bools are rejected even though they are ints
    - floats are accepted (bottle fractions), but NaN/inf are not
    - by default the value must be strictly greater than ``minimum``;
      ``allow_equal=True`` makes the bound inclusive
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")

    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValidationError(f"{field} must be a number")

    try:
        qty = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")

    if not qty.is_finite():
        raise ValidationError(f"{field} must be a finite number")

    qty = qty.quantize(QUANTITY_QUANT)
    bound = Decimal(minimum)

    if allow_equal:
        if qty < bound:
            raise ValidationError(f"{field} must be at least {bound.normalize()}")
    elif qty <= bound:
        raise ValidationError(f"{field} must be greater than {bound.normalize()}")

    if qty > MAX_QUANTITY:
        raise ValidationError(f"{field} cannot exceed {MAX_QUANTITY}")

    return qty


def quantity_to_json(value: Decimal | None) -> float | None:
    """NUMERIC columns come back as Decimal; the API speaks plain numbers."""
    if value is None:
        return None
    return float(value)
