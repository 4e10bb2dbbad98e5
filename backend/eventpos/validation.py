# Overview: Payload coercion helpers; every route validates before any write.

from __future__ import annotations

from typing import Any

from .errors import ValidationError


# Maximum amount: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999
MAX_QUANTITY = 10_000


def require_payload(payload) -> dict:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion.

    Accepts ints and plain digit strings; rejects bools, floats, decimals
    and scientific notation.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def require_int(payload: dict, field: str, *, minimum: int | None = None,
                maximum: int | None = None) -> int:
    if field not in payload or payload[field] is None:
        raise ValidationError(f"{field} is required")
    value = coerce_int(payload[field], field)
    if minimum is not None and value < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise ValidationError(f"{field} cannot exceed {maximum}")
    return value


def optional_int(payload: dict, field: str, *, minimum: int | None = None) -> int | None:
    if payload.get(field) is None:
        return None
    return require_int(payload, field, minimum=minimum)


def require_positive_int(payload: dict, field: str) -> int:
    return require_int(payload, field, minimum=1)


def require_amount_cents(value: Any, field: str = "amount_cents", *, allow_zero: bool = False) -> int:
    amount = coerce_int(value, field)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'>= 0' if allow_zero else '> 0'}")
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS} ({MAX_AMOUNT_CENTS / 100:,.2f})")
    return amount


def optional_str(payload: dict, field: str, *, max_length: int = 255) -> str | None:
    value = payload.get(field)
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    if len(value) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return value


def require_str(payload: dict, field: str, *, max_length: int = 255) -> str:
    value = optional_str(payload, field, max_length=max_length)
    if value is None:
        raise ValidationError(f"{field} is required")
    return value


def parse_item_lines(raw_items) -> list[dict]:
    """
    Normalize [{menu_item_id, quantity, notes?}] order lines.

    Raises:
        ValidationError for an empty list, a missing menu_item_id, or a
        quantity that is not a positive integer
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")
    lines = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        lines.append({
            "menu_item_id": require_positive_int(raw, "menu_item_id"),
            "quantity": require_int(raw, "quantity", minimum=1, maximum=MAX_QUANTITY),
            "notes": optional_str(raw, "notes"),
        })
    return lines
