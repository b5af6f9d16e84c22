from __future__ import annotations

import math

from posledger.domain.errors import ValidationError


def as_number(value: object, label: str) -> float:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{label} must be a number.")
    if isinstance(value, str):
        value = value.strip()
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{label} must be a number.") from e
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"{label} must be a number.")
    return number


def as_int(value: object, label: str) -> int:
    number = as_number(value, label)
    if not number.is_integer():
        raise ValidationError(f"{label} must be a whole number.")
    return int(number)


def required_text(value: object, label: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"{label} is required.")
    return text
