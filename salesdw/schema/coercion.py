"""
Field Value Coercion

Converts parsed values (Python objects or CSV text) to the storage
representation of a registered field. Fixed-point DECIMAL values are held
as integer counts of ``10**-scale`` units so arithmetic on them stays exact.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional

from salesdw.schema.registry import FieldSpec, FieldType

# Stored INTEGER and DECIMAL columns are Int64
INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


def _to_integer(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("booleans are not integers")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError("not an integral value")
        return int(value)
    if isinstance(value, Decimal):
        if value != value.to_integral_value():
            raise ValueError("not an integral value")
        return int(value)
    return int(str(value).strip())


def _to_string(value: Any) -> str:
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        return str(value)
    raise ValueError(f"expected text, got {type(value).__name__}")


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())


def to_scaled_integer(value: Any, scale: int = 2) -> int:
    """
    Convert a fixed-point value to an integer count of ``10**-scale`` units.

    Raises:
        ValueError: Value is not numeric or needs more than ``scale`` digits
    """
    if isinstance(value, bool):
        raise ValueError("booleans are not decimals")
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"not a decimal: {value!r}") from None
    if not number.is_finite():
        raise ValueError(f"not a finite decimal: {value!r}")
    scaled = number.scaleb(scale)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{value!r} has more than {scale} decimal places")
    return int(scaled)


def from_scaled_integer(value: Optional[int], scale: int = 2) -> Optional[Decimal]:
    """Inverse of ``to_scaled_integer``"""
    if value is None:
        return None
    return Decimal(value).scaleb(-scale).quantize(Decimal(1).scaleb(-scale))


_COERCERS: Dict[FieldType, Callable[[Any], Any]] = {
    FieldType.INTEGER: _to_integer,
    FieldType.STRING: _to_string,
    FieldType.DATE: _to_date,
}


def coerce_value(spec: FieldSpec, value: Any, bounded: bool = True) -> Any:
    """
    Coerce one parsed value to a field's storage representation.

    With ``bounded`` numeric values must also fit the Int64 store column.
    """
    if value is None:
        if not spec.nullable:
            raise ValueError("null not allowed")
        return None
    if spec.type == FieldType.DECIMAL:
        coerced = to_scaled_integer(value, spec.scale)
    else:
        coerced = _COERCERS[spec.type](value)
    if spec.non_negative and coerced < 0:
        raise ValueError("must be non-negative")
    if bounded and spec.type.is_numeric and not INT64_MIN <= coerced <= INT64_MAX:
        raise ValueError("out of range for storage")
    return coerced

