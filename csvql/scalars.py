"""
Scalar type registry for csvql.

Maps the six scalar type tags a dataset field can declare to the
representation used for storage, comparison and output:

    String    -> TEXT     str
    Int       -> INTEGER  int
    Float     -> REAL     float
    Boolean   -> INTEGER  0 / 1
    Date      -> TEXT     'YYYY-MM-DD'
    DateTime  -> TEXT     'YYYY-MM-DDTHH:MM:SS.mmmZ' (UTC)

Coercion never raises. Empty strings, None and anything that cannot be
parsed for the target type become None, which the filter engines treat
as a non-match for every comparison except an explicit null check.
"""
import logging
import math
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import Float, Integer, Text
from sqlalchemy.types import TypeEngine

logger = logging.getLogger(__name__)


class ScalarType(Enum):
    """Scalar type tags a field can declare."""
    STRING = "String"
    INT = "Int"
    FLOAT = "Float"
    BOOLEAN = "Boolean"
    DATE = "Date"
    DATETIME = "DateTime"

    @classmethod
    def from_string(cls, s: Optional[str]) -> "ScalarType":
        """Parse a type tag; None and empty strings default to String."""
        if s is None or not str(s).strip():
            return cls.STRING
        s = str(s).strip()
        for member in cls:
            if member.value == s or member.value.lower() == s.lower():
                return member
        raise ValueError(f"Unknown scalar type: {s}")

    @property
    def is_temporal(self) -> bool:
        return self in (ScalarType.DATE, ScalarType.DATETIME)


TRUTHY_STRINGS = frozenset(("true", "1", "yes"))

# SQLite INTEGER range; Int values outside it are stored as NULL.
INT_MIN = -2 ** 63
INT_MAX = 2 ** 63 - 1

# Formats tried after ISO 8601 parsing fails.
DATE_FORMATS = [
    '%Y/%m/%d',
    '%m/%d/%Y',
    '%Y-%m-%d %H:%M',
    '%d %b %Y',
    '%b %d %Y',
    '%B %d, %Y',
]

_COLUMN_TYPES: Dict[ScalarType, type] = {
    ScalarType.STRING: Text,
    ScalarType.INT: Integer,
    ScalarType.FLOAT: Float,
    ScalarType.BOOLEAN: Integer,
    ScalarType.DATE: Text,
    ScalarType.DATETIME: Text,
}


def column_type(scalar_type: ScalarType) -> TypeEngine:
    """SQLAlchemy column type used to store a scalar type."""
    return _COLUMN_TYPES.get(scalar_type, Text)()


# =============================================================================
# Date parsing and formatting
# =============================================================================

def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a date-like value into an aware UTC datetime.

    Accepts datetime and date objects, epoch milliseconds and strings in
    ISO 8601 or one of DATE_FORMATS. Naive values are taken as UTC.
    Returns None when the value cannot be parsed.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    s = str(value).strip()
    if not s:
        return None

    try:
        return parse_datetime(datetime.fromisoformat(s.replace('Z', '+00:00')))
    except ValueError:
        pass

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    return None


def format_date(dt: datetime) -> str:
    return dt.strftime('%Y-%m-%d')


def format_datetime(dt: datetime) -> str:
    return dt.strftime('%Y-%m-%dT%H:%M:%S') + f".{dt.microsecond // 1000:03d}Z"


def format_real(value: float) -> str:
    """
    Text of a REAL value as SQLite's printf('%!.15g', x) renders it.

    15 significant digits, and always a decimal point in the mantissa:
    60.0 -> '60.0', 1e20 -> '1.0e+20', 0.1 + 0.2 -> '0.3'.
    """
    if math.isinf(value):
        return "Inf" if value > 0 else "-Inf"
    mantissa, sep, exponent = ('%.15g' % value).partition('e')
    if '.' not in mantissa:
        mantissa += '.0'
    return mantissa + sep + exponent


# =============================================================================
# Coercion
# =============================================================================

def _in_int_range(value: int) -> Optional[int]:
    return value if INT_MIN <= value <= INT_MAX else None


def _to_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return _in_int_range(value)
    if isinstance(value, float):
        return _in_int_range(int(value)) if math.isfinite(value) else None
    s = str(value).strip()
    try:
        return _in_int_range(int(s))
    except ValueError:
        pass
    try:
        f = float(s)
    except ValueError:
        return None
    return _in_int_range(int(f)) if math.isfinite(f) else None


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(f) else f


def _to_bool(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    return 1 if str(value).strip().lower() in TRUTHY_STRINGS else 0


def _to_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return format_datetime(parse_datetime(value))
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def to_storage_value(scalar_type: ScalarType, value: Any) -> Any:
    """
    Convert an input value to its stored representation.

    Args:
        scalar_type: Declared type of the target field
        value: Raw input (CSV text, Python value or filter operand)

    Returns:
        The stored value, or None for empty or malformed input
    """
    if value is None or value == '':
        return None

    if scalar_type == ScalarType.BOOLEAN:
        result = _to_bool(value)
    elif scalar_type == ScalarType.INT:
        result = _to_int(value)
    elif scalar_type == ScalarType.FLOAT:
        result = _to_float(value)
    elif scalar_type == ScalarType.DATE:
        dt = parse_datetime(value)
        result = format_date(dt) if dt is not None else None
    elif scalar_type == ScalarType.DATETIME:
        dt = parse_datetime(value)
        result = format_datetime(dt) if dt is not None else None
    else:
        result = _to_string(value)

    if result is None:
        logger.debug("Cannot coerce %r to %s", value, scalar_type.value)
    return result


def from_storage_value(scalar_type: ScalarType, stored: Any) -> Any:
    """Convert a stored value to its output representation."""
    if stored is None:
        return None
    if scalar_type == ScalarType.BOOLEAN:
        return bool(_to_bool(stored)) if isinstance(stored, str) else bool(stored)
    if scalar_type in (ScalarType.STRING, ScalarType.INT, ScalarType.FLOAT):
        return to_storage_value(scalar_type, stored)
    # Temporal values are already ISO text; normalize anything else
    if isinstance(stored, str):
        normalized = to_storage_value(scalar_type, stored)
        return normalized if normalized is not None else stored
    return to_storage_value(scalar_type, stored)


def scalar_type_of(value: Any) -> ScalarType:
    """Scalar type matching a Python value."""
    if isinstance(value, bool):
        return ScalarType.BOOLEAN
    if isinstance(value, int):
        return ScalarType.INT
    if isinstance(value, float):
        return ScalarType.FLOAT
    if isinstance(value, datetime):
        return ScalarType.DATETIME
    if isinstance(value, date):
        return ScalarType.DATE
    return ScalarType.STRING


def as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def operand_scalar_type(declared: Optional[ScalarType], value: Any) -> ScalarType:
    """
    Type used to coerce a filter operand.

    The field's declared type wins. Undeclared fields fall back to the
    operand's own type (the first non-null member for lists), so both
    filter engines compare like with like.
    """
    if declared is not None:
        return declared
    if isinstance(value, (list, tuple, set, frozenset)):
        value = next((v for v in value if v is not None), None)
    return scalar_type_of(value)


def serialize_row(types: Dict[str, ScalarType], row: Dict[str, Any]) -> Dict[str, Any]:
    """Convert every known column of a stored row to its output value."""
    return {
        name: from_storage_value(types[name], value) if name in types else value
        for name, value in row.items()
    }
