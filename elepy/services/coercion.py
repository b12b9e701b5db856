import uuid
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from fastapi import HTTPException

from elepy.schemas.model import Property, PropertyType


def _bad_filter_value(prop: Property, kind: str) -> HTTPException:
    return HTTPException(status_code=400, detail=f"Invalid value for the field '{prop.pretty_name}' ({kind})")


def coerce_bool(prop: Property, value):
    if isinstance(value, bool):
        return value
    text = str(value if value is not None else "").strip().lower()
    if text in {"1", "true", "yes", "y", "on"}:
        return True
    if text in {"0", "false", "no", "n", "off"}:
        return False
    raise _bad_filter_value(prop, "boolean")


def coerce_number(prop: Property, value):
    if isinstance(value, bool):
        raise _bad_filter_value(prop, "number")
    if isinstance(value, (int, float, Decimal)):
        return value
    text = str(value if value is not None else "").strip()
    if not text:
        raise _bad_filter_value(prop, "number")
    normalized = text.replace(",", ".")
    try:
        return int(normalized)
    except ValueError:
        pass
    try:
        number = Decimal(normalized)
    except InvalidOperation:
        raise _bad_filter_value(prop, "number")
    if not number.is_finite():
        raise _bad_filter_value(prop, "number")
    return number


def coerce_date(prop: Property, value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    if not text:
        raise _bad_filter_value(prop, "date")
    try:
        # Accept either YYYY-MM-DD or full ISO datetime and take its date part.
        if "T" in text or " " in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        return date.fromisoformat(text)
    except ValueError:
        raise _bad_filter_value(prop, "date")


def coerce_datetime(prop: Property, value):
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, datetime.min.time())
    else:
        text = str(value or "").strip()
        if not text:
            raise _bad_filter_value(prop, "datetime")
        try:
            if is_date_only_literal(text):
                parsed = datetime.combine(date.fromisoformat(text), datetime.min.time())
            else:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise _bad_filter_value(prop, "datetime")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def coerce_enum(prop: Property, value):
    text = str(value.value if hasattr(value, "value") else value)
    if prop.enum_values and text not in prop.enum_values:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid value for the field '{prop.pretty_name}', expected one of: {', '.join(prop.enum_values)}",
        )
    return text


def coerce_value(prop: Property, value):
    """Convert a raw (usually query-string) value to the property's Python type."""
    if value is None:
        return None
    if prop.type == PropertyType.BOOLEAN:
        return coerce_bool(prop, value)
    if prop.type == PropertyType.NUMBER:
        return coerce_number(prop, value)
    if prop.type == PropertyType.DATE:
        return coerce_date(prop, value)
    if prop.type == PropertyType.DATETIME:
        return coerce_datetime(prop, value)
    if prop.type == PropertyType.ENUM:
        return coerce_enum(prop, value)
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def is_date_only_literal(raw_value) -> bool:
    if isinstance(raw_value, date) and not isinstance(raw_value, datetime):
        return True
    if not isinstance(raw_value, str):
        return False
    text = raw_value.strip()
    if not text or "T" in text or " " in text:
        return False
    try:
        date.fromisoformat(text)
        return True
    except ValueError:
        return False
