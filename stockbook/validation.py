"""Input coercion helpers shared by the services and the HTTP layer."""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from .errors import ValidationError
from .models import NUMERIC_PRECISION


def clean_str(value):
    """Trimmed string, or None for missing/blank input."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def require_str(data, name):
    value = clean_str(data.get(name))
    if value is None:
        raise ValidationError(f'{name} is required', field=name)
    return value


def to_int(value, name, minimum=None, default=None):
    if value is None or value == '':
        if default is None:
            raise ValidationError(f'{name} is required', field=name)
        return default
    if isinstance(value, bool):
        raise ValidationError(f'{name} must be an integer', field=name)
    try:
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError(value)
            number = int(value)
        else:
            number = int(str(value).strip())
    except ValueError:
        raise ValidationError(f'{name} must be an integer', field=name)
    if minimum is not None and number < minimum:
        op = 'greater than 0' if minimum == 1 else f'>= {minimum}'
        raise ValidationError(f'{name} must be {op}', field=name)
    return number


def to_decimal(value, name, positive=True, places=None, precision=NUMERIC_PRECISION):
    """
    Exact decimal from a JSON number or string; floats go through str().

    With ``places`` set the value must fit a NUMERIC(precision, places)
    column as-is: more decimal places, or more integer digits than the
    column holds, is a ValidationError rather than a silent rounding.
    """
    if value is None or value == '' or isinstance(value, bool):
        raise ValidationError(f'{name} is required', field=name)
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f'{name} must be a number', field=name)
    if not number.is_finite():
        raise ValidationError(f'{name} must be a number', field=name)
    if places is not None:
        limit = Decimal(10) ** (precision - places)
        if abs(number) >= limit:
            raise ValidationError(f'{name} must be less than {limit}', field=name)
        quantum = Decimal(1).scaleb(-places)
        if number != number.quantize(quantum):
            raise ValidationError(f'{name} allows at most {places} decimal places', field=name)
        number = number.quantize(quantum)
    if positive and number <= 0:
        raise ValidationError(f'{name} must be greater than 0', field=name)
    return number


def to_bool(value, name):
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ('true', 'false'):
        return value.strip().lower() == 'true'
    raise ValidationError(f'{name} must be a boolean', field=name)


def parse_timestamp(value, name):
    """
    Parse an ISO-8601 timestamp into the naive-UTC storage convention.
    Values without an offset are taken as UTC; a trailing 'Z' is accepted.
    """
    text = clean_str(value)
    if text is None:
        return None
    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f'{name} must be an ISO-8601 timestamp', field=name)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def page_params(page, limit, default_limit=10, max_limit=100):
    """Clamp page >= 1 and 1 <= limit <= max_limit."""
    page = to_int(page, 'page', default=1)
    limit = to_int(limit, 'limit', default=default_limit)
    return max(1, page), max(1, min(max_limit, limit))
