from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

import pytz

from crm.errors import ValidationError

CENT = Decimal('0.01')
UNIT_PRICE_PLACES = Decimal('0.0001')


def to_decimal(value, field):
    """Parse a user supplied number into a Decimal or raise ValidationError"""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValidationError(field, 'must be a number')
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        # Go through str so 2.5 stays 2.5 rather than its binary expansion
        result = Decimal(str(value))
    elif isinstance(value, str):
        if not value.strip():
            raise ValidationError(field, 'is required')
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(field, f"'{value}' is not a number")
    else:
        raise ValidationError(field, 'must be a number')

    if not result.is_finite():
        raise ValidationError(field, 'must be a finite number')
    return result


def round_money(value):
    """Round half-up to whole cents"""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_half_up(value, places=0):
    exponent = Decimal(1).scaleb(-places)
    return Decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def format_currency(value):
    """Format a number as currency with commas and 2 decimal places"""
    if value is None:
        return "$0.00"
    try:
        return "${:,.2f}".format(Decimal(value))
    except (ValueError, TypeError, InvalidOperation):
        return "$0.00"


def utcnow():
    """Naive UTC timestamp, matching what the models store"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def month_key(moment, tz_name):
    """'YYYY-MM' of a naive UTC timestamp as seen in the business timezone"""
    local = pytz.utc.localize(moment).astimezone(pytz.timezone(tz_name))
    return f'{local.year:04d}-{local.month:02d}'


def parse_month(value):
    """Accept 'YYYY-MM', 'YYYY-MM-DD', a date or datetime; return 'YYYY-MM' or None"""
    if value is None or value == '':
        return None
    if isinstance(value, (date, datetime)):
        return f'{value.year:04d}-{value.month:02d}'
    if isinstance(value, str):
        text = value.strip()
        try:
            parsed = datetime.strptime(text[:7], '%Y-%m')
        except ValueError:
            raise ValidationError('month', f"'{value}' is not a YYYY-MM month")
        return f'{parsed.year:04d}-{parsed.month:02d}'
    raise ValidationError('month', 'must be a YYYY-MM string or a date')
