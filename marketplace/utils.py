from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import datetime, timezone
from flask import request
from marketplace.errors import ValidationError
import logging

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')


def money(value) -> Decimal:
    """Quantize to cents, half-up."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_money(value, field, allow_zero=False) -> Decimal:
    if value is None or value == '':
        raise ValidationError(f'{field} is required', field=field)
    try:
        amount = money(value)
        if not amount.is_finite():
            raise InvalidOperation(value)
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f'{field} must be a decimal amount', field=field)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f'{field} must be greater than zero', field=field)
    return amount


def parse_quantity(value, field='quantity') -> int:
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an integer', field=field)
    if quantity < 1:
        raise ValidationError(f'{field} must be at least 1', field=field)
    return quantity


def commission_split(amount, rate):
    """Return (commission_amount, seller_payout) for a rate in percent."""
    amount = money(amount)
    commission = money(amount * Decimal(str(rate)) / Decimal('100'))
    return commission, amount - commission


def decimal_str(value):
    if value is None:
        return None
    return str(money(value))


def iso(value):
    return value.isoformat() if value else None


def parse_datetime(value, field):
    if value in (None, ''):
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(
            f'{field} must be an ISO 8601 datetime', field=field)
    # Stored datetimes are naive UTC.
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def request_payload():
    return request.get_json(silent=True) or {}
