import datetime
import decimal
import uuid
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

MONEY_QUANT = Decimal("0.01")


def to_json_compatible(value):
    if isinstance(value, dict):
        return {key: to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_compatible(item) for item in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (datetime.date, datetime.datetime, datetime.time)):
        return value.isoformat()
    return value


MAX_AMOUNT = Decimal("1e15")
# Products and sums of capped inputs stay well inside this many digits.
MONEY_PRECISION = 100


def money_context():
    return decimal.localcontext(decimal.Context(prec=MONEY_PRECISION, rounding=ROUND_HALF_UP))


def parse_decimal(value):
    """Parse a number without bounds; unparseable or non-finite values become zero."""
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError, TypeError):
            return Decimal("0")
    if not result.is_finite():
        return Decimal("0")
    return result


def to_decimal(value):
    """Coerce user input to a finite Decimal capped at +/- MAX_AMOUNT; anything unparseable becomes zero."""
    result = parse_decimal(value)
    if abs(result) > MAX_AMOUNT:
        return MAX_AMOUNT.copy_sign(result)
    return result


def to_int(value):
    return int(to_decimal(value))


def quantize_money(amount):
    with money_context():
        return amount.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def to_money(value):
    return quantize_money(to_decimal(value))


def parse_money(value):
    """Read back a stored amount. Stored totals may exceed MAX_AMOUNT, so they are not capped."""
    return quantize_money(parse_decimal(value))
