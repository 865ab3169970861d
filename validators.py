from decimal import Decimal, InvalidOperation

from errors import ValidationError

CENT = Decimal('0.01')
# Largest value a Numeric(10, 2) column holds
MAX_AMOUNT = Decimal('99999999.99')


def parse_amount(value, field_name):
    """Parse a non-negative money amount, at most 2 decimal places, into a Decimal"""
    if value is None or isinstance(value, bool):
        raise ValidationError(f'{field_name} must be a number')
    try:
        # str() keeps floats like 0.1 from turning into binary noise
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field_name} must be a number')
    if not amount.is_finite():
        raise ValidationError(f'{field_name} must be a number')
    if amount < 0:
        raise ValidationError(f'{field_name} cannot be negative')
    if amount > MAX_AMOUNT:
        raise ValidationError(f'{field_name} must be at most {MAX_AMOUNT}')
    if amount != amount.quantize(CENT):
        raise ValidationError(f'{field_name} must have at most 2 decimal places')
    return amount.quantize(CENT)


def parse_quantity(value, field_name='quantity'):
    if isinstance(value, bool):
        raise ValidationError(f'{field_name} must be an integer')
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f'{field_name} must be an integer')
        value = int(value)
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field_name} must be an integer')
    if quantity < 1:
        raise ValidationError(f'{field_name} must be at least 1')
    return quantity


def parse_name(value, field_name='name', max_length=255):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{field_name} cannot be empty')
    name = value.strip()
    if len(name) > max_length:
        raise ValidationError(f'{field_name} must be at most {max_length} characters')
    return name
