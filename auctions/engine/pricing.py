"""
Money helpers and the bid increment table.

All amounts are ``Decimal`` with two places. Prices are whole units, with
0.99 kept as the single fractional amount older listings were created with.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from auctions.exceptions import ValidationError


CENT = Decimal('0.01')
LEGACY_AMOUNT = Decimal('0.99')

# (upper bound exclusive, increment)
INCREMENT_TABLE = (
    (Decimal('1.00'), Decimal('0.05')),
    (Decimal('5.00'), Decimal('0.25')),
    (Decimal('25.00'), Decimal('0.50')),
    (Decimal('100.00'), Decimal('1.00')),
    (Decimal('250.00'), Decimal('2.50')),
    (Decimal('1000.00'), Decimal('5.00')),
)
TOP_INCREMENT = Decimal('10.00')


def bid_increment(price):
    """Smallest step by which the next bid must exceed ``price``."""
    for upper, increment in INCREMENT_TABLE:
        if price < upper:
            return increment
    return TOP_INCREMENT


def minimum_next_bid(current_price, starting_price, has_bids):
    """
    Smallest legal maximum bid.

    The starting price opens the auction; after that the current price plus
    one increment.
    """
    if not has_bids:
        return starting_price
    return current_price + bid_increment(current_price)


def to_amount(value, field):
    """Coerce ``value`` to a two-place Decimal or raise ValidationError."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(field, f"{field} must be a number.")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(field, f"{field} must be a number.")
    if not amount.is_finite():
        raise ValidationError(field, f"{field} must be a number.")
    if amount != amount.quantize(CENT, rounding=ROUND_HALF_UP):
        raise ValidationError(field, f"{field} cannot have more than two decimal places.")
    return amount.quantize(CENT)


def is_whole_units(amount):
    return amount == amount.to_integral_value() or amount == LEGACY_AMOUNT


def validate_price(value, field, minimum=None):
    """Parse a listing or bid amount and enforce whole units and a floor."""
    amount = to_amount(value, field)
    if amount <= 0:
        raise ValidationError(field, f"{field} must be greater than zero.")
    if minimum is not None and amount < minimum:
        raise ValidationError(field, f"{field} must be at least ${minimum:.2f}.")
    if not is_whole_units(amount):
        raise ValidationError(field, f"{field} must be a whole dollar amount.")
    return amount
