"""
Fee calculation for job payments.

Platform fee: 12% of the job amount, deducted from the hustler payout.
Customer service fee: 6.5% of the job amount, added to the customer total.
Tips pass through untouched and never carry fees.

Every output is rounded half-up to cents from its own exact product, never
derived from another rounded field.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from core.exceptions import ValidationError

PLATFORM_FEE_RATE = Decimal('0.12')
CUSTOMER_FEE_RATE = Decimal('0.065')
CENT = Decimal('0.01')


def round2(value):
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value, field='amount'):
    """Coerce an amount to Decimal, rejecting negatives and non-numeric input."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a non-negative number", code='INVALID_ARGUMENT', field=field)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} must be a non-negative number", code='INVALID_ARGUMENT', field=field)
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"{field} must be a non-negative number", code='INVALID_ARGUMENT', field=field)
    return amount


def calculate_fees(job_amount, tip_amount=0):
    amount = to_decimal(job_amount, field='job_amount')
    tip = to_decimal(tip_amount, field='tip_amount')

    platform_fee = amount * PLATFORM_FEE_RATE
    customer_fee = amount * CUSTOMER_FEE_RATE

    return {
        'job_amount': round2(amount),
        'platform_fee': round2(platform_fee),
        'customer_fee': round2(customer_fee),
        'hustler_payout': round2(amount - platform_fee),
        'total': round2(amount + customer_fee),
        'tip_amount': round2(tip),
    }


def get_fee_rates():
    return {
        'platform_fee_rate': PLATFORM_FEE_RATE,
        'platform_fee_percent': f"{PLATFORM_FEE_RATE * 100:.1f}%",
        'customer_fee_rate': CUSTOMER_FEE_RATE,
        'customer_fee_percent': f"{CUSTOMER_FEE_RATE * 100:.1f}%",
    }


def to_cents(amount):
    """Dollars to integer minor units for the payment gateway."""
    return int(round2(to_decimal(amount)) * 100)


def from_cents(cents):
    """Integer minor units reported by the gateway back to dollars."""
    return round2(Decimal(cents) / 100)
