import pytz
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

# --- CONSTANTS ---
IST_TIMEZONE = pytz.timezone('Asia/Kolkata')
PAISE = Decimal("0.01")


# --- FORMATTING ---
def format_currency(value, symbol: str = "₹") -> str:
    """Standardizes currency formatting across the app."""
    if value is None:
        return f"{symbol}0.00"
    return f"{symbol}{value:,.2f}"


# --- MONEY ---
def to_money(value) -> Decimal:
    """Coerces floats, ints, strings and Decimals to a 2-place Decimal."""
    if value is None or value == "":
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(PAISE, rounding=ROUND_HALF_UP)


# --- TIME ---
def get_current_ist_time():
    """Returns current time in IST."""
    return datetime.now(IST_TIMEZONE)


def as_ist(value: datetime) -> datetime:
    """Naive datetimes read back from the database are IST wall-clock times."""
    if value.tzinfo is None:
        return IST_TIMEZONE.localize(value)
    return value.astimezone(IST_TIMEZONE)
