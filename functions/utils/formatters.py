import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from constants import DEFAULT_CURRENCY
from logic.form_validation import parse_date

log = logging.getLogger(__name__)

CURRENCY_SYMBOLS = {
    'USD': '$',
    'EUR': '€',
    'GBP': '£',
    'ILS': '₪',
    'NIS': '₪',
    'JPY': '¥',
    'CNY': '¥',
    'INR': '₹',
    'CAD': 'C$',
    'AUD': 'A$',
    'CHF': 'CHF ',
    'ZMW': 'K',
}

PAYMENT_FREQUENCY_SUFFIXES = {
    'weekly': '/ week',
    'biweekly': 'Every 2 weeks',
    'monthly': '/ month',
    'quarterly': 'Every 3 months',
    'annually': '/ year',
}

PAYMENT_FREQUENCY_LABELS = {
    'monthly': 'Monthly',
    'weekly': 'Weekly',
    'biweekly': 'Every 2 Weeks',
    'quarterly': 'Quarterly',
    'annually': 'Annually',
}


def get_currency_symbol(code: str) -> str:
    return CURRENCY_SYMBOLS.get((code or '').upper(), '$')


def format_currency(amount, currency_code: str = None, max_fraction_digits: int = 1) -> str:
    """
    Formats an amount with its currency symbol and thousands separators, e.g. "$1,200".
    Shows between 0 and `max_fraction_digits` decimals, rounding half up.
    """
    if amount is None:
        return "N/A"
    symbol = get_currency_symbol(currency_code or DEFAULT_CURRENCY)
    try:
        value = Decimal(str(amount))
        if not value.is_finite():
            raise InvalidOperation(amount)
        value = value.quantize(Decimal(1).scaleb(-max_fraction_digits), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        log.warning(f"Cannot format non-numeric amount {amount!r}")
        return "N/A"
    text = f"{value:,.{max_fraction_digits}f}"
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return f"{symbol}{text}"


def format_payment_frequency(frequency: str) -> str:
    """Suffix shown after a rent amount, e.g. "/ month"."""
    return PAYMENT_FREQUENCY_SUFFIXES.get(frequency, '')


def payment_frequency_label(frequency: str) -> str:
    return PAYMENT_FREQUENCY_LABELS.get(frequency, 'Unknown')


def format_date_long(value) -> str:
    """Formats an ISO date as e.g. "January 5, 2024"."""
    parsed = parse_date(value)
    if parsed is None:
        return "N/A"
    return f"{parsed:%B} {parsed.day}, {parsed.year}"


def format_date(value) -> str:
    parsed = parse_date(value) if value else None
    if parsed is None:
        return "N/A"
    return f"{parsed.month}/{parsed.day}/{parsed.year}"
