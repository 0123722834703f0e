from datetime import date, datetime
import logging

from constants import (
    DEFAULT_CURRENCY,
    DEFAULT_PAYMENT_DUE_DAY,
    DEFAULT_PAYMENT_FREQUENCY,
    PAYMENT_FREQUENCIES,
)
from logic.form_validation import (
    ValidationRule,
    email,
    max_value,
    min_value,
    numeric,
    one_of,
    phone,
    required,
    valid_date,
    validate_values,
)
from utils.formatters import format_date_long

# Set up a module-level logger
log = logging.getLogger(__name__)

DATES_REQUIRED_MESSAGE = "Lease start and end dates are required."
INVALID_DATES_MESSAGE = "Lease start and end dates must be valid dates."
END_BEFORE_START_MESSAGE = "Lease end date must be after start date."


def parse_lease_date(value) -> date | None:
    """Parses an ISO date (or the date part of an ISO datetime). Returns None if it can't."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def _end_after_start(value, values=None) -> bool:
    start = parse_lease_date((values or {}).get('lease_start'))
    end = parse_lease_date(value)
    if start is None or end is None:
        return True
    return end > start


LEASE_FORM_RULES = {
    'rent_amount': [
        required("Rent amount is required"),
        numeric(),
        min_value(0, "Rent amount cannot be negative"),
    ],
    'security_deposit': [numeric(), min_value(0, "Security deposit cannot be negative")],
    'payment_due_day': [
        numeric(),
        min_value(1, "Payment due day must be between 1 and 31"),
        max_value(31, "Payment due day must be between 1 and 31"),
    ],
    'payment_frequency': [one_of(PAYMENT_FREQUENCIES, "Unknown payment frequency")],
    'lease_start': [required("Lease start date is required"), valid_date()],
    'lease_end': [
        required("Lease end date is required"),
        valid_date(),
        ValidationRule(_end_after_start, END_BEFORE_START_MESSAGE),
    ],
    'first_name': [required("Tenant first name is required")],
    'last_name': [required("Tenant last name is required")],
    'email': [email()],
    'phone': [phone()],
}


def validate_lease_form(form: dict) -> tuple:
    return validate_values(form, LEASE_FORM_RULES)


def check_lease_overlap(candidate: dict, other_leases: list) -> str | None:
    """
    Checks a new or edited lease against the other leases of the same property.
    Date ranges are inclusive on both ends. Returns None when there is no overlap,
    otherwise a message naming the conflicting lease.

    This is a client-side check only: nothing in the database prevents two
    concurrent submissions from both passing it.
    """
    if not candidate.get('lease_start') or not candidate.get('lease_end'):
        return DATES_REQUIRED_MESSAGE

    new_start = parse_lease_date(candidate['lease_start'])
    new_end = parse_lease_date(candidate['lease_end'])
    if new_start is None or new_end is None:
        return INVALID_DATES_MESSAGE

    for lease in other_leases:
        start = parse_lease_date(lease.get('lease_start'))
        end = parse_lease_date(lease.get('lease_end'))
        if start is None or end is None:
            log.warning(f"Skipping lease {lease.get('id')} with unreadable dates in overlap check.")
            continue

        overlaps = (
            start <= new_start <= end
            or start <= new_end <= end
            or (new_start <= start and new_end >= end)
        )
        if overlaps:
            message = (
                f"Lease overlaps with another lease from {format_date_long(lease['lease_start'])} "
                f"to {format_date_long(lease['lease_end'])}"
            )
            tenant_name = tenant_full_name(tenant_from_lease(lease))
            if tenant_name != "No tenant":
                message += f" ({tenant_name})"
            return message
    return None


def other_leases_for(active_lease: dict | None, past_leases: list | None, lease_to_edit_id: str = None) -> list:
    """Collects every lease of a property except the one being edited."""
    leases = list(past_leases or [])
    if active_lease:
        leases.append(active_lease)
    return [l for l in leases if not lease_to_edit_id or l.get('id') != lease_to_edit_id]


def is_lease_currently_active(lease_start, lease_end, today: date = None) -> bool:
    today = today or date.today()
    start = parse_lease_date(lease_start)
    end = parse_lease_date(lease_end)
    return bool(start and end and start <= today <= end)


def split_leases(leases: list, today: date = None) -> tuple:
    """
    Splits a property's leases into (current lease, other leases).
    The current lease is the latest-starting lease that is flagged active or covers today.
    Other leases are returned newest first.
    """
    today = today or date.today()
    ordered = sorted(leases, key=lambda l: l.get('lease_start') or '', reverse=True)
    current = next(
        (l for l in ordered
         if l.get('is_lease_active') or is_lease_currently_active(l.get('lease_start'), l.get('lease_end'), today)),
        None,
    )
    others = [l for l in ordered if l is not current]
    return current, others


def days_left_in_lease(lease_end, today: date = None) -> int | None:
    end = parse_lease_date(lease_end)
    if end is None:
        return None
    return (end - (today or date.today())).days


def tenant_from_lease(lease: dict | None) -> dict | None:
    """Builds a tenant view from the tenant fields embedded on a lease row."""
    if not lease:
        return None
    if not (lease.get('tenant_first_name') or lease.get('tenant_last_name')):
        return None
    return {
        'id': lease.get('tenant_id'),
        'first_name': lease.get('tenant_first_name') or '',
        'last_name': lease.get('tenant_last_name') or '',
        'email': lease.get('tenant_email') or '',
        'phone': lease.get('tenant_phone') or '',
    }


def tenant_full_name(tenant: dict | None) -> str:
    if not tenant:
        return "No tenant"
    return f"{tenant.get('first_name', '')} {tenant.get('last_name', '')}".strip()


def _to_float(value, default=0.0) -> float:
    if value in (None, ''):
        return default
    return float(value)


def build_lease_payload(form: dict, today: date = None) -> dict:
    """
    Turns a submitted lease form into a lease row: trims tenant fields, casts numbers,
    applies defaults and derives `is_lease_active` from the date range.
    """
    return {
        'rent_amount': _to_float(form.get('rent_amount')),
        'currency': form.get('currency') or DEFAULT_CURRENCY,
        'lease_start': form.get('lease_start'),
        'lease_end': form.get('lease_end'),
        'payment_frequency': form.get('payment_frequency') or DEFAULT_PAYMENT_FREQUENCY,
        'payment_due_day': int(_to_float(form.get('payment_due_day'), DEFAULT_PAYMENT_DUE_DAY)),
        'security_deposit': _to_float(form.get('security_deposit')),
        'is_lease_active': is_lease_currently_active(form.get('lease_start'), form.get('lease_end'), today),
        'tenant_first_name': (form.get('first_name') or '').strip(),
        'tenant_last_name': (form.get('last_name') or '').strip(),
        'tenant_email': (form.get('email') or '').strip(),
        'tenant_phone': (form.get('phone') or '').strip(),
        'notes': form.get('notes'),
    }


def lease_to_form(lease: dict) -> dict:
    """Initial form values when editing an existing lease."""
    return {
        'rent_amount': str(lease.get('rent_amount') or ''),
        'currency': lease.get('currency') or DEFAULT_CURRENCY,
        'lease_start': (lease.get('lease_start') or '')[:10],
        'lease_end': (lease.get('lease_end') or '')[:10],
        'payment_frequency': lease.get('payment_frequency') or DEFAULT_PAYMENT_FREQUENCY,
        'payment_due_day': lease.get('payment_due_day') or DEFAULT_PAYMENT_DUE_DAY,
        'security_deposit': lease.get('security_deposit') or 0,
        'is_lease_active': lease['is_lease_active'] if lease.get('is_lease_active') is not None else True,
        'first_name': lease.get('tenant_first_name') or '',
        'last_name': lease.get('tenant_last_name') or '',
        'email': lease.get('tenant_email') or '',
        'phone': lease.get('tenant_phone') or '',
    }
