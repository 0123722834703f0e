"""
Declarative form validation.

A rule table maps a field name to an ordered list of ValidationRule objects.
Rules are evaluated in order and the first failing rule's message becomes the
field's error. Every rule other than `required` treats an empty value as valid,
so optional fields are only checked when filled in.
"""
import copy
import logging
import math
import re
import threading
from datetime import date, datetime, time
from typing import Any, Callable, NamedTuple

log = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 0.2

EMAIL_PATTERN = re.compile(r'^[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}$', re.IGNORECASE)
PHONE_PATTERN = re.compile(r'^(\+\d{1,3}[- ]?)?\(?(\d{3})\)?[- ]?(\d{3})[- ]?(\d{4})$')
ZIP_CODE_PATTERN = re.compile(r'^\d{5}(-\d{4})?$')
CURRENCY_PATTERN = re.compile(r'^-?\$?([0-9]{1,3},([0-9]{3},)*[0-9]{3}|[0-9]+)(\.[0-9][0-9])?$')


class ValidationRule(NamedTuple):
    validate: Callable[[Any, dict], bool]
    message: str


class FormValidationError(Exception):
    """Raised by services when a submitted form fails its rule table."""

    def __init__(self, errors: dict):
        super().__init__("Please fix all errors before submitting.")
        self.errors = errors


def _is_empty(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ''
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _to_number(value):
    """Returns the value as a float, or None when it is not a finite number."""
    if isinstance(value, bool):
        return None
    try:
        number = float(str(value).replace(',', '')) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def parse_date(value):
    """
    Parses an ISO date or datetime string (or date/datetime object) into a naive datetime.
    Returns None when the value cannot be parsed.
    """
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return datetime.fromisoformat(text).replace(tzinfo=None)
    except ValueError:
        return None


def required(message: str = "This field is required") -> ValidationRule:
    def validate(value, values=None):
        if value is None:
            return False
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip() != ''
        if isinstance(value, (int, float)):
            return True
        if isinstance(value, (list, tuple, dict, set)):
            return len(value) > 0
        return bool(value)
    return ValidationRule(validate, message)


def _pattern_rule(pattern: re.Pattern, message: str) -> ValidationRule:
    def validate(value, values=None):
        if _is_empty(value):
            return True
        return bool(pattern.match(str(value)))
    return ValidationRule(validate, message)


def email(message: str = "Please enter a valid email address") -> ValidationRule:
    return _pattern_rule(EMAIL_PATTERN, message)


def phone(message: str = "Please enter a valid phone number") -> ValidationRule:
    return _pattern_rule(PHONE_PATTERN, message)


def zip_code(message: str = "Please enter a valid ZIP code") -> ValidationRule:
    return _pattern_rule(ZIP_CODE_PATTERN, message)


def currency(message: str = "Please enter a valid currency amount") -> ValidationRule:
    def validate(value, values=None):
        if _is_empty(value):
            return True
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        return bool(CURRENCY_PATTERN.match(str(value)))
    return ValidationRule(validate, message)


def numeric(message: str = "Please enter a valid number") -> ValidationRule:
    def validate(value, values=None):
        if _is_empty(value):
            return True
        return _to_number(value) is not None
    return ValidationRule(validate, message)


def min_value(minimum, message: str = None) -> ValidationRule:
    def validate(value, values=None):
        if _is_empty(value):
            return True
        number = _to_number(value)
        return number is not None and number >= minimum
    return ValidationRule(validate, message or f"Value must be at least {minimum}")


def max_value(maximum, message: str = None) -> ValidationRule:
    def validate(value, values=None):
        if _is_empty(value):
            return True
        number = _to_number(value)
        return number is not None and number <= maximum
    return ValidationRule(validate, message or f"Value must be at most {maximum}")


def min_length(minimum: int, message: str = None) -> ValidationRule:
    def validate(value, values=None):
        if _is_empty(value):
            return True
        return len(str(value)) >= minimum
    return ValidationRule(validate, message or f"Must be at least {minimum} characters")


def max_length(maximum: int, message: str = None) -> ValidationRule:
    def validate(value, values=None):
        if _is_empty(value):
            return True
        return len(str(value)) <= maximum
    return ValidationRule(validate, message or f"Must be at most {maximum} characters")


def match(match_field: str, message: str = "Fields do not match") -> ValidationRule:
    def validate(value, values=None):
        if values is None:
            return True
        return value == values.get(match_field)
    return ValidationRule(validate, message)


def future_date(message: str = "Date must be in the future") -> ValidationRule:
    def validate(value, values=None):
        if _is_empty(value):
            return True
        parsed = parse_date(value)
        return parsed is not None and parsed > datetime.now()
    return ValidationRule(validate, message)


def past_date(message: str = "Date must be in the past") -> ValidationRule:
    def validate(value, values=None):
        if _is_empty(value):
            return True
        parsed = parse_date(value)
        return parsed is not None and parsed < datetime.now()
    return ValidationRule(validate, message)


def valid_date(message: str = "Please enter a valid date") -> ValidationRule:
    def validate(value, values=None):
        if _is_empty(value):
            return True
        return parse_date(value) is not None
    return ValidationRule(validate, message)


def _first_failure(field: str, values: dict, rules: dict):
    for rule in rules.get(field) or []:
        if not rule.validate(values.get(field), values):
            return rule.message
    return None


def validate_values(values: dict, rules: dict) -> tuple:
    """
    One-shot validation of a submitted form.
    Returns (is_valid, errors) where errors only holds the fields that failed.
    """
    errors = {}
    for field in rules:
        message = _first_failure(field, values, rules)
        if message is not None:
            errors[field] = message
    return not errors, errors


def ensure_valid(values: dict, rules: dict) -> None:
    """Raises FormValidationError carrying the field errors when `values` break `rules`."""
    is_valid, errors = validate_values(values, rules)
    if not is_valid:
        log.info(f"Rejected form with invalid fields: {sorted(errors)}")
        raise FormValidationError(errors)


def one_of(choices, message: str = "Please select a valid option") -> ValidationRule:
    def validate(value, values=None):
        if _is_empty(value):
            return True
        return value in choices
    return ValidationRule(validate, message)


class FormValidator:
    """
    Stateful form validation: tracks values, errors, touched fields and a dirty flag.

    Changes made through `handle_change` schedule a full validation pass that only runs
    once no further change has arrived for `debounce_seconds`.
    """

    def __init__(self, initial_values: dict, rules: dict, debounce_seconds: float = DEBOUNCE_SECONDS):
        self.initial_values = copy.deepcopy(initial_values)
        self.rules = rules
        self.debounce_seconds = debounce_seconds
        self.values = copy.deepcopy(initial_values)
        self.errors = {}
        self.touched = {}
        self.is_dirty = False
        self.is_valid = False
        self._lock = threading.RLock()
        self._timer = None
        self._generation = 0

    def validate_field(self, field: str) -> bool:
        with self._lock:
            if not self.rules.get(field):
                return True
            message = _first_failure(field, self.values, self.rules)
            self.errors[field] = message or ''
            return message is None

    def validate_form(self) -> bool:
        with self._lock:
            is_valid, errors = validate_values(self.values, self.rules)
            self.errors = errors
            self.is_valid = is_valid
            return is_valid

    def set_field_value(self, field: str, value) -> None:
        with self._lock:
            self.values[field] = value
            self.is_dirty = True
        self._schedule_validation()

    handle_change = set_field_value

    def handle_blur(self, field: str) -> bool:
        with self._lock:
            self.touched[field] = True
        return self.validate_field(field)

    def set_field_touched(self, field: str, is_touched: bool) -> None:
        with self._lock:
            self.touched[field] = is_touched
        if is_touched:
            self.validate_field(field)

    def reset_form(self) -> None:
        self.close()
        with self._lock:
            self.values = copy.deepcopy(self.initial_values)
            self.errors = {}
            self.touched = {}
            self.is_dirty = False
            self.is_valid = False

    def _schedule_validation(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            self._timer = threading.Timer(self.debounce_seconds, self._run_scheduled, args=(self._generation,))
            self._timer.daemon = True
            self._timer.start()

    def _run_scheduled(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
            if not self.is_dirty:
                return
            self.validate_form()

    @property
    def has_pending_validation(self) -> bool:
        return self._timer is not None

    def flush(self) -> bool:
        """Runs a pending debounced validation right away. Returns the current validity."""
        with self._lock:
            timer, self._timer = self._timer, None
            self._generation += 1
        if timer is not None:
            timer.cancel()
            if self.is_dirty:
                self.validate_form()
        return self.is_valid

    def close(self) -> None:
        with self._lock:
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
