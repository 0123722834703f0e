import unittest
import sys
import os
import time
from freezegun import freeze_time

# Add the project root directory to the Python path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from logic.form_validation import (
    FormValidationError,
    FormValidator,
    ValidationRule,
    currency,
    email,
    ensure_valid,
    future_date,
    match,
    max_length,
    min_value,
    numeric,
    one_of,
    past_date,
    phone,
    required,
    valid_date,
    validate_values,
    zip_code,
)


class TestRules(unittest.TestCase):

    def test_required(self):
        rule = required()
        for empty in ("", "   ", None, [], {}, False):
            self.assertFalse(rule.validate(empty, {}), empty)
        for filled in (0, 0.0, "a", [1], True, {'k': 1}):
            self.assertTrue(rule.validate(filled, {}), filled)

    def test_optional_rules_accept_empty_values(self):
        for rule in (email(), phone(), zip_code(), currency(), numeric(), min_value(5),
                     max_length(2), valid_date(), future_date(), past_date(), one_of(('a',))):
            self.assertTrue(rule.validate("", {}))
            self.assertTrue(rule.validate(None, {}))

    def test_email(self):
        self.assertTrue(email().validate("jane.doe+rent@example.co.uk", {}))
        self.assertFalse(email().validate("jane@", {}))

    def test_phone_and_zip(self):
        self.assertTrue(phone().validate("+1 (555) 123-4567", {}))
        self.assertTrue(phone().validate("5551234567", {}))
        self.assertFalse(phone().validate("12-34", {}))
        self.assertTrue(zip_code().validate("62701-1234", {}))
        self.assertFalse(zip_code().validate("6270", {}))

    def test_currency(self):
        self.assertTrue(currency().validate("$1,234.50", {}))
        self.assertTrue(currency().validate(1200.0, {}))
        self.assertFalse(currency().validate("12.345", {}))

    def test_numeric_bounds(self):
        self.assertTrue(numeric().validate("1,500", {}))
        self.assertFalse(numeric().validate("abc", {}))
        self.assertTrue(min_value(0).validate(0, {}))
        self.assertFalse(min_value(1).validate("0", {}))
        self.assertEqual(min_value(1).message, "Value must be at least 1")

    def test_match(self):
        rule = match('password')
        self.assertTrue(rule.validate("secret", {'password': "secret"}))
        self.assertFalse(rule.validate("other", {'password': "secret"}))

    @freeze_time("2024-05-01")
    def test_future_and_past_dates(self):
        self.assertTrue(future_date().validate("2024-06-01", {}))
        self.assertFalse(future_date().validate("2024-04-01", {}))
        self.assertTrue(past_date().validate("2024-04-01", {}))
        self.assertFalse(valid_date().validate("2024-13-45", {}))


class TestValidateValues(unittest.TestCase):

    def setUp(self):
        self.rules = {
            'name': [required("Name is required"), max_length(5, "Too long")],
            'email': [email()],
        }

    def test_first_failing_rule_wins(self):
        is_valid, errors = validate_values({'name': "", 'email': ""}, self.rules)
        self.assertFalse(is_valid)
        self.assertEqual(errors, {'name': "Name is required"})

    def test_valid_when_no_rule_fails(self):
        is_valid, errors = validate_values({'name': "Ann", 'email': "ann@example.com"}, self.rules)
        self.assertTrue(is_valid)
        self.assertEqual(errors, {})

    def test_ensure_valid_raises_with_errors(self):
        with self.assertRaises(FormValidationError) as ctx:
            ensure_valid({'name': "Annabelle"}, self.rules)
        self.assertEqual(ctx.exception.errors, {'name': "Too long"})


class TestFormValidator(unittest.TestCase):

    def setUp(self):
        self.rules = {
            'title': [required("Title is required")],
            'rent': [numeric(), min_value(0, "Rent cannot be negative")],
        }
        self.form = FormValidator({'title': "", 'rent': ""}, self.rules, debounce_seconds=0.05)

    def tearDown(self):
        self.form.close()

    def test_validate_field_records_empty_message_on_success(self):
        self.assertFalse(self.form.validate_field('title'))
        self.assertEqual(self.form.errors['title'], "Title is required")
        self.form.values['title'] = "Flat 2"
        self.assertTrue(self.form.validate_field('title'))
        self.assertEqual(self.form.errors['title'], "")

    def test_field_without_rules_is_valid(self):
        self.assertTrue(self.form.validate_field('notes'))

    def test_validate_form_replaces_errors(self):
        self.form.errors = {'stale': "old"}
        self.assertFalse(self.form.validate_form())
        self.assertEqual(self.form.errors, {'title': "Title is required"})
        self.assertFalse(self.form.is_valid)

    def test_handle_change_marks_dirty_and_debounces(self):
        self.form.handle_change('title', "Flat 2")
        self.form.handle_change('rent', "-5")
        self.assertTrue(self.form.is_dirty)
        self.assertTrue(self.form.has_pending_validation)
        self.assertEqual(self.form.errors, {})

        time.sleep(0.2)
        self.assertFalse(self.form.has_pending_validation)
        self.assertEqual(self.form.errors, {'rent': "Rent cannot be negative"})

    def test_flush_runs_pending_validation(self):
        self.form.handle_change('title', "Flat 2")
        self.assertTrue(self.form.flush())
        self.assertFalse(self.form.has_pending_validation)
        self.assertTrue(self.form.is_valid)

    def test_close_cancels_pending_validation(self):
        self.form.handle_change('rent', "-1")
        self.form.close()
        time.sleep(0.15)
        self.assertEqual(self.form.errors, {})

    def test_blur_touches_and_validates(self):
        self.assertFalse(self.form.handle_blur('title'))
        self.assertTrue(self.form.touched['title'])
        self.form.set_field_touched('rent', True)
        self.assertEqual(self.form.errors['rent'], "")

    def test_reset_form(self):
        self.form.handle_change('title', "Flat 2")
        self.form.reset_form()
        self.assertEqual(self.form.values, {'title': "", 'rent': ""})
        self.assertFalse(self.form.is_dirty)
        self.assertEqual(self.form.touched, {})

    def test_custom_rule_sees_all_values(self):
        rules = {'end': [ValidationRule(lambda v, values: v > values['start'], "End before start")]}
        form = FormValidator({'start': 5, 'end': 3}, rules)
        self.assertFalse(form.validate_form())
        self.assertEqual(form.errors['end'], "End before start")


if __name__ == '__main__':
    unittest.main()
