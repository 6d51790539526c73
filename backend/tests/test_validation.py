"""
Tests for the step validator and whole-application validation.
"""
import unittest

from card_application.core.forms import ApplicationMode, MIDData
from card_application.core.steps import step_at
from card_application.core.validation import StepValidator, validate_application, validate_step
from tests.factories import (
    AUTO_DEBIT,
    BANK_ACCOUNT,
    CARD_SELECTION,
    IMAGE_SIGNATURE,
    MONTHLY_INCOME,
    NOMINEE,
    PERSONAL_INFO,
    PRE_APPLICATION,
    PROFESSIONAL_INFO,
    REFERENCES,
    SUPPLEMENTARY_CARD,
    TODAY,
    filled_draft,
    mid_data,
)


def _validate(step, data):
    return StepValidator.validate(step, data, today=TODAY)


class TestValidStepData(unittest.TestCase):

    def test_complete_step_data_is_valid(self):
        cases = {
            0: PRE_APPLICATION,
            1: CARD_SELECTION,
            2: PERSONAL_INFO,
            3: PROFESSIONAL_INFO,
            4: MONTHLY_INCOME,
            5: [BANK_ACCOUNT],
            7: NOMINEE,
            8: SUPPLEMENTARY_CARD,
            9: REFERENCES,
            10: IMAGE_SIGNATURE,
            11: AUTO_DEBIT,
            12: mid_data(),
        }
        for step, data in cases.items():
            with self.subTest(step=step):
                result = _validate(step, data)
                self.assertTrue(result.ok, result.field_errors)
                self.assertEqual(result.field_errors, {})

    def test_camel_case_input_is_accepted(self):
        result = _validate("pre-application", {
            "fullName": "Rahim Uddin",
            "nidNumber": "1234567890123",
            "dateOfBirth": "1990-05-20",
            "mobileNumber": "01712345678",
            "email": "rahim@example.com",
        })
        self.assertTrue(result.ok, result.field_errors)

    def test_validate_step_alias(self):
        self.assertTrue(validate_step(1, CARD_SELECTION, today=TODAY).ok)


class TestFieldErrors(unittest.TestCase):

    def test_partial_data_reports_missing_fields(self):
        """Validation runs on partial data and never raises."""
        result = _validate(0, {"full_name": "Rahim Uddin"})
        self.assertFalse(result.ok)
        self.assertEqual(result.field_errors["nid_number"], "This field is required")
        self.assertIn("mobile_number", result.field_errors)
        self.assertNotIn("full_name", result.field_errors)

    def test_nid_length(self):
        result = _validate(0, {**PRE_APPLICATION, "nid_number": "12345678901"})
        self.assertEqual(result.field_errors, {"nid_number": "NID must be 10, 13, or 17 digits"})

    def test_mobile_operator_digit(self):
        result = _validate(0, {**PRE_APPLICATION, "mobile_number": "01212345678"})
        self.assertIn("mobile_number", result.field_errors)

    def test_name_characters(self):
        result = _validate(0, {**PRE_APPLICATION, "full_name": "R4him"})
        self.assertEqual(result.field_errors["full_name"], "Name can only contain letters, spaces, and dots")

    def test_name_on_card_block_letters(self):
        result = _validate(2, {**PERSONAL_INFO, "name_on_card": "Rahim Uddin"})
        self.assertIn("name_on_card", result.field_errors)

    def test_nested_address_errors_use_dotted_path(self):
        address = {**PERSONAL_INFO["present_address"], "postal_code": "12"}
        result = _validate(2, {**PERSONAL_INFO, "present_address": address})
        self.assertEqual(result.field_errors, {"present_address.postal_code": "Postal code must be 4 digits"})

    def test_credit_limit_minimum(self):
        result = _validate(1, {**CARD_SELECTION, "expected_credit_limit": "40000"})
        self.assertIn("Minimum credit limit", result.field_errors["expected_credit_limit"])

    def test_amounts_are_decimal_strings(self):
        result = _validate(1, {**CARD_SELECTION, "expected_credit_limit": "1e6"})
        self.assertEqual(result.field_errors["expected_credit_limit"], "Invalid amount format")

    def test_unknown_step(self):
        result = _validate(42, {})
        self.assertFalse(result.ok)
        self.assertIn("__root__", result.field_errors)


class TestAgeRule(unittest.TestCase):
    """Age is computed by calendar day against the injected date."""

    def test_turns_eighteen_tomorrow(self):
        result = _validate(0, {**PRE_APPLICATION, "date_of_birth": "2008-10-17"})
        self.assertIn("date_of_birth", result.field_errors)

    def test_eighteenth_birthday_today(self):
        result = _validate(0, {**PRE_APPLICATION, "date_of_birth": "2008-10-16"})
        self.assertTrue(result.ok, result.field_errors)

    def test_personal_info_applies_the_same_rule(self):
        result = _validate(2, {**PERSONAL_INFO, "date_of_birth": "2010-01-01"})
        self.assertEqual(result.field_errors["date_of_birth"], "You must be at least 18 years old to apply")

    def test_supplementary_holder_must_be_adult(self):
        result = _validate(8, {**SUPPLEMENTARY_CARD, "date_of_birth": "2012-03-03"})
        self.assertEqual(
            result.field_errors["date_of_birth"], "Supplementary card holder must be at least 18 years old"
        )

    def test_malformed_date(self):
        result = _validate(0, {**PRE_APPLICATION, "date_of_birth": "20-05-1990"})
        self.assertEqual(result.field_errors["date_of_birth"], "Invalid date")


class TestCrossFieldRules(unittest.TestCase):

    def test_married_requires_spouse_name(self):
        result = _validate(2, {**PERSONAL_INFO, "marital_status": "MARRIED"})
        self.assertIn("spouse_name", result.field_errors)

        result = _validate(2, {**PERSONAL_INFO, "marital_status": "MARRIED", "spouse_name": "Salma Khatun"})
        self.assertTrue(result.ok, result.field_errors)

    def test_income_flip_requires_business_income(self):
        """Switching to business income with only salaried data filled in is invalid."""
        data = {**MONTHLY_INCOME, "is_salaried": False}
        result = _validate(4, data)
        self.assertIn("business_income", result.field_errors)

    def test_business_income_only(self):
        data = {
            "is_salaried": False,
            "salaried_income": {"gross_salary": "", "total_deduction": "", "net_salary": ""},
            "business_income": {"gross_income": "200000", "total_expenses": "80000", "net_income": "120000"},
        }
        result = _validate(4, data)
        self.assertTrue(result.ok, result.field_errors)

    def test_both_income_kinds_is_invalid(self):
        data = {
            **MONTHLY_INCOME,
            "business_income": {"gross_income": "200000", "total_expenses": "80000", "net_income": "120000"},
        }
        result = _validate(4, data)
        self.assertEqual(result.field_errors, {"business_income": "Provide salaried income only"})

    def test_at_most_three_additional_sources(self):
        sources = [{"source": "Rent", "amount": "10000"}] * 4
        result = _validate(4, {**MONTHLY_INCOME, "additional_income_sources": sources})
        self.assertIn("additional_income_sources", result.field_errors)

    def test_nominee_declaration_must_be_accepted(self):
        result = _validate(7, {**NOMINEE, "declaration_accepted": False})
        self.assertEqual(result.field_errors, {"declaration_accepted": "You must accept the MPP declaration"})

    def test_spending_limit_range(self):
        result = _validate(8, {**SUPPLEMENTARY_CARD, "spending_limit_percentage": "0"})
        self.assertIn("spending_limit_percentage", result.field_errors)

    def test_unanswered_declarations(self):
        result = _validate(12, MIDData())
        self.assertEqual(
            set(result.field_errors), {"declarations", "document_checklist"},
        )


class TestOptionalSteps(unittest.TestCase):

    def test_empty_rows_are_valid(self):
        self.assertTrue(_validate(5, []).ok)
        self.assertTrue(_validate(6, []).ok)

    def test_row_errors_are_keyed_by_row_id(self):
        rows = [BANK_ACCOUNT, {**BANK_ACCOUNT, "id": "acc-2", "account_number": "12"}]
        result = _validate(5, rows)
        self.assertEqual(list(result.field_errors), ["acc-2.account_number"])

    def test_no_supplementary_card_is_valid(self):
        self.assertTrue(_validate(8, None).ok)


def _mistyped(data):
    """Every leaf value replaced by an integer."""
    if isinstance(data, dict):
        return {key: _mistyped(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_mistyped(item) for item in data]
    return 7


class TestWronglyTypedInput(unittest.TestCase):
    """Wrongly typed values are reported as field errors, never raised."""

    def test_wrongly_typed_fields_on_every_step(self):
        cases = {
            0: PRE_APPLICATION,
            1: CARD_SELECTION,
            2: {**PERSONAL_INFO, "marital_status": "MARRIED"},
            3: PROFESSIONAL_INFO,
            4: MONTHLY_INCOME,
            5: [BANK_ACCOUNT],
            6: [{"id": "cf-1", "bank_name": "City Bank", "limit": "1000"}],
            7: NOMINEE,
            8: SUPPLEMENTARY_CARD,
            9: REFERENCES,
            10: IMAGE_SIGNATURE,
            11: AUTO_DEBIT,
            12: mid_data(),
        }
        for step, data in cases.items():
            with self.subTest(step=step):
                self.assertFalse(_validate(step, _mistyped(data)).ok)

    def test_wrong_container_on_every_step(self):
        for step in range(13):
            for data in (42, "text", ["x", 3], {"unexpected": object()}):
                with self.subTest(step=step, data=data):
                    self.assertFalse(_validate(step, data).ok)

    def test_integer_date_of_birth(self):
        result = _validate(0, {**PRE_APPLICATION, "dateOfBirth": 19900101})
        self.assertIn("date_of_birth", result.field_errors)

    def test_integer_spouse_name(self):
        result = _validate(2, {**PERSONAL_INFO, "maritalStatus": "MARRIED", "spouseName": 5})
        self.assertIn("spouse_name", result.field_errors)

    def test_declarations_that_are_not_objects(self):
        result = _validate(12, {"declarations": ["yes"], "documentChecklist": [1, None]})
        self.assertFalse(result.ok)
        self.assertIn("declarations.0", result.field_errors)
        self.assertIn("document_checklist.0", result.field_errors)

    def test_row_steps_require_a_list(self):
        result = _validate(5, {"id": "acc-1"})
        self.assertEqual(result.field_errors, {"__root__": "Step data must be a list of rows"})


class TestValidateApplication(unittest.TestCase):

    def test_filled_draft_has_no_failures(self):
        self.assertEqual(validate_application(filled_draft(), today=TODAY), {})

    def test_failures_are_keyed_by_step_number(self):
        draft = filled_draft()
        draft.update_references({"reference_2": {}})
        failures = validate_application(draft, today=TODAY)
        self.assertEqual(list(failures), [9])
        self.assertIn("reference_2.referee_name", failures[9].field_errors)

    def test_assisted_skips_pre_application(self):
        draft = filled_draft(ApplicationMode.ASSISTED)
        self.assertEqual(draft.pre_application.full_name, "")
        self.assertEqual(validate_application(draft, today=TODAY), {})

    def test_invalid_optional_rows_fail(self):
        draft = filled_draft()
        draft.add_credit_facility({"id": "cf-1", "bank_name": "City Bank"})
        failures = validate_application(draft, today=TODAY)
        self.assertEqual(list(failures), [6])
        self.assertEqual(step_at(6).name, "credit-facilities")


if __name__ == "__main__":
    unittest.main()
