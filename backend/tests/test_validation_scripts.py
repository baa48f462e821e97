"""
Validation script tests.

Each script runs on a plain dict, so these tests need no database.
"""

import pytest

from listsync.services.pipeline.validation_scripts import (
    DEFAULT_SCRIPTS,
    CompanyNormalizationScript,
    DuplicateDetectionScript,
    EmailValidationScript,
    PhoneNormalizationScript,
    StateNormalizationScript,
    ValidationContext,
    WhitespaceCleanupScript,
    capitalize_name,
    normalize_company_name,
    run_validation_scripts,
)

MAPPINGS = {
    "Email": "email",
    "First": "firstname",
    "Last": "lastname",
    "Phone": "phone",
    "Region": "state",
    "Org": "company.name",
}


def _run(data, scripts=DEFAULT_SCRIPTS, context=None, row_index=0):
    return run_validation_scripts(row_index, data, context or ValidationContext(MAPPINGS), scripts)


# =============================================================================
# ORDERING AND RESULT
# =============================================================================

class TestRunValidationScripts:

    def test_scripts_run_in_order(self):
        orders = [script.order for script in DEFAULT_SCRIPTS]

        assert orders == sorted(orders)
        assert DEFAULT_SCRIPTS[0].id == "whitespace-cleanup"
        assert DEFAULT_SCRIPTS[-1].id == "duplicate-detection"

    def test_input_is_not_modified(self):
        data = {"Email": " Ana@Acme.io "}

        result = _run(data)

        assert data == {"Email": " Ana@Acme.io "}
        assert result.changes == {"Email": "ana@acme.io"}

    def test_clean_row_has_no_changes(self):
        result = _run({"Email": "ana@acme.io", "First": "Ana", "Org": "Acme"})

        assert result.valid
        assert result.changes == {}
        assert result.warnings == []


# =============================================================================
# TRANSFORMS
# =============================================================================

class TestWhitespaceCleanup:

    @pytest.mark.parametrize("value,expected", [
        ("  Ana  Maria ", "Ana Maria"),
        ("Acme Corp", "Acme Corp"),
        ("Ac\u200bme", "Acme"),
        ('"Acme"', "Acme"),
        ("'Ana'", "Ana"),
    ])
    def test_cleanup(self, value, expected):
        result = _run({"Org": value}, scripts=[WhitespaceCleanupScript()])

        assert result.data["Org"] == expected

    def test_non_strings_are_left_alone(self):
        result = _run({"Count": 3}, scripts=[WhitespaceCleanupScript()])

        assert result.changes == {}


class TestStateNormalization:

    @pytest.mark.parametrize("value,expected", [
        ("ca", "California"),
        ("NY", "New York"),
        ("cali", "California"),
        ("new york", "New York"),
    ])
    def test_known_states(self, value, expected):
        result = _run({"Region": value}, scripts=[StateNormalizationScript()])

        assert result.data["Region"] == expected

    def test_unknown_value_is_kept(self):
        result = _run({"Region": "Bavaria"}, scripts=[StateNormalizationScript()])

        assert result.changes == {}


class TestPhoneNormalization:

    def test_us_number_is_formatted(self):
        result = _run({"Phone": "1-555-123-4567"}, scripts=[PhoneNormalizationScript()])

        assert result.data["Phone"] == "(555) 123-4567"

    def test_international_number_is_kept(self):
        result = _run({"Phone": "+49 30 1234567"}, scripts=[PhoneNormalizationScript()])

        assert result.changes == {}
        assert result.warnings == []

    def test_short_number_warns(self):
        result = _run({"Phone": "12345"}, scripts=[PhoneNormalizationScript()])

        assert result.valid
        assert result.warnings == ["Phone number 12345 looks too short"]


class TestNames:

    @pytest.mark.parametrize("value,last_name,expected", [
        ("ANA", False, "Ana"),
        ("mary-ann", False, "Mary-Ann"),
        ("mcdonald", True, "McDonald"),
        ("o'brien", True, "O'Brien"),
        ("van der berg", True, "Van der Berg"),
        ("smith jr", True, "Smith Jr."),
    ])
    def test_capitalize_name(self, value, last_name, expected):
        assert capitalize_name(value, last_name=last_name) == expected

    def test_mixed_case_name_is_kept(self):
        result = _run({"Email": "a@acme.io", "Last": "DeAndre"})

        assert "Last" not in result.changes


class TestCompanyNames:

    @pytest.mark.parametrize("value,expected", [
        ("ACME WIDGETS INC", "Acme Widgets Inc."),
        ("globex llc", "Globex LLC"),
        ("bank of springfield", "Bank of Springfield"),
        ("ibm consulting", "IBM Consulting"),
        ("eBay", "eBay"),
        ("Acme ,Inc", "Acme, Inc."),
    ])
    def test_normalize(self, value, expected):
        assert normalize_company_name(value) == expected

    def test_unmapped_column_is_not_touched(self):
        result = _run({"Notes": "acme inc"}, scripts=[CompanyNormalizationScript()])

        assert result.changes == {}


# =============================================================================
# EMAIL
# =============================================================================

class TestEmailValidation:

    def test_missing_email(self):
        result = _run({"First": "Ana"}, scripts=[EmailValidationScript()])

        assert result.errors == ["Missing email address"]

    def test_invalid_email(self):
        result = _run({"Email": "not-an-email"}, scripts=[EmailValidationScript()])

        assert result.errors == ["Invalid email address: not-an-email"]

    def test_email_is_lowercased(self):
        result = _run({"Email": "Ana@Acme.IO"}, scripts=[EmailValidationScript()])

        assert result.valid
        assert result.data["Email"] == "ana@acme.io"

    def test_disposable_domain_fails_row(self):
        """
        SCENARIO: A lead signed up with a throwaway address.

        WHY THIS MATTERS:
        - The contact can never be reached
        - It would only pollute the CRM

        EXPECTED: Row error naming the domain.
        """
        result = _run({"Email": "bot@mailinator.com"}, scripts=[EmailValidationScript()])

        assert result.errors == ["Disposable email domain: mailinator.com"]

    def test_personal_domain_only_warns(self):
        result = _run({"Email": "ana@gmail.com"}, scripts=[EmailValidationScript()])

        assert result.valid
        assert result.warnings == ["Personal email domain: gmail.com"]

    def test_domain_typo_warns(self):
        result = _run({"Email": "ana@gmial.com"}, scripts=[EmailValidationScript()])

        assert result.valid
        assert result.warnings == ["Possible typo in email domain gmial.com (did you mean gmail.com?)"]

    def test_unmapped_email_column_passes_through(self):
        result = run_validation_scripts(0, {"email": "ana@acme.io"}, ValidationContext({}), [EmailValidationScript()])

        assert result.valid


# =============================================================================
# DUPLICATES
# =============================================================================

class TestDuplicateDetection:

    def test_repeated_email_warns_on_later_row(self):
        """
        SCENARIO: The same contact appears twice in one upload.

        EXPECTED: The first row is clean, the second warns and points at
        the first. Neither row fails.
        """
        context = ValidationContext(MAPPINGS)

        first = _run({"Email": "ana@acme.io"}, context=context, row_index=0)
        second = _run({"Email": " ANA@acme.io"}, context=context, row_index=4)

        assert first.warnings == []
        assert second.valid
        assert second.warnings == ["Duplicate email ana@acme.io (first seen in row 1)"]

    def test_phone_duplicates_compare_digits(self):
        context = ValidationContext(MAPPINGS)
        script = [DuplicateDetectionScript()]

        _run({"Phone": "555-123-4567"}, scripts=script, context=context, row_index=0)
        result = _run({"Phone": "(555) 123 4567"}, scripts=script, context=context, row_index=1)

        assert result.warnings == ["Duplicate phone (555) 123 4567 (first seen in row 1)"]

    def test_rerunning_same_row_is_not_a_duplicate(self):
        context = ValidationContext(MAPPINGS)

        _run({"Email": "ana@acme.io"}, context=context, row_index=2)
        result = _run({"Email": "ana@acme.io"}, context=context, row_index=2)

        assert result.warnings == []
