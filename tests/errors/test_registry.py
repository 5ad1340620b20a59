"""Tests for error code registry."""

import re

from reconciler.errors import (
    ERROR_REGISTRY,
    ErrorCategory,
    ReconcilerError,
    format_error,
    format_error_summary,
    get_error,
    get_errors_by_category,
    group_errors,
)


class TestErrorRegistry:
    """Tests for the error code registry."""

    def test_codes_follow_format(self):
        for code, definition in ERROR_REGISTRY.items():
            assert re.fullmatch(r"E-\d{4}", code)
            assert definition.code == code

    def test_category_matches_code_prefix(self):
        prefixes = {
            ErrorCategory.PRECONDITION: "E-1",
            ErrorCategory.ASSOCIATION: "E-2",
            ErrorCategory.PROVIDER: "E-3",
            ErrorCategory.SYSTEM: "E-4",
            ErrorCategory.AUTH: "E-5",
        }
        for definition in ERROR_REGISTRY.values():
            assert definition.code.startswith(prefixes[definition.category])

    def test_get_error(self):
        assert get_error("E-2001").title == "No Invoice Linked"
        assert get_error("E-9999") is None

    def test_errors_by_category(self):
        codes = {e.code for e in get_errors_by_category(ErrorCategory.PRECONDITION)}
        assert codes == {"E-1001", "E-1002", "E-1003", "E-1004"}


class TestReconcilerError:
    def test_from_code_formats_message(self):
        error = ReconcilerError.from_code("E-2001", shipment_number="AWB123")

        assert error.message == "No invoice linked to shipment AWB123."
        assert error.remediation
        assert str(error) == "E-2001: No invoice linked to shipment AWB123."

    def test_string_details_fill_placeholder(self):
        error = ReconcilerError.from_code("E-4001", details="disk I/O error")

        assert error.message == "Database operation failed: disk I/O error"
        assert error.details == {}
        assert error.is_retryable is True

    def test_dict_details_kept_as_context(self):
        error = ReconcilerError.from_code("E-5001", details={"company": "A SRL"})

        assert error.details == {"company": "A SRL"}

    def test_missing_placeholder_keeps_template(self):
        error = ReconcilerError.from_code("E-1003", manifest_id="m1")

        assert "{actual}" in error.message

    def test_unknown_code(self):
        error = ReconcilerError.from_code("E-9999")

        assert error.message == "Unknown error: E-9999"


class TestFormatting:
    def test_group_errors_combines_shipments(self):
        errors = [
            ReconcilerError.from_code("E-2003", company="A SRL", shipments=[s])
            for s in ("AWB2", "AWB1", "AWB2")
        ]

        grouped = group_errors(errors)

        assert len(grouped) == 1
        assert grouped[0].shipments == ["AWB1", "AWB2"]

    def test_format_error_lists_shipments(self):
        error = ReconcilerError.from_code("E-2001", shipment_number="AWB1", shipments=["AWB1"])

        text = format_error(error)

        assert "Shipment: AWB1" in text
        assert "Action:" in text

    def test_summary_counts_error_types(self):
        errors = [
            ReconcilerError.from_code("E-2001", shipment_number="AWB1"),
            ReconcilerError.from_code("E-5001"),
        ]

        assert format_error_summary(errors).startswith("2 error type(s) found:")
        assert format_error_summary([]) == "No errors."
