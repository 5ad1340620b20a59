"""Error code registry with E-XXXX format codes.

This module defines the error code system for the reconciler, organizing
errors into categories:
- E-1xxx: Manifest and precondition errors
- E-2xxx: Missing association errors
- E-3xxx: Invoicing provider errors
- E-4xxx: System/internal errors
- E-5xxx: Provider authentication errors

Each error includes a code, title, message template, and remediation steps.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    PRECONDITION = "precondition"  # E-1xxx: Manifest/precondition errors
    ASSOCIATION = "association"  # E-2xxx: Missing association errors
    PROVIDER = "provider"  # E-3xxx: Invoicing provider errors
    SYSTEM = "system"  # E-4xxx: System/internal errors
    AUTH = "auth"  # E-5xxx: Provider authentication errors


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action user should take to resolve.
        is_retryable: Whether re-running the flow may succeed without user action.
    """

    code: str  # E-XXXX format
    category: ErrorCategory
    title: str  # Short title for display
    message_template: str  # Message with {placeholders}
    remediation: str  # Action user should take
    is_retryable: bool = False  # Can be retried without user action


# Error registry - all defined error codes
ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Precondition errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.PRECONDITION,
        title="Manifest Not Found",
        message_template="Manifest not found: {manifest_id}",
        remediation="Check the manifest id and retry.",
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.PRECONDITION,
        title="Manifest Not Confirmed",
        message_template="Manifest must be confirmed before processing (current: {status})",
        remediation="Confirm the manifest, then process it.",
    ),
    "E-1003": ErrorCode(
        code="E-1003",
        category=ErrorCategory.PRECONDITION,
        title="Wrong Manifest Type",
        message_template="Manifest {manifest_id} is a {actual} manifest, expected {expected}.",
        remediation="Use the flow that matches the manifest type.",
    ),
    "E-1004": ErrorCode(
        code="E-1004",
        category=ErrorCategory.PRECONDITION,
        title="Manifest Already Claimed",
        message_template="Manifest {manifest_id} is already being processed.",
        remediation="Wait for the running batch to finish and check its results.",
    ),
    # Association errors (E-2xxx)
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.ASSOCIATION,
        title="No Invoice Linked",
        message_template="No invoice linked to shipment {shipment_number}.",
        remediation="Link the shipment to its invoice, then re-run the manifest.",
    ),
    "E-2002": ErrorCode(
        code="E-2002",
        category=ErrorCategory.ASSOCIATION,
        title="Invoice Has No Company",
        message_template="Invoice {invoice_number} has no company association.",
        remediation="Assign the issuing company to the invoice.",
    ),
    "E-2003": ErrorCode(
        code="E-2003",
        category=ErrorCategory.ASSOCIATION,
        title="Provider Not Configured",
        message_template="Invoicing provider credentials not configured for company {company}.",
        remediation="Add the provider email, secret token and CIF in company settings.",
    ),
    "E-2004": ErrorCode(
        code="E-2004",
        category=ErrorCategory.ASSOCIATION,
        title="Invoice Cancelled",
        message_template="Invoice {invoice_number} is cancelled and cannot be marked paid.",
        remediation="Remove the shipment from the delivery manifest or reissue the invoice.",
    ),
    "E-2005": ErrorCode(
        code="E-2005",
        category=ErrorCategory.ASSOCIATION,
        title="Invoice Already Settled",
        message_template="Invoice {invoice_number} is already {state}; no action taken.",
        remediation="None required.",
    ),
    # Provider errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.PROVIDER,
        title="Provider Unavailable",
        message_template="Invoicing provider is not responding: {details}",
        remediation="Wait a few minutes and re-run the manifest. Settled items are skipped.",
        is_retryable=True,
    ),
    "E-3002": ErrorCode(
        code="E-3002",
        category=ErrorCategory.PROVIDER,
        title="Provider Rejected Request",
        message_template="Invoicing provider rejected the request: {details}",
        remediation="Check the invoice series and number in the provider account.",
    ),
    "E-3003": ErrorCode(
        code="E-3003",
        category=ErrorCategory.PROVIDER,
        title="Provider Unknown Error",
        message_template="Invoicing provider returned an unexpected error: {details}",
        remediation="Re-run the manifest. Contact support with code E-3003 if it persists.",
        is_retryable=True,
    ),
    # System errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.SYSTEM,
        title="Database Error",
        message_template="Database operation failed: {details}",
        remediation="This is a system error. Retry the operation. Contact support if issue persists.",
        is_retryable=True,
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.SYSTEM,
        title="Unexpected Item Failure",
        message_template="Unexpected failure while processing shipment {shipment_number}: {details}",
        remediation="Re-run the manifest. Contact support if the item keeps failing.",
        is_retryable=True,
    ),
    # Auth errors (E-5xxx)
    "E-5001": ErrorCode(
        code="E-5001",
        category=ErrorCategory.AUTH,
        title="Provider Authentication Failed",
        message_template="Failed to authenticate with the invoicing provider.",
        remediation="Check the provider email and secret token in company settings.",
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Get error definition by code.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Get all errors in a category.

    Args:
        category: The error category to filter by.

    Returns:
        List of ErrorCode objects in the specified category.
    """
    return [e for e in ERROR_REGISTRY.values() if e.category == category]
