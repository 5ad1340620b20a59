"""Error formatting and grouping utilities.

This module provides:
- ReconcilerError exception class for application errors
- Error formatting for user display
- Error grouping to combine duplicates across shipments
"""

from dataclasses import dataclass, field

from reconciler.errors.registry import get_error


@dataclass
class ReconcilerError(Exception):
    """Application error with code, message, and context.

    Attributes:
        code: Error code in E-XXXX format.
        message: Human-readable error message.
        remediation: Action user should take to resolve.
        shipments: Affected shipment numbers.
        is_retryable: Whether re-running may succeed without user action.
        details: Additional context dictionary.
    """

    code: str
    message: str
    remediation: str
    shipments: list[str] = field(default_factory=list)
    is_retryable: bool = False
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        """Return string representation of the error."""
        return f"{self.code}: {self.message}"

    @classmethod
    def from_code(cls, code: str, **kwargs: object) -> "ReconcilerError":
        """Create error from registry code with context substitution.

        Args:
            code: Error code in E-XXXX format.
            **kwargs: Context values for message template substitution.
                A list under 'shipments' and a dict under 'details'
                populate the matching fields; a string 'details' fills
                the {details} placeholder.

        Returns:
            ReconcilerError instance with formatted message.
        """
        shipments = kwargs.get("shipments", [])
        if not isinstance(shipments, list):
            shipments = []
        details = kwargs.get("details", {})
        if not isinstance(details, dict):
            details = {}

        error_def = get_error(code)
        if not error_def:
            return cls(
                code=code,
                message=f"Unknown error: {code}",
                remediation="Contact support.",
                shipments=shipments,
                details=details,
            )

        message = error_def.message_template
        try:
            template_kwargs = {
                k: v
                for k, v in kwargs.items()
                if k != "shipments" and not (k == "details" and isinstance(v, dict))
            }
            message = message.format(**template_kwargs)
        except KeyError:
            # Keep template if some placeholders are missing
            pass

        return cls(
            code=error_def.code,
            message=message,
            remediation=error_def.remediation,
            is_retryable=error_def.is_retryable,
            shipments=shipments,
            details=details,
        )


def format_error(error: ReconcilerError, include_remediation: bool = True) -> str:
    """Format error for display to user.

    Args:
        error: The ReconcilerError to format.
        include_remediation: Whether to include remediation steps.

    Returns:
        Multi-line formatted string suitable for user display.
    """
    lines = [f"{error.code}: {error.message}"]

    if error.shipments:
        if len(error.shipments) == 1:
            lines.append(f"  Shipment: {error.shipments[0]}")
        else:
            shown = ", ".join(error.shipments[:10])
            if len(error.shipments) > 10:
                shown += f" (and {len(error.shipments) - 10} more)"
            lines.append(f"  Affected shipments: {shown}")

    if include_remediation:
        lines.append(f"  Action: {error.remediation}")

    return "\n".join(lines)


def group_errors(errors: list[ReconcilerError]) -> list[ReconcilerError]:
    """Group errors by code and message, combining shipment numbers.

    Example:
        5 identical "Provider not configured" errors on different shipments
        -> 1 error with all 5 shipment numbers

    Args:
        errors: List of ReconcilerError objects to group.

    Returns:
        List of grouped ReconcilerError objects with combined shipments.
    """
    groups: dict[str, ReconcilerError] = {}

    for error in errors:
        key = f"{error.code}|{error.message}"
        if key in groups:
            groups[key].shipments.extend(error.shipments)
        else:
            groups[key] = ReconcilerError(
                code=error.code,
                message=error.message,
                remediation=error.remediation,
                shipments=list(error.shipments),
                is_retryable=error.is_retryable,
                details=error.details.copy(),
            )

    result = list(groups.values())
    for error in result:
        error.shipments = sorted(set(error.shipments))
    return result


def format_error_summary(errors: list[ReconcilerError]) -> str:
    """Format a list of errors for display, grouping duplicates.

    Args:
        errors: List of ReconcilerError objects.

    Returns:
        User-friendly summary suitable for UI display.
    """
    if not errors:
        return "No errors."

    grouped = group_errors(errors)

    if len(grouped) == 1:
        return format_error(grouped[0])

    lines = [f"{len(grouped)} error type(s) found:\n"]
    for i, error in enumerate(grouped, 1):
        lines.append(f"{i}. {format_error(error)}")
        lines.append("")
    return "\n".join(lines)
