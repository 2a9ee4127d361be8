"""Validation result types for clipack.

Used by configuration checks that report every problem at once instead
of stopping at the first one.
"""

from dataclasses import dataclass, field


@dataclass
class ValidationResult:
    """Result of a validation operation.

    Attributes:
        is_valid: True if validation passed, False otherwise.
        errors: List of specific error messages if validation failed.
    """

    is_valid: bool
    errors: list[str] = field(default_factory=list)
