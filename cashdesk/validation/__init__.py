"""Form validation package."""

from cashdesk.validation.validator import (
    FormValidator,
    ValidationFailedError,
    parse_decimal,
)

__all__ = ["FormValidator", "ValidationFailedError", "parse_decimal"]
