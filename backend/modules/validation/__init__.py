"""
modules/validation package: boundary guards before any optimization stage runs.
"""
from modules.validation.input_validator import (
    ValidationResult,
    validate_place,
    validate_preference,
    validate_settings,
    validate_request,
    require_valid_request,
)

__all__ = [
    "ValidationResult",
    "validate_place",
    "validate_preference",
    "validate_settings",
    "validate_request",
    "require_valid_request",
]
