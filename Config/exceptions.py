# Config/exceptions.py
"""
Custom exceptions for configuration validation.
These provide clear, actionable error messages when a setting in the
environment or .env file is unusable.
"""

from typing import Optional, Any


class ConfigError(Exception):
    """Base exception for all configuration errors."""
    pass


class ConfigValidationError(ConfigError):
    """Raised when a config value fails validation."""

    def __init__(self, key: str, value: Any, reason: str, suggestion: Optional[str] = None):
        self.key = key
        self.value = value
        self.reason = reason
        self.suggestion = suggestion

        msg = f"Invalid config: {key}={value!r}\n  Reason: {reason}"
        if suggestion:
            msg += f"\n  Suggestion: {suggestion}"
        super().__init__(msg)


class ConfigRangeError(ConfigValidationError):
    """Raised when a numeric setting is outside its allowed range."""

    def __init__(self, key: str, value: Any, min_val: Optional[Any], max_val: Optional[Any]):
        bounds = []
        if min_val is not None:
            bounds.append(f">= {min_val}")
        if max_val is not None:
            bounds.append(f"<= {max_val}")

        suggestion = None
        if min_val is not None and value < min_val:
            suggestion = f"Set {key} to {min_val} or higher"
        elif max_val is not None and value > max_val:
            suggestion = f"Set {key} to {max_val} or lower"

        super().__init__(key, value, f"Value must be {' and '.join(bounds)}", suggestion)


class ConfigTypeError(ConfigValidationError):
    """Raised when a setting cannot be parsed as the expected type."""

    def __init__(self, key: str, value: Any, expected_type: type):
        expected_name = expected_type.__name__
        reason = f"Expected {expected_name}, got {value!r}"
        suggestion = f"Use a plain {expected_name} literal, e.g. {key}=0.01"
        super().__init__(key, value, reason, suggestion)


class ConfigMissingError(ConfigError):
    """Raised when a required config value is missing."""

    def __init__(self, key: str, location: str):
        msg = f"Required config missing: {key}\n  Expected in: {location}"
        super().__init__(msg)
        self.key = key
        self.location = location
