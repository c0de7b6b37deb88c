"""Custom exceptions for Site Blocker."""


class SiteBlockerError(Exception):
    """Base exception for Site Blocker errors."""


class ConfigurationError(SiteBlockerError):
    """Raised when configuration is invalid or missing."""


class DomainValidationError(SiteBlockerError):
    """Raised when a domain fails validation."""


class ValidationError(SiteBlockerError):
    """Raised when command input is rejected before reaching the store."""


class StorageError(SiteBlockerError):
    """Raised when persisted state cannot be read or written."""
