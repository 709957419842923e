class ConfigurationError(ValueError):
    """A required setting is missing or malformed (CLI exit code 2)."""


class APIError(Exception):
    """Generic API error wrapper"""
