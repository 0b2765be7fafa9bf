from __future__ import annotations


class DynamapError(Exception):
    pass


class ConfigurationError(DynamapError):
    pass


class ValidationError(DynamapError):
    pass
