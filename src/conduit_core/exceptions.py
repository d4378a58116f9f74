"""
Conduit Core Exceptions
"""


class ConduitError(Exception):
    """Base exception for all conduit core errors."""


class ConfigurationError(ConduitError):
    """A capability required to run live has no usable backend configuration."""
