"""
teeverdict exceptions.

Evidence problems are never raised; they are reported as failing check
results. Exceptions are reserved for configuration mistakes and for the
decoders that turn raw bytes into typed evidence.
"""

from typing import Optional


class TeeVerdictError(Exception):
    """Base exception for teeverdict."""
    pass


class ConfigurationError(TeeVerdictError):
    """Invalid trust anchor, policy tree or reference values."""
    pass


class DecodeError(TeeVerdictError):
    """Raw evidence or collateral bytes could not be decoded."""

    def __init__(self, message: str, raw: Optional[bytes] = None):
        super().__init__(message)
        self.raw = raw
