"""
Exception types raised by the digest.
Only ConfigError, AuthenticationError and BackendUnavailableError abort a run.
"""


class DigestError(Exception):
    """Base class for all digest errors."""


class ConfigError(DigestError):
    """Missing or invalid configuration value."""


class AuthenticationError(DigestError):
    """The GitHub token was rejected."""


class BackendUnavailableError(DigestError):
    """The GitHub backend could not be reached after retries."""


class ScoringError(DigestError):
    """The scoring service failed or replied with an unusable payload. Never escapes the gateway."""


__all__ = ["DigestError", "ConfigError", "AuthenticationError", "BackendUnavailableError", "ScoringError"]
