#!/usr/bin/env python3
""" Exception hierarchy raised by the gateway components """

from typing import Optional

# Public API - functions and classes that external scripts should use
__all__ = [
    'GatewayError',
    'TransportError',
    'ChallengeEscalationError',
    'AuthBootstrapError',
    'TokenRefreshError',
    'SolverError',
    'ResourceError',
    'OperationCancelledError'
]


class GatewayError(Exception):
    """ Base class for every error raised by this package """


class TransportError(GatewayError):
    """ Network failure or timeout reported by the TLS engine """

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class ChallengeEscalationError(GatewayError):
    """ Anti-bot challenge persisted through every retry; a browser solve is required """

    def __init__(self, url: str, status: int, signature: str, attempts: int):
        super().__init__(
            f"Anti-bot challenge on {url} (status {status}, {signature}) after {attempts} attempts "
            "- browser fallback required"
        )
        self.url = url
        self.status = status
        self.signature = signature
        self.attempts = attempts


class AuthBootstrapError(GatewayError):
    """ The session credential was rejected; the caller must supply fresh cookies """


class TokenRefreshError(GatewayError):
    """ The identity provider did not issue a token """


class SolverError(GatewayError):
    """ The captcha solving service could not produce a usable solution """

    def __init__(self, message: str, attempts: int = 1):
        super().__init__(message)
        self.attempts = attempts


class ResourceError(GatewayError):
    """ The browser automation surface closed or became unusable """


class OperationCancelledError(GatewayError):
    """ A retry wait was interrupted by the caller's cancellation event """
