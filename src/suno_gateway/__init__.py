"""Suno gateway: fingerprinted transport, Clerk session handling and captcha solving"""

__version__ = "0.1.0"

# Import and expose configuration model components
from .configuration import (
    GatewayConfig,
    ProxyConfig,
    RotationConfig,
    TransportConfig,
    BrowserConfig,
    SolverConfig,
    load_configuration
)
from .authentication import load_authentication

# Import and expose the anti-bot core
from .errors import (
    GatewayError,
    TransportError,
    ChallengeEscalationError,
    AuthBootstrapError,
    TokenRefreshError,
    SolverError,
    ResourceError,
    OperationCancelledError
)
from .fingerprints import (
    FingerprintProfile,
    IdentityPool,
    Platform,
    RotationStrategy
)
from .transport import HttpResponse, Transport
from .session import SessionManager
from .solver import TwoCaptchaSolver
from .challenge import CapturedToken, ChallengeResolver
from .gateway import GatewaySession, SessionRegistry, browser_token
from .logging_utils import get_logger, setup_logging

__all__ = [
    'GatewayConfig',
    'ProxyConfig',
    'RotationConfig',
    'TransportConfig',
    'BrowserConfig',
    'SolverConfig',
    'load_configuration',
    'load_authentication',
    'GatewayError',
    'TransportError',
    'ChallengeEscalationError',
    'AuthBootstrapError',
    'TokenRefreshError',
    'SolverError',
    'ResourceError',
    'OperationCancelledError',
    'FingerprintProfile',
    'IdentityPool',
    'Platform',
    'RotationStrategy',
    'HttpResponse',
    'Transport',
    'SessionManager',
    'TwoCaptchaSolver',
    'CapturedToken',
    'ChallengeResolver',
    'GatewaySession',
    'SessionRegistry',
    'browser_token',
    'get_logger',
    'setup_logging'
]
