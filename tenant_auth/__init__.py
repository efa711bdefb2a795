"""
Authentication and session lifecycle for multi-tenant web platforms.
"""

from .config import AuthConfig
from .exceptions import AuthError, AuthErrorCode
from .login import LoginOrchestrator, LoginResult
from .mfa import MfaChallengeEngine
from .policies import AUTHENTICATED, PUBLIC, RoutePolicy, protected, requires_permissions
from .session_registry import RequestMetadata, SessionRegistry
from .startup import AuthServices, build_auth_services, startup_auth_system, shutdown_auth_system
from .token_types import TokenKind
from .tokens import TokenAuthority
from .vault import CredentialVault

__all__ = [
    'AuthConfig',
    'AuthError',
    'AuthErrorCode',
    'AuthServices',
    'AUTHENTICATED',
    'CredentialVault',
    'LoginOrchestrator',
    'LoginResult',
    'MfaChallengeEngine',
    'PUBLIC',
    'RequestMetadata',
    'RoutePolicy',
    'SessionRegistry',
    'TokenAuthority',
    'TokenKind',
    'build_auth_services',
    'protected',
    'requires_permissions',
    'shutdown_auth_system',
    'startup_auth_system',
]
