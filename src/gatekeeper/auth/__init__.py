"""All authentication-related modules and routes."""

from .auth_routes import configure_auth_router
from .authenticator import Authenticator, AuthResult
from .permissions import DEFAULT_SCOPES, PermissionMatrix
from .queries import AuthQueries
from .security_manager import SecurityManager
from .tokens import TokenService
from .validation import Validate

__all__ = [
    "DEFAULT_SCOPES",
    "AuthQueries",
    "AuthResult",
    "Authenticator",
    "PermissionMatrix",
    "SecurityManager",
    "TokenService",
    "Validate",
    "configure_auth_router",
]
