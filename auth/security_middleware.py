"""Security middleware for FastAPI - bearer token validation and request context."""

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from auth.exceptions import IdentityProviderError, InvalidTokenError
from auth.identity import IdentityVerifier
from api.base import error_response, ErrorCodes
from utils.request_context import set_request_context, clear_request_context

logger = logging.getLogger(__name__)


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that verifies the bearer token and sets organization context.

    For protected routes:
    1. Extracts the token from the 'Authorization: Bearer' header
    2. Verifies it with the identity provider
    3. Maps the identity to an internal user (provisioning on first sight)
    4. Sets organization and user in request.state and request context (for RLS)
    5. Clears context after request completes

    Public paths bypass authentication entirely.
    """

    PUBLIC_PATHS = [
        "/health",
        "/docs",
        "/openapi.json",
        "/api/public/",
    ]

    def __init__(self, app, verifier: IdentityVerifier, organization_service):
        super().__init__(app)
        self._verifier = verifier
        self._organizations = organization_service

    def _is_public_path(self, path: str) -> bool:
        """Check if path is in public paths list."""
        for public_path in self.PUBLIC_PATHS:
            if path == public_path or path.startswith(public_path):
                return True
        return False

    @staticmethod
    def _unauthorized(code: str, message: str, status_code: int = 401) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content=error_response(code, message).model_dump(mode="json"),
        )

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        if self._is_public_path(request.url.path):
            return await call_next(request)

        scheme, _, token = request.headers.get("authorization", "").partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return self._unauthorized(ErrorCodes.NOT_AUTHENTICATED, "Authentication required")

        try:
            identity = self._verifier.verify(token.strip())
        except InvalidTokenError as e:
            return self._unauthorized(ErrorCodes.INVALID_TOKEN, str(e))
        except IdentityProviderError:
            return self._unauthorized(
                ErrorCodes.SERVICE_UNAVAILABLE,
                "Identity provider unavailable",
                status_code=503,
            )

        user = self._organizations.ensure_for_identity(identity.user_id, identity.email)

        # Set context for RLS
        set_request_context(user.organization_id, user.id)
        request.state.user = user
        request.state.organization_id = user.organization_id

        try:
            return await call_next(request)
        finally:
            # Always clear context
            clear_request_context()
