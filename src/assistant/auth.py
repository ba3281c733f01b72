"""Authentication and tool authorization for the assistant.

Handles:
- Bearer JWT issue and verification for API callers
- Tool access tiers, checked against the real caller and never the model
"""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel, Field

from shared.logging import get_logger
from shared.models import ToolAccess, ToolDefinition, UserContext

logger = get_logger(__name__)

ALGORITHM = "HS256"
security = HTTPBearer(auto_error=False)


class TokenData(BaseModel):
    """Data extracted from JWT token."""
    user_id: str
    username: Optional[str] = None
    email: Optional[str] = None
    roles: list[str] = Field(default_factory=list)


class AuthConfig(BaseModel):
    secret_key: str
    token_expire_minutes: int = 60
    require_auth: bool = False


class AuthMiddleware:
    """
    Resolves the caller from a Bearer token.

    A missing token yields an anonymous caller unless `require_auth` is set.
    An invalid token is always rejected.
    """

    def __init__(self, config: AuthConfig) -> None:
        self.config = config

    def create_token(self, user: UserContext) -> str:
        if not user.authenticated:
            raise ValueError("Cannot issue a token for an anonymous user")

        expire = datetime.utcnow() + timedelta(minutes=self.config.token_expire_minutes)
        payload = {
            "sub": user.user_id,
            "username": user.username,
            "email": user.email,
            "roles": user.roles,
            "exp": expire,
        }
        return jwt.encode(payload, self.config.secret_key, algorithm=ALGORITHM)

    def verify_token(self, token: str) -> TokenData:
        """
        Verify and decode a JWT token.

        Raises:
            HTTPException: If token is invalid or expired
        """
        try:
            payload = jwt.decode(token, self.config.secret_key, algorithms=[ALGORITHM])
        except JWTError as e:
            logger.warning("Token verification failed", error=str(e))
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication token",
                headers={"WWW-Authenticate": "Bearer"},
            )

        user_id = payload.get("sub")
        if not user_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has no subject",
                headers={"WWW-Authenticate": "Bearer"},
            )

        return TokenData(
            user_id=user_id,
            username=payload.get("username"),
            email=payload.get("email"),
            roles=payload.get("roles") or [],
        )

    def get_user_context(self, token_data: TokenData) -> UserContext:
        return UserContext(
            user_id=token_data.user_id,
            username=token_data.username,
            email=token_data.email,
            roles=token_data.roles,
        )

    def resolve(self, credentials: Optional[HTTPAuthorizationCredentials]) -> UserContext:
        if not credentials:
            if self.config.require_auth:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Authentication required",
                    headers={"WWW-Authenticate": "Bearer"},
                )
            return UserContext.anonymous()

        return self.get_user_context(self.verify_token(credentials.credentials))


def authorize_request(tool: ToolDefinition, user: UserContext) -> tuple[bool, Optional[str]]:
    """
    Check if a caller may see or execute a tool.

    Args:
        tool: Tool definition with its access tier
        user: The caller as resolved from the request

    Returns:
        Tuple of (is_authorized, error_message)
    """
    if tool.access == ToolAccess.PUBLIC:
        return True, None

    if not user.authenticated:
        return False, f"Tool '{tool.name}' requires you to sign in"

    if tool.access == ToolAccess.AUTHENTICATED:
        return True, None

    role = tool.access.value
    if role not in user.roles:
        logger.warning(
            "Access denied (missing role)",
            tool=tool.name,
            user=user.user_id,
            required_role=role
        )
        return False, f"Tool '{tool.name}' is only available to users with the '{role}' role"

    return True, None
