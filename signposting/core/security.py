"""
Security utilities: JWT bearer tokens

Tokens are issued by the surrounding platform; this service only decodes
them. create_access_token exists for service-to-service calls and tests.
"""
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID
import jwt
from jwt.exceptions import InvalidTokenError
import structlog

from signposting.core.config import settings
from signposting.core.exceptions import AuthenticationException
from signposting.schemas.auth import TokenPayload
from signposting.models.user import UserRole

logger = structlog.get_logger()


class SecurityManager:
    """Security manager for JWT operations"""

    @staticmethod
    def create_access_token(
        user_id: UUID,
        email: str,
        role: UserRole,
        surgery_id: Optional[UUID] = None,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        """
        Create a JWT access token

        Args:
            user_id: User ID
            email: User email
            role: User role
            surgery_id: Surgery ID (optional, null for super_admin)
            expires_delta: Token expiration time (optional)

        Returns:
            JWT token string
        """
        issued_at = datetime.utcnow()
        expire = issued_at + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))

        payload = {
            "sub": str(user_id),
            "email": email,
            "role": role.value if isinstance(role, UserRole) else role,
            "surgery_id": str(surgery_id) if surgery_id else None,
            "exp": int(expire.timestamp()),
            "iat": int(issued_at.timestamp()),
        }

        token = jwt.encode(
            payload,
            settings.SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM,
        )

        logger.debug(
            "access_token_created",
            user_id=str(user_id),
            expires_at=expire.isoformat(),
        )

        return token

    @staticmethod
    def decode_access_token(token: str) -> TokenPayload:
        """
        Decode and validate a JWT access token

        Args:
            token: JWT token string

        Returns:
            TokenPayload with decoded data

        Raises:
            AuthenticationException: If token is invalid, expired or malformed
        """
        try:
            payload = jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM],
            )
        except InvalidTokenError as e:
            logger.warning("invalid_token", error=str(e))
            raise AuthenticationException(
                "Could not validate credentials",
                detail="Invalid or expired token"
            )

        try:
            surgery_id = payload.get("surgery_id")
            return TokenPayload(
                sub=UUID(payload["sub"]),
                email=payload["email"],
                role=UserRole(payload["role"]),
                surgery_id=UUID(surgery_id) if surgery_id else None,
                exp=payload["exp"],
                iat=payload["iat"],
            )
        except (KeyError, ValueError) as e:
            logger.warning("malformed_token_payload", error=str(e))
            raise AuthenticationException(
                "Could not validate credentials",
                detail="Malformed token payload"
            )


# Create singleton instance
security = SecurityManager()

create_access_token = security.create_access_token
decode_access_token = security.decode_access_token
