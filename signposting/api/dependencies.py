"""
FastAPI dependencies for authentication and authorization
"""
from uuid import UUID
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import structlog

from signposting.core.database import get_db
from signposting.core.exceptions import (
    AuthenticationException,
    NotFoundException,
    http_401_unauthorized,
    http_403_forbidden,
    http_404_not_found,
)
from signposting.core.permissions import can
from signposting.core.security import security
from signposting.models.user import User, UserRole
from signposting.models.workflow_instance import WorkflowInstance
from signposting.schemas.auth import TokenPayload
from signposting.services.surgery_service import surgery_service

logger = structlog.get_logger()

# HTTP Bearer token scheme
security_scheme = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Get current authenticated user from JWT token

    Args:
        credentials: HTTP Bearer token
        db: Database session

    Returns:
        Current user

    Raises:
        HTTPException: If token is invalid or user not found
    """
    try:
        token_data: TokenPayload = security.decode_access_token(credentials.credentials)
    except AuthenticationException as e:
        logger.warning("invalid_token_in_request", error=e.detail or e.message)
        raise http_401_unauthorized(detail="Invalid or expired token")

    result = await db.execute(
        select(User).where(User.id == token_data.sub)
    )
    user = result.scalar_one_or_none()

    if not user:
        logger.warning("user_not_found_for_token", user_id=str(token_data.sub))
        raise http_401_unauthorized(detail="User not found")

    if not user.is_active:
        logger.warning("inactive_user_attempted_access", user_id=str(user.id))
        raise http_401_unauthorized(detail="Inactive user")

    return user


def require_role(*allowed_roles: UserRole):
    """
    Dependency factory for role-based access control

    Usage:
        @router.post("/global")
        async def endpoint(
            user: User = Depends(require_role(UserRole.SUPER_ADMIN))
        ):
            ...

    Args:
        *allowed_roles: Allowed user roles

    Returns:
        Dependency function
    """
    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed_roles:
            logger.warning(
                "unauthorized_role_access_attempt",
                user_id=str(current_user.id),
                user_role=current_user.role.value,
                required_roles=[role.value for role in allowed_roles],
            )
            raise http_403_forbidden(
                detail=f"Required role: {', '.join(role.value for role in allowed_roles)}"
            )
        return current_user

    return role_checker


async def require_surgery_access(
    surgery_id: UUID,
    current_user: User = Depends(get_current_user),
) -> User:
    """
    Ensure the user belongs to the surgery in the path

    Super admins can access every surgery.
    """
    if not can(current_user).has_access_to_surgery(surgery_id):
        logger.warning(
            "surgery_isolation_violation_attempt",
            user_id=str(current_user.id),
            user_surgery_id=str(current_user.surgery_id),
            requested_surgery_id=str(surgery_id),
        )
        raise http_403_forbidden(detail="Access denied to this surgery")

    return current_user


async def require_surgery_admin(
    surgery_id: UUID,
    current_user: User = Depends(get_current_user),
) -> User:
    """Ensure the user is an admin of the surgery in the path (or a super admin)"""
    if not can(current_user).is_admin_of_surgery(surgery_id):
        logger.warning(
            "surgery_admin_required",
            user_id=str(current_user.id),
            user_role=current_user.role.value,
            requested_surgery_id=str(surgery_id),
        )
        raise http_403_forbidden(detail="Surgery admin rights required")

    return current_user


async def require_workflows_enabled(
    surgery_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_surgery_access),
) -> User:
    """
    Ensure the surgery has the workflow module switched on

    Returns 404 so staff of surgeries without the module never see it.
    """
    try:
        enabled = await surgery_service.is_workflows_enabled(db, surgery_id)
    except NotFoundException as e:
        raise http_404_not_found(detail=e.detail or e.message)

    if not enabled:
        logger.info("workflows_disabled_for_surgery", surgery_id=str(surgery_id))
        raise http_404_not_found(detail="Workflow guidance is not enabled for this surgery")

    return current_user


async def require_instance_workflows_enabled(
    instance_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> User:
    """
    Ensure the surgery owning an instance still has the workflow module on

    Access to the instance itself is checked by the instance service.
    """
    result = await db.execute(
        select(WorkflowInstance.surgery_id).where(WorkflowInstance.id == instance_id)
    )
    surgery_id = result.scalar_one_or_none()
    if surgery_id is None:
        raise http_404_not_found(detail=f"Instance with ID {instance_id} not found")

    try:
        enabled = await surgery_service.is_workflows_enabled(db, surgery_id)
    except NotFoundException as e:
        raise http_404_not_found(detail=e.detail or e.message)

    if not enabled:
        logger.info("workflows_disabled_for_surgery", surgery_id=str(surgery_id), instance_id=str(instance_id))
        raise http_404_not_found(detail="Workflow guidance is not enabled for this surgery")

    return current_user
