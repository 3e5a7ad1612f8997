"""
Role checks shared by services and API dependencies

Usage:
    if not can(user).can_manage_scope(template.scope):
        raise AuthorizationException(...)
"""
from typing import Optional
from uuid import UUID
import structlog

from signposting.core.exceptions import AuthorizationException
from signposting.models.user import User, UserRole
from signposting.workflows.scope import GlobalScope, TemplateScope

logger = structlog.get_logger()


class Permissions:
    """Answers what one user may do"""

    def __init__(self, user: Optional[User]):
        self.user = user

    @property
    def _active(self) -> bool:
        return self.user is not None and self.user.is_active

    def is_global_admin(self) -> bool:
        """Super admins manage global defaults and every surgery"""
        return self._active and self.user.role == UserRole.SUPER_ADMIN

    def is_admin_of_surgery(self, surgery_id: Optional[UUID]) -> bool:
        if surgery_id is None or not self._active:
            return False
        if self.is_global_admin():
            return True
        return self.user.role == UserRole.SURGERY_ADMIN and self.user.surgery_id == surgery_id

    def has_access_to_surgery(self, surgery_id: Optional[UUID]) -> bool:
        if surgery_id is None or not self._active:
            return False
        return self.is_global_admin() or self.user.surgery_id == surgery_id

    def can_manage_scope(self, scope: TemplateScope) -> bool:
        """
        Whether the user may edit, approve or delete templates of a scope

        Global templates are managed by super admins only; surgery templates
        by that surgery's admins (and super admins).
        """
        if isinstance(scope, GlobalScope):
            return self.is_global_admin()
        return self.is_admin_of_surgery(scope.surgery_id)

    def can_view_templates(self, scope: TemplateScope) -> bool:
        """Admins read global templates (to override them) and their own surgery's"""
        if isinstance(scope, GlobalScope):
            return self._active and self.user.role in (UserRole.SUPER_ADMIN, UserRole.SURGERY_ADMIN)
        return self.is_admin_of_surgery(scope.surgery_id)


def can(user: Optional[User]) -> Permissions:
    return Permissions(user)


def ensure_can_manage(user: Optional[User], scope: TemplateScope) -> None:
    """
    Raise unless the user may manage templates of the scope

    Raises:
        AuthorizationException: If the user lacks the required role
    """
    if can(user).can_manage_scope(scope):
        return
    logger.warning(
        "template_scope_access_denied",
        user_id=str(user.id) if user else None,
        scope=str(scope),
    )
    if isinstance(scope, GlobalScope):
        raise AuthorizationException(
            "Not allowed to manage global workflows",
            detail="Global workflow templates can only be changed by a global admin",
        )
    raise AuthorizationException(
        "Not allowed to manage this surgery's workflows",
        detail=f"Surgery admin rights required for surgery {scope.surgery_id}",
    )
