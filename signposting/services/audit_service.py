"""
Audit service - governance trail for workflow content
"""
from typing import Any, Dict, List, Optional, Union
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from signposting.models.audit import AuditLog
from signposting.models.user import User

logger = structlog.get_logger()


class AuditService:
    """Writes and reads audit log entries"""

    @staticmethod
    def record(
        db: AsyncSession,
        action: str,
        resource_type: str,
        resource_id: Union[UUID, str, None],
        actor: Optional[User] = None,
        surgery_id: Optional[UUID] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Add an audit entry to the current transaction

        The caller commits, so the entry is stored together with the change
        it describes or not at all.

        Args:
            db: Database session
            action: Dotted action name (e.g. 'workflow_template.approved')
            resource_type: Resource type (e.g. 'workflow_template')
            resource_id: Affected resource ID
            actor: User performing the action (None for system)
            surgery_id: Surgery context (None for global templates)
            details: Extra JSON details

        Returns:
            Pending audit entry
        """
        entry = AuditLog(
            user_id=actor.id if actor else None,
            surgery_id=surgery_id,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=details,
        )
        db.add(entry)

        logger.debug(
            "audit_entry_recorded",
            action=action,
            resource_type=resource_type,
            resource_id=entry.resource_id,
        )

        return entry

    @staticmethod
    async def list_entries(
        db: AsyncSession,
        resource_type: Optional[str] = None,
        resource_id: Union[UUID, str, None] = None,
        surgery_id: Optional[UUID] = None,
        limit: int = 100,
    ) -> List[AuditLog]:
        """
        List audit entries, newest first

        Args:
            db: Database session
            resource_type: Filter by resource type
            resource_id: Filter by resource ID
            surgery_id: Filter by surgery
            limit: Maximum number of entries

        Returns:
            List of audit entries
        """
        query = select(AuditLog)
        if resource_type:
            query = query.where(AuditLog.resource_type == resource_type)
        if resource_id is not None:
            query = query.where(AuditLog.resource_id == str(resource_id))
        if surgery_id is not None:
            query = query.where(AuditLog.surgery_id == surgery_id)

        result = await db.execute(query.order_by(AuditLog.created_at.desc()).limit(limit))
        return list(result.scalars().all())


# Create singleton instance
audit_service = AuditService()
