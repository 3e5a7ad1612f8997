"""
Audit log model - Track workflow governance events
"""
from sqlalchemy import String, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from signposting.models.base import BaseModel


class AuditLog(BaseModel):
    """
    Audit log for clinical content governance

    Logs: approvals, supersessions, overrides, new versions, deletions,
    cancelled instances. Immutable records.
    """
    __tablename__ = "audit_logs"

    # Who performed the action
    user_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="User who performed the action (null if system)"
    )

    surgery_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("surgeries.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="Surgery context (null for global templates)"
    )

    # What action was performed
    action: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Action type (e.g., 'workflow_template.approved')"
    )

    resource_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Resource type (e.g., 'workflow_template', 'workflow_instance')"
    )

    resource_id: Mapped[str] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Resource ID that was affected"
    )

    details: Mapped[dict] = mapped_column(
        JSON,
        nullable=True,
        comment="Additional details (JSON)"
    )

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, action={self.action}, "
            f"resource={self.resource_type}:{self.resource_id})>"
        )
