"""
User model - Staff within surgeries
"""
from enum import Enum as PyEnum
from sqlalchemy import String, Boolean, ForeignKey, Enum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID

from signposting.models.base import BaseModel


class UserRole(str, PyEnum):
    """User role enumeration"""
    SUPER_ADMIN = "super_admin"  # Global admin (manages global defaults and all surgeries)
    SURGERY_ADMIN = "surgery_admin"  # Practice admin (manages own surgery's workflows)
    STANDARD = "standard"  # Reception/admin staff


class User(BaseModel):
    """
    User model

    Each user belongs to a surgery (except super_admin). The workflow
    engine only uses users as audit references and for role checks.
    """
    __tablename__ = "users"

    # Surgery relationship
    surgery_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("surgeries.id", ondelete="CASCADE"),
        nullable=True,  # Nullable for super_admin
        index=True,
        comment="Surgery ID (null for super_admin)"
    )

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
        comment="User email (unique across platform)"
    )

    full_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="User full name"
    )

    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, native_enum=False),
        default=UserRole.STANDARD,
        nullable=False,
        index=True,
        comment="User role (super_admin, surgery_admin, standard)"
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        comment="User account status"
    )

    # Relationships
    surgery: Mapped["Surgery"] = relationship(
        "Surgery",
        back_populates="users"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
