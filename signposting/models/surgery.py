"""
Surgery model - one GP practice, the tenant boundary
"""
from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column, relationship
from typing import List

from signposting.models.base import BaseModel


class Surgery(BaseModel):
    """
    Surgery model for multi-tenant architecture

    Each surgery is a separate GP practice. All local workflow data
    (custom templates, overrides, instances) is scoped by surgery_id.
    Global default templates carry no surgery at all.
    """
    __tablename__ = "surgeries"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        comment="Practice name"
    )

    slug: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True,
        comment="URL-friendly identifier (e.g., 'riverside-medical')"
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        comment="Surgery status (active/suspended)"
    )

    workflows_enabled: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Whether the workflow guidance module is switched on"
    )

    # Relationships
    users: Mapped[List["User"]] = relationship(
        "User",
        back_populates="surgery",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Surgery(id={self.id}, name={self.name}, slug={self.slug})>"
