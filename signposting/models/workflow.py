"""
Workflow template models

A template owns its nodes, a QUESTION node owns its answer options, and
any node may carry links to other workflows. Answer options and INSTRUCTION
continuations only ever point at nodes of the same template.
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID
from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID as PostgresUUID

from signposting.core.enums import ActionKey, ApprovalStatus, NodeType, WorkflowType
from signposting.models.base import BaseModel
from signposting.workflows.scope import TemplateScope, scope_for


class WorkflowTemplate(BaseModel):
    """
    Workflow template definition

    surgery_id is NULL for global defaults. A surgery template with
    source_template_id set is an override of that global template; without
    it the template is a fully custom local workflow. family_id groups every
    version of one logical workflow, and overrides share the family of the
    global template they copy.
    """
    __tablename__ = "workflow_templates"

    surgery_id: Mapped[Optional[UUID]] = mapped_column(
        PostgresUUID(as_uuid=True),
        ForeignKey("surgeries.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
        comment="Owning surgery (null for global defaults)"
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    icon_key: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    colour_hex: Mapped[Optional[str]] = mapped_column(String(7), nullable=True)

    workflow_type: Mapped[WorkflowType] = mapped_column(
        Enum(WorkflowType, native_enum=False),
        default=WorkflowType.SUPPORTING,
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        index=True,
    )

    approval_status: Mapped[ApprovalStatus] = mapped_column(
        Enum(ApprovalStatus, native_enum=False),
        default=ApprovalStatus.DRAFT,
        nullable=False,
        index=True,
    )

    approved_by_id: Mapped[Optional[UUID]] = mapped_column(
        PostgresUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    last_edited_by_id: Mapped[Optional[UUID]] = mapped_column(
        PostgresUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    last_edited_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    source_template_id: Mapped[Optional[UUID]] = mapped_column(
        PostgresUUID(as_uuid=True),
        ForeignKey("workflow_templates.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Global template this surgery override was copied from"
    )

    family_id: Mapped[UUID] = mapped_column(
        PostgresUUID(as_uuid=True),
        nullable=False,
        index=True,
        comment="Logical workflow shared by versions and overrides"
    )

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    previous_version_id: Mapped[Optional[UUID]] = mapped_column(
        PostgresUUID(as_uuid=True),
        ForeignKey("workflow_templates.id", ondelete="SET NULL"),
        nullable=True,
    )

    lock_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __mapper_args__ = {"version_id_col": lock_version}

    # Relationships
    nodes: Mapped[List["WorkflowNode"]] = relationship(
        "WorkflowNode",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="WorkflowNode.sort_order",
    )

    @property
    def scope(self) -> TemplateScope:
        return scope_for(self.surgery_id)

    @property
    def is_override(self) -> bool:
        return self.surgery_id is not None and self.source_template_id is not None

    def __repr__(self) -> str:
        return (
            f"<WorkflowTemplate(id={self.id}, name={self.name}, "
            f"scope={self.scope}, status={self.approval_status})>"
        )


class WorkflowNode(BaseModel):
    """
    A single step of a workflow template

    default_next_node_id is the explicit continuation of an INSTRUCTION
    node. position_x/position_y only drive the diagram layout.
    """
    __tablename__ = "workflow_nodes"

    template_id: Mapped[UUID] = mapped_column(
        PostgresUUID(as_uuid=True),
        ForeignKey("workflow_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    node_type: Mapped[NodeType] = mapped_column(
        Enum(NodeType, native_enum=False),
        nullable=False,
    )

    title: Mapped[str] = mapped_column(Text, nullable=False)

    body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_start: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    action_key: Mapped[Optional[ActionKey]] = mapped_column(
        Enum(ActionKey, native_enum=False),
        nullable=True,
    )

    default_next_node_id: Mapped[Optional[UUID]] = mapped_column(
        PostgresUUID(as_uuid=True),
        ForeignKey("workflow_nodes.id"),
        nullable=True,
    )

    position_x: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    position_y: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Relationships
    template: Mapped["WorkflowTemplate"] = relationship("WorkflowTemplate", back_populates="nodes")

    answer_options: Mapped[List["WorkflowAnswerOption"]] = relationship(
        "WorkflowAnswerOption",
        back_populates="node",
        foreign_keys="WorkflowAnswerOption.node_id",
        cascade="all, delete-orphan",
        order_by="WorkflowAnswerOption.sort_order",
    )

    links: Mapped[List["WorkflowNodeLink"]] = relationship(
        "WorkflowNodeLink",
        back_populates="node",
        foreign_keys="WorkflowNodeLink.node_id",
        cascade="all, delete-orphan",
        order_by="WorkflowNodeLink.sort_order",
    )

    def __repr__(self) -> str:
        return f"<WorkflowNode(id={self.id}, type={self.node_type}, title={self.title})>"


class WorkflowAnswerOption(BaseModel):
    """
    Answer option of a QUESTION node

    next_node_id takes precedence over action_key when the engine moves on;
    an option may carry both so the outcome is kept for audit.
    """
    __tablename__ = "workflow_answer_options"
    __table_args__ = (
        UniqueConstraint("node_id", "value_key", name="uq_workflow_answer_options_node_value_key"),
    )

    node_id: Mapped[UUID] = mapped_column(
        PostgresUUID(as_uuid=True),
        ForeignKey("workflow_nodes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    label: Mapped[str] = mapped_column(Text, nullable=False)

    value_key: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    next_node_id: Mapped[Optional[UUID]] = mapped_column(
        PostgresUUID(as_uuid=True),
        ForeignKey("workflow_nodes.id"),
        nullable=True,
        index=True,
    )

    action_key: Mapped[Optional[ActionKey]] = mapped_column(
        Enum(ActionKey, native_enum=False),
        nullable=True,
    )

    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    node: Mapped["WorkflowNode"] = relationship(
        "WorkflowNode",
        back_populates="answer_options",
        foreign_keys=[node_id],
    )

    def __repr__(self) -> str:
        return f"<WorkflowAnswerOption(id={self.id}, value_key={self.value_key}, node_id={self.node_id})>"


class WorkflowNodeLink(BaseModel):
    """Link from a node to another workflow template of the same scope"""
    __tablename__ = "workflow_node_links"
    __table_args__ = (
        UniqueConstraint("node_id", "template_id", name="uq_workflow_node_links_node_template"),
    )

    node_id: Mapped[UUID] = mapped_column(
        PostgresUUID(as_uuid=True),
        ForeignKey("workflow_nodes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    template_id: Mapped[UUID] = mapped_column(
        PostgresUUID(as_uuid=True),
        ForeignKey("workflow_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Linked (target) workflow template"
    )

    label: Mapped[str] = mapped_column(Text, nullable=False)

    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    node: Mapped["WorkflowNode"] = relationship(
        "WorkflowNode",
        back_populates="links",
        foreign_keys=[node_id],
    )

    def __repr__(self) -> str:
        return f"<WorkflowNodeLink(id={self.id}, node_id={self.node_id}, template_id={self.template_id})>"
