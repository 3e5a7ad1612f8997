"""
Workflow instance models

An instance is one run of a template for a real case. It keeps a copy of
the template graph taken at start and an append-only answer trail.
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID
from sqlalchemy import DateTime, Enum, ForeignKey, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID as PostgresUUID

from signposting.core.enums import ActionKey, InstanceStatus, NodeType
from signposting.models.base import BaseModel
from signposting.workflows.graph import GraphSnapshot, NodeSnapshot


class WorkflowInstance(BaseModel):
    """
    Workflow execution tracking model

    current_node_id refers to a node of graph_snapshot, not to the live
    template. lock_version guards against two transitions from the same
    cursor position both succeeding.
    """
    __tablename__ = "workflow_instances"

    surgery_id: Mapped[UUID] = mapped_column(
        PostgresUUID(as_uuid=True),
        ForeignKey("surgeries.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    template_id: Mapped[UUID] = mapped_column(
        PostgresUUID(as_uuid=True),
        ForeignKey("workflow_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    started_by_id: Mapped[Optional[UUID]] = mapped_column(
        PostgresUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    status: Mapped[InstanceStatus] = mapped_column(
        Enum(InstanceStatus, native_enum=False),
        default=InstanceStatus.ACTIVE,
        nullable=False,
        index=True,
    )

    reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    current_node_id: Mapped[Optional[UUID]] = mapped_column(PostgresUUID(as_uuid=True), nullable=True)

    graph_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)

    outcome_action_key: Mapped[Optional[ActionKey]] = mapped_column(
        Enum(ActionKey, native_enum=False),
        nullable=True,
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    cancelled_by_id: Mapped[Optional[UUID]] = mapped_column(
        PostgresUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    lock_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __mapper_args__ = {"version_id_col": lock_version}

    # Relationships
    answer_records: Mapped[List["WorkflowAnswerRecord"]] = relationship(
        "WorkflowAnswerRecord",
        back_populates="instance",
        cascade="all, delete-orphan",
        order_by="WorkflowAnswerRecord.step_index",
    )

    @property
    def snapshot(self) -> GraphSnapshot:
        return GraphSnapshot.from_dict(self.graph_snapshot)

    @property
    def template_name(self) -> str:
        return self.graph_snapshot.get("template_name", "")

    @property
    def current_node(self) -> Optional[NodeSnapshot]:
        return self.snapshot.node(self.current_node_id)

    def __repr__(self) -> str:
        return f"<WorkflowInstance(id={self.id}, status={self.status}, current_node_id={self.current_node_id})>"


class WorkflowAnswerRecord(BaseModel):
    """
    One step of an instance's history

    A record is written for every answered question (answer_* fields set)
    and every acknowledged instruction (answer_* fields empty). Node and
    option data is copied so the trail survives template edits.
    """
    __tablename__ = "workflow_answer_records"

    __table_args__ = (
        UniqueConstraint("instance_id", "step_index", name="uq_workflow_answer_records_instance_step"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        PostgresUUID(as_uuid=True),
        ForeignKey("workflow_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    step_index: Mapped[int] = mapped_column(Integer, nullable=False)

    node_id: Mapped[UUID] = mapped_column(PostgresUUID(as_uuid=True), nullable=False, index=True)

    node_title: Mapped[str] = mapped_column(Text, nullable=False)

    node_type: Mapped[NodeType] = mapped_column(Enum(NodeType, native_enum=False), nullable=False)

    answer_option_id: Mapped[Optional[UUID]] = mapped_column(PostgresUUID(as_uuid=True), nullable=True)

    answer_value_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    answer_label: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    free_text_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    actor_id: Mapped[Optional[UUID]] = mapped_column(
        PostgresUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    instance: Mapped["WorkflowInstance"] = relationship("WorkflowInstance", back_populates="answer_records")

    def __repr__(self) -> str:
        return f"<WorkflowAnswerRecord(id={self.id}, instance_id={self.instance_id}, step={self.step_index})>"
