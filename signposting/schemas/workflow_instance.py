"""
Workflow instance schemas
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID
from pydantic import Field

from signposting.core.enums import ActionKey, InstanceStatus, NodeType
from signposting.schemas import BaseSchema, TimestampSchema


class InstanceStart(BaseSchema):
    """Schema for starting a workflow"""
    template_id: UUID = Field(..., description="Effective workflow to run (global ids resolve to the surgery override)")
    reference: Optional[str] = Field(None, max_length=255, description="Free-text case reference")
    category: Optional[str] = Field(None, max_length=100)


class InstanceAdvance(BaseSchema):
    """Schema for answering the current question"""
    option_id: UUID
    free_text_note: Optional[str] = Field(None, max_length=2000)


class SnapshotOptionResponse(BaseSchema):
    """Answer option of the current step"""
    id: str
    label: str
    value_key: str
    description: Optional[str] = None
    next_node_id: Optional[str] = None
    action_key: Optional[ActionKey] = None


class SnapshotLinkResponse(BaseSchema):
    template_id: str
    label: str


class SnapshotNodeResponse(BaseSchema):
    """The step the instance cursor is on"""
    id: str
    node_type: NodeType
    title: str
    body: Optional[str] = None
    action_key: Optional[ActionKey] = None
    default_next_node_id: Optional[str] = None
    answer_options: List[SnapshotOptionResponse] = []
    links: List[SnapshotLinkResponse] = []


class WorkflowInstanceResponse(TimestampSchema):
    """Schema for instance state"""
    surgery_id: UUID
    template_id: UUID
    template_name: str
    started_by_id: Optional[UUID] = None
    status: InstanceStatus
    reference: Optional[str] = None
    category: Optional[str] = None
    current_node_id: Optional[UUID] = None
    current_node: Optional[SnapshotNodeResponse] = None
    outcome_action_key: Optional[ActionKey] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by_id: Optional[UUID] = None


class WorkflowInstanceListResponse(BaseSchema):
    """Schema for paginated instance list"""
    items: list[WorkflowInstanceResponse]
    total: int
    page: int
    page_size: int


class AnswerRecordResponse(BaseSchema):
    """One step of an instance's history"""
    id: UUID
    step_index: int
    node_id: UUID
    node_title: str
    node_type: NodeType
    answer_option_id: Optional[UUID] = None
    answer_value_key: Optional[str] = None
    answer_label: Optional[str] = None
    free_text_note: Optional[str] = None
    actor_id: Optional[UUID] = None
    created_at: datetime


class InstanceHistoryResponse(BaseSchema):
    """Full answer trail of an instance"""
    instance_id: UUID
    items: list[AnswerRecordResponse]


class InstanceAcknowledge(BaseSchema):
    """Schema for acknowledging the current instruction"""
    free_text_note: Optional[str] = Field(None, max_length=2000)
