"""
Workflow template schemas for request/response validation
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID
from pydantic import Field, field_validator
import re

from signposting.core.enums import ActionKey, ApprovalStatus, NodeType, WorkflowSource, WorkflowType
from signposting.schemas import BaseSchema, TimestampSchema

COLOUR_HEX_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")


def _validate_colour(v: Optional[str]) -> Optional[str]:
    if v is None or not v.strip():
        return None
    if not COLOUR_HEX_PATTERN.match(v.strip()):
        raise ValueError("Colour must be a hex value such as #1D4ED8")
    return v.strip()


# Templates

class TemplateBase(BaseSchema):
    """Base template schema with common fields"""
    name: str = Field(..., min_length=1, max_length=255, description="Workflow name")
    description: Optional[str] = Field(None, description="Short description shown on the landing page")
    icon_key: Optional[str] = Field(None, max_length=100, description="Icon registry key")
    colour_hex: Optional[str] = Field(None, description="Colour hint (#RRGGBB)")
    workflow_type: WorkflowType = Field(WorkflowType.SUPPORTING, description="Landing page grouping")
    is_active: bool = Field(True, description="Whether staff can start this workflow")

    @field_validator("colour_hex")
    @classmethod
    def validate_colour_hex(cls, v: Optional[str]) -> Optional[str]:
        return _validate_colour(v)


class TemplateCreate(TemplateBase):
    """Schema for creating a template; omit surgery_id for a global default"""
    surgery_id: Optional[UUID] = Field(None, description="Owning surgery (null for global)")


class TemplateUpdate(BaseSchema):
    """Schema for updating template metadata"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    icon_key: Optional[str] = Field(None, max_length=100)
    colour_hex: Optional[str] = None
    workflow_type: Optional[WorkflowType] = None
    is_active: Optional[bool] = None

    @field_validator("colour_hex")
    @classmethod
    def validate_colour_hex(cls, v: Optional[str]) -> Optional[str]:
        return _validate_colour(v)


class TemplateResponse(TemplateBase, TimestampSchema):
    """Schema for template response"""
    surgery_id: Optional[UUID] = None
    approval_status: ApprovalStatus
    approved_by_id: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    last_edited_by_id: Optional[UUID] = None
    last_edited_at: Optional[datetime] = None
    source_template_id: Optional[UUID] = None
    family_id: UUID
    version: int
    previous_version_id: Optional[UUID] = None


class TemplateListResponse(BaseSchema):
    """Schema for template list"""
    items: list[TemplateResponse]
    total: int


class OverrideResponse(BaseSchema):
    """Override creation result; created is false when one already existed"""
    template: TemplateResponse
    created: bool


# Nodes

class NodeCreate(BaseSchema):
    """Schema for creating a node"""
    node_type: str = Field(..., description="INSTRUCTION, QUESTION or END")
    title: str = Field(..., max_length=500)
    body: Optional[str] = None
    sort_order: Optional[int] = Field(None, description="Defaults to the end of the workflow")
    is_start: bool = False
    action_key: Optional[str] = None
    default_next_node_id: Optional[UUID] = None
    position_x: Optional[int] = None
    position_y: Optional[int] = None


class NodeUpdate(BaseSchema):
    """Schema for a partial node update"""
    node_type: Optional[str] = None
    title: Optional[str] = Field(None, max_length=500)
    body: Optional[str] = None
    sort_order: Optional[int] = None
    is_start: Optional[bool] = None
    action_key: Optional[str] = None
    default_next_node_id: Optional[UUID] = None
    position_x: Optional[int] = None
    position_y: Optional[int] = None


class NodePosition(BaseSchema):
    """Diagram position of one node"""
    node_id: UUID
    position_x: Optional[int] = None
    position_y: Optional[int] = None


class NodePositionsUpdate(BaseSchema):
    """Bulk diagram layout save"""
    positions: List[NodePosition] = Field(..., min_length=1)


class NodeResponse(TimestampSchema):
    """Schema for node response"""
    template_id: UUID
    node_type: NodeType
    title: str
    body: Optional[str] = None
    sort_order: int
    is_start: bool
    action_key: Optional[ActionKey] = None
    default_next_node_id: Optional[UUID] = None
    position_x: Optional[int] = None
    position_y: Optional[int] = None


# Answer options

class AnswerOptionCreate(BaseSchema):
    """Schema for creating an answer option"""
    label: str = Field(..., max_length=500)
    value_key: Optional[str] = Field(None, max_length=255, description="Generated from the label when omitted")
    description: Optional[str] = None
    next_node_id: Optional[UUID] = None
    action_key: Optional[str] = None


class AnswerOptionUpdate(BaseSchema):
    """Schema for a partial answer option update"""
    label: Optional[str] = Field(None, max_length=500)
    value_key: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    next_node_id: Optional[UUID] = None
    action_key: Optional[str] = None
    sort_order: Optional[int] = None


class AnswerOptionResponse(TimestampSchema):
    """Schema for answer option response"""
    node_id: UUID
    label: str
    value_key: str
    description: Optional[str] = None
    next_node_id: Optional[UUID] = None
    action_key: Optional[ActionKey] = None
    sort_order: int


# Node links

class NodeLinkCreate(BaseSchema):
    """Schema for linking a node to another workflow"""
    linked_template_id: UUID
    label: Optional[str] = Field(None, max_length=255)


class NodeLinkResponse(TimestampSchema):
    """Schema for node link response"""
    node_id: UUID
    template_id: UUID
    label: str
    sort_order: int


class NodeDetailResponse(NodeResponse):
    """Node with its answer options and links"""
    answer_options: List[AnswerOptionResponse] = []
    links: List[NodeLinkResponse] = []


class TemplateDetailResponse(TemplateResponse):
    """Template with its full graph"""
    nodes: List[NodeDetailResponse] = []


# Effective workflows

class EffectiveWorkflowResponse(BaseSchema):
    """Schema for one resolved workflow of a surgery"""
    id: UUID
    surgery_id: Optional[UUID] = None
    name: str
    description: Optional[str] = None
    icon_key: Optional[str] = None
    colour_hex: Optional[str] = None
    workflow_type: WorkflowType
    is_active: bool
    source: WorkflowSource
    source_template_id: Optional[UUID] = None
    family_id: UUID
    version: int
    approval_status: ApprovalStatus
    approved_by_id: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    last_edited_by_id: Optional[UUID] = None
    last_edited_at: Optional[datetime] = None


class EffectiveWorkflowListResponse(BaseSchema):
    """Schema for the effective workflow list of a surgery"""
    items: list[EffectiveWorkflowResponse]
    total: int


class EffectiveWorkflowDetailResponse(EffectiveWorkflowResponse):
    """Resolved workflow plus its graph, for the read-only diagram view"""
    nodes: List[NodeDetailResponse] = []


# Validation report

class GraphIssueResponse(BaseSchema):
    """One authoring problem"""
    code: str
    message: str
    node_id: Optional[str] = None
    option_id: Optional[str] = None


class TemplateValidationResponse(BaseSchema):
    """Authoring problems that would break execution"""
    template_id: UUID
    is_valid: bool
    issues: List[GraphIssueResponse]
