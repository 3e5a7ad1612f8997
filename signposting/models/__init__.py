"""
Database models
"""
from signposting.models.base import Base, BaseModel
from signposting.models.surgery import Surgery
from signposting.models.user import User, UserRole
from signposting.models.audit import AuditLog
from signposting.models.workflow import (
    WorkflowTemplate,
    WorkflowNode,
    WorkflowAnswerOption,
    WorkflowNodeLink,
)
from signposting.models.workflow_instance import WorkflowInstance, WorkflowAnswerRecord

__all__ = [
    "Base",
    "BaseModel",
    "Surgery",
    "User",
    "UserRole",
    "AuditLog",
    "WorkflowTemplate",
    "WorkflowNode",
    "WorkflowAnswerOption",
    "WorkflowNodeLink",
    "WorkflowInstance",
    "WorkflowAnswerRecord",
]
