"""
Enumerations for the application

This module contains all enum types used throughout the workflow engine.
Node kinds, action keys and lifecycle states are closed sets; code compares
against members, never raw strings.
"""
from enum import Enum


class NodeType(str, Enum):
    """
    Workflow node kind

    - INSTRUCTION: read-and-acknowledge step, continues along its default next node
    - QUESTION: branching step, continues along the selected answer option
    - END: outcome step, reaching it completes the instance
    """
    INSTRUCTION = "INSTRUCTION"
    QUESTION = "QUESTION"
    END = "END"


class ActionKey(str, Enum):
    """
    Terminal action recorded when a workflow reaches an outcome

    Every action key denotes a terminal outcome for document processing.
    """
    FORWARD_TO_GP = "FORWARD_TO_GP"
    FORWARD_TO_PRESCRIBING_TEAM = "FORWARD_TO_PRESCRIBING_TEAM"
    FORWARD_TO_PHARMACY_TEAM = "FORWARD_TO_PHARMACY_TEAM"
    FILE_WITHOUT_FORWARDING = "FILE_WITHOUT_FORWARDING"
    ADD_TO_YELLOW_SLOT = "ADD_TO_YELLOW_SLOT"
    SEND_STANDARD_LETTER = "SEND_STANDARD_LETTER"
    CODE_AND_FILE = "CODE_AND_FILE"
    OTHER = "OTHER"


class ApprovalStatus(str, Enum):
    """
    Template approval status

    Only APPROVED templates are visible to regular staff. SUPERSEDED is
    terminal: a superseded version is never edited or approved again.
    """
    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    SUPERSEDED = "SUPERSEDED"


class InstanceStatus(str, Enum):
    """Workflow instance lifecycle status"""
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class WorkflowType(str, Enum):
    """Landing page grouping for a workflow template"""
    PRIMARY = "PRIMARY"
    SUPPORTING = "SUPPORTING"
    MODULE = "MODULE"


class WorkflowSource(str, Enum):
    """Which layer an effective workflow was resolved from"""
    GLOBAL = "global"
    OVERRIDE = "override"
    CUSTOM = "custom"
