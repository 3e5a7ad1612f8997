"""
Workflow template management endpoints (admin editor)
"""
from typing import List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from signposting.api.dependencies import get_current_user
from signposting.core.database import get_db
from signposting.core.exceptions import (
    SignpostingException,
    http_403_forbidden,
    to_http_exception,
)
from signposting.core.permissions import can
from signposting.models.user import User
from signposting.models.workflow import WorkflowTemplate
from signposting.schemas import MessageResponse
from signposting.schemas.workflow import (
    AnswerOptionCreate,
    AnswerOptionResponse,
    AnswerOptionUpdate,
    GraphIssueResponse,
    NodeCreate,
    NodeLinkCreate,
    NodeLinkResponse,
    NodePositionsUpdate,
    NodeResponse,
    NodeUpdate,
    TemplateCreate,
    TemplateDetailResponse,
    TemplateListResponse,
    TemplateResponse,
    TemplateUpdate,
    TemplateValidationResponse,
)
from signposting.services.approval_service import approval_service
from signposting.services.template_service import template_service
from signposting.workflows.scope import scope_for

logger = structlog.get_logger()

router = APIRouter(prefix="/workflow-templates", tags=["Workflow Templates"])


def _ensure_can_view(user: User, template: WorkflowTemplate) -> None:
    if not can(user).can_view_templates(template.scope):
        logger.warning(
            "workflow_template_view_denied",
            user_id=str(user.id),
            template_id=str(template.id),
        )
        raise http_403_forbidden(detail="Access denied to this workflow template")


# Templates

@router.get(
    "",
    response_model=TemplateListResponse,
    status_code=status.HTTP_200_OK,
    summary="List templates",
    description="List the templates of one scope (global when surgery_id is omitted)",
)
async def list_templates(
    surgery_id: Optional[UUID] = Query(None, description="Surgery scope; omit for global templates"),
    include_superseded: bool = Query(False, description="Include replaced versions"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    List templates for the admin editor

    Requires: global admin or surgery admin (own surgery only)
    """
    scope = scope_for(surgery_id)
    if not can(current_user).can_view_templates(scope):
        raise http_403_forbidden(detail="Admin rights required")

    templates = await template_service.list_templates(db, scope, include_superseded=include_superseded)
    return TemplateListResponse(items=templates, total=len(templates))


@router.post(
    "",
    response_model=TemplateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create template",
    description="Create a DRAFT workflow template",
)
async def create_template(
    template_data: TemplateCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Create a new workflow template

    - **surgery_id**: Owning surgery; omit for a global default (global admin only)
    - **name**: Workflow name
    - **workflow_type**: PRIMARY, SUPPORTING or MODULE
    """
    try:
        return await template_service.create_template(db, template_data, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)


@router.get(
    "/{template_id}",
    response_model=TemplateDetailResponse,
    status_code=status.HTTP_200_OK,
    summary="Get template",
    description="Get a template with nodes, answer options and links",
)
async def get_template(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        template = await template_service.get_template(db, template_id)
    except SignpostingException as e:
        raise to_http_exception(e)

    _ensure_can_view(current_user, template)
    return template


@router.patch(
    "/{template_id}",
    response_model=TemplateResponse,
    status_code=status.HTTP_200_OK,
    summary="Update template",
    description="Update template metadata; an approved template returns to DRAFT",
)
async def update_template(
    template_id: UUID,
    template_data: TemplateUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return await template_service.update_template(db, template_id, template_data, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)


@router.delete(
    "/{template_id}",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Delete template",
    description="Delete a template with its graph, instances and history",
)
async def delete_template(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Delete a workflow template

    Requires: global admin for global templates, surgery admin otherwise
    """
    try:
        await template_service.delete_template(db, template_id, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)

    return MessageResponse(
        message="Workflow template deleted",
        detail=f"Template {template_id} has been removed",
    )


@router.post(
    "/{template_id}/approve",
    response_model=TemplateResponse,
    status_code=status.HTTP_200_OK,
    summary="Approve template",
    description="Approve a template for staff use; older versions are superseded",
)
async def approve_template(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return await approval_service.approve(db, template_id, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)


@router.post(
    "/{template_id}/versions",
    response_model=TemplateDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create new version",
    description="Copy a live template into the next DRAFT version",
)
async def create_version(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return await approval_service.create_version(db, template_id, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)


@router.get(
    "/{template_id}/validation",
    response_model=TemplateValidationResponse,
    status_code=status.HTTP_200_OK,
    summary="Validate template",
    description="Report authoring problems that would stop the workflow from running",
)
async def validate_template(
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        template = await template_service.get_template(db, template_id)
        _ensure_can_view(current_user, template)
        issues = await template_service.validate_template(db, template_id)
    except SignpostingException as e:
        raise to_http_exception(e)

    return TemplateValidationResponse(
        template_id=template_id,
        is_valid=not issues,
        issues=[
            GraphIssueResponse(
                code=issue.code,
                message=issue.message,
                node_id=issue.node_id,
                option_id=issue.option_id,
            )
            for issue in issues
        ],
    )


# Nodes

@router.post(
    "/{template_id}/nodes",
    response_model=NodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create node",
)
async def create_node(
    template_id: UUID,
    node_data: NodeCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Add a node to a template

    - **node_type**: INSTRUCTION, QUESTION or END
    - **default_next_node_id**: Continuation of an INSTRUCTION node (same template)
    """
    try:
        return await template_service.create_node(db, template_id, node_data, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)


@router.put(
    "/{template_id}/layout",
    response_model=List[NodeResponse],
    status_code=status.HTTP_200_OK,
    summary="Save diagram layout",
    description="Save node positions; does not affect approval",
)
async def save_layout(
    template_id: UUID,
    layout: NodePositionsUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return await template_service.update_node_positions(db, template_id, layout.positions, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)


@router.patch(
    "/nodes/{node_id}",
    response_model=NodeResponse,
    status_code=status.HTTP_200_OK,
    summary="Update node",
)
async def update_node(
    node_id: UUID,
    node_data: NodeUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return await template_service.update_node(db, node_id, node_data, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)


@router.delete(
    "/nodes/{node_id}",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Delete node",
    description="Delete a node; refused while other steps still lead to it",
)
async def delete_node(
    node_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        await template_service.delete_node(db, node_id, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)

    return MessageResponse(message="Workflow node deleted", detail=f"Node {node_id} has been removed")


# Answer options

@router.post(
    "/nodes/{node_id}/options",
    response_model=AnswerOptionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create answer option",
)
async def create_answer_option(
    node_id: UUID,
    option_data: AnswerOptionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return await template_service.create_answer_option(db, node_id, option_data, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)


@router.patch(
    "/options/{option_id}",
    response_model=AnswerOptionResponse,
    status_code=status.HTTP_200_OK,
    summary="Update answer option",
)
async def update_answer_option(
    option_id: UUID,
    option_data: AnswerOptionUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return await template_service.update_answer_option(db, option_id, option_data, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)


@router.delete(
    "/options/{option_id}",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Delete answer option",
)
async def delete_answer_option(
    option_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        await template_service.delete_answer_option(db, option_id, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)

    return MessageResponse(message="Answer option deleted", detail=f"Option {option_id} has been removed")


# Node links

@router.post(
    "/nodes/{node_id}/links",
    response_model=NodeLinkResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Link node to workflow",
)
async def create_node_link(
    node_id: UUID,
    link_data: NodeLinkCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return await template_service.create_node_link(db, node_id, link_data, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)


@router.delete(
    "/links/{link_id}",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Remove node link",
)
async def delete_node_link(
    link_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        await template_service.delete_node_link(db, link_id, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)

    return MessageResponse(message="Node link removed", detail=f"Link {link_id} has been removed")
