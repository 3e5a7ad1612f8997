"""
Effective workflow endpoints - the per-surgery view staff work from
"""
from dataclasses import asdict
from uuid import UUID
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from signposting.api.dependencies import require_surgery_admin, require_workflows_enabled
from signposting.core.database import get_db
from signposting.core.exceptions import SignpostingException, http_404_not_found, to_http_exception
from signposting.core.permissions import can
from signposting.models.user import User
from signposting.schemas.workflow import (
    EffectiveWorkflowDetailResponse,
    EffectiveWorkflowListResponse,
    EffectiveWorkflowResponse,
    NodeDetailResponse,
    OverrideResponse,
    TemplateResponse,
)
from signposting.services.effective_workflows import effective_workflow_service
from signposting.services.template_service import template_service

logger = structlog.get_logger()

router = APIRouter(prefix="/surgeries/{surgery_id}/workflows", tags=["Workflows"])


@router.get(
    "",
    response_model=EffectiveWorkflowListResponse,
    status_code=status.HTTP_200_OK,
    summary="List effective workflows",
    description="Workflows available to a surgery after merging global defaults, overrides and custom workflows",
)
async def list_effective_workflows(
    surgery_id: UUID,
    include_drafts: bool = Query(False, description="Include DRAFT workflows (admins only)"),
    include_inactive: bool = Query(False, description="Include inactive workflows (admins only)"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_workflows_enabled),
):
    """
    List the surgery's effective workflows

    - **include_drafts**: Show DRAFT workflows; ignored for non-admins
    - **include_inactive**: Show inactive workflows; ignored for non-admins

    Each item carries its **source** (global, override or custom).
    """
    is_admin = can(current_user).is_admin_of_surgery(surgery_id)
    workflows = await effective_workflow_service.get_effective_workflows(
        db,
        surgery_id,
        include_drafts=include_drafts and is_admin,
        include_inactive=include_inactive and is_admin,
    )

    return EffectiveWorkflowListResponse(
        items=[EffectiveWorkflowResponse.model_validate(workflow) for workflow in workflows],
        total=len(workflows),
    )


@router.get(
    "/{template_id}",
    response_model=EffectiveWorkflowDetailResponse,
    status_code=status.HTTP_200_OK,
    summary="Get effective workflow",
    description="One workflow as the surgery sees it, with its graph",
)
async def get_effective_workflow(
    surgery_id: UUID,
    template_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_workflows_enabled),
):
    """
    Get one effective workflow with nodes, answer options and links

    A global template id returns the surgery's override when one is in effect.
    """
    effective = await effective_workflow_service.get_effective_workflow_by_id(
        db,
        template_id,
        surgery_id,
        include_drafts=can(current_user).is_admin_of_surgery(surgery_id),
    )
    if effective is None:
        raise http_404_not_found(detail=f"Workflow {template_id} is not available to this surgery")

    try:
        template = await template_service.get_template(db, effective.id)
    except SignpostingException as e:
        raise to_http_exception(e)

    return EffectiveWorkflowDetailResponse(
        **asdict(effective),
        nodes=[NodeDetailResponse.model_validate(node) for node in template.nodes],
    )


@router.post(
    "/{template_id}/override",
    response_model=OverrideResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Customise a global workflow",
    description="Copy a global workflow into the surgery as an editable DRAFT override",
)
async def create_override(
    surgery_id: UUID,
    template_id: UUID,
    response: Response,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_surgery_admin),
):
    """
    Create (or return the existing) surgery override of a global workflow

    Responds 201 when a copy was made and 200 when the surgery already had one.

    Requires: surgery admin
    """
    try:
        template, created = await template_service.create_override(db, surgery_id, template_id, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)

    if not created:
        response.status_code = status.HTTP_200_OK

    logger.info(
        "workflow_override_requested_via_api",
        template_id=str(template.id),
        surgery_id=str(surgery_id),
        created=created,
    )

    return OverrideResponse(template=TemplateResponse.model_validate(template), created=created)
