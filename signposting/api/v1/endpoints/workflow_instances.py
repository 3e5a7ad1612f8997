"""
Workflow instance endpoints - running workflows for real cases
"""
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from signposting.api.dependencies import require_instance_workflows_enabled, require_workflows_enabled
from signposting.core.config import settings
from signposting.core.database import get_db
from signposting.core.enums import InstanceStatus
from signposting.core.exceptions import SignpostingException, to_http_exception
from signposting.models.user import User
from signposting.schemas.workflow_instance import (
    AnswerRecordResponse,
    InstanceAcknowledge,
    InstanceAdvance,
    InstanceHistoryResponse,
    InstanceStart,
    WorkflowInstanceListResponse,
    WorkflowInstanceResponse,
)
from signposting.services.instance_service import instance_service

logger = structlog.get_logger()

router = APIRouter(tags=["Workflow Instances"])


@router.post(
    "/surgeries/{surgery_id}/workflow-instances",
    response_model=WorkflowInstanceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start workflow",
    description="Start an effective workflow of the surgery for a case",
)
async def start_instance(
    surgery_id: UUID,
    start_data: InstanceStart,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_workflows_enabled),
):
    """
    Start a workflow

    - **template_id**: Effective workflow to run; a global id runs the surgery's override
    - **reference**: Free-text case reference (optional)
    - **category**: Case category (optional)
    """
    try:
        return await instance_service.start(db, surgery_id, start_data, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)


@router.get(
    "/surgeries/{surgery_id}/workflow-instances",
    response_model=WorkflowInstanceListResponse,
    status_code=status.HTTP_200_OK,
    summary="List workflow instances",
)
async def list_instances(
    surgery_id: UUID,
    instance_status: Optional[InstanceStatus] = Query(None, alias="status", description="Filter by status"),
    mine: bool = Query(False, description="Only instances started by the current user"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=settings.WORKFLOW_LIST_MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_workflows_enabled),
):
    try:
        instances, total = await instance_service.list_instances(
            db,
            surgery_id,
            current_user,
            status=instance_status,
            started_by_id=current_user.id if mine else None,
            skip=(page - 1) * page_size,
            limit=page_size,
        )
    except SignpostingException as e:
        raise to_http_exception(e)

    return WorkflowInstanceListResponse(
        items=[WorkflowInstanceResponse.model_validate(instance) for instance in instances],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/workflow-instances/{instance_id}",
    response_model=WorkflowInstanceResponse,
    status_code=status.HTTP_200_OK,
    summary="Get workflow instance",
    description="Current state of a workflow, for resuming",
)
async def get_instance(
    instance_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_instance_workflows_enabled),
):
    try:
        return await instance_service.get_instance(db, instance_id, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)


@router.post(
    "/workflow-instances/{instance_id}/advance",
    response_model=WorkflowInstanceResponse,
    status_code=status.HTTP_200_OK,
    summary="Answer question",
)
async def advance_instance(
    instance_id: UUID,
    advance_data: InstanceAdvance,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_instance_workflows_enabled),
):
    """
    Answer the current question

    Responds 409 if the workflow is not active, the option does not belong
    to the current question, or another answer was recorded first.
    """
    try:
        return await instance_service.advance(db, instance_id, advance_data, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)


@router.post(
    "/workflow-instances/{instance_id}/acknowledge",
    response_model=WorkflowInstanceResponse,
    status_code=status.HTTP_200_OK,
    summary="Acknowledge instruction",
)
async def acknowledge_instance(
    instance_id: UUID,
    acknowledge_data: Optional[InstanceAcknowledge] = Body(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_instance_workflows_enabled),
):
    try:
        return await instance_service.acknowledge(
            db,
            instance_id,
            current_user,
            free_text_note=acknowledge_data.free_text_note if acknowledge_data else None,
        )
    except SignpostingException as e:
        raise to_http_exception(e)


@router.post(
    "/workflow-instances/{instance_id}/cancel",
    response_model=WorkflowInstanceResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel workflow",
)
async def cancel_instance(
    instance_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_instance_workflows_enabled),
):
    try:
        return await instance_service.cancel(db, instance_id, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)


@router.get(
    "/workflow-instances/{instance_id}/history",
    response_model=InstanceHistoryResponse,
    status_code=status.HTTP_200_OK,
    summary="Workflow history",
    description="Every answered question and acknowledged instruction, in order",
)
async def get_instance_history(
    instance_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_instance_workflows_enabled),
):
    try:
        records = await instance_service.get_history(db, instance_id, current_user)
    except SignpostingException as e:
        raise to_http_exception(e)

    return InstanceHistoryResponse(
        instance_id=instance_id,
        items=[AnswerRecordResponse.model_validate(record) for record in records],
    )
