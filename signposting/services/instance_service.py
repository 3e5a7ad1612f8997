"""
Workflow instance service - start, advance, acknowledge and cancel runs

The state machine itself lives in signposting.workflows.engine and works on
the graph snapshot stored with the instance. This service checks access and
status, records history and persists the transition. Instances carry a
lock_version, so of two transitions from the same cursor only the first to
commit wins; the other gets ConflictException.
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from signposting.core.database import commit_or_conflict
from signposting.core.enums import InstanceStatus
from signposting.core.exceptions import (
    AuthorizationException,
    InvalidTransitionException,
    NotFoundException,
)
from signposting.core.permissions import can
from signposting.models.user import User
from signposting.models.workflow_instance import WorkflowAnswerRecord, WorkflowInstance
from signposting.schemas.workflow_instance import InstanceAdvance, InstanceStart
from signposting.services.audit_service import audit_service
from signposting.services.effective_workflows import effective_workflow_service
from signposting.services.template_service import template_service
from signposting.workflows import engine
from signposting.workflows.engine import Transition
from signposting.workflows.graph import NodeSnapshot

logger = structlog.get_logger()


def _apply_transition(instance: WorkflowInstance, transition: Transition) -> None:
    # Always dirty the row so lock_version is checked, even on a self loop
    instance.updated_at = datetime.utcnow()
    instance.current_node_id = UUID(transition.node_id) if transition.node_id else None
    if transition.completed:
        instance.status = InstanceStatus.COMPLETED
        instance.outcome_action_key = transition.outcome_action_key
        instance.completed_at = datetime.utcnow()


def _ensure_active(instance: WorkflowInstance) -> None:
    if instance.status != InstanceStatus.ACTIVE:
        raise InvalidTransitionException(
            "Workflow is not active",
            detail=f"Instance {instance.id} is {instance.status.value}",
        )


def _ensure_access(actor: User, surgery_id: UUID) -> None:
    if not can(actor).has_access_to_surgery(surgery_id):
        logger.warning(
            "surgery_isolation_violation_attempt",
            user_id=str(actor.id),
            user_surgery_id=str(actor.surgery_id),
            requested_surgery_id=str(surgery_id),
        )
        raise AuthorizationException(
            "Access denied to this surgery",
            detail=f"User {actor.id} cannot access surgery {surgery_id}",
        )


class InstanceService:
    """Workflow instance service"""

    @staticmethod
    async def _load(db: AsyncSession, instance_id: UUID) -> WorkflowInstance:
        result = await db.execute(select(WorkflowInstance).where(WorkflowInstance.id == instance_id))
        instance = result.scalar_one_or_none()

        if not instance:
            raise NotFoundException(
                "Workflow instance not found",
                detail=f"Instance with ID {instance_id} not found"
            )

        return instance

    @staticmethod
    async def _next_step_index(db: AsyncSession, instance_id: UUID) -> int:
        result = await db.execute(
            select(func.count(WorkflowAnswerRecord.id)).where(WorkflowAnswerRecord.instance_id == instance_id)
        )
        return result.scalar_one() + 1

    @staticmethod
    async def start(
        db: AsyncSession,
        surgery_id: UUID,
        start_data: InstanceStart,
        actor: User,
    ) -> WorkflowInstance:
        """
        Start a workflow for a case

        The template must be in the surgery's effective set and active.
        Admins may start DRAFT templates to test them. A global template id
        runs the surgery's override when one is in effect.

        Args:
            db: Database session
            surgery_id: Surgery ID
            start_data: Template id, case reference and category
            actor: Staff member starting the workflow

        Returns:
            New instance; already COMPLETED when the start node is terminal

        Raises:
            AuthorizationException: If actor has no access to the surgery
            NotFoundException: If the template is not available to the surgery
            ConfigurationException: If the template has zero or several
                start nodes
        """
        _ensure_access(actor, surgery_id)

        effective = await effective_workflow_service.get_effective_workflow_by_id(
            db,
            start_data.template_id,
            surgery_id,
            include_drafts=can(actor).is_admin_of_surgery(surgery_id),
        )
        if effective is None:
            raise NotFoundException(
                "Workflow not available",
                detail=f"Template {start_data.template_id} is not an active workflow of surgery {surgery_id}",
            )

        template = await template_service.get_template(db, effective.id)
        graph = template_service.snapshot(template)
        transition = engine.begin(graph)

        instance = WorkflowInstance(
            surgery_id=surgery_id,
            template_id=template.id,
            started_by_id=actor.id,
            status=InstanceStatus.ACTIVE,
            reference=start_data.reference,
            category=start_data.category,
            graph_snapshot=graph.to_dict(),
        )
        _apply_transition(instance, transition)

        db.add(instance)
        await commit_or_conflict(db, "Start workflow")
        await db.refresh(instance)

        logger.info(
            "workflow_instance_started",
            instance_id=str(instance.id),
            template_id=str(template.id),
            surgery_id=str(surgery_id),
            source=effective.source.value,
            user_id=str(actor.id),
            completed=transition.completed,
        )

        return instance

    @staticmethod
    async def advance(
        db: AsyncSession,
        instance_id: UUID,
        advance_data: InstanceAdvance,
        actor: User,
    ) -> WorkflowInstance:
        """
        Answer the question under the cursor

        Args:
            db: Database session
            instance_id: Instance ID
            advance_data: Selected option and optional note
            actor: Staff member answering

        Returns:
            Updated instance

        Raises:
            NotFoundException: If instance not found
            AuthorizationException: If actor has no access to the surgery
            InvalidTransitionException: If the instance is not active, the
                cursor is not a question, or the option is not one of its answers
            ConfigurationException: If the chosen answer leads nowhere
            ConflictException: If another transition from the same step won
        """
        instance = await InstanceService._load(db, instance_id)
        _ensure_access(actor, instance.surgery_id)
        _ensure_active(instance)

        step = engine.answer(instance.snapshot, instance.current_node_id, advance_data.option_id)

        db.add(WorkflowAnswerRecord(
            instance_id=instance.id,
            step_index=await InstanceService._next_step_index(db, instance.id),
            node_id=UUID(step.node.id),
            node_title=step.node.title,
            node_type=step.node.node_type,
            answer_option_id=UUID(step.option.id),
            answer_value_key=step.option.value_key,
            answer_label=step.option.label,
            free_text_note=advance_data.free_text_note,
            actor_id=actor.id,
        ))
        _apply_transition(instance, step.transition)

        await commit_or_conflict(db, "Advance workflow")
        await db.refresh(instance)

        logger.info(
            "workflow_instance_advanced",
            instance_id=str(instance.id),
            node_id=step.node.id,
            value_key=step.option.value_key,
            status=instance.status.value,
            outcome=instance.outcome_action_key.value if instance.outcome_action_key else None,
        )

        return instance

    @staticmethod
    async def acknowledge(
        db: AsyncSession,
        instance_id: UUID,
        actor: User,
        free_text_note: Optional[str] = None,
    ) -> WorkflowInstance:
        """
        Acknowledge the instruction under the cursor and move on

        Raises:
            NotFoundException: If instance not found
            AuthorizationException: If actor has no access to the surgery
            InvalidTransitionException: If the instance is not active or the
                cursor is not an instruction
            ConflictException: If another transition from the same step won
        """
        instance = await InstanceService._load(db, instance_id)
        _ensure_access(actor, instance.surgery_id)
        _ensure_active(instance)

        node: Optional[NodeSnapshot] = instance.current_node
        transition = engine.acknowledge(instance.snapshot, instance.current_node_id)

        db.add(WorkflowAnswerRecord(
            instance_id=instance.id,
            step_index=await InstanceService._next_step_index(db, instance.id),
            node_id=UUID(node.id),
            node_title=node.title,
            node_type=node.node_type,
            free_text_note=free_text_note,
            actor_id=actor.id,
        ))
        _apply_transition(instance, transition)

        await commit_or_conflict(db, "Acknowledge workflow step")
        await db.refresh(instance)

        logger.info(
            "workflow_instance_acknowledged",
            instance_id=str(instance.id),
            node_id=node.id,
            status=instance.status.value,
        )

        return instance

    @staticmethod
    async def cancel(
        db: AsyncSession,
        instance_id: UUID,
        actor: User,
    ) -> WorkflowInstance:
        """
        Cancel an active workflow

        Only the staff member who started it or an admin of the surgery may
        cancel.

        Raises:
            NotFoundException: If instance not found
            AuthorizationException: If actor is neither starter nor admin
            InvalidTransitionException: If the instance is not active
        """
        instance = await InstanceService._load(db, instance_id)
        _ensure_access(actor, instance.surgery_id)

        if instance.started_by_id != actor.id and not can(actor).is_admin_of_surgery(instance.surgery_id):
            logger.warning(
                "workflow_instance_cancel_denied",
                instance_id=str(instance.id),
                user_id=str(actor.id),
            )
            raise AuthorizationException(
                "Not allowed to cancel this workflow",
                detail="Only the person who started it or a surgery admin can cancel",
            )
        _ensure_active(instance)

        instance.status = InstanceStatus.CANCELLED
        instance.cancelled_at = datetime.utcnow()
        instance.cancelled_by_id = actor.id

        audit_service.record(
            db,
            action="workflow_instance.cancelled",
            resource_type="workflow_instance",
            resource_id=instance.id,
            actor=actor,
            surgery_id=instance.surgery_id,
            details={"template_id": str(instance.template_id), "node_id": str(instance.current_node_id)},
        )
        await commit_or_conflict(db, "Cancel workflow")
        await db.refresh(instance)

        logger.info(
            "workflow_instance_cancelled",
            instance_id=str(instance.id),
            user_id=str(actor.id),
        )

        return instance

    @staticmethod
    async def get_instance(
        db: AsyncSession,
        instance_id: UUID,
        actor: User,
    ) -> WorkflowInstance:
        """
        Get instance by ID for resuming

        Raises:
            NotFoundException: If instance not found
            AuthorizationException: If actor has no access to the surgery
        """
        instance = await InstanceService._load(db, instance_id)
        _ensure_access(actor, instance.surgery_id)
        return instance

    @staticmethod
    async def list_instances(
        db: AsyncSession,
        surgery_id: UUID,
        actor: User,
        status: Optional[InstanceStatus] = None,
        started_by_id: Optional[UUID] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[List[WorkflowInstance], int]:
        """
        List a surgery's instances, newest first

        Args:
            db: Database session
            surgery_id: Surgery ID
            actor: Requesting user
            status: Filter by status
            started_by_id: Filter by starter
            skip: Number of records to skip
            limit: Maximum number of records to return

        Returns:
            Tuple of (instances list, total count)
        """
        _ensure_access(actor, surgery_id)

        query = select(WorkflowInstance).where(WorkflowInstance.surgery_id == surgery_id)
        if status is not None:
            query = query.where(WorkflowInstance.status == status)
        if started_by_id is not None:
            query = query.where(WorkflowInstance.started_by_id == started_by_id)

        count_query = select(func.count()).select_from(query.subquery())
        total_result = await db.execute(count_query)
        total = total_result.scalar_one()

        query = query.order_by(WorkflowInstance.created_at.desc(), WorkflowInstance.id).offset(skip).limit(limit)
        result = await db.execute(query)
        instances = list(result.scalars().all())

        logger.info(
            "workflow_instances_listed",
            surgery_id=str(surgery_id),
            status=status.value if status else None,
            total=total,
            returned=len(instances),
        )

        return instances, total

    @staticmethod
    async def get_history(
        db: AsyncSession,
        instance_id: UUID,
        actor: User,
    ) -> List[WorkflowAnswerRecord]:
        """
        Answer trail of an instance in step order

        Raises:
            NotFoundException: If instance not found
            AuthorizationException: If actor has no access to the surgery
        """
        instance = await InstanceService._load(db, instance_id)
        _ensure_access(actor, instance.surgery_id)

        result = await db.execute(
            select(WorkflowAnswerRecord)
            .where(WorkflowAnswerRecord.instance_id == instance_id)
            .order_by(WorkflowAnswerRecord.step_index)
        )
        return list(result.scalars().all())


# Create singleton instance
instance_service = InstanceService()
