"""
Approval service - DRAFT / APPROVED / SUPERSEDED lifecycle of templates

Versions of one logical workflow share a family_id within a scope. At most
one version per family and scope is meant for staff at a time: approving
version n supersedes every older live version, and superseded versions are
never edited or approved again.
"""
from datetime import datetime
from typing import List
from uuid import UUID, uuid4
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from signposting.core.database import commit_or_conflict
from signposting.core.enums import ApprovalStatus
from signposting.core.exceptions import ConflictException, InvalidTransitionException
from signposting.core.permissions import ensure_can_manage
from signposting.models.user import User
from signposting.models.workflow import WorkflowTemplate
from signposting.services.audit_service import audit_service
from signposting.services.template_service import copy_template_graph, template_service

logger = structlog.get_logger()


def _same_family_and_scope(template: WorkflowTemplate):
    criteria = [
        WorkflowTemplate.family_id == template.family_id,
        WorkflowTemplate.id != template.id,
        WorkflowTemplate.approval_status != ApprovalStatus.SUPERSEDED,
    ]
    if template.surgery_id is None:
        criteria.append(WorkflowTemplate.surgery_id.is_(None))
    else:
        criteria.append(WorkflowTemplate.surgery_id == template.surgery_id)
    return criteria


class ApprovalService:
    """Approval and versioning gate for workflow templates"""

    @staticmethod
    async def approve(
        db: AsyncSession,
        template_id: UUID,
        approver: User,
    ) -> WorkflowTemplate:
        """
        Approve a template for staff use

        Args:
            db: Database session
            template_id: Template ID
            approver: Admin of the template's surgery, or a global admin for
                global templates

        Returns:
            Approved template

        Raises:
            NotFoundException: If template not found
            AuthorizationException: If approver lacks rights on the scope
            InvalidTransitionException: If the template is superseded
            ConflictException: If a concurrent change won the race
        """
        template = await template_service.lock_template(db, template_id)
        ensure_can_manage(approver, template.scope)

        if template.approval_status == ApprovalStatus.SUPERSEDED:
            raise InvalidTransitionException(
                "Cannot approve a superseded version",
                detail=f"Version {template.version} of '{template.name}' has been replaced",
            )

        if template.approval_status == ApprovalStatus.APPROVED:
            logger.info(
                "workflow_template_already_approved",
                template_id=str(template.id),
            )
            return template

        result = await db.execute(
            select(WorkflowTemplate)
            .where(*_same_family_and_scope(template), WorkflowTemplate.version < template.version)
            .with_for_update()
        )
        older: List[WorkflowTemplate] = list(result.scalars().all())

        now = datetime.utcnow()
        template.approval_status = ApprovalStatus.APPROVED
        template.approved_by_id = approver.id
        template.approved_at = now

        audit_service.record(
            db,
            action="workflow_template.approved",
            resource_type="workflow_template",
            resource_id=template.id,
            actor=approver,
            surgery_id=template.surgery_id,
            details={"version": template.version, "family_id": str(template.family_id)},
        )

        for previous in older:
            previous.approval_status = ApprovalStatus.SUPERSEDED
            audit_service.record(
                db,
                action="workflow_template.superseded",
                resource_type="workflow_template",
                resource_id=previous.id,
                actor=approver,
                surgery_id=previous.surgery_id,
                details={"version": previous.version, "superseded_by": str(template.id)},
            )

        await commit_or_conflict(db, "Approve workflow template")
        await db.refresh(template)

        logger.info(
            "workflow_template_approved",
            template_id=str(template.id),
            version=template.version,
            superseded=[str(t.id) for t in older],
            user_id=str(approver.id),
        )

        return template

    @staticmethod
    async def create_version(
        db: AsyncSession,
        template_id: UUID,
        actor: User,
    ) -> WorkflowTemplate:
        """
        Start the next version of a workflow as a DRAFT copy

        The live version stays in effect for staff until the new one is
        approved.

        Args:
            db: Database session
            template_id: Latest live version to copy
            actor: Editing user

        Returns:
            New DRAFT template with graph loaded

        Raises:
            NotFoundException: If template not found
            AuthorizationException: If actor lacks rights on the scope
            InvalidTransitionException: If the template is superseded
            ConflictException: If a newer live version already exists
        """
        source = await template_service.lock_template(db, template_id)
        ensure_can_manage(actor, source.scope)

        if source.approval_status == ApprovalStatus.SUPERSEDED:
            raise InvalidTransitionException(
                "Cannot branch from a superseded version",
                detail=f"Version {source.version} of '{source.name}' has been replaced",
            )

        result = await db.execute(
            select(WorkflowTemplate.id, WorkflowTemplate.version)
            .where(*_same_family_and_scope(source), WorkflowTemplate.version > source.version)
        )
        newer = result.first()
        if newer:
            raise ConflictException(
                "A newer version already exists",
                detail=f"Version {newer.version} ({newer.id}) of '{source.name}' is already in progress",
            )

        source = await template_service.get_template(db, template_id)
        version = WorkflowTemplate(
            id=uuid4(),
            surgery_id=source.surgery_id,
            name=source.name,
            description=source.description,
            icon_key=source.icon_key,
            colour_hex=source.colour_hex,
            workflow_type=source.workflow_type,
            is_active=source.is_active,
            approval_status=ApprovalStatus.DRAFT,
            source_template_id=source.source_template_id,
            family_id=source.family_id,
            version=source.version + 1,
            previous_version_id=source.id,
            last_edited_by_id=actor.id,
            last_edited_at=datetime.utcnow(),
        )
        db.add(version)
        await db.flush()
        node_count = await copy_template_graph(db, source, version)

        audit_service.record(
            db,
            action="workflow_template.version_created",
            resource_type="workflow_template",
            resource_id=version.id,
            actor=actor,
            surgery_id=version.surgery_id,
            details={"previous_version_id": str(source.id), "version": version.version},
        )
        await commit_or_conflict(db, "Create workflow version")

        logger.info(
            "workflow_version_created",
            template_id=str(version.id),
            previous_version_id=str(source.id),
            version=version.version,
            node_count=node_count,
        )

        return await template_service.get_template(db, version.id)


# Create singleton instance
approval_service = ApprovalService()
