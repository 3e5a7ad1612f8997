"""
Effective workflow service - what one surgery's staff actually see

Fetches the global and local template rows and hands them to the pure
resolver in signposting.workflows.resolver.
"""
from typing import List, Optional
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from signposting.core.enums import ApprovalStatus, WorkflowSource
from signposting.models.workflow import WorkflowTemplate
from signposting.workflows.resolver import EffectiveWorkflow, resolve_effective_workflows

logger = structlog.get_logger()


class EffectiveWorkflowService:
    """Resolves the per-surgery workflow list"""

    @staticmethod
    async def _fetch_candidates(
        db: AsyncSession,
        surgery_id: UUID,
    ) -> tuple[List[WorkflowTemplate], List[WorkflowTemplate]]:
        result = await db.execute(
            select(WorkflowTemplate)
            .where(
                (WorkflowTemplate.surgery_id.is_(None)) | (WorkflowTemplate.surgery_id == surgery_id),
                WorkflowTemplate.approval_status != ApprovalStatus.SUPERSEDED,
            )
            .order_by(WorkflowTemplate.name, WorkflowTemplate.id)
        )
        templates = result.scalars().all()
        global_templates = [t for t in templates if t.surgery_id is None]
        local_templates = [t for t in templates if t.surgery_id is not None]
        return global_templates, local_templates

    @staticmethod
    async def get_effective_workflows(
        db: AsyncSession,
        surgery_id: UUID,
        include_drafts: bool = False,
        include_inactive: bool = False,
    ) -> List[EffectiveWorkflow]:
        """
        Resolve the workflows a surgery sees

        Args:
            db: Database session
            surgery_id: Surgery ID
            include_drafts: Keep DRAFT templates (admins testing changes)
            include_inactive: Keep inactive templates (admin management view)

        Returns:
            Global/override entries by name, then custom entries by name
        """
        global_templates, local_templates = await EffectiveWorkflowService._fetch_candidates(db, surgery_id)
        workflows = resolve_effective_workflows(
            global_templates,
            local_templates,
            include_drafts=include_drafts,
            include_inactive=include_inactive,
        )

        logger.info(
            "effective_workflows_resolved",
            surgery_id=str(surgery_id),
            include_drafts=include_drafts,
            include_inactive=include_inactive,
            returned=len(workflows),
        )

        return workflows

    @staticmethod
    async def get_effective_workflow_by_id(
        db: AsyncSession,
        template_id: UUID,
        surgery_id: UUID,
        include_drafts: bool = False,
        include_inactive: bool = False,
    ) -> Optional[EffectiveWorkflow]:
        """
        Resolve one workflow for a surgery

        A global template id resolves to the surgery's override when there is
        one, and an older version id resolves to the version currently in
        effect for its family.

        Args:
            db: Database session
            template_id: Any template id of the family
            surgery_id: Surgery ID
            include_drafts: Keep DRAFT templates
            include_inactive: Keep inactive templates

        Returns:
            The effective entry, or None when the surgery cannot see it
        """
        workflows = await EffectiveWorkflowService.get_effective_workflows(
            db, surgery_id, include_drafts=include_drafts, include_inactive=include_inactive
        )
        for workflow in workflows:
            if workflow.id == template_id:
                return workflow

        result = await db.execute(select(WorkflowTemplate).where(WorkflowTemplate.id == template_id))
        template = result.scalar_one_or_none()
        if template is None:
            return None

        if template.surgery_id is None or template.source_template_id is not None:
            layers = (WorkflowSource.GLOBAL, WorkflowSource.OVERRIDE)
        else:
            layers = (WorkflowSource.CUSTOM,)
        if template.surgery_id is not None and template.surgery_id != surgery_id:
            return None

        for workflow in workflows:
            if workflow.family_id == template.family_id and workflow.source in layers:
                return workflow
        return None


# Create singleton instance
effective_workflow_service = EffectiveWorkflowService()
