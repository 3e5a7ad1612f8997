"""
Template store - CRUD for workflow templates, nodes, answer options and links

Every mutation re-reads its template row under a lock, checks references
against that template and commits in one transaction. Structural edits
stamp last_edited_* on the template, which bumps its lock_version, and
demote an APPROVED template back to DRAFT.
"""
from datetime import datetime
from typing import Iterable, List, Optional, Set
from uuid import UUID, uuid4
import re
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
import structlog

from signposting.core.config import settings
from signposting.core.database import commit_or_conflict
from signposting.core.enums import ActionKey, ApprovalStatus, NodeType
from signposting.core.exceptions import (
    ConflictException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from signposting.core.permissions import ensure_can_manage
from signposting.models.user import User
from signposting.models.workflow import (
    WorkflowAnswerOption,
    WorkflowNode,
    WorkflowNodeLink,
    WorkflowTemplate,
)
from signposting.models.workflow_instance import WorkflowAnswerRecord, WorkflowInstance
from signposting.schemas.workflow import (
    AnswerOptionCreate,
    AnswerOptionUpdate,
    NodeCreate,
    NodeLinkCreate,
    NodePosition,
    NodeUpdate,
    TemplateCreate,
    TemplateUpdate,
)
from signposting.services.audit_service import audit_service
from signposting.services.surgery_service import surgery_service
from signposting.workflows.graph import GraphIssue, GraphSnapshot, snapshot_template, validate_graph
from signposting.workflows.scope import GlobalScope, TemplateScope, scope_for

logger = structlog.get_logger()

PLACEHOLDER_NAME = "New workflow"
POSITION_FIELDS = {"position_x", "position_y"}
TEMPLATE_METADATA_FIELDS = ("name", "description", "icon_key", "colour_hex", "workflow_type", "is_active")


def _graph_loader():
    return (
        selectinload(WorkflowTemplate.nodes).selectinload(WorkflowNode.answer_options),
        selectinload(WorkflowTemplate.nodes).selectinload(WorkflowNode.links),
    )


def _parse_node_type(value) -> NodeType:
    if isinstance(value, NodeType):
        return value
    try:
        return NodeType(str(value).strip().upper())
    except ValueError:
        raise ValidationException(
            "Invalid node type",
            detail=f"'{value}' is not one of {', '.join(t.value for t in NodeType)}",
        )


def _parse_action_key(value) -> Optional[ActionKey]:
    if value is None or isinstance(value, ActionKey):
        return value
    if not str(value).strip():
        return None
    try:
        return ActionKey(str(value).strip().upper())
    except ValueError:
        raise ValidationException(
            "Invalid action key",
            detail=f"'{value}' is not a known action key",
        )


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise ValidationException(f"{field} is required", detail=f"{field} must not be empty")
    return value.strip()


def _validate_template_name(name: Optional[str]) -> str:
    name = _require_text(name, "Name")
    if name.casefold() == PLACEHOLDER_NAME.casefold():
        raise ValidationException(
            "Workflow needs a name",
            detail=f"'{PLACEHOLDER_NAME}' is a placeholder; give the workflow a real name",
        )
    return name


def slugify_value_key(label: str) -> str:
    """Turn an answer label into a value key, e.g. 'Yes - urgent' -> 'yes_urgent'"""
    slug = re.sub(r"[^a-z0-9]+", "_", label.lower()).strip("_")
    return slug or f"path_{uuid4().hex[:8]}"


def unique_value_key(base: str, taken: Iterable[str]) -> str:
    taken = set(taken)
    if base not in taken:
        return base
    n = 2
    while f"{base}_{n}" in taken:
        n += 1
    return f"{base}_{n}"


def _ensure_editable(template: WorkflowTemplate) -> None:
    if template.approval_status == ApprovalStatus.SUPERSEDED:
        raise InvalidTransitionException(
            "Workflow version is superseded",
            detail=f"Template {template.id} (version {template.version}) has been replaced and can no longer be edited",
        )


def _record_edit(template: WorkflowTemplate, actor: Optional[User], demote: bool = True) -> None:
    """Stamp the editor and, for structural edits, drop approval"""
    template.last_edited_by_id = actor.id if actor else None
    template.last_edited_at = datetime.utcnow()

    if demote and template.approval_status == ApprovalStatus.APPROVED:
        template.approval_status = ApprovalStatus.DRAFT
        template.approved_by_id = None
        template.approved_at = None
        logger.info(
            "workflow_template_demoted",
            template_id=str(template.id),
            user_id=str(actor.id) if actor else None,
        )


async def copy_template_graph(
    db: AsyncSession,
    source: WorkflowTemplate,
    target: WorkflowTemplate,
) -> int:
    """
    Copy nodes, answer options and links of source into target

    Nodes are inserted first and flushed; only then are continuations and
    answer options written with their ids remapped, so no row ever points
    at a node that does not exist yet. source must have its graph loaded.

    Returns:
        Number of nodes copied
    """
    id_map = {}
    copies = []
    for node in source.nodes:
        copy = WorkflowNode(
            id=uuid4(),
            template_id=target.id,
            node_type=node.node_type,
            title=node.title,
            body=node.body,
            sort_order=node.sort_order,
            is_start=node.is_start,
            action_key=node.action_key,
            position_x=node.position_x,
            position_y=node.position_y,
        )
        id_map[node.id] = copy.id
        copies.append((node, copy))
        db.add(copy)

    await db.flush()

    for node, copy in copies:
        if node.default_next_node_id is not None:
            copy.default_next_node_id = id_map.get(node.default_next_node_id)
        for option in node.answer_options:
            db.add(WorkflowAnswerOption(
                node_id=copy.id,
                label=option.label,
                value_key=option.value_key,
                description=option.description,
                next_node_id=id_map.get(option.next_node_id) if option.next_node_id else None,
                action_key=option.action_key,
                sort_order=option.sort_order,
            ))
        for link in node.links:
            db.add(WorkflowNodeLink(
                node_id=copy.id,
                template_id=link.template_id,
                label=link.label,
                sort_order=link.sort_order,
            ))

    return len(copies)


class TemplateService:
    """Template service for workflow graph CRUD"""

    # Loading

    @staticmethod
    async def get_template(
        db: AsyncSession,
        template_id: UUID,
    ) -> WorkflowTemplate:
        """
        Get template by ID with nodes, answer options and links loaded

        Args:
            db: Database session
            template_id: Template ID

        Returns:
            Template

        Raises:
            NotFoundException: If template not found
        """
        result = await db.execute(
            select(WorkflowTemplate)
            .where(WorkflowTemplate.id == template_id)
            .options(*_graph_loader())
            .execution_options(populate_existing=True)
        )
        template = result.scalar_one_or_none()

        if not template:
            raise NotFoundException(
                "Workflow template not found",
                detail=f"Template with ID {template_id} not found"
            )

        return template

    @staticmethod
    async def lock_template(
        db: AsyncSession,
        template_id: UUID,
    ) -> WorkflowTemplate:
        """
        Re-read a template row for update

        Raises:
            NotFoundException: If template not found
        """
        result = await db.execute(
            select(WorkflowTemplate)
            .where(WorkflowTemplate.id == template_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        template = result.scalar_one_or_none()

        if not template:
            raise NotFoundException(
                "Workflow template not found",
                detail=f"Template with ID {template_id} not found"
            )

        return template

    @staticmethod
    async def get_node(
        db: AsyncSession,
        node_id: UUID,
    ) -> WorkflowNode:
        """
        Get node by ID

        Raises:
            NotFoundException: If node not found
        """
        result = await db.execute(select(WorkflowNode).where(WorkflowNode.id == node_id))
        node = result.scalar_one_or_none()

        if not node:
            raise NotFoundException(
                "Workflow node not found",
                detail=f"Node with ID {node_id} not found"
            )

        return node

    @staticmethod
    async def list_templates(
        db: AsyncSession,
        scope: TemplateScope,
        include_superseded: bool = False,
    ) -> List[WorkflowTemplate]:
        """
        List the templates of one scope for admin management

        Args:
            db: Database session
            scope: GlobalScope or SurgeryScope
            include_superseded: Also return replaced versions

        Returns:
            Templates ordered by name then version
        """
        query = select(WorkflowTemplate)
        if isinstance(scope, GlobalScope):
            query = query.where(WorkflowTemplate.surgery_id.is_(None))
        else:
            query = query.where(WorkflowTemplate.surgery_id == scope.surgery_id)

        if not include_superseded:
            query = query.where(WorkflowTemplate.approval_status != ApprovalStatus.SUPERSEDED)

        result = await db.execute(
            query.order_by(WorkflowTemplate.name, WorkflowTemplate.version, WorkflowTemplate.id)
        )
        templates = list(result.scalars().all())

        logger.info(
            "workflow_templates_listed",
            scope=str(scope),
            returned=len(templates),
        )

        return templates

    @staticmethod
    def snapshot(template: WorkflowTemplate) -> GraphSnapshot:
        """Snapshot of a template loaded through get_template"""
        return snapshot_template(template, template.nodes)

    @staticmethod
    async def validate_template(
        db: AsyncSession,
        template_id: UUID,
    ) -> List[GraphIssue]:
        """
        Report authoring problems that would break execution

        Args:
            db: Database session
            template_id: Template ID

        Returns:
            List of issues, empty when the graph can run

        Raises:
            NotFoundException: If template not found
        """
        template = await TemplateService.get_template(db, template_id)
        issues = validate_graph(TemplateService.snapshot(template))

        logger.info(
            "workflow_template_validated",
            template_id=str(template_id),
            issue_count=len(issues),
        )

        return issues

    # Templates

    @staticmethod
    async def create_template(
        db: AsyncSession,
        template_data: TemplateCreate,
        actor: User,
    ) -> WorkflowTemplate:
        """
        Create a new DRAFT template in its own family

        Args:
            db: Database session
            template_data: Template creation data (surgery_id None for global)
            actor: User creating the template

        Returns:
            Created template

        Raises:
            AuthorizationException: If actor cannot manage the target scope
            NotFoundException: If the surgery does not exist
            ValidationException: If the name is empty or the placeholder
        """
        scope = scope_for(template_data.surgery_id)
        ensure_can_manage(actor, scope)
        if template_data.surgery_id is not None:
            await surgery_service.get_surgery(db, template_data.surgery_id)

        name = _validate_template_name(template_data.name)

        template_id = uuid4()
        template = WorkflowTemplate(
            id=template_id,
            surgery_id=template_data.surgery_id,
            name=name,
            description=template_data.description,
            icon_key=template_data.icon_key,
            colour_hex=template_data.colour_hex,
            workflow_type=template_data.workflow_type,
            is_active=template_data.is_active,
            approval_status=ApprovalStatus.DRAFT,
            family_id=template_id,
            version=1,
            last_edited_by_id=actor.id,
            last_edited_at=datetime.utcnow(),
        )

        db.add(template)
        await commit_or_conflict(db, "Create workflow template")
        await db.refresh(template)

        logger.info(
            "workflow_template_created",
            template_id=str(template.id),
            scope=str(scope),
            name=template.name,
            user_id=str(actor.id),
        )

        return template

    @staticmethod
    async def update_template(
        db: AsyncSession,
        template_id: UUID,
        template_data: TemplateUpdate,
        actor: User,
    ) -> WorkflowTemplate:
        """
        Update template metadata

        An APPROVED template whose fields actually change is demoted to DRAFT.

        Raises:
            NotFoundException: If template not found
            AuthorizationException: If actor cannot manage the template
            InvalidTransitionException: If the template is superseded
            ValidationException: If the new name is invalid
        """
        template = await TemplateService.lock_template(db, template_id)
        ensure_can_manage(actor, template.scope)
        _ensure_editable(template)

        update_data = template_data.model_dump(exclude_unset=True)
        if "name" in update_data:
            update_data["name"] = _validate_template_name(update_data["name"])
        for field in ("workflow_type", "is_active"):
            if field in update_data and update_data[field] is None:
                del update_data[field]

        changed = [
            field for field in TEMPLATE_METADATA_FIELDS
            if field in update_data and getattr(template, field) != update_data[field]
        ]
        for field in changed:
            setattr(template, field, update_data[field])

        if changed:
            _record_edit(template, actor)
            await commit_or_conflict(db, "Update workflow template")
            await db.refresh(template)

            logger.info(
                "workflow_template_updated",
                template_id=str(template.id),
                updated_fields=changed,
                user_id=str(actor.id),
            )

        return template

    @staticmethod
    async def delete_template(
        db: AsyncSession,
        template_id: UUID,
        actor: User,
    ) -> None:
        """
        Delete a template and everything hanging off it

        Removes nodes, answer options, links from and to the template, and
        instances with their history. Overrides and later versions that
        referred to this template keep existing with the reference cleared.

        Raises:
            NotFoundException: If template not found
            AuthorizationException: If actor cannot manage the template
                (global templates need a global admin)
        """
        template = await TemplateService.lock_template(db, template_id)
        ensure_can_manage(actor, template.scope)

        node_ids = select(WorkflowNode.id).where(WorkflowNode.template_id == template_id)
        instance_ids = select(WorkflowInstance.id).where(WorkflowInstance.template_id == template_id)

        await db.execute(delete(WorkflowAnswerRecord).where(WorkflowAnswerRecord.instance_id.in_(instance_ids)))
        await db.execute(delete(WorkflowInstance).where(WorkflowInstance.template_id == template_id))
        await db.execute(
            delete(WorkflowNodeLink).where(
                or_(
                    WorkflowNodeLink.node_id.in_(node_ids),
                    WorkflowNodeLink.template_id == template_id,
                )
            )
        )
        await db.execute(delete(WorkflowAnswerOption).where(WorkflowAnswerOption.node_id.in_(node_ids)))
        await db.execute(
            update(WorkflowNode)
            .where(WorkflowNode.template_id == template_id)
            .values(default_next_node_id=None)
        )
        await db.execute(delete(WorkflowNode).where(WorkflowNode.template_id == template_id))
        await db.execute(
            update(WorkflowTemplate)
            .where(WorkflowTemplate.source_template_id == template_id)
            .values(source_template_id=None)
        )
        await db.execute(
            update(WorkflowTemplate)
            .where(WorkflowTemplate.previous_version_id == template_id)
            .values(previous_version_id=None)
        )
        await db.execute(delete(WorkflowTemplate).where(WorkflowTemplate.id == template_id))

        audit_service.record(
            db,
            action="workflow_template.deleted",
            resource_type="workflow_template",
            resource_id=template_id,
            actor=actor,
            surgery_id=template.surgery_id,
            details={"name": template.name, "version": template.version},
        )
        await commit_or_conflict(db, "Delete workflow template")

        logger.info(
            "workflow_template_deleted",
            template_id=str(template_id),
            scope=str(template.scope),
            user_id=str(actor.id),
        )

    @staticmethod
    async def create_override(
        db: AsyncSession,
        surgery_id: UUID,
        global_template_id: UUID,
        actor: User,
    ) -> tuple[WorkflowTemplate, bool]:
        """
        Copy a global template into a surgery as an editable DRAFT override

        Args:
            db: Database session
            surgery_id: Surgery that wants its own copy
            global_template_id: Global template to copy
            actor: Surgery admin creating the override

        Returns:
            Tuple of (override with graph loaded, created). created is False
            when the surgery already had a live override of that family.

        Raises:
            AuthorizationException: If actor is not an admin of the surgery
            NotFoundException: If surgery or template not found
            ValidationException: If the template is not a global template
        """
        ensure_can_manage(actor, scope_for(surgery_id))
        await surgery_service.get_surgery(db, surgery_id)

        source = await TemplateService.get_template(db, global_template_id)
        if source.surgery_id is not None:
            raise ValidationException(
                "Only global workflows can be overridden",
                detail=f"Template {global_template_id} belongs to a surgery",
            )

        result = await db.execute(
            select(WorkflowTemplate)
            .where(
                WorkflowTemplate.surgery_id == surgery_id,
                WorkflowTemplate.family_id == source.family_id,
                WorkflowTemplate.source_template_id.is_not(None),
                WorkflowTemplate.approval_status != ApprovalStatus.SUPERSEDED,
            )
            .order_by(WorkflowTemplate.version.desc())
            .limit(1)
        )
        existing = result.scalar_one_or_none()
        if existing:
            logger.info(
                "workflow_override_exists",
                template_id=str(existing.id),
                source_template_id=str(global_template_id),
                surgery_id=str(surgery_id),
            )
            return await TemplateService.get_template(db, existing.id), False

        override = WorkflowTemplate(
            id=uuid4(),
            surgery_id=surgery_id,
            name=source.name,
            description=source.description,
            icon_key=source.icon_key,
            colour_hex=source.colour_hex,
            workflow_type=source.workflow_type,
            is_active=source.is_active,
            approval_status=ApprovalStatus.DRAFT,
            source_template_id=source.id,
            family_id=source.family_id,
            version=1,
            last_edited_by_id=actor.id,
            last_edited_at=datetime.utcnow(),
        )
        db.add(override)
        await db.flush()
        node_count = await copy_template_graph(db, source, override)

        audit_service.record(
            db,
            action="workflow_template.override_created",
            resource_type="workflow_template",
            resource_id=override.id,
            actor=actor,
            surgery_id=surgery_id,
            details={"source_template_id": str(source.id), "node_count": node_count},
        )
        await commit_or_conflict(db, "Create workflow override")

        logger.info(
            "workflow_override_created",
            template_id=str(override.id),
            source_template_id=str(source.id),
            surgery_id=str(surgery_id),
            node_count=node_count,
        )

        return await TemplateService.get_template(db, override.id), True

    # Nodes

    @staticmethod
    async def _require_node_in_template(
        db: AsyncSession,
        node_id: UUID,
        template_id: UUID,
        field: str,
    ) -> WorkflowNode:
        result = await db.execute(select(WorkflowNode).where(WorkflowNode.id == node_id))
        node = result.scalar_one_or_none()
        if node is None or node.template_id != template_id:
            raise ValidationException(
                f"Invalid {field}",
                detail=f"Node {node_id} is not part of template {template_id}",
            )
        return node

    @staticmethod
    async def create_node(
        db: AsyncSession,
        template_id: UUID,
        node_data: NodeCreate,
        actor: User,
    ) -> WorkflowNode:
        """
        Add a node to a template

        Args:
            db: Database session
            template_id: Template ID
            node_data: Node creation data
            actor: Editing user

        Returns:
            Created node

        Raises:
            NotFoundException: If template not found
            ValidationException: On empty title, unknown node type or action
                key, or a continuation outside the template
            InvalidTransitionException: If the template is superseded
        """
        template = await TemplateService.lock_template(db, template_id)
        ensure_can_manage(actor, template.scope)
        _ensure_editable(template)

        title = _require_text(node_data.title, "Title")
        node_type = _parse_node_type(node_data.node_type)
        action_key = _parse_action_key(node_data.action_key)

        if node_data.default_next_node_id is not None:
            if node_type != NodeType.INSTRUCTION:
                raise ValidationException(
                    "Invalid default next node",
                    detail="Only instruction nodes continue along a default next node",
                )
            await TemplateService._require_node_in_template(
                db, node_data.default_next_node_id, template_id, "default next node"
            )

        sort_order = node_data.sort_order
        if sort_order is None:
            result = await db.execute(
                select(func.max(WorkflowNode.sort_order)).where(WorkflowNode.template_id == template_id)
            )
            current_max = result.scalar_one_or_none()
            sort_order = 0 if current_max is None else current_max + 1

        node = WorkflowNode(
            template_id=template_id,
            node_type=node_type,
            title=title,
            body=node_data.body,
            sort_order=sort_order,
            is_start=node_data.is_start,
            action_key=action_key,
            default_next_node_id=node_data.default_next_node_id,
            position_x=node_data.position_x,
            position_y=node_data.position_y,
        )
        db.add(node)
        _record_edit(template, actor)

        await commit_or_conflict(db, "Create workflow node")
        await db.refresh(node)

        logger.info(
            "workflow_node_created",
            node_id=str(node.id),
            template_id=str(template_id),
            node_type=node_type.value,
        )

        return node

    @staticmethod
    async def update_node(
        db: AsyncSession,
        node_id: UUID,
        node_data: NodeUpdate,
        actor: User,
    ) -> WorkflowNode:
        """
        Partially update a node

        Changing only position_x/position_y is a layout change and leaves
        the approval status alone; anything else is a structural edit.

        Raises:
            NotFoundException: If node not found
            ValidationException: On invalid fields, on turning a question
                with answer options into another type, or on a continuation
                outside the template
            InvalidTransitionException: If the template is superseded
        """
        node = await TemplateService.get_node(db, node_id)
        template = await TemplateService.lock_template(db, node.template_id)
        ensure_can_manage(actor, template.scope)
        _ensure_editable(template)

        update_data = node_data.model_dump(exclude_unset=True)
        for field in ("node_type", "title", "sort_order", "is_start"):
            if field in update_data and update_data[field] is None:
                del update_data[field]

        if "title" in update_data:
            update_data["title"] = _require_text(update_data["title"], "Title")
        if "action_key" in update_data:
            update_data["action_key"] = _parse_action_key(update_data["action_key"])

        node_type = node.node_type
        if "node_type" in update_data:
            node_type = _parse_node_type(update_data["node_type"])
            update_data["node_type"] = node_type
            if node_type != NodeType.QUESTION and node.node_type == NodeType.QUESTION:
                result = await db.execute(
                    select(func.count(WorkflowAnswerOption.id)).where(WorkflowAnswerOption.node_id == node.id)
                )
                if result.scalar_one():
                    raise ValidationException(
                        "Question still has answer options",
                        detail="Delete the answer options before changing the node type",
                    )

        default_next = update_data.get("default_next_node_id", node.default_next_node_id)
        if default_next is not None:
            if node_type != NodeType.INSTRUCTION:
                raise ValidationException(
                    "Invalid default next node",
                    detail="Only instruction nodes continue along a default next node",
                )
            if default_next == node.id:
                raise ValidationException(
                    "Invalid default next node",
                    detail="A node cannot continue to itself",
                )
            if "default_next_node_id" in update_data:
                await TemplateService._require_node_in_template(
                    db, default_next, template.id, "default next node"
                )

        changed = [field for field, value in update_data.items() if getattr(node, field) != value]
        for field in changed:
            setattr(node, field, update_data[field])

        structural = not set(changed) <= POSITION_FIELDS
        if structural:
            _record_edit(template, actor)

        await commit_or_conflict(db, "Update workflow node")
        await db.refresh(node)

        logger.info(
            "workflow_node_updated",
            node_id=str(node.id),
            template_id=str(template.id),
            updated_fields=changed,
            structural=structural,
        )

        return node

    @staticmethod
    async def update_node_positions(
        db: AsyncSession,
        template_id: UUID,
        positions: List[NodePosition],
        actor: User,
    ) -> List[WorkflowNode]:
        """
        Save diagram positions for several nodes at once

        Layout only: does not demote an approved template.

        Raises:
            ValidationException: If a node is not part of the template
        """
        template = await TemplateService.lock_template(db, template_id)
        ensure_can_manage(actor, template.scope)
        _ensure_editable(template)

        wanted = {position.node_id: position for position in positions}
        result = await db.execute(
            select(WorkflowNode).where(
                WorkflowNode.template_id == template_id,
                WorkflowNode.id.in_(list(wanted.keys())),
            )
        )
        nodes = list(result.scalars().all())

        missing = set(wanted) - {node.id for node in nodes}
        if missing:
            raise ValidationException(
                "Unknown nodes in layout",
                detail=f"Nodes {', '.join(sorted(str(m) for m in missing))} are not part of template {template_id}",
            )

        for node in nodes:
            node.position_x = wanted[node.id].position_x
            node.position_y = wanted[node.id].position_y

        await commit_or_conflict(db, "Save workflow layout")

        logger.info(
            "workflow_layout_saved",
            template_id=str(template_id),
            node_count=len(nodes),
        )

        return nodes

    @staticmethod
    async def delete_node(
        db: AsyncSession,
        node_id: UUID,
        actor: User,
    ) -> None:
        """
        Delete a node with its answer options and links

        Raises:
            NotFoundException: If node not found
            ConflictException: If another node's answer option or default
                next node still points at this node
            InvalidTransitionException: If the template is superseded
        """
        node = await TemplateService.get_node(db, node_id)
        template = await TemplateService.lock_template(db, node.template_id)
        ensure_can_manage(actor, template.scope)
        _ensure_editable(template)

        result = await db.execute(
            select(WorkflowNode.title)
            .join(WorkflowAnswerOption, WorkflowAnswerOption.node_id == WorkflowNode.id)
            .where(
                WorkflowAnswerOption.next_node_id == node_id,
                WorkflowAnswerOption.node_id != node_id,
            )
        )
        referencing = set(result.scalars().all())

        result = await db.execute(
            select(WorkflowNode.title).where(
                WorkflowNode.default_next_node_id == node_id,
                WorkflowNode.id != node_id,
            )
        )
        referencing.update(result.scalars().all())

        if referencing:
            logger.warning(
                "workflow_node_delete_blocked",
                node_id=str(node_id),
                template_id=str(template.id),
                referenced_by=sorted(referencing),
            )
            raise ConflictException(
                "Node is still referenced",
                detail=f"Steps still lead to '{node.title}': {', '.join(sorted(referencing))}",
            )

        await db.execute(delete(WorkflowNodeLink).where(WorkflowNodeLink.node_id == node_id))
        await db.execute(delete(WorkflowAnswerOption).where(WorkflowAnswerOption.node_id == node_id))
        await db.execute(delete(WorkflowNode).where(WorkflowNode.id == node_id))
        _record_edit(template, actor)

        await commit_or_conflict(db, "Delete workflow node")

        logger.info(
            "workflow_node_deleted",
            node_id=str(node_id),
            template_id=str(template.id),
        )

    # Answer options

    @staticmethod
    async def get_answer_option(
        db: AsyncSession,
        option_id: UUID,
    ) -> WorkflowAnswerOption:
        result = await db.execute(select(WorkflowAnswerOption).where(WorkflowAnswerOption.id == option_id))
        option = result.scalar_one_or_none()

        if not option:
            raise NotFoundException(
                "Answer option not found",
                detail=f"Answer option with ID {option_id} not found"
            )

        return option

    @staticmethod
    async def _taken_value_keys(db: AsyncSession, node_id: UUID, exclude_option_id: Optional[UUID] = None) -> Set[str]:
        query = select(WorkflowAnswerOption.value_key).where(WorkflowAnswerOption.node_id == node_id)
        if exclude_option_id is not None:
            query = query.where(WorkflowAnswerOption.id != exclude_option_id)
        result = await db.execute(query)
        return set(result.scalars().all())

    @staticmethod
    async def create_answer_option(
        db: AsyncSession,
        node_id: UUID,
        option_data: AnswerOptionCreate,
        actor: User,
    ) -> WorkflowAnswerOption:
        """
        Add an answer option to a question node

        Args:
            db: Database session
            node_id: Question node ID
            option_data: Option creation data; value_key is derived from the
                label when omitted
            actor: Editing user

        Returns:
            Created answer option

        Raises:
            NotFoundException: If node not found
            ValidationException: If the node is not a question, the label is
                empty, or next_node_id is outside the template
            ConflictException: If value_key is already used on this node
        """
        node = await TemplateService.get_node(db, node_id)
        template = await TemplateService.lock_template(db, node.template_id)
        ensure_can_manage(actor, template.scope)
        _ensure_editable(template)

        if node.node_type != NodeType.QUESTION:
            raise ValidationException(
                "Answer options need a question node",
                detail=f"Node '{node.title}' is {node.node_type.value}, not QUESTION",
            )

        label = _require_text(option_data.label, "Label")
        action_key = _parse_action_key(option_data.action_key)
        if option_data.next_node_id is not None:
            await TemplateService._require_node_in_template(
                db, option_data.next_node_id, template.id, "next node"
            )

        taken = await TemplateService._taken_value_keys(db, node_id)
        if option_data.value_key is not None and option_data.value_key.strip():
            value_key = option_data.value_key.strip()
            if value_key in taken:
                raise ConflictException(
                    "Answer value key already used",
                    detail=f"'{value_key}' is already an answer of '{node.title}'",
                )
        else:
            value_key = unique_value_key(slugify_value_key(label), taken)

        result = await db.execute(
            select(func.max(WorkflowAnswerOption.sort_order)).where(WorkflowAnswerOption.node_id == node_id)
        )
        current_max = result.scalar_one_or_none()

        option = WorkflowAnswerOption(
            node_id=node_id,
            label=label,
            value_key=value_key,
            description=option_data.description,
            next_node_id=option_data.next_node_id,
            action_key=action_key,
            sort_order=0 if current_max is None else current_max + 1,
        )
        db.add(option)
        _record_edit(template, actor)

        await commit_or_conflict(db, "Create answer option")
        await db.refresh(option)

        logger.info(
            "workflow_answer_option_created",
            option_id=str(option.id),
            node_id=str(node_id),
            value_key=value_key,
        )

        return option

    @staticmethod
    async def update_answer_option(
        db: AsyncSession,
        option_id: UUID,
        option_data: AnswerOptionUpdate,
        actor: User,
    ) -> WorkflowAnswerOption:
        """
        Partially update an answer option

        Raises:
            NotFoundException: If option not found
            ValidationException: On empty label or a next node outside the template
            ConflictException: If the new value_key is already used on the node
        """
        option = await TemplateService.get_answer_option(db, option_id)
        node = await TemplateService.get_node(db, option.node_id)
        template = await TemplateService.lock_template(db, node.template_id)
        ensure_can_manage(actor, template.scope)
        _ensure_editable(template)

        update_data = option_data.model_dump(exclude_unset=True)
        for field in ("label", "value_key", "sort_order"):
            if field in update_data and update_data[field] is None:
                del update_data[field]

        if "label" in update_data:
            update_data["label"] = _require_text(update_data["label"], "Label")
        if "action_key" in update_data:
            update_data["action_key"] = _parse_action_key(update_data["action_key"])
        if update_data.get("next_node_id") is not None:
            await TemplateService._require_node_in_template(
                db, update_data["next_node_id"], template.id, "next node"
            )
        if "value_key" in update_data:
            value_key = _require_text(update_data["value_key"], "Value key")
            if value_key in await TemplateService._taken_value_keys(db, node.id, exclude_option_id=option.id):
                raise ConflictException(
                    "Answer value key already used",
                    detail=f"'{value_key}' is already an answer of '{node.title}'",
                )
            update_data["value_key"] = value_key

        changed = [field for field, value in update_data.items() if getattr(option, field) != value]
        for field in changed:
            setattr(option, field, update_data[field])
        if changed:
            _record_edit(template, actor)

        await commit_or_conflict(db, "Update answer option")
        await db.refresh(option)

        logger.info(
            "workflow_answer_option_updated",
            option_id=str(option.id),
            updated_fields=changed,
        )

        return option

    @staticmethod
    async def delete_answer_option(
        db: AsyncSession,
        option_id: UUID,
        actor: User,
    ) -> None:
        """Delete an answer option (structural edit)"""
        option = await TemplateService.get_answer_option(db, option_id)
        node = await TemplateService.get_node(db, option.node_id)
        template = await TemplateService.lock_template(db, node.template_id)
        ensure_can_manage(actor, template.scope)
        _ensure_editable(template)

        await db.execute(delete(WorkflowAnswerOption).where(WorkflowAnswerOption.id == option_id))
        _record_edit(template, actor)

        await commit_or_conflict(db, "Delete answer option")

        logger.info(
            "workflow_answer_option_deleted",
            option_id=str(option_id),
            node_id=str(node.id),
        )

    # Node links

    @staticmethod
    async def create_node_link(
        db: AsyncSession,
        node_id: UUID,
        link_data: NodeLinkCreate,
        actor: User,
    ) -> WorkflowNodeLink:
        """
        Link a node to another workflow of the same scope

        Raises:
            NotFoundException: If node or linked template not found
            ValidationException: If the linked template is in another scope
                or is the node's own template
            ConflictException: If the link already exists
        """
        node = await TemplateService.get_node(db, node_id)
        template = await TemplateService.lock_template(db, node.template_id)
        ensure_can_manage(actor, template.scope)
        _ensure_editable(template)

        if link_data.linked_template_id == template.id:
            raise ValidationException(
                "Invalid linked workflow",
                detail="A workflow cannot link to itself",
            )

        result = await db.execute(
            select(WorkflowTemplate).where(WorkflowTemplate.id == link_data.linked_template_id)
        )
        linked = result.scalar_one_or_none()
        if not linked:
            raise NotFoundException(
                "Linked workflow not found",
                detail=f"Template with ID {link_data.linked_template_id} not found"
            )
        if linked.surgery_id != template.surgery_id:
            raise ValidationException(
                "Invalid linked workflow",
                detail=f"'{linked.name}' belongs to {linked.scope}, not {template.scope}",
            )

        result = await db.execute(
            select(WorkflowNodeLink).where(
                WorkflowNodeLink.node_id == node_id,
                WorkflowNodeLink.template_id == linked.id,
            )
        )
        if result.scalar_one_or_none():
            raise ConflictException(
                "Link already exists",
                detail=f"'{node.title}' already links to '{linked.name}'",
            )

        result = await db.execute(
            select(func.max(WorkflowNodeLink.sort_order)).where(WorkflowNodeLink.node_id == node_id)
        )
        current_max = result.scalar_one_or_none()

        label = link_data.label.strip() if link_data.label and link_data.label.strip() else settings.WORKFLOW_DEFAULT_LINK_LABEL
        link = WorkflowNodeLink(
            node_id=node_id,
            template_id=linked.id,
            label=label,
            sort_order=0 if current_max is None else current_max + 1,
        )
        db.add(link)
        _record_edit(template, actor)

        await commit_or_conflict(db, "Create node link")
        await db.refresh(link)

        logger.info(
            "workflow_node_link_created",
            link_id=str(link.id),
            node_id=str(node_id),
            linked_template_id=str(linked.id),
        )

        return link

    @staticmethod
    async def delete_node_link(
        db: AsyncSession,
        link_id: UUID,
        actor: User,
    ) -> None:
        """
        Remove a node link

        Raises:
            NotFoundException: If link not found
        """
        result = await db.execute(select(WorkflowNodeLink).where(WorkflowNodeLink.id == link_id))
        link = result.scalar_one_or_none()
        if not link:
            raise NotFoundException(
                "Node link not found",
                detail=f"Node link with ID {link_id} not found"
            )

        node = await TemplateService.get_node(db, link.node_id)
        template = await TemplateService.lock_template(db, node.template_id)
        ensure_can_manage(actor, template.scope)
        _ensure_editable(template)

        await db.execute(delete(WorkflowNodeLink).where(WorkflowNodeLink.id == link_id))
        _record_edit(template, actor)

        await commit_or_conflict(db, "Delete node link")

        logger.info(
            "workflow_node_link_deleted",
            link_id=str(link_id),
            node_id=str(node.id),
        )


# Create singleton instance
template_service = TemplateService()
