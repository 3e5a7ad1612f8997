"""
Template store tests against the database
"""
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from signposting.core.enums import ApprovalStatus, NodeType
from signposting.core.exceptions import (
    AuthorizationException,
    ConflictException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from signposting.models.audit import AuditLog
from signposting.models.surgery import Surgery
from signposting.models.user import User
from signposting.models.workflow import WorkflowAnswerOption, WorkflowNode, WorkflowTemplate
from signposting.models.workflow_instance import WorkflowInstance
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
from signposting.schemas.workflow_instance import InstanceStart
from signposting.services.approval_service import approval_service
from signposting.services.instance_service import instance_service
from signposting.services.template_service import slugify_value_key, template_service, unique_value_key
from signposting.workflows.scope import GLOBAL, SurgeryScope


class TestValueKeys:
    """Tests for answer value key generation"""

    def test_slugify(self):
        assert slugify_value_key("Yes - urgent!") == "yes_urgent"
        assert slugify_value_key("  No  ") == "no"

    def test_slugify_fallback(self):
        key = slugify_value_key("???")
        assert key.startswith("path_")
        assert len(key) == len("path_") + 8

    def test_unique_suffix(self):
        assert unique_value_key("yes", []) == "yes"
        assert unique_value_key("yes", ["yes"]) == "yes_2"
        assert unique_value_key("yes", ["yes", "yes_2"]) == "yes_3"


@pytest.mark.asyncio
class TestTemplates:
    """Tests for template CRUD"""

    async def test_create_global_template(self, db_session: AsyncSession, super_admin: User):
        template = await template_service.create_template(
            db_session, TemplateCreate(name="Clinic Letters", colour_hex="#1d4ed8"), super_admin
        )

        assert template.surgery_id is None
        assert template.scope == GLOBAL
        assert template.approval_status == ApprovalStatus.DRAFT
        assert template.version == 1
        assert template.family_id == template.id
        assert template.last_edited_by_id == super_admin.id

    async def test_surgery_admin_cannot_create_global(self, db_session: AsyncSession, surgery_admin: User):
        with pytest.raises(AuthorizationException):
            await template_service.create_template(db_session, TemplateCreate(name="Sneaky"), surgery_admin)

    async def test_surgery_admin_creates_custom(
        self, db_session: AsyncSession, surgery_admin: User, test_surgery: Surgery
    ):
        template = await template_service.create_template(
            db_session, TemplateCreate(name="Appointments", surgery_id=test_surgery.id), surgery_admin
        )

        assert template.scope == SurgeryScope(test_surgery.id)
        assert template.is_override is False

    async def test_placeholder_name_rejected(self, db_session: AsyncSession, super_admin: User):
        with pytest.raises(ValidationException):
            await template_service.create_template(db_session, TemplateCreate(name="New workflow"), super_admin)

        with pytest.raises(ValidationException):
            await template_service.create_template(db_session, TemplateCreate(name="   "), super_admin)

    async def test_get_missing_template(self, db_session: AsyncSession):
        from uuid import uuid4

        with pytest.raises(NotFoundException):
            await template_service.get_template(db_session, uuid4())

    async def test_metadata_edit_demotes_approved(self, db_session: AsyncSession, make_clinic_letters, super_admin: User):
        flow = await make_clinic_letters()
        assert flow.template.approval_status == ApprovalStatus.APPROVED

        template = await template_service.update_template(
            db_session, flow.template.id, TemplateUpdate(description="For hospital letters"), super_admin
        )

        assert template.approval_status == ApprovalStatus.DRAFT
        assert template.approved_by_id is None
        assert template.approved_at is None

    async def test_unchanged_update_keeps_approval(self, db_session: AsyncSession, make_clinic_letters, super_admin: User):
        flow = await make_clinic_letters()

        template = await template_service.update_template(
            db_session, flow.template.id, TemplateUpdate(name="Clinic Letters"), super_admin
        )

        assert template.approval_status == ApprovalStatus.APPROVED

    async def test_delete_template_cascades(
        self,
        db_session: AsyncSession,
        make_clinic_letters,
        super_admin: User,
        staff_user: User,
        test_surgery: Surgery,
    ):
        flow = await make_clinic_letters()
        await instance_service.start(db_session, test_surgery.id, InstanceStart(template_id=flow.template.id), staff_user)

        await template_service.delete_template(db_session, flow.template.id, super_admin)

        for model, column in (
            (WorkflowTemplate, WorkflowTemplate.id),
            (WorkflowNode, WorkflowNode.template_id),
            (WorkflowInstance, WorkflowInstance.template_id),
        ):
            result = await db_session.execute(select(model).where(column == flow.template.id))
            assert result.scalars().all() == []

        result = await db_session.execute(select(WorkflowAnswerOption).where(WorkflowAnswerOption.node_id == flow.n1.id))
        assert result.scalars().all() == []

        result = await db_session.execute(select(AuditLog).where(AuditLog.action == "workflow_template.deleted"))
        assert result.scalar_one().resource_id == str(flow.template.id)

    async def test_delete_global_needs_global_admin(self, db_session: AsyncSession, make_clinic_letters, surgery_admin: User):
        flow = await make_clinic_letters()

        with pytest.raises(AuthorizationException):
            await template_service.delete_template(db_session, flow.template.id, surgery_admin)

    async def test_delete_global_turns_override_into_custom(
        self, db_session: AsyncSession, make_clinic_letters, super_admin: User, surgery_admin: User, test_surgery: Surgery
    ):
        flow = await make_clinic_letters()
        override, _ = await template_service.create_override(db_session, test_surgery.id, flow.template.id, surgery_admin)

        await template_service.delete_template(db_session, flow.template.id, super_admin)

        remaining = await template_service.get_template(db_session, override.id)
        assert remaining.source_template_id is None
        assert len(remaining.nodes) == 3


@pytest.mark.asyncio
class TestOverrides:
    """Tests for copying global templates into a surgery"""

    async def test_override_copies_graph(
        self, db_session: AsyncSession, make_clinic_letters, surgery_admin: User, test_surgery: Surgery
    ):
        flow = await make_clinic_letters()

        override, created = await template_service.create_override(
            db_session, test_surgery.id, flow.template.id, surgery_admin
        )

        assert created is True
        assert override.surgery_id == test_surgery.id
        assert override.source_template_id == flow.template.id
        assert override.family_id == flow.template.family_id
        assert override.approval_status == ApprovalStatus.DRAFT
        assert override.is_override is True

        nodes = {node.title: node for node in override.nodes}
        assert set(nodes) == {"Is this urgent?", "Forward to GP", "File it"}
        question = nodes["Is this urgent?"]
        copied_ids = {node.id for node in override.nodes}
        assert question.id != flow.n1.id
        assert {option.next_node_id for option in question.answer_options} <= copied_ids
        assert {option.value_key for option in question.answer_options} == {"yes", "no"}

    async def test_override_remaps_instruction_continuation(
        self, db_session: AsyncSession, super_admin: User, surgery_admin: User, test_surgery: Surgery
    ):
        template = await template_service.create_template(db_session, TemplateCreate(name="Results"), super_admin)
        last = await template_service.create_node(
            db_session, template.id, NodeCreate(node_type="END", title="File", action_key="CODE_AND_FILE"), super_admin
        )
        first = await template_service.create_node(
            db_session,
            template.id,
            NodeCreate(node_type="INSTRUCTION", title="Check result", is_start=True, default_next_node_id=last.id),
            super_admin,
        )

        override, _ = await template_service.create_override(db_session, test_surgery.id, template.id, surgery_admin)

        nodes = {node.title: node for node in override.nodes}
        assert nodes["Check result"].id != first.id
        assert nodes["Check result"].default_next_node_id == nodes["File"].id

    async def test_second_override_returns_existing(
        self, db_session: AsyncSession, make_clinic_letters, surgery_admin: User, test_surgery: Surgery
    ):
        flow = await make_clinic_letters()

        first, _ = await template_service.create_override(db_session, test_surgery.id, flow.template.id, surgery_admin)
        second, created = await template_service.create_override(db_session, test_surgery.id, flow.template.id, surgery_admin)

        assert created is False
        assert second.id == first.id

    async def test_cannot_override_surgery_template(
        self, db_session: AsyncSession, make_clinic_letters, surgery_admin: User, test_surgery: Surgery
    ):
        flow = await make_clinic_letters(surgery_id=test_surgery.id, actor=surgery_admin)

        with pytest.raises(ValidationException):
            await template_service.create_override(db_session, test_surgery.id, flow.template.id, surgery_admin)

    async def test_override_needs_admin_of_that_surgery(
        self, db_session: AsyncSession, make_clinic_letters, other_surgery_admin: User, test_surgery: Surgery
    ):
        flow = await make_clinic_letters()

        with pytest.raises(AuthorizationException):
            await template_service.create_override(db_session, test_surgery.id, flow.template.id, other_surgery_admin)

    async def test_override_is_audited(
        self, db_session: AsyncSession, make_clinic_letters, surgery_admin: User, test_surgery: Surgery
    ):
        flow = await make_clinic_letters()
        override, _ = await template_service.create_override(db_session, test_surgery.id, flow.template.id, surgery_admin)

        result = await db_session.execute(
            select(AuditLog).where(AuditLog.action == "workflow_template.override_created")
        )
        entry = result.scalar_one()
        assert entry.resource_id == str(override.id)
        assert entry.user_id == surgery_admin.id
        assert entry.details["source_template_id"] == str(flow.template.id)


@pytest.mark.asyncio
class TestNodes:
    """Tests for node operations"""

    async def test_default_sort_order_appends(self, db_session: AsyncSession, make_clinic_letters):
        flow = await make_clinic_letters(approve=False)

        assert [flow.n1.sort_order, flow.n2.sort_order, flow.n3.sort_order] == [0, 1, 2]

    async def test_empty_title_rejected(self, db_session: AsyncSession, make_clinic_letters, super_admin: User):
        flow = await make_clinic_letters(approve=False)

        with pytest.raises(ValidationException):
            await template_service.create_node(
                db_session, flow.template.id, NodeCreate(node_type="END", title="  "), super_admin
            )

    async def test_unknown_node_type_rejected(self, db_session: AsyncSession, make_clinic_letters, super_admin: User):
        flow = await make_clinic_letters(approve=False)

        with pytest.raises(ValidationException):
            await template_service.create_node(
                db_session, flow.template.id, NodeCreate(node_type="DECISION", title="Pick"), super_admin
            )

    async def test_structural_edit_demotes_approved(self, db_session: AsyncSession, make_clinic_letters, super_admin: User):
        flow = await make_clinic_letters()

        await template_service.update_node(db_session, flow.n1.id, NodeUpdate(title="Is this letter urgent?"), super_admin)

        template = await template_service.get_template(db_session, flow.template.id)
        assert template.approval_status == ApprovalStatus.DRAFT
        assert template.approved_by_id is None

    async def test_position_only_edit_keeps_approval(self, db_session: AsyncSession, make_clinic_letters, super_admin: User):
        flow = await make_clinic_letters()

        node = await template_service.update_node(
            db_session, flow.n1.id, NodeUpdate(position_x=120, position_y=40), super_admin
        )
        await template_service.update_node_positions(
            db_session,
            flow.template.id,
            [NodePosition(node_id=flow.n2.id, position_x=0, position_y=200)],
            super_admin,
        )

        template = await template_service.get_template(db_session, flow.template.id)
        assert node.position_x == 120
        assert template.approval_status == ApprovalStatus.APPROVED

    async def test_unchanged_node_update_keeps_approval(
        self, db_session: AsyncSession, make_clinic_letters, super_admin: User
    ):
        flow = await make_clinic_letters()

        node = await template_service.update_node(
            db_session, flow.n1.id, NodeUpdate(node_type="QUESTION", title="Is this urgent?"), super_admin
        )

        template = await template_service.get_template(db_session, flow.template.id)
        assert node.title == "Is this urgent?"
        assert template.approval_status == ApprovalStatus.APPROVED
        assert template.approved_by_id is not None

    async def test_layout_rejects_foreign_nodes(self, db_session: AsyncSession, make_clinic_letters, super_admin: User):
        first = await make_clinic_letters(approve=False)
        second = await make_clinic_letters(approve=False, name="Other letters")

        with pytest.raises(ValidationException):
            await template_service.update_node_positions(
                db_session,
                first.template.id,
                [NodePosition(node_id=second.n1.id, position_x=1, position_y=1)],
                super_admin,
            )

    async def test_question_with_options_cannot_change_type(
        self, db_session: AsyncSession, make_clinic_letters, super_admin: User
    ):
        flow = await make_clinic_letters(approve=False)

        with pytest.raises(ValidationException):
            await template_service.update_node(db_session, flow.n1.id, NodeUpdate(node_type="INSTRUCTION"), super_admin)

    async def test_continuation_must_stay_in_template(
        self, db_session: AsyncSession, make_clinic_letters, super_admin: User
    ):
        first = await make_clinic_letters(approve=False)
        second = await make_clinic_letters(approve=False, name="Other letters")

        with pytest.raises(ValidationException):
            await template_service.create_node(
                db_session,
                first.template.id,
                NodeCreate(node_type="INSTRUCTION", title="Jump", default_next_node_id=second.n2.id),
                super_admin,
            )

    async def test_continuation_only_on_instructions(
        self, db_session: AsyncSession, make_clinic_letters, super_admin: User
    ):
        flow = await make_clinic_letters(approve=False)

        with pytest.raises(ValidationException):
            await template_service.create_node(
                db_session,
                flow.template.id,
                NodeCreate(node_type="QUESTION", title="Loop", default_next_node_id=flow.n2.id),
                super_admin,
            )

    async def test_delete_referenced_node_blocked(self, db_session: AsyncSession, make_clinic_letters, super_admin: User):
        flow = await make_clinic_letters(approve=False)

        with pytest.raises(ConflictException) as exc_info:
            await template_service.delete_node(db_session, flow.n2.id, super_admin)

        assert "Is this urgent?" in exc_info.value.detail
        assert await template_service.get_node(db_session, flow.n2.id)

    async def test_delete_node_with_options(self, db_session: AsyncSession, make_clinic_letters, super_admin: User):
        flow = await make_clinic_letters(approve=False)

        await template_service.delete_node(db_session, flow.n1.id, super_admin)

        with pytest.raises(NotFoundException):
            await template_service.get_node(db_session, flow.n1.id)
        with pytest.raises(NotFoundException):
            await template_service.get_answer_option(db_session, flow.yes.id)

        # Targets are free to go once nothing points at them
        await template_service.delete_node(db_session, flow.n2.id, super_admin)

    async def test_superseded_template_is_read_only(
        self, db_session: AsyncSession, make_clinic_letters, super_admin: User
    ):
        flow = await make_clinic_letters()
        v2 = await approval_service.create_version(db_session, flow.template.id, super_admin)
        await approval_service.approve(db_session, v2.id, super_admin)

        with pytest.raises(InvalidTransitionException):
            await template_service.create_node(
                db_session, flow.template.id, NodeCreate(node_type="END", title="Late"), super_admin
            )


@pytest.mark.asyncio
class TestAnswerOptions:
    """Tests for answer option operations"""

    async def test_value_key_generated_from_label(self, db_session: AsyncSession, make_clinic_letters, super_admin: User):
        flow = await make_clinic_letters(approve=False)

        option = await template_service.create_answer_option(
            db_session, flow.n1.id, AnswerOptionCreate(label="Yes", next_node_id=flow.n2.id), super_admin
        )

        assert flow.yes.value_key == "yes"
        assert option.value_key == "yes_2"
        assert option.sort_order == 2

    async def test_duplicate_value_key_conflicts(self, db_session: AsyncSession, make_clinic_letters, super_admin: User):
        flow = await make_clinic_letters(approve=False)

        with pytest.raises(ConflictException):
            await template_service.create_answer_option(
                db_session, flow.n1.id, AnswerOptionCreate(label="Maybe", value_key="no"), super_admin
            )

    async def test_options_need_question_node(self, db_session: AsyncSession, make_clinic_letters, super_admin: User):
        flow = await make_clinic_letters(approve=False)

        with pytest.raises(ValidationException):
            await template_service.create_answer_option(
                db_session, flow.n2.id, AnswerOptionCreate(label="Huh"), super_admin
            )

    async def test_option_target_must_be_same_template(
        self, db_session: AsyncSession, make_clinic_letters, super_admin: User
    ):
        first = await make_clinic_letters(approve=False)
        second = await make_clinic_letters(approve=False, name="Other letters")

        with pytest.raises(ValidationException):
            await template_service.create_answer_option(
                db_session, first.n1.id, AnswerOptionCreate(label="Elsewhere", next_node_id=second.n2.id), super_admin
            )

    async def test_option_on_missing_node(self, db_session: AsyncSession, super_admin: User):
        from uuid import uuid4

        with pytest.raises(NotFoundException):
            await template_service.create_answer_option(db_session, uuid4(), AnswerOptionCreate(label="x"), super_admin)

    async def test_update_option_value_key_conflict(
        self, db_session: AsyncSession, make_clinic_letters, super_admin: User
    ):
        flow = await make_clinic_letters(approve=False)

        with pytest.raises(ConflictException):
            await template_service.update_answer_option(
                db_session, flow.no.id, AnswerOptionUpdate(value_key="yes"), super_admin
            )

        option = await template_service.update_answer_option(
            db_session, flow.no.id, AnswerOptionUpdate(label="Not urgent", action_key="file_without_forwarding"), super_admin
        )
        assert option.label == "Not urgent"
        assert option.value_key == "no"

    async def test_unchanged_option_update_keeps_approval(
        self, db_session: AsyncSession, make_clinic_letters, super_admin: User
    ):
        flow = await make_clinic_letters()

        await template_service.update_answer_option(
            db_session, flow.yes.id, AnswerOptionUpdate(label="Yes", next_node_id=flow.n2.id), super_admin
        )

        template = await template_service.get_template(db_session, flow.template.id)
        assert template.approval_status == ApprovalStatus.APPROVED

        await template_service.update_answer_option(
            db_session, flow.yes.id, AnswerOptionUpdate(label="Yes, urgent"), super_admin
        )

        template = await template_service.get_template(db_session, flow.template.id)
        assert template.approval_status == ApprovalStatus.DRAFT

    async def test_delete_option_demotes(self, db_session: AsyncSession, make_clinic_letters, super_admin: User):
        flow = await make_clinic_letters()

        await template_service.delete_answer_option(db_session, flow.no.id, super_admin)

        template = await template_service.get_template(db_session, flow.template.id)
        assert template.approval_status == ApprovalStatus.DRAFT
        question = next(node for node in template.nodes if node.node_type == NodeType.QUESTION)
        assert [option.value_key for option in question.answer_options] == ["yes"]


@pytest.mark.asyncio
class TestNodeLinks:
    """Tests for links between workflows"""

    async def test_link_within_scope(self, db_session: AsyncSession, make_clinic_letters, super_admin: User):
        first = await make_clinic_letters(approve=False)
        second = await make_clinic_letters(approve=False, name="Test Results")

        link = await template_service.create_node_link(
            db_session, first.n2.id, NodeLinkCreate(linked_template_id=second.template.id), super_admin
        )

        assert link.label == "Open linked workflow"
        assert link.template_id == second.template.id

        with pytest.raises(ConflictException):
            await template_service.create_node_link(
                db_session, first.n2.id, NodeLinkCreate(linked_template_id=second.template.id), super_admin
            )

        await template_service.delete_node_link(db_session, link.id, super_admin)
        template = await template_service.get_template(db_session, first.template.id)
        assert all(not node.links for node in template.nodes)

    async def test_link_across_scopes_rejected(
        self, db_session: AsyncSession, make_clinic_letters, surgery_admin: User, test_surgery: Surgery
    ):
        global_flow = await make_clinic_letters()
        local_flow = await make_clinic_letters(surgery_id=test_surgery.id, actor=surgery_admin, approve=False, name="Local")

        with pytest.raises(ValidationException):
            await template_service.create_node_link(
                db_session, local_flow.n2.id, NodeLinkCreate(linked_template_id=global_flow.template.id), surgery_admin
            )
