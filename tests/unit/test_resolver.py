"""
Unit tests for effective workflow resolution
"""
from datetime import datetime
from types import SimpleNamespace
from uuid import uuid4

from signposting.core.enums import ApprovalStatus, WorkflowSource, WorkflowType
from signposting.workflows.resolver import resolve_effective_workflows

SURGERY_ID = uuid4()


def template(
    name,
    surgery_id=None,
    status=ApprovalStatus.APPROVED,
    is_active=True,
    source=None,
    family_id=None,
    version=1,
):
    template_id = uuid4()
    return SimpleNamespace(
        id=template_id,
        surgery_id=surgery_id,
        name=name,
        description=None,
        icon_key=None,
        colour_hex=None,
        workflow_type=WorkflowType.SUPPORTING,
        is_active=is_active,
        approval_status=status,
        approved_by_id=None,
        approved_at=None,
        last_edited_by_id=None,
        last_edited_at=None,
        source_template_id=source.id if source else None,
        family_id=family_id or (source.family_id if source else template_id),
        version=version,
        created_at=datetime(2026, 1, 1),
        updated_at=datetime(2026, 1, 1),
    )


def override_of(global_template, **kwargs):
    return template(global_template.name + " (local)", surgery_id=SURGERY_ID, source=global_template, **kwargs)


class TestResolveEffectiveWorkflows:
    """Tests for resolve_effective_workflows"""

    def test_globals_are_inherited(self):
        letters = template("Clinic Letters")
        results = template("Test Results")

        workflows = resolve_effective_workflows([results, letters], [])

        assert [w.id for w in workflows] == [letters.id, results.id]
        assert all(w.source == WorkflowSource.GLOBAL for w in workflows)

    def test_override_replaces_global(self):
        letters = template("Clinic Letters")
        local = override_of(letters)

        workflows = resolve_effective_workflows([letters], [local])

        assert len(workflows) == 1
        assert workflows[0].id == local.id
        assert workflows[0].source == WorkflowSource.OVERRIDE
        assert workflows[0].source_template_id == letters.id

    def test_draft_override_hides_global_from_staff(self):
        letters = template("Clinic Letters")
        local = override_of(letters, status=ApprovalStatus.DRAFT)

        assert resolve_effective_workflows([letters], [local]) == []

        admin_view = resolve_effective_workflows([letters], [local], include_drafts=True)
        assert [w.id for w in admin_view] == [local.id]
        assert admin_view[0].approval_status == ApprovalStatus.DRAFT

    def test_custom_workflows_follow_inherited_ones(self):
        letters = template("Clinic Letters")
        custom = template("Appointments", surgery_id=SURGERY_ID)

        workflows = resolve_effective_workflows([letters], [custom])

        assert [w.id for w in workflows] == [letters.id, custom.id]
        assert workflows[1].source == WorkflowSource.CUSTOM
        assert workflows[1].source_template_id is None

    def test_drafts_hidden_unless_requested(self):
        draft = template("Draft flow", status=ApprovalStatus.DRAFT)
        custom_draft = template("Local draft", surgery_id=SURGERY_ID, status=ApprovalStatus.DRAFT)

        assert resolve_effective_workflows([draft], [custom_draft]) == []
        assert len(resolve_effective_workflows([draft], [custom_draft], include_drafts=True)) == 2

    def test_inactive_excluded_unless_requested(self):
        inactive = template("Retired", is_active=False)

        assert resolve_effective_workflows([inactive], []) == []
        assert [w.id for w in resolve_effective_workflows([inactive], [], include_inactive=True)] == [inactive.id]

    def test_inactive_override_does_not_hide_global(self):
        letters = template("Clinic Letters")
        local = override_of(letters, is_active=False)

        workflows = resolve_effective_workflows([letters], [local])

        assert [w.id for w in workflows] == [letters.id]

    def test_superseded_never_appears(self):
        old = template("Clinic Letters", status=ApprovalStatus.SUPERSEDED)
        current = template("Clinic Letters", family_id=old.family_id, version=2)

        workflows = resolve_effective_workflows([old, current], [], include_drafts=True, include_inactive=True)

        assert [w.id for w in workflows] == [current.id]

    def test_newest_visible_version_wins(self):
        v1 = template("Clinic Letters")
        v2 = template("Clinic Letters", family_id=v1.family_id, version=2, status=ApprovalStatus.DRAFT)

        staff = resolve_effective_workflows([v1, v2], [])
        admin = resolve_effective_workflows([v1, v2], [], include_drafts=True)

        assert [w.id for w in staff] == [v1.id]
        assert [w.id for w in admin] == [v2.id]

    def test_names_sort_case_insensitively(self):
        lower = template("appointments")
        upper = template("Blood tests")

        workflows = resolve_effective_workflows([upper, lower], [])

        assert [w.name for w in workflows] == ["appointments", "Blood tests"]

    def test_resolution_is_idempotent(self):
        globals_ = [template(f"Workflow {i}") for i in range(5)]
        locals_ = [override_of(globals_[1]), template("Custom", surgery_id=SURGERY_ID)]

        first = resolve_effective_workflows(globals_, locals_)
        second = resolve_effective_workflows(list(reversed(globals_)), list(reversed(locals_)))

        assert first == second
