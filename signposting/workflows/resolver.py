"""
Effective workflow resolution

Merges the global default layer with one surgery's local layer:

- a surgery override replaces the global template of its family
- global templates without an override are inherited as-is
- surgery templates without a source template are custom workflows

The function is pure: the same rows in always give the same list out.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from signposting.core.enums import ApprovalStatus, WorkflowSource, WorkflowType


@dataclass(frozen=True)
class EffectiveWorkflow:
    """A template as one surgery's staff see it, tagged with its layer"""
    id: UUID
    surgery_id: Optional[UUID]
    name: str
    description: Optional[str]
    icon_key: Optional[str]
    colour_hex: Optional[str]
    workflow_type: WorkflowType
    is_active: bool
    source: WorkflowSource
    source_template_id: Optional[UUID]
    family_id: UUID
    version: int
    approval_status: ApprovalStatus
    approved_by_id: Optional[UUID]
    approved_at: Optional[datetime]
    last_edited_by_id: Optional[UUID]
    last_edited_at: Optional[datetime]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


def _effective(template: Any, source: WorkflowSource) -> EffectiveWorkflow:
    return EffectiveWorkflow(
        id=template.id,
        surgery_id=template.surgery_id,
        name=template.name,
        description=template.description,
        icon_key=template.icon_key,
        colour_hex=template.colour_hex,
        workflow_type=template.workflow_type,
        is_active=template.is_active,
        source=source,
        source_template_id=template.source_template_id if source == WorkflowSource.OVERRIDE else None,
        family_id=template.family_id,
        version=template.version,
        approval_status=template.approval_status,
        approved_by_id=template.approved_by_id,
        approved_at=template.approved_at,
        last_edited_by_id=template.last_edited_by_id,
        last_edited_at=template.last_edited_at,
        created_at=template.created_at,
        updated_at=template.updated_at,
    )


def _sort_key(item: Any) -> tuple:
    return (item.name.casefold(), item.name, str(item.id))


def _group_by_family(templates: Iterable[Any]) -> Dict[UUID, List[Any]]:
    groups: Dict[UUID, List[Any]] = {}
    for template in templates:
        groups.setdefault(template.family_id, []).append(template)
    return groups


def _newest(candidates: Sequence[Any]) -> Any:
    return max(candidates, key=lambda t: (t.version, str(t.id)))


def resolve_effective_workflows(
    global_templates: Iterable[Any],
    local_templates: Iterable[Any],
    include_drafts: bool = False,
    include_inactive: bool = False,
) -> List[EffectiveWorkflow]:
    """
    Resolve the effective workflow list for one surgery

    Args:
        global_templates: Templates of the global scope
        local_templates: Templates of the surgery scope
        include_drafts: Keep DRAFT templates (admin views)
        include_inactive: Keep inactive templates (admin management views)

    Returns:
        Global/override entries ordered by name, followed by custom entries
        ordered by name. Superseded versions never appear. Where a family has
        several live versions the newest visible one wins; an override with
        no visible version still hides its global template.
    """
    def live(template: Any) -> bool:
        if template.approval_status == ApprovalStatus.SUPERSEDED:
            return False
        return include_inactive or template.is_active

    def visible(template: Any) -> bool:
        return include_drafts or template.approval_status == ApprovalStatus.APPROVED

    globals_by_family = _group_by_family(t for t in global_templates if live(t))

    overrides: List[Any] = []
    customs: List[Any] = []
    for template in local_templates:
        if not live(template):
            continue
        if template.source_template_id is not None:
            overrides.append(template)
        else:
            customs.append(template)
    overrides_by_family = _group_by_family(overrides)

    inherited: List[EffectiveWorkflow] = []
    for family_id, family_globals in globals_by_family.items():
        family_overrides = overrides_by_family.get(family_id)
        if family_overrides:
            shown = [t for t in family_overrides if visible(t)]
            if shown:
                inherited.append(_effective(_newest(shown), WorkflowSource.OVERRIDE))
            continue

        shown = [t for t in family_globals if visible(t)]
        if shown:
            inherited.append(_effective(_newest(shown), WorkflowSource.GLOBAL))

    custom: List[EffectiveWorkflow] = []
    for family_customs in _group_by_family(customs).values():
        shown = [t for t in family_customs if visible(t)]
        if shown:
            custom.append(_effective(_newest(shown), WorkflowSource.CUSTOM))

    return sorted(inherited, key=_sort_key) + sorted(custom, key=_sort_key)
