"""
Template scope

A template is either a global default (shared by every surgery) or local
to one surgery. Global templates are stored with a NULL surgery_id; this
module gives that a type instead of a sentinel id.
"""
from dataclasses import dataclass
from typing import Optional, Union
from uuid import UUID


@dataclass(frozen=True)
class GlobalScope:
    """Global default templates, inherited by every surgery"""

    @property
    def surgery_id(self) -> None:
        return None

    def __str__(self) -> str:
        return "global"


@dataclass(frozen=True)
class SurgeryScope:
    """Templates owned by a single surgery (overrides and custom workflows)"""
    surgery_id: UUID

    def __str__(self) -> str:
        return f"surgery:{self.surgery_id}"


TemplateScope = Union[GlobalScope, SurgeryScope]

GLOBAL = GlobalScope()


def scope_for(surgery_id: Optional[UUID]) -> TemplateScope:
    """Return the scope a stored surgery_id column value denotes"""
    if surgery_id is None:
        return GLOBAL
    return SurgeryScope(surgery_id)
