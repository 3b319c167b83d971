"""Partial-update models for each editable entity.

A patch carries only the fields the caller supplied. Types are checked
strictly, so a list or object where a string belongs is rejected before
anything touches the database. Required columns that reject null are
checked by the tools themselves.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError


class PatchError(Exception):
    """Raised when a patch holds a value of the wrong type."""


class _Patch(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")


class SectionPatch(_Patch):
    name: str | None = None
    color: str | None = None
    description: str | None = None
    order: int | None = None


class ComponentPatch(_Patch):
    title: str | None = None
    section_id: str | None = None
    owner_id: str | None = None
    tool: str | None = None
    health_status: str | None = None
    current_state: str | None = None
    target_state: str | None = None
    position_x: float | None = None
    position_y: float | None = None


class MetricPatch(_Patch):
    name: str | None = None
    target: str | None = None
    current: str | None = None
    unit: str | None = None
    order: int | None = None


class TodoPatch(_Patch):
    title: str | None = None
    description: str | None = None
    assignee_id: str | None = None
    due_date: str | None = None
    completed: bool | None = None


class IssuePatch(_Patch):
    title: str | None = None
    description: str | None = None
    priority: str | None = None
    status: str | None = None


class IdeaPatch(_Patch):
    title: str | None = None
    description: str | None = None
    votes: int | None = None
    implemented: bool | None = None


def parse_patch(model: type[_Patch], changes: dict[str, Any]) -> dict[str, Any]:
    """Validate ``changes`` against ``model`` and return the supplied fields."""
    unknown = sorted(set(changes) - set(model.model_fields))
    if unknown:
        raise PatchError(f"Unknown fields: {', '.join(unknown)}")
    try:
        patch = model.model_validate(changes)
    except ValidationError as e:
        problems = "; ".join(
            f"'{'.'.join(str(part) for part in err['loc'])}': {err['msg']}"
            for err in e.errors()
        )
        raise PatchError(f"Invalid field value: {problems}") from e
    return patch.model_dump(exclude_unset=True)
