"""Pydantic request/response models for the process-map API.

Update models declare every field optional; routes read them with
``model_dump(exclude_unset=True)`` so only supplied fields are applied.
"""

from typing import Any

from pydantic import BaseModel


# ── Request models ──────────────────────────────────────


class CreateSectionRequest(BaseModel):
    name: str
    color: str | None = None
    description: str | None = None
    order: int | None = None


class UpdateSectionRequest(BaseModel):
    name: str | None = None
    color: str | None = None
    description: str | None = None
    order: int | None = None


class CreateComponentRequest(BaseModel):
    title: str
    section_id: str
    owner_id: str
    tool: str | None = None
    health_status: str | None = None
    current_state: str | None = None
    target_state: str | None = None
    position_x: float | None = None
    position_y: float | None = None


class UpdateComponentRequest(BaseModel):
    title: str | None = None
    section_id: str | None = None
    owner_id: str | None = None
    tool: str | None = None
    health_status: str | None = None
    current_state: str | None = None
    target_state: str | None = None
    position_x: float | None = None
    position_y: float | None = None


class CreateMetricRequest(BaseModel):
    component_id: str
    name: str
    target: str | None = None
    current: str | None = None
    unit: str | None = None
    order: int | None = None


class UpdateMetricRequest(BaseModel):
    name: str | None = None
    target: str | None = None
    current: str | None = None
    unit: str | None = None
    order: int | None = None


class CreateTodoRequest(BaseModel):
    component_id: str
    title: str
    description: str | None = None
    assignee_id: str | None = None
    due_date: str | None = None


class UpdateTodoRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    assignee_id: str | None = None
    due_date: str | None = None
    completed: bool | None = None


class CreateIssueRequest(BaseModel):
    component_id: str
    title: str
    description: str | None = None
    priority: str | None = None
    status: str | None = None


class UpdateIssueRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    priority: str | None = None
    status: str | None = None


class CreateIdeaRequest(BaseModel):
    component_id: str
    title: str
    description: str | None = None


class UpdateIdeaRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    votes: int | None = None
    implemented: bool | None = None


class CreateCommentRequest(BaseModel):
    component_id: str
    content: str


class UpdateCommentRequest(BaseModel):
    content: str


class CreateConnectionRequest(BaseModel):
    from_component_id: str
    to_component_id: str
    label: str | None = None


class CreateSnapshotRequest(BaseModel):
    name: str


# ── Response models ─────────────────────────────────────


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    role: str
    created_at: str


class SectionResponse(BaseModel):
    id: str
    name: str
    order: int
    color: str | None = None
    description: str | None = None
    created_at: str
    updated_at: str


class ComponentHealthResponse(BaseModel):
    component_id: str
    title: str
    health_status: str
    computed_status: str
    metrics_meeting_target: int
    metrics_total: int


class ConnectionResponse(BaseModel):
    id: str
    from_component_id: str
    to_component_id: str
    label: str | None = None
    created_at: str


class SnapshotSummaryResponse(BaseModel):
    id: str
    name: str
    created_at: str
    created_by_id: str


class SnapshotResponse(SnapshotSummaryResponse):
    data: list[dict[str, Any]]


class PaginationInfo(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class ActivityPageResponse(BaseModel):
    activities: list[dict[str, Any]]
    pagination: PaginationInfo


class DashboardResponse(BaseModel):
    overall_health: int
    total_components: int
    components_by_health: dict[str, int]
    active_todos: int
    open_issues: int
    pending_ideas: int
    recent_activity: list[dict[str, Any]]


class SuccessResponse(BaseModel):
    success: bool
