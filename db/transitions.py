"""Flag and status transition rules for todos, issues and ideas.

Rules:
    - Todo ``completed`` false -> true stamps ``completed_at``; true -> false
      clears it. The audit verb becomes ``completed`` / ``uncompleted``.
    - Issue ``status`` into RESOLVED stamps ``resolved_at``; out of RESOLVED
      clears it. Any real status change is audited as ``status_changed``.
    - Idea ``implemented`` flips are audited as ``marked_implemented`` /
      ``marked_not_implemented``.
    - A field supplied with its current value is not a transition.

Import the *_transition() helpers from here. Do not duplicate this logic.
"""

from dataclasses import dataclass, field
from typing import Any

HEALTH_STATUSES = ("RED", "YELLOW", "GREEN", "GRAY", "BLUE")
PRIORITIES = ("P1", "P2", "P3", "P4")
ISSUE_STATUSES = ("OPEN", "IN_PROGRESS", "RESOLVED")


class InvalidTransitionError(Exception):
    """Raised when a requested status or flag value is not allowed."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


@dataclass
class Transition:
    """Outcome of applying a partial update to an entity's current state.

    ``derived`` holds columns the update implies beyond what was supplied
    (timestamps). ``audit_extra`` is merged into the activity payload.
    """

    action: str = "updated"
    derived: dict[str, Any] = field(default_factory=dict)
    audit_extra: dict[str, Any] = field(default_factory=dict)


def todo_transition(
    was_completed: bool, changes: dict[str, Any], now: str
) -> Transition:
    """Derive the audit verb and ``completed_at`` effect of a todo update."""
    if "completed" not in changes:
        return Transition()

    completed = changes["completed"]
    if not isinstance(completed, bool):
        raise InvalidTransitionError("'completed' must be true or false")

    if completed and not was_completed:
        return Transition(action="completed", derived={"completed_at": now})
    if not completed and was_completed:
        return Transition(action="uncompleted", derived={"completed_at": None})
    return Transition()


def issue_transition(
    current_status: str, changes: dict[str, Any], now: str
) -> Transition:
    """Derive the audit verb and ``resolved_at`` effect of an issue update."""
    if "status" not in changes:
        return Transition()

    new_status = changes["status"]
    if new_status not in ISSUE_STATUSES:
        raise InvalidTransitionError(
            f"Invalid status '{new_status}'. Must be one of {', '.join(ISSUE_STATUSES)}"
        )
    if new_status == current_status:
        return Transition()

    derived: dict[str, Any] = {}
    if new_status == "RESOLVED":
        derived["resolved_at"] = now
    elif current_status == "RESOLVED":
        derived["resolved_at"] = None

    return Transition(
        action="status_changed",
        derived=derived,
        audit_extra={"old_status": current_status, "new_status": new_status},
    )


def idea_transition(was_implemented: bool, changes: dict[str, Any]) -> Transition:
    """Derive the audit verb of an idea update."""
    if "implemented" not in changes:
        return Transition()

    implemented = changes["implemented"]
    if not isinstance(implemented, bool):
        raise InvalidTransitionError("'implemented' must be true or false")

    if implemented == was_implemented:
        return Transition()
    return Transition(
        action="marked_implemented" if implemented else "marked_not_implemented"
    )
