"""Turn a (previous, next) assignment pair into business events and one audit action."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from .assignment_rules import AssignmentState


class BusinessEventKind(str, Enum):
    ASSIGN = "ASSIGN"
    UNASSIGN = "UNASSIGN"
    RESCHEDULE = "RESCHEDULE"
    STATUS_CHANGE = "STATUS_CHANGE"
    UPDATE = "UPDATE"


@dataclass(frozen=True)
class BusinessEvent:
    kind: BusinessEventKind
    previous: Optional[AssignmentState]
    next: AssignmentState

    @property
    def subject(self) -> AssignmentState:
        """State the event is about: the old slot for UNASSIGN, the new one otherwise."""
        if self.kind is BusinessEventKind.UNASSIGN and self.previous is not None:
            return self.previous
        return self.next


DEFAULT_AUDIT_PRECEDENCE: tuple[str, ...] = ("ASSIGN", "RESCHEDULE", "UPDATE")


def crew_changed(previous: AssignmentState, next_state: AssignmentState) -> bool:
    return previous.crew_id != next_state.crew_id


def time_changed(previous: AssignmentState, next_state: AssignmentState) -> bool:
    return (
        previous.date != next_state.date
        or previous.start_minutes != next_state.start_minutes
        or previous.end_minutes != next_state.end_minutes
    )


def classify_change(
    previous: Optional[AssignmentState], next_state: AssignmentState
) -> list[BusinessEvent]:
    """
    Classify one persisted mutation.

    Rules are evaluated independently, so a single update may yield e.g.
    UNASSIGN + ASSIGN + STATUS_CHANGE. UPDATE is emitted only when nothing
    else matched.
    """
    events: list[BusinessEvent] = []

    if previous is None:
        if next_state.crew_id is not None:
            events.append(BusinessEvent(BusinessEventKind.ASSIGN, None, next_state))
        return events or [BusinessEvent(BusinessEventKind.UPDATE, None, next_state)]

    if crew_changed(previous, next_state):
        if previous.crew_id is not None:
            events.append(BusinessEvent(BusinessEventKind.UNASSIGN, previous, next_state))
        if next_state.crew_id is not None:
            events.append(BusinessEvent(BusinessEventKind.ASSIGN, previous, next_state))
    elif time_changed(previous, next_state):
        events.append(BusinessEvent(BusinessEventKind.RESCHEDULE, previous, next_state))

    if next_state.status == "cancelled" and previous.status != "cancelled":
        events.append(BusinessEvent(BusinessEventKind.STATUS_CHANGE, previous, next_state))

    if not events:
        events.append(BusinessEvent(BusinessEventKind.UPDATE, previous, next_state))
    return events


def classify_delete(existing: AssignmentState) -> list[BusinessEvent]:
    """Deletes always end in a terminal notification; the pre-delete row is both sides."""
    events: list[BusinessEvent] = []
    if existing.crew_id is not None:
        events.append(BusinessEvent(BusinessEventKind.UNASSIGN, existing, existing))
    events.append(BusinessEvent(BusinessEventKind.STATUS_CHANGE, existing, existing))
    return events


def choose_audit_action(
    previous: Optional[AssignmentState],
    next_state: AssignmentState,
    precedence: Iterable[str] = DEFAULT_AUDIT_PRECEDENCE,
) -> str:
    """Exactly one audit label per update; the first label in precedence whose condition holds wins."""
    if previous is None:
        return "CREATE"

    conditions = {
        "ASSIGN": crew_changed(previous, next_state),
        "RESCHEDULE": time_changed(previous, next_state),
        "UPDATE": True,
    }
    for label in precedence:
        if conditions.get(label.strip().upper()):
            return label.strip().upper()
    return "UPDATE"
