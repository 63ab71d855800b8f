"""
Loan application stage graph.

Forward path: lead -> documents -> verification -> assessment -> approval
-> sanctioned -> disbursed -> closed. ``rejected`` is reachable from lead
through approval, ``cancelled`` from lead and documents; both are absorbing.
Pure functions only; persistence lives in services.applications.
"""
from __future__ import annotations

from errors import StateError

LEAD = "lead"
DOCUMENTS = "documents"
VERIFICATION = "verification"
ASSESSMENT = "assessment"
APPROVAL = "approval"
SANCTIONED = "sanctioned"
DISBURSED = "disbursed"
CLOSED = "closed"
REJECTED = "rejected"
CANCELLED = "cancelled"

FORWARD_PATH = [LEAD, DOCUMENTS, VERIFICATION, ASSESSMENT, APPROVAL, SANCTIONED, DISBURSED, CLOSED]
ALL_STAGES = FORWARD_PATH + [REJECTED, CANCELLED]

REJECTABLE = {LEAD, DOCUMENTS, VERIFICATION, ASSESSMENT, APPROVAL}
CANCELLABLE = {LEAD, DOCUMENTS}
TERMINAL = {CLOSED, REJECTED, CANCELLED}

# Stages entered only through their dedicated operation (approval decision,
# disbursement, rejection, cancellation, closure).
GUARDED_TARGETS = {SANCTIONED, DISBURSED, CLOSED, REJECTED, CANCELLED}

EDGES: dict[str, set[str]] = {stage: set() for stage in ALL_STAGES}
for _current, _next in zip(FORWARD_PATH, FORWARD_PATH[1:]):
    EDGES[_current].add(_next)
for _stage in REJECTABLE:
    EDGES[_stage].add(REJECTED)
for _stage in CANCELLABLE:
    EDGES[_stage].add(CANCELLED)

_STATUS_BY_STAGE = {
    LEAD: "draft",
    DISBURSED: "disbursed",
    CLOSED: "closed",
    REJECTED: "rejected",
    CANCELLED: "cancelled",
}


def status_for_stage(stage: str) -> str:
    return _STATUS_BY_STAGE.get(stage, "in_progress")


def is_terminal(stage: str) -> bool:
    return stage in TERMINAL


def can_transition(current: str, target: str) -> bool:
    return target in EDGES.get(current, set())


def check_transition(current: str, target: str) -> None:
    """Raise StateError unless current -> target is an edge of the graph."""
    if target not in EDGES:
        raise StateError(f"Unknown stage '{target}'", details={"current_stage": current})
    if is_terminal(current):
        raise StateError(
            f"Application is {current}; no further transitions are allowed",
            details={"current_stage": current, "requested_stage": target},
        )
    if not can_transition(current, target):
        raise StateError(
            f"Cannot move from {current} to {target}",
            details={"current_stage": current, "requested_stage": target},
        )


def next_stage(current: str) -> str | None:
    if current not in FORWARD_PATH:
        return None
    idx = FORWARD_PATH.index(current)
    return FORWARD_PATH[idx + 1] if idx + 1 < len(FORWARD_PATH) else None
