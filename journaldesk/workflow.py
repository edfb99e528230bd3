"""Manuscript status state machine.

The transition table itself lives on ``ManuscriptStatus.allowed_next``; the
helpers here are what services call before writing a new status.
"""

from __future__ import annotations

from journaldesk.models import ManuscriptStatus, ReviewDecision

TERMINAL_STATUSES = frozenset({ManuscriptStatus.REJECTED, ManuscriptStatus.PUBLISHED})

EDITABLE_STATUSES = frozenset({
    ManuscriptStatus.SUBMITTED,
    ManuscriptStatus.MINOR_REVISION,
    ManuscriptStatus.MAJOR_REVISION,
})

# Statuses from which a review-driven decision may be applied
DECIDABLE_STATUSES = frozenset({
    ManuscriptStatus.UNDER_REVIEW,
    ManuscriptStatus.IN_RECONCILIATION,
})

_DECISION_STATUS = {
    ReviewDecision.PUBLISHABLE: ManuscriptStatus.APPROVED,
    ReviewDecision.NOT_PUBLISHABLE: ManuscriptStatus.REJECTED,
    ReviewDecision.PUBLISHABLE_WITH_MINOR_REVISION: ManuscriptStatus.MINOR_REVISION,
    ReviewDecision.PUBLISHABLE_WITH_MAJOR_REVISION: ManuscriptStatus.MAJOR_REVISION,
}


def can_transition(current: ManuscriptStatus | str, target: ManuscriptStatus | str) -> bool:
    try:
        target_status = ManuscriptStatus(target)
    except ValueError:
        return False
    return target_status in ManuscriptStatus.allowed_next(current)


def validate_transition(
    current: ManuscriptStatus | str,
    target: ManuscriptStatus | str,
) -> list[str]:
    """Return error codes for a proposed transition (empty = allowed)."""
    try:
        current_status = ManuscriptStatus(current)
    except ValueError:
        return [f"unknown_status_{current}"]
    try:
        target_status = ManuscriptStatus(target)
    except ValueError:
        return [f"unknown_status_{target}"]

    if current_status in TERMINAL_STATUSES:
        return [f"status_{current_status.value}_is_terminal"]
    if not can_transition(current_status, target_status):
        return [f"invalid_transition_{current_status.value}_to_{target_status.value}"]
    return []


def is_terminal(status: ManuscriptStatus | str) -> bool:
    return ManuscriptStatus(status) in TERMINAL_STATUSES


def can_be_edited(status: ManuscriptStatus | str) -> bool:
    """Authors may change manuscript content only before review or when asked to revise."""
    return ManuscriptStatus(status) in EDITABLE_STATUSES


def decision_to_status(decision: ReviewDecision | str) -> ManuscriptStatus:
    """Map a review decision to the manuscript status it leads to."""
    return _DECISION_STATUS[ReviewDecision(decision)]
