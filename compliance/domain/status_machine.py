from __future__ import annotations

from enum import Enum

from compliance.core.errors import AlreadySubmitted, InvalidTransition
from compliance.models import ComplianceStatus


class SubmissionState(str, Enum):
    NO_SUBMISSION = 'no_submission'
    SUBMITTED = 'submitted'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class SubmissionAction(str, Enum):
    SUBMIT = 'submit'
    APPROVE = 'approve'
    REJECT = 'reject'


_TRANSITIONS: dict[tuple[SubmissionState, SubmissionAction], SubmissionState] = {
    (SubmissionState.NO_SUBMISSION, SubmissionAction.SUBMIT): SubmissionState.SUBMITTED,
    (SubmissionState.REJECTED, SubmissionAction.SUBMIT): SubmissionState.SUBMITTED,
    (SubmissionState.SUBMITTED, SubmissionAction.APPROVE): SubmissionState.APPROVED,
    (SubmissionState.SUBMITTED, SubmissionAction.REJECT): SubmissionState.REJECTED,
}


def state_from_status(status: str | None) -> SubmissionState:
    """Map a stored submission status (or no row at all) onto the workflow state."""
    if status is None or status == ComplianceStatus.PENDING.value:
        return SubmissionState.NO_SUBMISSION
    return SubmissionState(status)


def is_live(state: SubmissionState) -> bool:
    return state in (SubmissionState.SUBMITTED, SubmissionState.APPROVED)


def can_submit(state: SubmissionState) -> bool:
    return (state, SubmissionAction.SUBMIT) in _TRANSITIONS


def transition(
    current: SubmissionState,
    action: SubmissionAction,
    *,
    submission_id: int | None = None,
) -> SubmissionState:
    next_state = _TRANSITIONS.get((current, action))
    if next_state is not None:
        return next_state
    if action == SubmissionAction.SUBMIT:
        raise AlreadySubmitted(submission_id=submission_id, status=current.value)
    raise InvalidTransition(current=current.value, action=action.value)
