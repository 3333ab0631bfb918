from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from compliance.core.errors import InvalidTransition, MissingReason, NotFound
from compliance.core.time_provider import TimeProvider, default_time_provider
from compliance.domain.status_machine import SubmissionAction, state_from_status, transition
from compliance.metrics import record_workflow_event
from compliance.models import ComplianceStatus, ComplianceSubmission
from compliance.services.notification_service import notify_review_outcome
from compliance.services.submission_service import get_compliance_submission


logger = logging.getLogger(__name__)


def _parse_action(action: str | SubmissionAction) -> SubmissionAction:
    try:
        parsed = SubmissionAction(action)
    except ValueError as exc:
        raise InvalidTransition(current='unknown', action=str(action), message=f'Unknown review action: {action}') from exc
    if parsed == SubmissionAction.SUBMIT:
        raise InvalidTransition(current='unknown', action=parsed.value, message='Submit is not a review action')
    return parsed


def review_compliance_submission(
    db: Session,
    submission_id: int,
    reviewer_id: str,
    *,
    action: str | SubmissionAction,
    rejection_reason: str | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> ComplianceSubmission:
    review_action = _parse_action(action)
    reason = (rejection_reason or '').strip()
    if review_action == SubmissionAction.REJECT and not reason:
        raise MissingReason()

    exists = db.query(ComplianceSubmission.id).filter(ComplianceSubmission.id == int(submission_id)).first()
    if exists is None:
        raise NotFound('Compliance submission not found')

    target = transition(state_from_status(ComplianceStatus.SUBMITTED.value), review_action)
    # Guarded write: only a row still in "submitted" moves, so concurrent reviewers cannot both win.
    result = db.execute(
        update(ComplianceSubmission)
        .where(
            ComplianceSubmission.id == int(submission_id),
            ComplianceSubmission.status == ComplianceStatus.SUBMITTED.value,
        )
        .values(
            status=target.value,
            reviewed_at=time_provider.utcnow(),
            reviewed_by=str(reviewer_id) if reviewer_id else None,
            rejection_reason=reason if review_action == SubmissionAction.REJECT else None,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        current = db.query(ComplianceSubmission.status).filter(ComplianceSubmission.id == int(submission_id)).scalar()
        record_workflow_event('review_conflict')
        logger.warning(
            'review_conflict submission_id=%s action=%s current_status=%s reviewer_id=%s',
            submission_id,
            review_action.value,
            current,
            reviewer_id,
        )
        raise InvalidTransition(current=str(current), action=review_action.value)

    db.expire_all()
    submission = get_compliance_submission(db, submission_id)
    notify_review_outcome(db, submission, submission.compliance_item)
    db.commit()
    db.refresh(submission)

    record_workflow_event('review_approved' if review_action == SubmissionAction.APPROVE else 'review_rejected')
    logger.info(
        'submission_reviewed submission_id=%s status=%s reviewer_id=%s',
        submission.id,
        submission.status,
        reviewer_id,
    )
    return submission
