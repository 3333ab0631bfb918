from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Iterable

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from compliance.config import settings
from compliance.core.errors import NotFound
from compliance.core.time_provider import TimeProvider, default_time_provider
from compliance.metrics import record_workflow_event
from compliance.models import (
    ComplianceItem,
    ComplianceNotification,
    ComplianceStatus,
    ComplianceSubmission,
    NotificationType,
)


logger = logging.getLogger(__name__)

NOTIFICATION_TITLES = {
    NotificationType.SUBMISSION_APPROVED: 'Submission approved',
    NotificationType.SUBMISSION_REJECTED: 'Submission rejected',
    NotificationType.COMPLIANCE_DUE: 'Compliance item overdue',
    NotificationType.NEW_COMPLIANCE_ITEM: 'New compliance item',
    NotificationType.DEADLINE_REMINDER: 'Compliance deadline approaching',
    NotificationType.FORM_SUBMITTED: 'Form submitted',
}


def create_notification(
    db: Session,
    *,
    user_id: str,
    notification_type: NotificationType,
    message: str,
    compliance_item_id: int | None = None,
    submission_id: int | None = None,
    metadata: dict[str, Any] | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> ComplianceNotification:
    """Stage a notification on the caller's session; the caller owns the commit."""
    row = ComplianceNotification(
        user_id=str(user_id),
        type=notification_type.value,
        title=NOTIFICATION_TITLES[notification_type],
        message=message,
        compliance_item_id=compliance_item_id,
        submission_id=submission_id,
        is_read=False,
        meta=dict(metadata or {}),
        created_at=time_provider.utcnow(),
    )
    db.add(row)
    record_workflow_event('notification_created')
    return row


def notify_form_submitted(db: Session, submission: ComplianceSubmission, item: ComplianceItem) -> ComplianceNotification:
    return create_notification(
        db,
        user_id=submission.user_id,
        notification_type=NotificationType.FORM_SUBMITTED,
        message=f'Your submission for "{item.title}" was received and is awaiting review.',
        compliance_item_id=item.id,
        submission_id=submission.id,
    )


def notify_review_outcome(db: Session, submission: ComplianceSubmission, item: ComplianceItem | None) -> ComplianceNotification:
    title = item.title if item else 'item'
    if submission.status == ComplianceStatus.APPROVED.value:
        return create_notification(
            db,
            user_id=submission.user_id,
            notification_type=NotificationType.SUBMISSION_APPROVED,
            message=f'Your compliance submission for "{title}" has been approved.',
            compliance_item_id=submission.compliance_item_id,
            submission_id=submission.id,
        )
    reason = submission.rejection_reason or ''
    return create_notification(
        db,
        user_id=submission.user_id,
        notification_type=NotificationType.SUBMISSION_REJECTED,
        message=f'Your compliance submission for "{title}" has been rejected. Reason: {reason}',
        compliance_item_id=submission.compliance_item_id,
        submission_id=submission.id,
        metadata={'rejection_reason': reason},
    )


def notify_new_compliance_item(db: Session, item: ComplianceItem, user_ids: Iterable[str]) -> int:
    """Announce a newly published item to the given members of its target role."""
    metadata = {'due_date': item.due_date.isoformat() if item.due_date else None}
    created = 0
    for user_id in dict.fromkeys(str(value) for value in user_ids if str(value or '').strip()):
        create_notification(
            db,
            user_id=user_id,
            notification_type=NotificationType.NEW_COMPLIANCE_ITEM,
            message=f'A new compliance item "{item.title}" has been assigned to you.',
            compliance_item_id=item.id,
            metadata=metadata,
        )
        created += 1
    db.commit()
    return created


def _already_notified_today(
    db: Session,
    *,
    user_id: str,
    item_id: int,
    notification_type: NotificationType,
    time_provider: TimeProvider,
) -> bool:
    day_start = time_provider.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    return (
        db.query(ComplianceNotification.id)
        .filter(
            ComplianceNotification.user_id == user_id,
            ComplianceNotification.compliance_item_id == item_id,
            ComplianceNotification.type == notification_type.value,
            ComplianceNotification.created_at >= day_start,
        )
        .first()
        is not None
    )


def queue_deadline_reminders(
    db: Session,
    *,
    role: str,
    user_ids: Iterable[str],
    within_days: int | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    """Remind users of unfinished items that are due soon or already overdue.

    Sends at most one reminder per (user, item, type) per day, and skips items
    whose latest submission is already submitted or approved.
    """
    from compliance.services.stats_service import latest_submissions_by_item

    now = time_provider.utcnow()
    days = settings.deadline_reminder_days if within_days is None else within_days
    horizon = now + timedelta(days=max(0, int(days)))
    items = (
        db.query(ComplianceItem)
        .filter(
            ComplianceItem.is_active.is_(True),
            ComplianceItem.target_role == role,
            ComplianceItem.due_date.is_not(None),
            ComplianceItem.due_date <= horizon,
        )
        .order_by(ComplianceItem.due_date.asc(), ComplianceItem.id.asc())
        .all()
    )
    summary = {'deadline_reminder': 0, 'compliance_due': 0, 'skipped': 0}
    if not items:
        return summary

    for user_id in dict.fromkeys(str(value) for value in user_ids):
        latest = latest_submissions_by_item(db, user_id=user_id, item_ids=[item.id for item in items])
        for item in items:
            submission = latest.get(item.id)
            if submission and submission.status in (ComplianceStatus.SUBMITTED.value, ComplianceStatus.APPROVED.value):
                summary['skipped'] += 1
                continue
            overdue = item.due_date < now
            notification_type = NotificationType.COMPLIANCE_DUE if overdue else NotificationType.DEADLINE_REMINDER
            if _already_notified_today(db, user_id=user_id, item_id=item.id, notification_type=notification_type, time_provider=time_provider):
                summary['skipped'] += 1
                continue
            due_label = item.due_date.date().isoformat()
            message = (
                f'"{item.title}" was due on {due_label} and is still incomplete.'
                if overdue
                else f'"{item.title}" is due on {due_label}.'
            )
            create_notification(
                db,
                user_id=user_id,
                notification_type=notification_type,
                message=message,
                compliance_item_id=item.id,
                submission_id=submission.id if submission else None,
                metadata={'due_date': item.due_date.isoformat()},
                time_provider=time_provider,
            )
            summary[notification_type.value] += 1
    db.commit()
    logger.info(
        'deadline_reminders_queued role=%s reminders=%s overdue=%s skipped=%s',
        role,
        summary['deadline_reminder'],
        summary['compliance_due'],
        summary['skipped'],
    )
    return summary


def serialize_notification(row: ComplianceNotification) -> dict:
    return {
        'id': row.id,
        'user_id': row.user_id,
        'type': row.type,
        'title': row.title,
        'message': row.message,
        'compliance_item_id': row.compliance_item_id,
        'submission_id': row.submission_id,
        'is_read': bool(row.is_read),
        'read_at': row.read_at.isoformat() if row.read_at else None,
        'metadata': dict(row.meta or {}),
        'created_at': row.created_at.isoformat() if row.created_at else None,
    }


def get_notifications(db: Session, user_id: str, *, strict: bool = False) -> list[ComplianceNotification]:
    try:
        return (
            db.query(ComplianceNotification)
            .filter(ComplianceNotification.user_id == str(user_id))
            .order_by(ComplianceNotification.created_at.desc(), ComplianceNotification.id.desc())
            .all()
        )
    except SQLAlchemyError:
        if strict:
            raise
        logger.exception('notification_fetch_failed user_id=%s', user_id)
        db.rollback()
        return []


def count_unread_notifications(db: Session, user_id: str) -> int:
    return int(
        db.query(func.count(ComplianceNotification.id))
        .filter(ComplianceNotification.user_id == str(user_id), ComplianceNotification.is_read.is_(False))
        .scalar()
        or 0
    )


def _owned_notification(db: Session, notification_id: int, user_id: str | None) -> ComplianceNotification:
    query = db.query(ComplianceNotification).filter(ComplianceNotification.id == int(notification_id))
    if user_id is not None:
        query = query.filter(ComplianceNotification.user_id == str(user_id))
    row = query.first()
    if not row:
        raise NotFound('Notification not found')
    return row


def mark_notification_as_read(
    db: Session,
    notification_id: int,
    *,
    user_id: str | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> ComplianceNotification:
    row = _owned_notification(db, notification_id, user_id)
    if not row.is_read:
        row.is_read = True
        row.read_at = time_provider.utcnow()
        db.commit()
        db.refresh(row)
    return row


def mark_all_notifications_as_read(
    db: Session,
    user_id: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> int:
    updated = (
        db.query(ComplianceNotification)
        .filter(ComplianceNotification.user_id == str(user_id), ComplianceNotification.is_read.is_(False))
        .update({'is_read': True, 'read_at': time_provider.utcnow()}, synchronize_session=False)
    )
    db.commit()
    return int(updated or 0)


def delete_notification(db: Session, notification_id: int, *, user_id: str | None = None) -> None:
    row = _owned_notification(db, notification_id, user_id)
    db.delete(row)
    db.commit()
