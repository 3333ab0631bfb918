from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Iterable, Mapping

from sqlalchemy import func
from sqlalchemy.orm import Session

from compliance.core.time_provider import TimeProvider, default_time_provider
from compliance.domain.status_machine import can_submit, state_from_status
from compliance.metrics import timed_service
from compliance.models import TARGET_ROLES, ComplianceItem, ComplianceStatus, ComplianceSubmission
from compliance.services.form_schema_service import resolve_item_form
from compliance.services.item_service import list_compliance_items


@dataclass
class ComplianceChecklistItem:
    id: int
    title: str
    description: str
    type: str
    status: str
    is_mandatory: bool
    due_date: str | None
    has_form: bool
    form_id: int | None
    submission_id: int | None
    rejection_reason: str | None
    can_submit: bool
    is_overdue: bool

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ComplianceStats:
    total_items: int = 0
    completed_items: int = 0
    pending_items: int = 0
    overdue_items: int = 0
    completion_percentage: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def completion_percentage(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    # half-up
    return int(completed * 100 / total + 0.5)


def latest_submissions_by_item(
    db: Session,
    *,
    user_id: str,
    item_ids: Iterable[int] | None = None,
) -> dict[int, ComplianceSubmission]:
    query = db.query(ComplianceSubmission).filter(ComplianceSubmission.user_id == str(user_id))
    if item_ids is not None:
        ids = [int(value) for value in item_ids]
        if not ids:
            return {}
        query = query.filter(ComplianceSubmission.compliance_item_id.in_(ids))
    rows = query.order_by(ComplianceSubmission.submitted_at.asc(), ComplianceSubmission.id.asc()).all()
    latest: dict[int, ComplianceSubmission] = {}
    for row in rows:
        latest[row.compliance_item_id] = row
    return latest


def build_checklist_item(
    item: ComplianceItem,
    submission: ComplianceSubmission | None,
    *,
    has_usable_form: bool,
    now,
) -> ComplianceChecklistItem:
    status = submission.status if submission else ComplianceStatus.PENDING.value
    overdue = bool(item.due_date and item.due_date < now and status != ComplianceStatus.APPROVED.value)
    return ComplianceChecklistItem(
        id=item.id,
        title=item.title,
        description=item.description,
        type=item.type,
        status=status,
        is_mandatory=bool(item.is_mandatory),
        due_date=item.due_date.isoformat() if item.due_date else None,
        has_form=has_usable_form,
        form_id=item.form_id if has_usable_form else None,
        submission_id=submission.id if submission else None,
        rejection_reason=submission.rejection_reason if submission else None,
        can_submit=can_submit(state_from_status(submission.status if submission else None)),
        is_overdue=overdue,
    )


@timed_service('compliance.user_checklist')
def get_user_compliance_status(
    db: Session,
    user_id: str,
    role: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> list[ComplianceChecklistItem]:
    items = list_compliance_items(db, role)
    latest = latest_submissions_by_item(db, user_id=user_id, item_ids=[item.id for item in items])
    now = time_provider.utcnow()
    return [
        build_checklist_item(
            item,
            latest.get(item.id),
            has_usable_form=resolve_item_form(db, item) is not None,
            now=now,
        )
        for item in items
    ]


def summarize_checklist(checklist: Iterable[ComplianceChecklistItem]) -> ComplianceStats:
    stats = ComplianceStats()
    for entry in checklist:
        stats.total_items += 1
        if entry.status == ComplianceStatus.APPROVED.value:
            stats.completed_items += 1
        else:
            stats.pending_items += 1
        if entry.is_overdue:
            stats.overdue_items += 1
    stats.completion_percentage = completion_percentage(stats.completed_items, stats.total_items)
    return stats


def get_compliance_stats(
    db: Session,
    user_id: str,
    role: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> ComplianceStats:
    return summarize_checklist(get_user_compliance_status(db, user_id, role, time_provider=time_provider))


def _role_participants(db: Session, role: str) -> list[str]:
    rows = (
        db.query(ComplianceSubmission.user_id)
        .join(ComplianceItem, ComplianceItem.id == ComplianceSubmission.compliance_item_id)
        .filter(ComplianceItem.target_role == role, ComplianceItem.is_active.is_(True))
        .distinct()
        .order_by(ComplianceSubmission.user_id.asc())
        .all()
    )
    return [row.user_id for row in rows]


@timed_service('compliance.admin_stats')
def get_compliance_admin_stats(
    db: Session,
    *,
    role_members: Mapping[str, Iterable[str]] | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    """Organisation-wide totals plus per-role completion across every (item, member) pair.

    ``role_members`` comes from the host's user directory; roles missing from it
    fall back to the users that have submitted something against that role's items.
    """
    status_counts = dict(
        db.query(ComplianceSubmission.status, func.count(ComplianceSubmission.id))
        .group_by(ComplianceSubmission.status)
        .all()
    )
    total_items = int(
        db.query(func.count(ComplianceItem.id)).filter(ComplianceItem.is_active.is_(True)).scalar() or 0
    )

    by_role: dict[str, dict] = {}
    for role in TARGET_ROLES:
        if role_members is not None and role in role_members:
            members = list(dict.fromkeys(str(member) for member in role_members[role]))
        else:
            members = _role_participants(db, role)
        checklist: list[ComplianceChecklistItem] = []
        for member in members:
            checklist.extend(get_user_compliance_status(db, member, role, time_provider=time_provider))
        if not members:
            # Nobody to aggregate over yet: report the role's items as untouched.
            now = time_provider.utcnow()
            checklist = [
                build_checklist_item(item, None, has_usable_form=resolve_item_form(db, item) is not None, now=now)
                for item in list_compliance_items(db, role)
            ]
        by_role[role] = summarize_checklist(checklist).to_dict()

    return {
        'total_items': total_items,
        'total_submissions': int(sum(status_counts.values())),
        'pending_reviews': int(status_counts.get(ComplianceStatus.SUBMITTED.value, 0)),
        'approved_submissions': int(status_counts.get(ComplianceStatus.APPROVED.value, 0)),
        'rejected_submissions': int(status_counts.get(ComplianceStatus.REJECTED.value, 0)),
        'by_role': by_role,
    }
