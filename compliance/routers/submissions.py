from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from compliance.core.errors import ComplianceError
from compliance.core.router_guard import error_response, require_admin, require_auth_user
from compliance.db import get_db
from compliance.route_logging import EndpointNameRoute
from compliance.models import TARGET_ROLES, Role
from compliance.schemas import ComplianceAdminStatsRequest, ComplianceReminderRequest, ComplianceReviewRequest
from compliance.services.notification_service import queue_deadline_reminders
from compliance.services.review_service import review_compliance_submission
from compliance.services.stats_service import (
    get_compliance_admin_stats,
    get_user_compliance_status,
    summarize_checklist,
)
from compliance.services.submission_service import (
    get_compliance_submission,
    list_compliance_submissions,
    serialize_submission,
)


router = APIRouter(prefix='/api/compliance', tags=['Compliance Submissions'], route_class=EndpointNameRoute)


def _require_member(request: Request) -> dict:
    user = require_auth_user(request)
    if user['role'] not in TARGET_ROLES:
        raise HTTPException(status_code=403, detail='Checklists are only kept for teachers, parents and students')
    return user


@router.get('/me/checklist')
def my_checklist(request: Request, db: Session = Depends(get_db)):
    user = _require_member(request)
    checklist = get_user_compliance_status(db, user['user_id'], user['role'])
    return {
        'items': [entry.to_dict() for entry in checklist],
        'stats': summarize_checklist(checklist).to_dict(),
    }


@router.get('/me/stats')
def my_stats(request: Request, db: Session = Depends(get_db)):
    user = _require_member(request)
    return summarize_checklist(get_user_compliance_status(db, user['user_id'], user['role'])).to_dict()


@router.get('/admin/stats')
def admin_stats(request: Request, db: Session = Depends(get_db)):
    require_admin(request)
    return get_compliance_admin_stats(db)


@router.post('/admin/stats')
def admin_stats_for_members(payload: ComplianceAdminStatsRequest, request: Request, db: Session = Depends(get_db)):
    require_admin(request)
    return get_compliance_admin_stats(db, role_members=payload.role_members)


@router.get('/submissions')
def list_submissions(
    request: Request,
    item_id: int | None = Query(default=None),
    user_id: str | None = Query(default=None),
    status: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    user = require_auth_user(request)
    if user['role'] != Role.ADMIN.value:
        user_id = user['user_id']
    rows = list_compliance_submissions(db, item_id=item_id, user_id=user_id, status=status)
    return {'submissions': [serialize_submission(row) for row in rows]}


@router.get('/submissions/{submission_id}')
def get_submission(submission_id: int, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    try:
        row = get_compliance_submission(db, submission_id)
    except ComplianceError as exc:
        return error_response(exc)
    if user['role'] != Role.ADMIN.value and row.user_id != user['user_id']:
        raise HTTPException(status_code=404, detail='Compliance submission not found')
    return serialize_submission(row)


@router.post('/submissions/{submission_id}/review')
def review_submission(
    submission_id: int,
    payload: ComplianceReviewRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    admin = require_admin(request)
    try:
        row = review_compliance_submission(
            db,
            submission_id,
            admin['user_id'],
            action=payload.action,
            rejection_reason=payload.rejection_reason,
        )
    except ComplianceError as exc:
        return error_response(exc)
    return serialize_submission(row)


@router.post('/reminders')
def queue_reminders(payload: ComplianceReminderRequest, request: Request, db: Session = Depends(get_db)):
    require_admin(request)
    summary = queue_deadline_reminders(db, role=payload.role, user_ids=payload.user_ids, within_days=payload.within_days)
    return {'ok': True, **summary}
