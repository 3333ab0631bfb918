from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from compliance.core.errors import ComplianceError
from compliance.core.router_guard import error_response, require_auth_user
from compliance.db import get_db
from compliance.route_logging import EndpointNameRoute
from compliance.services.notification_service import (
    count_unread_notifications,
    delete_notification,
    get_notifications,
    mark_all_notifications_as_read,
    mark_notification_as_read,
    serialize_notification,
)


router = APIRouter(prefix='/api/compliance/notifications', tags=['Compliance Notifications'], route_class=EndpointNameRoute)


@router.get('')
def list_notifications(request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    rows = get_notifications(db, user['user_id'])
    return {
        'notifications': [serialize_notification(row) for row in rows],
        'unread_count': sum(1 for row in rows if not row.is_read),
    }


@router.get('/unread-count')
def unread_count(request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    return {'unread_count': count_unread_notifications(db, user['user_id'])}


@router.post('/read-all')
def read_all(request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    return {'ok': True, 'updated': mark_all_notifications_as_read(db, user['user_id'])}


@router.post('/{notification_id}/read')
def read_one(notification_id: int, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    try:
        row = mark_notification_as_read(db, notification_id, user_id=user['user_id'])
    except ComplianceError as exc:
        return error_response(exc)
    return serialize_notification(row)


@router.delete('/{notification_id}')
def remove(notification_id: int, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    try:
        delete_notification(db, notification_id, user_id=user['user_id'])
    except ComplianceError as exc:
        return error_response(exc)
    return {'ok': True}
