from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from compliance.core.errors import ComplianceError
from compliance.core.router_guard import error_response, require_admin, require_auth_user
from compliance.db import get_db
from compliance.route_logging import EndpointNameRoute
from compliance.models import TARGET_ROLES, Role
from compliance.schemas import ComplianceAnnounceRequest, ComplianceItemCreateRequest, ComplianceItemUpdateRequest
from compliance.services.field_validator import IncomingFile
from compliance.services.item_service import (
    create_compliance_item,
    delete_compliance_item,
    get_compliance_item,
    list_compliance_items,
    list_item_payloads,
    serialize_item,
    update_compliance_item,
)
from compliance.services.notification_service import notify_new_compliance_item
from compliance.services.submission_service import (
    mark_compliance_as_complete,
    serialize_submission,
    submit_compliance_form,
)


router = APIRouter(prefix='/api/compliance/items', tags=['Compliance Items'], route_class=EndpointNameRoute)


def _require_member(request: Request) -> dict:
    user = require_auth_user(request)
    if user['role'] not in TARGET_ROLES:
        raise HTTPException(status_code=403, detail='Compliance items are assigned to teachers, parents and students')
    return user


async def _read_submission_body(request: Request) -> tuple[dict, list[IncomingFile]]:
    content_type = (request.headers.get('content-type') or '').lower()
    if content_type.startswith('application/json'):
        try:
            body = await request.json()
        except json.JSONDecodeError as exc:
            raise HTTPException(status_code=400, detail='Invalid JSON body') from exc
        form_data = body.get('form_data', body) if isinstance(body, dict) else None
        if not isinstance(form_data, dict):
            raise HTTPException(status_code=400, detail='form_data must be an object')
        return form_data, []

    form = await request.form()
    raw_data = form.get('form_data') or '{}'
    try:
        form_data = json.loads(raw_data) if isinstance(raw_data, str) else {}
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail='form_data must be a JSON object') from exc
    if not isinstance(form_data, dict):
        raise HTTPException(status_code=400, detail='form_data must be a JSON object')

    uploads: list[IncomingFile] = []
    for field_name, value in form.multi_items():
        if not isinstance(value, UploadFile) or not value.filename:
            continue
        uploads.append(
            IncomingFile(
                field_name=field_name,
                filename=value.filename,
                content_type=value.content_type or '',
                content=await value.read(),
            )
        )
    return form_data, uploads


@router.get('')
def list_items(
    request: Request,
    role: str | None = Query(default=None),
    include_inactive: bool = Query(default=False),
    bypass_cache: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    user = require_auth_user(request)
    if user['role'] != Role.ADMIN.value:
        return {'items': list_item_payloads(db, user['role'], bypass_cache=bypass_cache)}
    if role and role not in TARGET_ROLES:
        raise HTTPException(status_code=400, detail='Unknown role')
    if include_inactive:
        return {'items': [serialize_item(item) for item in list_compliance_items(db, role, include_inactive=True)]}
    return {'items': list_item_payloads(db, role, bypass_cache=bypass_cache)}


@router.get('/{item_id}')
def get_item(item_id: int, request: Request, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    try:
        item = get_compliance_item(db, item_id, include_inactive=user['role'] == Role.ADMIN.value)
    except ComplianceError as exc:
        return error_response(exc)
    if user['role'] != Role.ADMIN.value and item.target_role != user['role']:
        raise HTTPException(status_code=404, detail='Compliance item not found')
    return serialize_item(item)


@router.post('', status_code=201)
def create_item(payload: ComplianceItemCreateRequest, request: Request, db: Session = Depends(get_db)):
    admin = require_admin(request)
    try:
        item = create_compliance_item(
            db,
            title=payload.title,
            description=payload.description,
            target_role=payload.target_role,
            item_type=payload.type,
            created_by=admin['user_id'],
            is_mandatory=payload.is_mandatory,
            due_date=payload.due_date,
            has_form=payload.has_form,
            form_id=payload.form_id,
        )
    except ComplianceError as exc:
        return error_response(exc)
    return serialize_item(item)


@router.put('/{item_id}')
def update_item(item_id: int, payload: ComplianceItemUpdateRequest, request: Request, db: Session = Depends(get_db)):
    require_admin(request)
    try:
        item = update_compliance_item(db, item_id, payload.model_dump(exclude_unset=True))
    except ComplianceError as exc:
        db.rollback()
        return error_response(exc)
    return serialize_item(item)


@router.delete('/{item_id}')
def delete_item(item_id: int, request: Request, db: Session = Depends(get_db)):
    require_admin(request)
    try:
        return delete_compliance_item(db, item_id)
    except ComplianceError as exc:
        return error_response(exc)


@router.post('/{item_id}/announce')
def announce_item(item_id: int, payload: ComplianceAnnounceRequest, request: Request, db: Session = Depends(get_db)):
    require_admin(request)
    try:
        item = get_compliance_item(db, item_id)
    except ComplianceError as exc:
        return error_response(exc)
    return {'ok': True, 'notified': notify_new_compliance_item(db, item, payload.user_ids)}


@router.post('/{item_id}/complete', status_code=201)
def complete_item(item_id: int, request: Request, db: Session = Depends(get_db)):
    user = _require_member(request)
    try:
        item = get_compliance_item(db, item_id)
        if item.target_role != user['role']:
            raise HTTPException(status_code=404, detail='Compliance item not found')
        submission = mark_compliance_as_complete(db, item_id, user['user_id'])
    except ComplianceError as exc:
        return error_response(exc)
    return serialize_submission(submission)


@router.post('/{item_id}/submit', status_code=201)
async def submit_item(item_id: int, request: Request, db: Session = Depends(get_db)):
    user = _require_member(request)
    form_data, uploads = await _read_submission_body(request)
    try:
        return await run_in_threadpool(_submit_for_user, db, item_id, user, form_data, uploads)
    except ComplianceError as exc:
        return error_response(exc)


def _submit_for_user(db: Session, item_id: int, user: dict, form_data: dict, uploads: list[IncomingFile]) -> dict:
    item = get_compliance_item(db, item_id)
    if item.target_role != user['role']:
        raise HTTPException(status_code=404, detail='Compliance item not found')
    return serialize_submission(submit_compliance_form(db, item_id, user['user_id'], form_data, uploads))
