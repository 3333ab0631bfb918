from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from compliance.core.errors import ComplianceError
from compliance.core.router_guard import error_response, require_admin, require_auth_user
from compliance.db import get_db
from compliance.route_logging import EndpointNameRoute
from compliance.models import Role
from compliance.schemas import ComplianceFormCreateRequest, ComplianceFormUpdateRequest
from compliance.services.form_schema_service import (
    create_compliance_form,
    get_compliance_form,
    get_form_payload,
    list_compliance_forms,
    serialize_form,
    update_compliance_form,
)


router = APIRouter(prefix='/api/compliance/forms', tags=['Compliance Forms'], route_class=EndpointNameRoute)


def _field_dicts(fields) -> list[dict]:
    return [field.model_dump(exclude_none=True) for field in fields]


@router.get('')
def list_forms(
    request: Request,
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    require_admin(request)
    return {'forms': [serialize_form(form) for form in list_compliance_forms(db, include_inactive=include_inactive)]}


@router.get('/{form_id}')
def get_form(form_id: int, request: Request, bypass_cache: bool = Query(default=False), db: Session = Depends(get_db)):
    user = require_auth_user(request)
    if user['role'] == Role.ADMIN.value:
        form = get_compliance_form(db, form_id, include_inactive=True)
        if form is None:
            raise HTTPException(status_code=404, detail='Compliance form not found')
        return serialize_form(form)
    payload = get_form_payload(db, form_id, bypass_cache=bypass_cache)
    if payload is None:
        raise HTTPException(status_code=404, detail='Compliance form not found')
    return payload


@router.post('', status_code=201)
def create_form(payload: ComplianceFormCreateRequest, request: Request, db: Session = Depends(get_db)):
    admin = require_admin(request)
    try:
        form = create_compliance_form(
            db,
            title=payload.title,
            description=payload.description,
            fields=_field_dicts(payload.fields),
            created_by=admin['user_id'],
        )
    except ComplianceError as exc:
        return error_response(exc)
    return serialize_form(form)


@router.put('/{form_id}')
def update_form(form_id: int, payload: ComplianceFormUpdateRequest, request: Request, db: Session = Depends(get_db)):
    require_admin(request)
    try:
        form = update_compliance_form(
            db,
            form_id,
            title=payload.title,
            description=payload.description,
            fields=_field_dicts(payload.fields) if payload.fields is not None else None,
            is_active=payload.is_active,
        )
    except ComplianceError as exc:
        db.rollback()
        return error_response(exc)
    return serialize_form(form)
