from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from compliance.cache import cache, cache_key
from compliance.core.errors import NotFound, ValidationFailed
from compliance.core.time_provider import to_storage_utc
from compliance.models import TARGET_ROLES, ComplianceItem, ComplianceItemType, ComplianceSubmission
from compliance.services.form_schema_service import get_compliance_form


logger = logging.getLogger(__name__)

ITEMS_CACHE_PREFIX = 'compliance_items'
_ITEM_TYPES = tuple(member.value for member in ComplianceItemType)
_EDITABLE_FIELDS = ('title', 'description', 'target_role', 'type', 'is_mandatory', 'due_date', 'has_form', 'form_id', 'is_active')


def invalidate_items_cache() -> None:
    cache.invalidate_prefix(ITEMS_CACHE_PREFIX)


def _check_item_values(db: Session, values: dict) -> None:
    errors: dict[str, str] = {}
    if not (values.get('title') or '').strip():
        errors['title'] = 'Title is required'
    if not (values.get('description') or '').strip():
        errors['description'] = 'Description is required'
    if values.get('target_role') not in TARGET_ROLES:
        errors['target_role'] = f'target_role must be one of: {", ".join(TARGET_ROLES)}'
    if values.get('type') not in _ITEM_TYPES:
        errors['type'] = f'type must be one of: {", ".join(_ITEM_TYPES)}'
    if values.get('has_form'):
        form_id = values.get('form_id')
        if form_id is None:
            errors['form_id'] = 'form_id is required when has_form is set'
        elif get_compliance_form(db, form_id) is None:
            errors['form_id'] = 'Form not found or inactive'
    if errors:
        raise ValidationFailed(errors=errors, message='Invalid compliance item')


def _normalize_due_date(value: datetime | None) -> datetime | None:
    return to_storage_utc(value) if value is not None else None


def list_compliance_items(
    db: Session,
    role: str | None = None,
    *,
    include_inactive: bool = False,
) -> list[ComplianceItem]:
    query = db.query(ComplianceItem)
    if not include_inactive:
        query = query.filter(ComplianceItem.is_active.is_(True))
    if role:
        query = query.filter(ComplianceItem.target_role == role)
    return query.order_by(ComplianceItem.created_at.desc(), ComplianceItem.id.desc()).all()


def get_compliance_item(db: Session, item_id: int, *, include_inactive: bool = False) -> ComplianceItem:
    query = db.query(ComplianceItem).filter(ComplianceItem.id == int(item_id))
    if not include_inactive:
        query = query.filter(ComplianceItem.is_active.is_(True))
    item = query.first()
    if item is None:
        raise NotFound('Compliance item not found')
    return item


def create_compliance_item(
    db: Session,
    *,
    title: str,
    description: str,
    target_role: str,
    item_type: str,
    created_by: str,
    is_mandatory: bool = True,
    due_date: datetime | None = None,
    has_form: bool = False,
    form_id: int | None = None,
) -> ComplianceItem:
    values = {
        'title': (title or '').strip(),
        'description': (description or '').strip(),
        'target_role': (target_role or '').strip().lower(),
        'type': (item_type or '').strip().lower(),
        'is_mandatory': bool(is_mandatory),
        'due_date': _normalize_due_date(due_date),
        'has_form': bool(has_form),
        'form_id': form_id if has_form else None,
    }
    _check_item_values(db, values)

    item = ComplianceItem(**values, is_active=True, created_by=str(created_by or ''))
    db.add(item)
    db.commit()
    db.refresh(item)
    invalidate_items_cache()
    logger.info('compliance_item_created item_id=%s role=%s created_by=%s', item.id, item.target_role, item.created_by)
    return item


def update_compliance_item(db: Session, item_id: int, updates: dict) -> ComplianceItem:
    item = get_compliance_item(db, item_id, include_inactive=True)
    values = {name: getattr(item, name) for name in _EDITABLE_FIELDS}
    for name, value in updates.items():
        if name not in _EDITABLE_FIELDS:
            continue
        if name == 'due_date':
            value = _normalize_due_date(value)
        elif name in ('title', 'description') and value is not None:
            value = str(value).strip()
        elif name in ('target_role', 'type') and value is not None:
            value = str(value).strip().lower()
        values[name] = value
    if not values['has_form']:
        values['form_id'] = None
    if values['is_active']:
        _check_item_values(db, values)

    for name, value in values.items():
        setattr(item, name, value)
    db.commit()
    db.refresh(item)
    invalidate_items_cache()
    logger.info('compliance_item_updated item_id=%s fields=%s', item.id, ','.join(sorted(updates)))
    return item


def delete_compliance_item(db: Session, item_id: int) -> dict:
    """Remove an item; items with submissions are only deactivated so their history stays intact."""
    item = get_compliance_item(db, item_id, include_inactive=True)
    has_submissions = (
        db.query(ComplianceSubmission.id)
        .filter(ComplianceSubmission.compliance_item_id == item.id)
        .first()
        is not None
    )
    if has_submissions:
        item.is_active = False
        db.commit()
        invalidate_items_cache()
        logger.info('compliance_item_deactivated item_id=%s', item.id)
        return {'ok': True, 'deleted': False, 'deactivated': True}

    db.delete(item)
    db.commit()
    invalidate_items_cache()
    logger.info('compliance_item_deleted item_id=%s', item_id)
    return {'ok': True, 'deleted': True, 'deactivated': False}


def serialize_item(item: ComplianceItem) -> dict:
    return {
        'id': item.id,
        'title': item.title,
        'description': item.description,
        'target_role': item.target_role,
        'type': item.type,
        'is_mandatory': bool(item.is_mandatory),
        'due_date': item.due_date.isoformat() if item.due_date else None,
        'has_form': bool(item.has_form),
        'form_id': item.form_id,
        'is_active': bool(item.is_active),
        'created_by': item.created_by,
        'created_at': item.created_at.isoformat() if item.created_at else None,
        'updated_at': item.updated_at.isoformat() if item.updated_at else None,
    }


def list_item_payloads(db: Session, role: str | None = None, *, bypass_cache: bool = False) -> list[dict]:
    key = cache_key(ITEMS_CACHE_PREFIX, role or 'all')
    if not bypass_cache:
        cached = cache.get_cached(key)
        if cached is not None:
            return cached
    payload = [serialize_item(item) for item in list_compliance_items(db, role)]
    cache.set_cached(key, payload)
    return payload
