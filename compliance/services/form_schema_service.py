from __future__ import annotations

import logging
import re
from typing import Any, Iterable

from sqlalchemy.orm import Session, selectinload

from compliance.cache import cache, cache_key
from compliance.core.errors import NotFound, ValidationFailed
from compliance.domain.fields import FieldSpec, build_field_spec
from compliance.models import OPTION_FIELD_TYPES, ComplianceForm, ComplianceFormField, ComplianceItem, FieldType


logger = logging.getLogger(__name__)

FORMS_CACHE_PREFIX = 'compliance_forms'
VALIDATION_KEYS = (
    'min_length',
    'max_length',
    'pattern',
    'min_value',
    'max_value',
    'max_file_size',
    'allowed_file_types',
)


def invalidate_forms_cache() -> None:
    cache.invalidate_prefix(FORMS_CACHE_PREFIX)


def _clean_validation(raw: dict | None) -> dict:
    cleaned: dict[str, Any] = {}
    for key in VALIDATION_KEYS:
        value = (raw or {}).get(key)
        if value is None or value == '' or value == []:
            continue
        cleaned[key] = list(value) if key == 'allowed_file_types' else value
    return cleaned


def normalize_field_payload(raw: dict, index: int) -> dict:
    options = raw.get('options')
    return {
        'name': str(raw.get('name') or '').strip(),
        'label': str(raw.get('label') or '').strip() or str(raw.get('name') or '').strip(),
        'type': str(raw.get('type') or '').strip().lower(),
        'required': bool(raw.get('required')),
        'placeholder': raw.get('placeholder') or None,
        'help_text': raw.get('help_text') or None,
        'options': [str(option) for option in options] if options else None,
        'validation': _clean_validation(raw.get('validation')),
        'order': int(raw['order']) if raw.get('order') is not None else index,
    }


def check_form_fields(fields: list[dict]) -> None:
    """Enforce unique names, closed field types, options for choice fields and sane rule bounds."""
    errors: dict[str, str] = {}
    seen: set[str] = set()
    valid_types = {member.value for member in FieldType}
    for index, field in enumerate(fields):
        prefix = f'fields[{index}]'
        name = field['name']
        if not name:
            errors[f'{prefix}.name'] = 'Field name is required'
        elif name in seen:
            errors[f'{prefix}.name'] = f'Duplicate field name: {name}'
        seen.add(name)

        if field['type'] not in valid_types:
            errors[f'{prefix}.type'] = f'Unknown field type: {field["type"]}'
            continue
        if field['type'] in OPTION_FIELD_TYPES and not field['options']:
            errors[f'{prefix}.options'] = 'Options are required for select, radio and checkbox fields'

        rules = field['validation']
        pattern = rules.get('pattern')
        if pattern:
            try:
                re.compile(pattern)
            except re.error as exc:
                errors[f'{prefix}.validation.pattern'] = f'Invalid pattern: {exc}'
        for low, high in (('min_length', 'max_length'), ('min_value', 'max_value')):
            if low in rules and high in rules and float(rules[low]) > float(rules[high]):
                errors[f'{prefix}.validation.{low}'] = f'{low} must not exceed {high}'
        if 'max_file_size' in rules and int(rules['max_file_size']) <= 0:
            errors[f'{prefix}.validation.max_file_size'] = 'max_file_size must be positive'
    if errors:
        raise ValidationFailed(errors=errors, message='Invalid form definition')


def _field_signature(field: dict) -> tuple:
    return (
        field['type'],
        tuple(field['options'] or ()),
        tuple(sorted((key, repr(value)) for key, value in field['validation'].items())),
    )


def is_schema_breaking(old_fields: Iterable[dict], new_fields: Iterable[dict]) -> bool:
    """True when data valid against the old schema may be invalid or meaningless under the new one."""
    old_by_name = {field['name']: field for field in old_fields}
    new_by_name = {field['name']: field for field in new_fields}
    if set(old_by_name) - set(new_by_name):
        return True
    for name, new_field in new_by_name.items():
        old_field = old_by_name.get(name)
        if old_field is None:
            if new_field['required']:
                return True
            continue
        if _field_signature(old_field) != _field_signature(new_field):
            return True
        if new_field['required'] and not old_field['required']:
            return True
    return False


def _field_row_to_dict(row: ComplianceFormField) -> dict:
    return {
        'name': row.name,
        'label': row.label,
        'type': row.type,
        'required': bool(row.required),
        'placeholder': row.placeholder,
        'help_text': row.help_text,
        'options': list(row.options) if row.options else None,
        'validation': _clean_validation(row.validation),
        'order': int(row.order or 0),
    }


def _build_field_rows(fields: list[dict]) -> list[ComplianceFormField]:
    return [
        ComplianceFormField(
            name=field['name'],
            label=field['label'],
            type=field['type'],
            required=field['required'],
            placeholder=field['placeholder'],
            help_text=field['help_text'],
            options=field['options'],
            validation=field['validation'] or None,
            order=field['order'],
        )
        for field in fields
    ]


def sorted_field_rows(form: ComplianceForm) -> list[ComplianceFormField]:
    # sorted() is stable, so equal orders keep insertion (id) order.
    rows = sorted(form.fields or [], key=lambda row: row.id or 0)
    return sorted(rows, key=lambda row: int(row.order or 0))


def get_form_fields(form: ComplianceForm) -> list[FieldSpec]:
    return [build_field_spec(row) for row in sorted_field_rows(form)]


def get_compliance_form(db: Session, form_id: int, *, include_inactive: bool = False) -> ComplianceForm | None:
    query = (
        db.query(ComplianceForm)
        .options(selectinload(ComplianceForm.fields))
        .filter(ComplianceForm.id == int(form_id))
    )
    if not include_inactive:
        query = query.filter(ComplianceForm.is_active.is_(True))
    return query.first()


def resolve_item_form(db: Session, item: ComplianceItem) -> ComplianceForm | None:
    """The active form bound to an item, or None when the item completes by manual check-off."""
    if not item.has_form or item.form_id is None:
        return None
    form = get_compliance_form(db, item.form_id)
    if form is None:
        logger.warning('compliance_form_unavailable item_id=%s form_id=%s', item.id, item.form_id)
    return form


def list_compliance_forms(db: Session, *, include_inactive: bool = False) -> list[ComplianceForm]:
    query = db.query(ComplianceForm).options(selectinload(ComplianceForm.fields))
    if not include_inactive:
        query = query.filter(ComplianceForm.is_active.is_(True))
    return query.order_by(ComplianceForm.created_at.desc(), ComplianceForm.id.desc()).all()


def create_compliance_form(
    db: Session,
    *,
    title: str,
    fields: list[dict],
    created_by: str,
    description: str | None = None,
) -> ComplianceForm:
    clean_title = (title or '').strip()
    if not clean_title:
        raise ValidationFailed(errors={'title': 'Title is required'})
    normalized = [normalize_field_payload(field, index) for index, field in enumerate(fields)]
    check_form_fields(normalized)

    form = ComplianceForm(
        title=clean_title,
        description=description or None,
        is_active=True,
        version=1,
        created_by=str(created_by or ''),
        fields=_build_field_rows(normalized),
    )
    db.add(form)
    db.commit()
    db.refresh(form)
    invalidate_forms_cache()
    logger.info('compliance_form_created form_id=%s fields=%s', form.id, len(normalized))
    return form


def update_compliance_form(
    db: Session,
    form_id: int,
    *,
    title: str | None = None,
    description: str | None = None,
    fields: list[dict] | None = None,
    is_active: bool | None = None,
) -> ComplianceForm:
    form = get_compliance_form(db, form_id, include_inactive=True)
    if form is None:
        raise NotFound('Compliance form not found')

    if title is not None:
        clean_title = title.strip()
        if not clean_title:
            raise ValidationFailed(errors={'title': 'Title is required'})
        form.title = clean_title
    if description is not None:
        form.description = description or None
    if is_active is not None:
        form.is_active = bool(is_active)

    if fields is not None:
        normalized = [normalize_field_payload(field, index) for index, field in enumerate(fields)]
        check_form_fields(normalized)
        old_fields = [_field_row_to_dict(row) for row in form.fields]
        if is_schema_breaking(old_fields, normalized):
            form.version = int(form.version or 1) + 1
        form.fields.clear()
        db.flush()
        form.fields.extend(_build_field_rows(normalized))

    db.commit()
    db.refresh(form)
    invalidate_forms_cache()
    logger.info('compliance_form_updated form_id=%s version=%s', form.id, form.version)
    return form


def serialize_field(row: ComplianceFormField) -> dict:
    payload = _field_row_to_dict(row)
    payload['id'] = row.id
    return payload


def serialize_form(form: ComplianceForm) -> dict:
    return {
        'id': form.id,
        'title': form.title,
        'description': form.description,
        'fields': [serialize_field(row) for row in sorted_field_rows(form)],
        'is_active': bool(form.is_active),
        'version': int(form.version or 1),
        'created_by': form.created_by,
        'created_at': form.created_at.isoformat() if form.created_at else None,
        'updated_at': form.updated_at.isoformat() if form.updated_at else None,
    }


def get_form_payload(db: Session, form_id: int, *, bypass_cache: bool = False) -> dict | None:
    key = cache_key(FORMS_CACHE_PREFIX, int(form_id))
    if not bypass_cache:
        cached = cache.get_cached(key)
        if cached is not None:
            return cached
    form = get_compliance_form(db, form_id)
    if form is None:
        return None
    payload = serialize_form(form)
    cache.set_cached(key, payload)
    return payload
