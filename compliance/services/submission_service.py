from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from compliance.core.errors import AlreadySubmitted, NotFound, ValidationFailed
from compliance.core.time_provider import TimeProvider, default_time_provider
from compliance.domain.status_machine import SubmissionAction, state_from_status, transition
from compliance.metrics import record_workflow_event
from compliance.models import LIVE_STATUSES, ComplianceFile, ComplianceItem, ComplianceStatus, ComplianceSubmission
from compliance.services.field_validator import IncomingFile, validate_form
from compliance.services.file_storage_service import (
    StorageBackend,
    StoredObject,
    build_object_path,
    discard_objects,
    get_storage_backend,
)
from compliance.services.form_schema_service import get_form_fields, resolve_item_form
from compliance.services.item_service import get_compliance_item
from compliance.services.notification_service import notify_form_submitted


logger = logging.getLogger(__name__)


def latest_submission(db: Session, item_id: int, user_id: str) -> ComplianceSubmission | None:
    return (
        db.query(ComplianceSubmission)
        .filter(
            ComplianceSubmission.compliance_item_id == int(item_id),
            ComplianceSubmission.user_id == str(user_id),
        )
        .order_by(ComplianceSubmission.submitted_at.desc(), ComplianceSubmission.id.desc())
        .first()
    )


def _live_submission(db: Session, item_id: int, user_id: str) -> ComplianceSubmission | None:
    return (
        db.query(ComplianceSubmission)
        .filter(
            ComplianceSubmission.compliance_item_id == int(item_id),
            ComplianceSubmission.user_id == str(user_id),
            ComplianceSubmission.status.in_(LIVE_STATUSES),
        )
        .first()
    )


def _ensure_submittable(db: Session, item: ComplianceItem, user_id: str) -> None:
    latest = latest_submission(db, item.id, user_id)
    current = state_from_status(latest.status if latest else None)
    try:
        transition(current, SubmissionAction.SUBMIT, submission_id=latest.id if latest else None)
    except AlreadySubmitted:
        record_workflow_event('submission_conflict')
        logger.info('submission_blocked item_id=%s user_id=%s status=%s', item.id, user_id, current.value)
        raise


def _store_files(
    storage: StorageBackend,
    *,
    user_id: str,
    item_id: int,
    files: Iterable[IncomingFile],
) -> list[tuple[IncomingFile, StoredObject]]:
    stored: list[tuple[IncomingFile, StoredObject]] = []
    completed = False
    try:
        for upload in files:
            path = build_object_path(user_id=user_id, item_id=item_id, filename=upload.filename)
            stored.append((upload, storage.upload(path, upload.content, upload.content_type)))
        completed = True
    finally:
        if not completed:
            discard_objects([obj.path for _, obj in stored], storage)
    return stored


def _create_submission(
    db: Session,
    *,
    item: ComplianceItem,
    user_id: str,
    form_data: dict[str, Any],
    form_version: int | None,
    stored_files: list[tuple[IncomingFile, StoredObject]],
    storage: StorageBackend | None,
    time_provider: TimeProvider,
) -> ComplianceSubmission:
    """Insert the submission, its file rows and the receipt notification in one transaction."""
    now = time_provider.utcnow()
    committed = False
    try:
        submission = ComplianceSubmission(
            compliance_item_id=item.id,
            user_id=str(user_id),
            form_data=form_data,
            form_version=form_version,
            status=ComplianceStatus.SUBMITTED.value,
            submitted_at=now,
        )
        db.add(submission)
        db.flush()
        for upload, stored in stored_files:
            db.add(
                ComplianceFile(
                    submission_id=submission.id,
                    field_name=upload.field_name,
                    original_name=upload.filename,
                    storage_path=stored.path,
                    file_url=stored.public_url,
                    file_type=upload.content_type or '',
                    file_size=upload.size,
                    uploaded_at=now,
                )
            )
        notify_form_submitted(db, submission, item)
        db.commit()
        committed = True
    except IntegrityError as exc:
        db.rollback()
        record_workflow_event('submission_conflict')
        live = _live_submission(db, item.id, user_id)
        raise AlreadySubmitted(
            submission_id=live.id if live else None,
            status=live.status if live else ComplianceStatus.SUBMITTED.value,
        ) from exc
    finally:
        if not committed:
            db.rollback()
            if stored_files:
                discard_objects([stored.path for _, stored in stored_files], storage)

    db.refresh(submission)
    record_workflow_event('submission_created')
    logger.info(
        'submission_created submission_id=%s item_id=%s user_id=%s files=%s',
        submission.id,
        item.id,
        user_id,
        len(stored_files),
    )
    return submission


def mark_compliance_as_complete(
    db: Session,
    item_id: int,
    user_id: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> ComplianceSubmission:
    item = get_compliance_item(db, item_id)
    if resolve_item_form(db, item) is not None:
        raise ValidationFailed(errors={'form': 'This compliance item must be completed by submitting its form'})
    _ensure_submittable(db, item, user_id)
    return _create_submission(
        db,
        item=item,
        user_id=user_id,
        form_data={},
        form_version=None,
        stored_files=[],
        storage=None,
        time_provider=time_provider,
    )


def submit_compliance_form(
    db: Session,
    item_id: int,
    user_id: str,
    form_data: Mapping[str, Any] | None,
    files: Iterable[IncomingFile] | None = None,
    *,
    storage: StorageBackend | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> ComplianceSubmission:
    item = get_compliance_item(db, item_id)
    form = resolve_item_form(db, item)
    uploads = list(files or [])
    if form is None:
        if uploads:
            record_workflow_event('validation_failed')
            logger.info('submission_files_without_form item_id=%s user_id=%s files=%s', item.id, user_id, len(uploads))
            raise ValidationFailed(
                file_errors=[f'{upload.filename} is not attached to a file field' for upload in uploads]
            )
        logger.info('submission_without_form item_id=%s user_id=%s', item.id, user_id)
        return mark_compliance_as_complete(db, item.id, user_id, time_provider=time_provider)

    _ensure_submittable(db, item, user_id)

    result = validate_form(get_form_fields(form), form_data or {}, uploads)
    if not result.is_valid:
        record_workflow_event('validation_failed')
        logger.info(
            'submission_invalid item_id=%s user_id=%s field_errors=%s file_errors=%s',
            item.id,
            user_id,
            len(result.errors),
            len(result.file_errors),
        )
        raise ValidationFailed(errors=result.errors, file_errors=result.file_errors)

    backend = storage or get_storage_backend()
    stored_files = _store_files(backend, user_id=str(user_id), item_id=item.id, files=uploads) if uploads else []
    return _create_submission(
        db,
        item=item,
        user_id=user_id,
        form_data=result.cleaned_data,
        form_version=int(form.version or 1),
        stored_files=stored_files,
        storage=backend,
        time_provider=time_provider,
    )


def get_compliance_submission(db: Session, submission_id: int) -> ComplianceSubmission:
    row = (
        db.query(ComplianceSubmission)
        .options(selectinload(ComplianceSubmission.files), selectinload(ComplianceSubmission.compliance_item))
        .filter(ComplianceSubmission.id == int(submission_id))
        .first()
    )
    if row is None:
        raise NotFound('Compliance submission not found')
    return row


def list_compliance_submissions(
    db: Session,
    *,
    item_id: int | None = None,
    user_id: str | None = None,
    status: str | None = None,
    reviewer_id: str | None = None,
) -> list[ComplianceSubmission]:
    query = db.query(ComplianceSubmission).options(
        selectinload(ComplianceSubmission.files),
        selectinload(ComplianceSubmission.compliance_item),
    )
    if item_id:
        query = query.filter(ComplianceSubmission.compliance_item_id == int(item_id))
    if user_id:
        query = query.filter(ComplianceSubmission.user_id == str(user_id))
    if status:
        query = query.filter(ComplianceSubmission.status == status)
    if reviewer_id:
        query = query.filter(ComplianceSubmission.reviewed_by == str(reviewer_id))
    return query.order_by(ComplianceSubmission.submitted_at.desc(), ComplianceSubmission.id.desc()).all()


def serialize_file(row: ComplianceFile) -> dict:
    return {
        'id': row.id,
        'submission_id': row.submission_id,
        'field_name': row.field_name,
        'original_name': row.original_name,
        'file_url': row.file_url,
        'file_type': row.file_type,
        'file_size': row.file_size,
        'uploaded_at': row.uploaded_at.isoformat() if row.uploaded_at else None,
    }


def serialize_submission(row: ComplianceSubmission) -> dict:
    item = row.compliance_item
    return {
        'id': row.id,
        'compliance_item_id': row.compliance_item_id,
        'compliance_item_title': item.title if item else None,
        'user_id': row.user_id,
        'form_data': dict(row.form_data or {}),
        'form_version': row.form_version,
        'status': row.status,
        'submitted_at': row.submitted_at.isoformat() if row.submitted_at else None,
        'reviewed_at': row.reviewed_at.isoformat() if row.reviewed_at else None,
        'reviewed_by': row.reviewed_by,
        'rejection_reason': row.rejection_reason,
        'files': [serialize_file(file_row) for file_row in (row.files or [])],
    }
