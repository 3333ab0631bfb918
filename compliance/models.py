from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from compliance.core.time_provider import utc_now
from compliance.db import Base


class Role(str, Enum):
    ADMIN = 'admin'
    TEACHER = 'teacher'
    PARENT = 'parent'
    STUDENT = 'student'


TARGET_ROLES = (Role.TEACHER.value, Role.PARENT.value, Role.STUDENT.value)


class ComplianceItemType(str, Enum):
    FORM_SUBMISSION = 'form_submission'
    VERIFICATION = 'verification'
    DOCUMENT_UPLOAD = 'document_upload'


class ComplianceStatus(str, Enum):
    PENDING = 'pending'
    SUBMITTED = 'submitted'
    APPROVED = 'approved'
    REJECTED = 'rejected'


LIVE_STATUSES = (ComplianceStatus.SUBMITTED.value, ComplianceStatus.APPROVED.value)


class FieldType(str, Enum):
    TEXT = 'text'
    TEXTAREA = 'textarea'
    SELECT = 'select'
    RADIO = 'radio'
    CHECKBOX = 'checkbox'
    FILE = 'file'
    DATE = 'date'
    NUMBER = 'number'
    EMAIL = 'email'
    PHONE = 'phone'


OPTION_FIELD_TYPES = (FieldType.SELECT.value, FieldType.RADIO.value, FieldType.CHECKBOX.value)


class NotificationType(str, Enum):
    SUBMISSION_APPROVED = 'submission_approved'
    SUBMISSION_REJECTED = 'submission_rejected'
    COMPLIANCE_DUE = 'compliance_due'
    NEW_COMPLIANCE_ITEM = 'new_compliance_item'
    DEADLINE_REMINDER = 'deadline_reminder'
    FORM_SUBMITTED = 'form_submitted'


class ComplianceForm(Base):
    __tablename__ = 'compliance_forms'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    created_by: Mapped[str] = mapped_column(String(64), default='')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    fields: Mapped[list['ComplianceFormField']] = relationship(
        'ComplianceFormField',
        back_populates='form',
        cascade='all, delete-orphan',
        order_by=lambda: (ComplianceFormField.order, ComplianceFormField.id),
    )
    items: Mapped[list['ComplianceItem']] = relationship('ComplianceItem', back_populates='form')


class ComplianceFormField(Base):
    __tablename__ = 'compliance_form_fields'
    __table_args__ = (
        UniqueConstraint('form_id', 'name', name='uq_compliance_form_fields_form_name'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    form_id: Mapped[int] = mapped_column(ForeignKey('compliance_forms.id', ondelete='CASCADE'), index=True)
    name: Mapped[str] = mapped_column(String(120))
    label: Mapped[str] = mapped_column(String(255))
    type: Mapped[str] = mapped_column(String(20))
    required: Mapped[bool] = mapped_column(Boolean, default=False)
    placeholder: Mapped[str | None] = mapped_column(String(255), nullable=True)
    help_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    options: Mapped[list | None] = mapped_column(JSON, nullable=True)
    validation: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    order: Mapped[int] = mapped_column(Integer, default=0)

    form: Mapped['ComplianceForm'] = relationship('ComplianceForm', back_populates='fields')


class ComplianceItem(Base):
    __tablename__ = 'compliance_items'
    __table_args__ = (
        Index('ix_compliance_items_role_active', 'target_role', 'is_active'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text, default='')
    target_role: Mapped[str] = mapped_column(String(20), index=True)
    type: Mapped[str] = mapped_column(String(30))
    is_mandatory: Mapped[bool] = mapped_column(Boolean, default=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    has_form: Mapped[bool] = mapped_column(Boolean, default=False)
    form_id: Mapped[int | None] = mapped_column(ForeignKey('compliance_forms.id'), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_by: Mapped[str] = mapped_column(String(64), default='')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    form: Mapped['ComplianceForm | None'] = relationship('ComplianceForm', back_populates='items')
    submissions: Mapped[list['ComplianceSubmission']] = relationship('ComplianceSubmission', back_populates='compliance_item')


class ComplianceSubmission(Base):
    __tablename__ = 'compliance_submissions'
    __table_args__ = (
        Index('ix_compliance_submissions_item_user', 'compliance_item_id', 'user_id'),
        # At most one live submission per (item, user); rejected rows stay for audit.
        Index(
            'uq_compliance_submissions_live',
            'compliance_item_id',
            'user_id',
            unique=True,
            sqlite_where=text("status IN ('submitted', 'approved')"),
            postgresql_where=text("status IN ('submitted', 'approved')"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    compliance_item_id: Mapped[int] = mapped_column(ForeignKey('compliance_items.id'), index=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    form_data: Mapped[dict] = mapped_column(JSON, default=dict)
    form_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=ComplianceStatus.SUBMITTED.value, index=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    compliance_item: Mapped['ComplianceItem'] = relationship('ComplianceItem', back_populates='submissions')
    files: Mapped[list['ComplianceFile']] = relationship(
        'ComplianceFile',
        back_populates='submission',
        cascade='all, delete-orphan',
        order_by=lambda: ComplianceFile.id,
    )


class ComplianceFile(Base):
    __tablename__ = 'compliance_files'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    submission_id: Mapped[int] = mapped_column(ForeignKey('compliance_submissions.id', ondelete='CASCADE'), index=True)
    field_name: Mapped[str] = mapped_column(String(120))
    original_name: Mapped[str] = mapped_column(String(255))
    storage_path: Mapped[str] = mapped_column(String(500), default='')
    file_url: Mapped[str] = mapped_column(String(1000))
    file_type: Mapped[str] = mapped_column(String(120), default='')
    file_size: Mapped[int] = mapped_column(Integer, default=0)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    submission: Mapped['ComplianceSubmission'] = relationship('ComplianceSubmission', back_populates='files')


class ComplianceNotification(Base):
    __tablename__ = 'compliance_notifications'
    __table_args__ = (
        Index('ix_compliance_notifications_user_read', 'user_id', 'is_read'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    type: Mapped[str] = mapped_column(String(40), index=True)
    title: Mapped[str] = mapped_column(String(200))
    message: Mapped[str] = mapped_column(Text, default='')
    compliance_item_id: Mapped[int | None] = mapped_column(ForeignKey('compliance_items.id'), nullable=True, index=True)
    submission_id: Mapped[int | None] = mapped_column(ForeignKey('compliance_submissions.id'), nullable=True, index=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    # "metadata" is reserved on declarative classes.
    meta: Mapped[dict] = mapped_column('metadata', JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)
