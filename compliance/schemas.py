from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


TargetRole = Literal['teacher', 'parent', 'student']
ItemType = Literal['form_submission', 'verification', 'document_upload']
FieldTypeName = Literal['text', 'textarea', 'select', 'radio', 'checkbox', 'file', 'date', 'number', 'email', 'phone']


class ComplianceItemCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    target_role: TargetRole
    type: ItemType
    is_mandatory: bool = True
    due_date: datetime | None = None
    has_form: bool = False
    form_id: int | None = None


class ComplianceItemUpdateRequest(BaseModel):
    title: str | None = Field(default=None, max_length=200)
    description: str | None = None
    target_role: TargetRole | None = None
    type: ItemType | None = None
    is_mandatory: bool | None = None
    due_date: datetime | None = None
    has_form: bool | None = None
    form_id: int | None = None
    is_active: bool | None = None


class FieldValidationRules(BaseModel):
    min_length: int | None = Field(default=None, ge=0)
    max_length: int | None = Field(default=None, ge=0)
    pattern: str | None = None
    min_value: float | None = None
    max_value: float | None = None
    max_file_size: int | None = Field(default=None, gt=0)
    allowed_file_types: list[str] | None = None


class ComplianceFormFieldPayload(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    label: str = Field(min_length=1, max_length=255)
    type: FieldTypeName
    required: bool = False
    placeholder: str | None = None
    help_text: str | None = None
    options: list[str] | None = None
    validation: FieldValidationRules | None = None
    order: int | None = None


class ComplianceFormCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    fields: list[ComplianceFormFieldPayload] = Field(default_factory=list)


class ComplianceFormUpdateRequest(BaseModel):
    title: str | None = Field(default=None, max_length=200)
    description: str | None = None
    fields: list[ComplianceFormFieldPayload] | None = None
    is_active: bool | None = None


class ComplianceReviewRequest(BaseModel):
    action: Literal['approve', 'reject']
    rejection_reason: str | None = None


class ComplianceAnnounceRequest(BaseModel):
    user_ids: list[str] = Field(default_factory=list)


class ComplianceReminderRequest(BaseModel):
    role: TargetRole
    user_ids: list[str] = Field(default_factory=list)
    within_days: int | None = Field(default=None, ge=0, le=60)


class ComplianceAdminStatsRequest(BaseModel):
    role_members: dict[TargetRole, list[str]] | None = None
