from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Mapping

from compliance.domain.fields import (
    CheckboxField,
    DateField,
    EmailField,
    FieldSpec,
    FileField,
    NumberField,
    PhoneField,
    RadioField,
    SelectField,
    TextareaField,
    TextField,
)


EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
PHONE_RE = re.compile(r'^\+?[\d\s\-()]+$')

_STRING_SPECS = (TextField, TextareaField, EmailField, PhoneField)


@dataclass(frozen=True)
class IncomingFile:
    """A file attached to one field of a submission, held in memory until stored."""

    field_name: str
    filename: str
    content_type: str
    content: bytes = b''

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class FieldResult:
    ok: bool
    error: str | None = None
    file_errors: list[str] = field(default_factory=list)
    value: Any = None


@dataclass
class FormValidationResult:
    is_valid: bool
    errors: dict[str, str] = field(default_factory=dict)
    file_errors: list[str] = field(default_factory=list)
    cleaned_data: dict[str, Any] = field(default_factory=dict)


def format_file_size(size: int) -> str:
    if size < 1024:
        return f'{size} B'
    if size < 1024 * 1024:
        return f'{size / 1024:.1f} KB'
    return f'{size / (1024 * 1024):.1f} MB'


def _is_empty(value: Any) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def _fail(message: str) -> FieldResult:
    return FieldResult(ok=False, error=message)


def _check_string(spec, value: Any) -> FieldResult:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return _fail(f'{spec.label} must be text')
    clean = value.strip()
    if spec.min_length and len(clean) < spec.min_length:
        return _fail(f'{spec.label} must be at least {spec.min_length} characters')
    if spec.max_length and len(clean) > spec.max_length:
        return _fail(f'{spec.label} must not exceed {spec.max_length} characters')
    if spec.pattern and not re.search(spec.pattern, value):
        return _fail(f'{spec.label} format is invalid')
    if isinstance(spec, EmailField) and not EMAIL_RE.match(clean):
        return _fail('Please enter a valid email address')
    if isinstance(spec, PhoneField) and not PHONE_RE.match(clean):
        return _fail('Please enter a valid phone number')
    return FieldResult(ok=True, value=value)


def _check_date(spec: DateField, value: Any) -> FieldResult:
    try:
        date.fromisoformat(str(value).strip())
    except ValueError:
        return _fail(f'{spec.label} must be a valid date (YYYY-MM-DD)')
    return FieldResult(ok=True, value=str(value).strip())


def _coerce_number(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    try:
        parsed = float(str(value).strip())
    except ValueError:
        return None
    if not math.isfinite(parsed):
        return None
    return int(parsed) if parsed.is_integer() else parsed


def _check_number(spec: NumberField, value: Any) -> FieldResult:
    number = _coerce_number(value)
    if number is None:
        return _fail(f'{spec.label} must be a number')
    if spec.min_value is not None and number < spec.min_value:
        return _fail(f'{spec.label} must be at least {spec.min_value:g}')
    if spec.max_value is not None and number > spec.max_value:
        return _fail(f'{spec.label} must not exceed {spec.max_value:g}')
    return FieldResult(ok=True, value=number)


def _check_choice(spec, value: Any) -> FieldResult:
    if not isinstance(value, str) or value not in spec.options:
        return _fail(f'{spec.label} must be one of: {", ".join(spec.options)}')
    return FieldResult(ok=True, value=value)


def _check_checkbox(spec: CheckboxField, value: Any) -> FieldResult:
    values = [value] if isinstance(value, str) else value
    if not isinstance(values, (list, tuple)):
        return _fail(f'{spec.label} must be a list of options')
    unknown = [str(item) for item in values if item not in spec.options]
    if unknown:
        return _fail(f'{spec.label} has invalid option(s): {", ".join(unknown)}')
    return FieldResult(ok=True, value=[str(item) for item in values])


def _file_type_allowed(spec: FileField, upload: IncomingFile) -> bool:
    mime = (upload.content_type or '').lower()
    name = (upload.filename or '').lower()
    return any(kind in mime or kind in name for kind in spec.allowed_file_types)


def check_files(spec: FileField, files: Iterable[IncomingFile]) -> list[str]:
    errors: list[str] = []
    for upload in files:
        if upload.size > spec.max_file_size:
            errors.append(f'{upload.filename} exceeds {format_file_size(spec.max_file_size)} size limit')
        if spec.allowed_file_types and not _file_type_allowed(spec, upload):
            errors.append(f'{upload.filename} is not an allowed file type')
    return errors


def validate_field(spec: FieldSpec, value: Any, files: Iterable[IncomingFile] = ()) -> FieldResult:
    attached = list(files)
    if isinstance(spec, FileField):
        if spec.required and not attached:
            return _fail(f'{spec.label} is required')
        file_errors = check_files(spec, attached)
        return FieldResult(ok=not file_errors, file_errors=file_errors, value=[upload.filename for upload in attached] or None)

    if _is_empty(value):
        if spec.required:
            return _fail(f'{spec.label} is required')
        return FieldResult(ok=True, value=None)

    if isinstance(spec, _STRING_SPECS):
        return _check_string(spec, value)
    if isinstance(spec, DateField):
        return _check_date(spec, value)
    if isinstance(spec, NumberField):
        return _check_number(spec, value)
    if isinstance(spec, (SelectField, RadioField)):
        return _check_choice(spec, value)
    if isinstance(spec, CheckboxField):
        return _check_checkbox(spec, value)
    raise TypeError(f'Unhandled field spec: {type(spec).__name__}')


def validate_form(
    specs: Iterable[FieldSpec],
    form_data: Mapping[str, Any],
    files: Iterable[IncomingFile] = (),
) -> FormValidationResult:
    files_by_field: dict[str, list[IncomingFile]] = {}
    for upload in files:
        files_by_field.setdefault(upload.field_name, []).append(upload)

    result = FormValidationResult(is_valid=True)
    file_fields: set[str] = set()
    for spec in specs:
        if isinstance(spec, FileField):
            file_fields.add(spec.name)
        outcome = validate_field(spec, form_data.get(spec.name), files_by_field.get(spec.name, ()))
        if outcome.error:
            result.errors[spec.name] = outcome.error
        result.file_errors.extend(outcome.file_errors)
        if outcome.ok and outcome.value is not None:
            result.cleaned_data[spec.name] = outcome.value

    for field_name, uploads in files_by_field.items():
        if field_name not in file_fields:
            result.file_errors.extend(f'{upload.filename} is not attached to a file field' for upload in uploads)

    result.is_valid = not result.errors and not result.file_errors
    return result
