"""Typed field specifications built from persisted form field rows.

Each field type carries only the validation parameters that apply to it, so the
validator can dispatch on the class instead of on free-form strings.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Union

from compliance.config import settings
from compliance.models import ComplianceFormField, FieldType


@dataclass(frozen=True)
class _FieldBase:
    name: str
    label: str
    required: bool = False
    order: int = 0
    placeholder: str | None = None
    help_text: str | None = None


@dataclass(frozen=True)
class _StringRules:
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None


@dataclass(frozen=True)
class TextField(_StringRules, _FieldBase):
    pass


@dataclass(frozen=True)
class TextareaField(_StringRules, _FieldBase):
    pass


@dataclass(frozen=True)
class EmailField(_StringRules, _FieldBase):
    pass


@dataclass(frozen=True)
class PhoneField(_StringRules, _FieldBase):
    pass


@dataclass(frozen=True)
class DateField(_FieldBase):
    pass


@dataclass(frozen=True)
class NumberField(_FieldBase):
    min_value: float | None = None
    max_value: float | None = None


@dataclass(frozen=True)
class SelectField(_FieldBase):
    options: tuple[str, ...] = ()


@dataclass(frozen=True)
class RadioField(_FieldBase):
    options: tuple[str, ...] = ()


@dataclass(frozen=True)
class CheckboxField(_FieldBase):
    options: tuple[str, ...] = ()


@dataclass(frozen=True)
class FileField(_FieldBase):
    max_file_size: int = 2 * 1024 * 1024
    allowed_file_types: tuple[str, ...] = ()


FieldSpec = Union[
    TextField,
    TextareaField,
    EmailField,
    PhoneField,
    DateField,
    NumberField,
    SelectField,
    RadioField,
    CheckboxField,
    FileField,
]


def _optional_int(value: Any) -> int | None:
    if value is None or value == '':
        return None
    return int(value)


def _optional_float(value: Any) -> float | None:
    if value is None or value == '':
        return None
    return float(value)


def _base_kwargs(row: ComplianceFormField) -> dict:
    return {
        'name': row.name,
        'label': row.label or row.name,
        'required': bool(row.required),
        'order': int(row.order or 0),
        'placeholder': row.placeholder,
        'help_text': row.help_text,
    }


def _string_kwargs(rules: dict) -> dict:
    return {
        'min_length': _optional_int(rules.get('min_length')),
        'max_length': _optional_int(rules.get('max_length')),
        'pattern': rules.get('pattern') or None,
    }


def _build_string(cls):
    def build(row: ComplianceFormField, rules: dict) -> FieldSpec:
        return cls(**_base_kwargs(row), **_string_kwargs(rules))

    return build


def _build_options(cls):
    def build(row: ComplianceFormField, rules: dict) -> FieldSpec:
        return cls(**_base_kwargs(row), options=tuple(str(option) for option in (row.options or [])))

    return build


def _build_number(row: ComplianceFormField, rules: dict) -> FieldSpec:
    return NumberField(
        **_base_kwargs(row),
        min_value=_optional_float(rules.get('min_value')),
        max_value=_optional_float(rules.get('max_value')),
    )


def _build_file(row: ComplianceFormField, rules: dict) -> FieldSpec:
    max_size = _optional_int(rules.get('max_file_size')) or settings.compliance_default_max_file_size
    allowed = tuple(str(kind).strip().lower() for kind in (rules.get('allowed_file_types') or []) if str(kind).strip())
    return FileField(**_base_kwargs(row), max_file_size=max_size, allowed_file_types=allowed)


def _build_date(row: ComplianceFormField, rules: dict) -> FieldSpec:
    return DateField(**_base_kwargs(row))


FIELD_BUILDERS: dict[FieldType, Callable[[ComplianceFormField, dict], FieldSpec]] = {
    FieldType.TEXT: _build_string(TextField),
    FieldType.TEXTAREA: _build_string(TextareaField),
    FieldType.EMAIL: _build_string(EmailField),
    FieldType.PHONE: _build_string(PhoneField),
    FieldType.DATE: _build_date,
    FieldType.NUMBER: _build_number,
    FieldType.SELECT: _build_options(SelectField),
    FieldType.RADIO: _build_options(RadioField),
    FieldType.CHECKBOX: _build_options(CheckboxField),
    FieldType.FILE: _build_file,
}


def build_field_spec(row: ComplianceFormField) -> FieldSpec:
    # FieldType() raises ValueError for anything outside the closed set.
    field_type = FieldType(row.type)
    return FIELD_BUILDERS[field_type](row, dict(row.validation or {}))
