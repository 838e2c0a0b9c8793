from __future__ import annotations

import math
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Literal
from urllib.parse import urlsplit

import pandas as pd

from selly_base.models.import_job import EntityType
from selly_base.plugins import registry
from selly_base.plugins.base import ParsedData, file_extension
from selly_base.schemas.import_job import ValidationFinding
from selly_base.services.errors import UnsupportedFileFormatError
from selly_base.services.templates import get_column_mapping

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
URL_SCHEMES = {"http", "https"}
MIN_PHONE_DIGITS = 7
TRUE_VALUES = {"true", "yes", "y", "1"}
# pandas resolves these against the clock instead of reading a date
RELATIVE_DATE_WORDS = {"now", "today", "tomorrow", "yesterday"}


async def parse_file(file_content: bytes, filename: str) -> ParsedData:
    parser = registry.find_parser(file_content, filename)
    if parser is None:
        raise UnsupportedFileFormatError(
            f"Unsupported file format: {file_extension(filename) or '(none)'}. "
            "Only CSV and XLSX are supported."
        )
    return await parser.parse(file_content, filename)


# ---------------------------------------------------------------------------
# Field validators: blank values always pass, required-ness is checked apart
# ---------------------------------------------------------------------------

def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def validate_email(value: str | None) -> bool:
    if _is_blank(value):
        return True
    return EMAIL_RE.match(str(value)) is not None


def validate_url(value: str | None) -> bool:
    if _is_blank(value):
        return True
    try:
        parts = urlsplit(str(value).strip())
    except ValueError:
        return False
    return parts.scheme.lower() in URL_SCHEMES and bool(parts.hostname)


def validate_phone(value: str | None) -> bool:
    if _is_blank(value):
        return True
    return sum(ch.isdigit() for ch in str(value)) >= MIN_PHONE_DIGITS


def validate_date(value: str | None) -> bool:
    if _is_blank(value):
        return True
    return _parse_date(str(value)) is not None


def validate_numeric(value: str | None) -> bool:
    if _is_blank(value):
        return True
    text = str(value).strip()
    # float() also takes "1_000"
    if "_" in text:
        return False
    try:
        return math.isfinite(float(text))
    except ValueError:
        return False


def validate_whole_number(value: str | None) -> bool:
    if _is_blank(value):
        return True
    return validate_numeric(value) and float(str(value).strip()).is_integer()


def _parse_date(value: str) -> date | None:
    value = value.strip()
    if value.lower() in RELATIVE_DATE_WORDS:
        return None
    try:
        parsed = pd.to_datetime(value)
    except (ValueError, OverflowError, TypeError):
        return None
    if parsed is pd.NaT:
        return None
    return parsed.date()


# ---------------------------------------------------------------------------
# Row validation and mapping
# ---------------------------------------------------------------------------

def _lookup(row: dict[str, Any], label: str, field: str) -> Any:
    """Probe a row by display label first, then by internal field name."""
    value = row.get(label)
    if _is_blank(value):
        value = row.get(field)
    return value


def validate_required_fields(
    row: dict[str, Any], row_index: int, entity_type: EntityType | str
) -> list[ValidationFinding]:
    findings: list[ValidationFinding] = []
    for column in get_column_mapping(entity_type):
        if not column.required:
            continue
        value = _lookup(row, column.label, column.field)
        if _is_blank(value):
            findings.append(
                ValidationFinding(
                    row=row_index,
                    column=column.label,
                    value=value,
                    message=f'Required field "{column.label}" is missing or empty',
                    severity="error",
                )
            )
    return findings


@dataclass(frozen=True)
class FieldCheck:
    label: str
    field: str
    validator: Callable[[str | None], bool]
    message: str
    severity: Literal["error", "warning"]


FIELD_CHECKS: dict[EntityType, tuple[FieldCheck, ...]] = {
    EntityType.COMPANIES: (
        FieldCheck("Email", "primary_email", validate_email, "Invalid email format", "error"),
        FieldCheck("Website", "website_url", validate_url, "Invalid URL format", "warning"),
        FieldCheck("LinkedIn URL", "linkedin_url", validate_url, "Invalid LinkedIn URL format", "warning"),
        FieldCheck("Phone", "primary_phone", validate_phone, "Phone number format may be incorrect", "warning"),
        FieldCheck("Employee Count", "employee_count_estimate", validate_whole_number, "Employee count must be a whole number", "error"),
        FieldCheck("Annual Revenue", "annual_revenue_estimate", validate_numeric, "Annual revenue must be a number", "error"),
    ),
    EntityType.CONTACTS: (
        FieldCheck("Email", "email", validate_email, "Invalid email format", "error"),
        FieldCheck("Phone", "phone", validate_phone, "Phone number format may be incorrect", "warning"),
    ),
    EntityType.ACTIVITIES: (
        FieldCheck("Date", "activity_date", validate_date, "Invalid date format. Use YYYY-MM-DD", "error"),
    ),
}


def validate_row(
    row: dict[str, Any], row_index: int, entity_type: EntityType | str
) -> list[ValidationFinding]:
    """Validate one parsed row; errors come first, then warnings."""
    entity_type = EntityType(entity_type)
    errors = validate_required_fields(row, row_index, entity_type)
    warnings: list[ValidationFinding] = []

    for check in FIELD_CHECKS[entity_type]:
        value = _lookup(row, check.label, check.field)
        if _is_blank(value) or check.validator(value):
            continue
        finding = ValidationFinding(
            row=row_index,
            column=check.label,
            value=value,
            message=check.message,
            severity=check.severity,
        )
        (errors if check.severity == "error" else warnings).append(finding)

    return errors + warnings


def map_row_to_entity(row: dict[str, Any], entity_type: EntityType | str) -> dict[str, Any]:
    """Re-key a row by internal field names, leaving out blank values."""
    entity: dict[str, Any] = {}
    for column in get_column_mapping(entity_type):
        value = _lookup(row, column.label, column.field)
        if not _is_blank(value):
            entity[column.field] = value
    return entity


# ---------------------------------------------------------------------------
# Coercion of mapped values into column types
# ---------------------------------------------------------------------------

def _to_int(value: str) -> int:
    return int(float(str(value).strip()))


def _to_decimal(value: str) -> Decimal:
    return Decimal(str(value).strip())


def _to_bool(value: str) -> bool:
    return str(value).strip().lower() in TRUE_VALUES


def _to_date(value: str) -> date:
    parsed = _parse_date(str(value))
    if parsed is None:
        raise ValueError(f"Invalid date: {value!r}")
    return parsed


COERCERS: dict[EntityType, dict[str, Callable[[str], Any]]] = {
    EntityType.COMPANIES: {
        "employee_count_estimate": _to_int,
        "annual_revenue_estimate": _to_decimal,
        "is_shared_data": _to_bool,
    },
    EntityType.CONTACTS: {},
    EntityType.ACTIVITIES: {
        "activity_date": _to_date,
    },
}


def coerce_entity(entity_type: EntityType | str, entity: dict[str, Any]) -> dict[str, Any]:
    """Convert mapped string values into the types of their target columns."""
    coercers = COERCERS[EntityType(entity_type)]
    result: dict[str, Any] = {}
    for field, value in entity.items():
        convert = coercers.get(field)
        if convert is not None:
            result[field] = convert(value)
        elif isinstance(value, str):
            result[field] = value.strip()
        else:
            result[field] = value
    return result
