"""Type and range checks for data entering the engine."""
from __future__ import annotations

import math
import re
from typing import Any

from clinic.domain import Gender, Priority, Vitals
from clinic.exceptions import ValidationError

_BP = re.compile(r'^\s*(\d{2,3})\s*/\s*(\d{2,3})\s*$')
_PHONE = re.compile(r'^\+?[\d\s-]{6,20}$')
_GENDERS = {'m': Gender.MALE, 'male': Gender.MALE, 'f': Gender.FEMALE, 'female': Gender.FEMALE}
COMPLAINT_MAX_LENGTH = 500


def _text(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ''
    if not isinstance(value, str):
        raise ValidationError(f'{key} must be text')
    return value.strip()


def _number(data: dict, key: str, low: float, high: float, *, integer: bool = False):
    value = data.get(key)
    if value is None or value == '':
        raise ValidationError(f'{key} is required')
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f'{key} must be a number')
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(f'{key} must be a finite number')
    if integer and int(value) != value:
        raise ValidationError(f'{key} must be a whole number')
    if not low <= value <= high:
        raise ValidationError(f'{key} must be between {low:g} and {high:g}')
    return int(value) if integer else float(value)


def clean_demographics(data: dict) -> dict:
    if not isinstance(data, dict):
        raise ValidationError('demographics must be an object')
    name = _text(data, 'name')
    if len(name) < 2:
        raise ValidationError('name must be at least 2 characters')
    age = _number(data, 'age', 0, 130, integer=True)
    gender = _GENDERS.get(_text(data, 'gender').lower())
    if gender is None:
        raise ValidationError('gender must be M or F')
    phone = _text(data, 'phone')
    if phone and not _PHONE.match(phone):
        raise ValidationError('phone number is malformed')
    return {'name': name, 'age': age, 'gender': gender, 'phone': phone}


def clean_vitals(data: dict, recorded_at) -> Vitals:
    if not isinstance(data, dict):
        raise ValidationError('vitals must be an object')
    match = _BP.match(_text(data, 'blood_pressure'))
    if not match:
        raise ValidationError('blood_pressure must look like 120/80')
    systolic, diastolic = int(match.group(1)), int(match.group(2))
    if not (50 <= systolic <= 260 and 30 <= diastolic <= 160 and systolic > diastolic):
        raise ValidationError('blood_pressure is out of range')
    complaint = _text(data, 'complaint')
    if len(complaint) > COMPLAINT_MAX_LENGTH:
        raise ValidationError(f'complaint must be at most {COMPLAINT_MAX_LENGTH} characters')
    return Vitals(
        blood_pressure=f'{systolic}/{diastolic}',
        temperature=_number(data, 'temperature', 30, 45),
        heart_rate=_number(data, 'heart_rate', 20, 250, integer=True),
        weight=_number(data, 'weight', 0.5, 500),
        complaint=complaint,
        recorded_at=recorded_at,
    )


def clean_lab_requests(payload: dict, default_priority: str) -> list[dict[str, Any]]:
    tests = payload.get('tests')
    if not isinstance(tests, list) or not tests:
        raise ValidationError('at least one lab test must be ordered')
    requests = []
    for item in tests:
        if isinstance(item, str):
            item = {'test': item}
        if not isinstance(item, dict):
            raise ValidationError('each lab test must be a name or an object')
        requests.append({
            'test': _text(item, 'test'),
            'priority': _text(item, 'priority') or default_priority,
            'equipment': _text(item, 'equipment') or None,
        })
    return requests


def clean_prescriptions(payload: dict) -> list[dict[str, Any]]:
    items = payload.get('prescriptions')
    if not isinstance(items, list) or not items:
        raise ValidationError('at least one prescription is required')
    cleaned = []
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError('each prescription must be an object')
        cleaned.append({
            'drug_id': _text(item, 'drug_id'),
            'quantity': item.get('quantity', 1),
            'dosage': _text(item, 'dosage'),
            'prescriber': _text(item, 'prescriber'),
        })
    return cleaned


def priority_for(urgent: bool) -> str:
    return Priority.HIGH if urgent else Priority.NORMAL
