"""Field validation for the study form.

Each field has one validator in `FIELD_RULES`; a validator takes the
whole values mapping and returns an error message or None. The messages
are the inline copy shown under each field.
"""

import re
from typing import Callable, Dict, Optional

from .schemas import Campus, Day, Level, MAX_DESCRIPTION_LENGTH, MAX_TAGS, TIME_PATTERN, text_length
from .tags import CAPACITY_MESSAGE, DUPLICATE_MESSAGE

FORM_INVALID_MESSAGE = "모든 항목이 제대로 입력되었는지 확인해주세요!"
TIME_ORDER_MESSAGE = "종료 시간은 시작 시간 이후여야 합니다"

_TIME_RE = re.compile(TIME_PATTERN)

Validator = Callable[[dict], Optional[str]]


def _required_string(field: str, message: str) -> Validator:
    def check(values: dict) -> Optional[str]:
        value = values.get(field)
        if not isinstance(value, str) or not value:
            return message
        return None
    return check


def _one_of(field: str, choices, message: str) -> Validator:
    allowed = {c.value for c in choices}

    def check(values: dict) -> Optional[str]:
        if values.get(field) not in allowed:
            return message
        return None
    return check


def _time(field: str) -> Validator:
    def check(values: dict) -> Optional[str]:
        value = values.get(field)
        if not isinstance(value, str) or not _TIME_RE.match(value):
            return "스터디 시간을 입력해주세요"
        return None
    return check


def check_tags(values: dict) -> Optional[str]:
    tags = values.get("tags") or []
    if len(tags) < 1:
        return "스택을 입력해주세요"
    if len(tags) > MAX_TAGS:
        return CAPACITY_MESSAGE
    if len(set(tags)) != len(tags):
        return DUPLICATE_MESSAGE
    return None


def check_description(values: dict) -> Optional[str]:
    value = values.get("description")
    if not isinstance(value, str) or len(value) < 1:
        return "설명을 입력해주세요"
    if text_length(value) > MAX_DESCRIPTION_LENGTH:
        return f"설명은 {MAX_DESCRIPTION_LENGTH}자 이내로 입력해주세요"
    return None


FIELD_RULES: Dict[str, Validator] = {
    "imageSrc": _required_string("imageSrc", "이미지를 업로드해주세요"),
    "title": _required_string("title", "스터디 제목을 입력해주세요"),
    "day": _one_of("day", Day, "요일을 선택해주세요"),
    "startTime": _time("startTime"),
    "endTime": _time("endTime"),
    "campus": _one_of("campus", Campus, "캠퍼스를 선택해주세요"),
    "level": _one_of("level", Level, "난이도를 선택해주세요"),
    "tags": check_tags,
    "description": check_description,
}


def validate_field(field: str, values: dict) -> Optional[str]:
    rule = FIELD_RULES.get(field)
    return rule(values) if rule else None


def validate_form(values: dict, require_time_order: bool = False) -> Dict[str, str]:
    """Run every rule and return `{field: message}` for the failing ones.

    With `require_time_order`, an end time that is not after the start
    time is reported on `endTime`.
    """
    errors = {}
    for field, rule in FIELD_RULES.items():
        message = rule(values)
        if message:
            errors[field] = message
    if require_time_order and "startTime" not in errors and "endTime" not in errors:
        # zero-padded HH:MM compares correctly as text
        if values["endTime"] <= values["startTime"]:
            errors["endTime"] = TIME_ORDER_MESSAGE
    return errors
