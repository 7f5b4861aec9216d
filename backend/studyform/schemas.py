"""Pydantic request/response schemas used by the API.

`StudyPayload` is the wire shape sent to the backend create/update
endpoints; it uses camelCase aliases because that is what the backend
speaks. The `*In` models are the bodies of the form endpoints.
"""

from datetime import datetime, time
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"
MAX_TAGS = 4
MAX_DESCRIPTION_LENGTH = 800


def text_length(value: str) -> int:
    """Length in UTF-16 code units, the unit the browser form counts in."""
    return len(value.encode("utf-16-le")) // 2


class Day(str, Enum):
    MON = "월"
    TUE = "화"
    WED = "수"
    THU = "목"
    FRI = "금"
    SAT = "토"
    SUN = "일"


class Campus(str, Enum):
    YULJEON = "율전"
    MYEONGNYUN = "명륜"
    ONLINE = "온라인"


class Level(str, Enum):
    BEGINNER = "초급"
    INTERMEDIATE = "중급"
    ADVANCED = "고급"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StudyPayload(CamelModel):
    """Body of the backend CREATE and UPDATE calls."""
    image_src: str
    title: str = Field(min_length=1)
    day: Day
    start_time: str = Field(pattern=TIME_PATTERN)
    end_time: str = Field(pattern=TIME_PATTERN)
    campus: Campus
    level: Level
    tags: List[str] = Field(min_length=1, max_length=MAX_TAGS)
    description: str = Field(min_length=1)
    is_recruiting: bool = True
    semester: str
    year: int

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, tags: List[str]) -> List[str]:
        if len(set(tags)) != len(tags):
            raise ValueError("tags must be unique")
        return tags

    @field_validator("description")
    @classmethod
    def _description_length(cls, value: str) -> str:
        if text_length(value) > MAX_DESCRIPTION_LENGTH:
            raise ValueError(f"description exceeds {MAX_DESCRIPTION_LENGTH} characters")
        return value

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class StudyRecord(CamelModel):
    """The `data` field of a RETRIEVE response.

    Only the fields the edit form hydrates from are declared; everything
    is optional so a partial record still loads, and a `null` list or
    flag falls back to its default.
    """
    image_src: Optional[str] = None
    title: Optional[str] = None
    day: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    campus: Optional[str] = None
    level: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    is_recruiting: bool = True

    @field_validator("tags", mode="before")
    @classmethod
    def _null_tags(cls, value):
        return [] if value is None else value

    @field_validator("is_recruiting", mode="before")
    @classmethod
    def _null_recruiting(cls, value):
        return True if value is None else value


class FieldsIn(CamelModel):
    """Partial update of the plain form fields.

    Values stay strings here; enum membership is reported as a field
    error by the validators instead of rejecting the request.
    """
    title: Optional[str] = None
    day: Optional[str] = None
    campus: Optional[str] = None
    level: Optional[str] = None
    description: Optional[str] = None
    is_recruiting: Optional[bool] = None


class TimeIn(BaseModel):
    """A point in time picked by the time selector; `null` is a no-op."""
    value: Optional[Union[datetime, time]] = None


class TagIn(BaseModel):
    tag: str
