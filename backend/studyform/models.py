"""SQLModel data models.

`FormDraft` is the form state holder for both pages: one row per page
visit, holding the in-progress study values, field-level errors, the
staged image and the submission status.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field

MODE_CREATE = "create"
MODE_EDIT = "edit"

STATUS_IDLE = "idle"
STATUS_VALIDATING = "validating"
STATUS_UPLOADING = "uploading"
STATUS_SUBMITTING = "submitting"
STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FormDraft(SQLModel, table=True):
    """An in-progress study form.

    Fields:
    - `field_values`: study values keyed by their wire (camelCase) names
    - `field_errors`: field name -> inline error message
    - `tag_error`: tag capacity message, shown apart from `field_errors`
    - `notifications`: toasts not yet delivered to the client
    - `saved_image_src`: durable image URL the draft started from (edit)

    JSON columns are replaced, never mutated in place, so SQLAlchemy sees
    the change.
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    owner_id: str = Field(index=True)
    mode: str = MODE_CREATE
    study_id: Optional[int] = Field(default=None, index=True)
    field_values: dict = Field(default_factory=dict, sa_column=Column(JSON))
    field_errors: dict = Field(default_factory=dict, sa_column=Column(JSON))
    tag_error: str = ""
    dialog_open: bool = False
    status: str = STATUS_IDLE
    notifications: List[dict] = Field(default_factory=list, sa_column=Column(JSON))
    redirect_to: Optional[str] = None
    staged_path: Optional[str] = None
    staged_filename: Optional[str] = None
    staged_content_type: Optional[str] = None
    preview_url: Optional[str] = None
    saved_image_src: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow, index=True)
    updated_at: datetime = Field(default_factory=_utcnow, index=True)
