"""Form controller shared by the open-study and study-edit pages.

`FormController` wraps one `FormDraft` and implements every user action
on it: field edits, time selection, tag edits, image staging, the
confirmation dialog and the two submission pipelines. The mode of the
draft (`create` or `edit`) only changes what happens on load and submit.

Submission walks the draft through
idle -> validating -> uploading -> submitting -> succeeded | failed.
The upload always happens before the backend call, and the backend's
answer decides whether the upload is committed or deleted.
"""

import json
import logging
from typing import Optional

from pydantic import ValidationError

from . import models
from .auth import PageSession
from .clients import StudyApiClient, StudyApiError, StorageError, UploadedObject
from .config import settings
from .schemas import StudyPayload, StudyRecord
from .tags import TagEditor
from .timeselect import TIME_FIELDS, TimeSelector, format_time, parse_time
from .uploads import ImageUploadCoordinator
from .validation import FORM_INVALID_MESSAGE, validate_field, validate_form

logger = logging.getLogger("studyform.submit")

OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_FAILED = "failed"
OUTCOME_ABORTED = "aborted"

LOAD_LOADED = "loaded"
LOAD_NOT_FOUND = "not_found"
LOAD_FAILED = "failed"

CREATE_IMAGE_PREFIX = "image/study"

TOASTS = {
    "create_succeeded": {"title": "스터디 생성 완료", "description": "스터디가 성공적으로 생성되었습니다."},
    "create_failed": {
        "title": "스터디 생성 실패",
        "description": "스터디를 생성하는 중 오류가 발생했습니다.",
        "variant": "destructive",
    },
    "update_succeeded": {"title": "스터디 수정 완료", "description": "스터디 내용이 성공적으로 수정되었습니다!"},
    "update_failed": {
        "title": "스터디 수정 실패",
        "description": "스터디 정보를 수정하는 중 오류가 발생했습니다.",
        "variant": "destructive",
    },
    "load_failed": {
        "title": "스터디 정보 불러오기 실패",
        "description": "스터디 정보를 불러오는 중 오류가 발생했습니다.",
        "variant": "destructive",
    },
}

PLAIN_FIELDS = ("title", "day", "campus", "level", "description")
FIELD_NAMES = ("title", "day", "startTime", "endTime", "campus", "level", "tags", "description")


class FormInvalid(Exception):
    """Raised by `submit` when validation fails; errors are on the draft."""
    def __init__(self, errors: dict):
        self.errors = errors
        super().__init__(f"{len(errors)} invalid field(s)")


class DialogClosed(Exception):
    """Raised when a create form is submitted without confirming first."""


class ModeError(ValueError):
    """Raised for an action the draft's mode does not support."""


def new_create_draft(owner_id: str) -> models.FormDraft:
    return models.FormDraft(owner_id=owner_id, mode=models.MODE_CREATE, field_values={"tags": []})


def new_edit_draft(owner_id: str, study_id: int) -> models.FormDraft:
    return models.FormDraft(owner_id=owner_id, mode=models.MODE_EDIT, study_id=study_id, field_values={"tags": []})


class FormController:
    """User actions and submission for a single draft.

    The controller mutates `draft` in place; persisting it is the
    caller's job.
    """

    def __init__(
        self,
        draft: models.FormDraft,
        coordinator: ImageUploadCoordinator,
        api: StudyApiClient,
        require_time_order: Optional[bool] = None,
    ):
        self.draft = draft
        self.coordinator = coordinator
        self.api = api
        if require_time_order is None:
            require_time_order = settings.REQUIRE_TIME_ORDER
        self.require_time_order = require_time_order

    @property
    def is_create(self) -> bool:
        return self.draft.mode == models.MODE_CREATE

    @property
    def values(self) -> dict:
        return self.draft.field_values

    # -----------------------------------------------------------------
    # State helpers
    # -----------------------------------------------------------------

    def _set_values(self, **changes) -> None:
        self.draft.field_values = {**self.draft.field_values, **changes}

    def _set_error(self, field: str, message: Optional[str]) -> None:
        errors = dict(self.draft.field_errors)
        if message:
            errors[field] = message
        else:
            errors.pop(field, None)
        self.draft.field_errors = errors

    def _revalidate(self, field: str, always: bool = False) -> None:
        # fields are only re-checked once they have shown an error
        if always or field in self.draft.field_errors:
            self._set_error(field, validate_field(field, self.values))

    def _notify(self, key: str) -> None:
        self.draft.notifications = self.draft.notifications + [dict(TOASTS[key])]

    def _touch(self) -> None:
        if self.draft.status in (models.STATUS_FAILED, models.STATUS_SUCCEEDED):
            self.draft.status = models.STATUS_IDLE

    def _log(self, event: str, level: int = logging.INFO, **context) -> None:
        payload = {"draft_id": self.draft.id, "mode": self.draft.mode, "study_id": self.draft.study_id, **context}
        logger.log(level, "%s %s", event, json.dumps(payload, ensure_ascii=True))

    def snapshot(self) -> dict:
        """Return the page state and hand over pending notifications."""
        draft = self.draft
        staged = self.coordinator.staged(draft)
        notifications = list(draft.notifications)
        draft.notifications = []
        return {
            "id": draft.id,
            "mode": draft.mode,
            "studyId": draft.study_id,
            "values": dict(draft.field_values),
            "errors": dict(draft.field_errors),
            "tagError": draft.tag_error,
            "dialogOpen": draft.dialog_open,
            "dialogMessage": FORM_INVALID_MESSAGE if draft.dialog_open and draft.field_errors else None,
            "status": draft.status,
            "stagedImage": {"filename": staged.filename, "previewUrl": staged.preview_url} if staged else None,
            "redirectTo": draft.redirect_to,
            "notifications": notifications,
        }

    # -----------------------------------------------------------------
    # Field edits
    # -----------------------------------------------------------------

    def update_fields(self, changes: dict) -> None:
        """Apply plain field changes (wire names) and re-check them."""
        if "isRecruiting" in changes and self.is_create:
            raise ModeError("a new study is always recruiting")
        if "isRecruiting" in changes and not isinstance(changes["isRecruiting"], bool):
            raise ValueError("isRecruiting must be true or false")
        unknown = set(changes) - set(PLAIN_FIELDS) - {"isRecruiting"}
        if unknown:
            raise ValueError(f"unknown field(s): {', '.join(sorted(unknown))}")
        self._set_values(**changes)
        for field in changes:
            if field in PLAIN_FIELDS:
                self._revalidate(field, always=field == "description")
        self._touch()

    def select_time(self, which: str, value) -> None:
        """Store a picked start/end time; a missing value is ignored."""
        field = TIME_FIELDS.get(which)
        if field is None:
            raise ValueError(f"unknown time field: {which}")
        selector = TimeSelector(self.values)
        if selector.select(field, value):
            self.draft.field_values = selector.values
            self._revalidate(field)
            self._touch()

    def add_tag(self, candidate: str) -> bool:
        editor = TagEditor(
            self.values.get("tags") or [],
            capacity_error=self.draft.tag_error,
            field_error=self.draft.field_errors.get("tags", ""),
        )
        changed = editor.add(candidate)
        self._apply_tags(editor)
        if changed:
            self._touch()
        return changed

    def reset_tags(self) -> None:
        editor = TagEditor(self.values.get("tags") or [])
        editor.reset()
        self._apply_tags(editor)
        self._touch()

    def _apply_tags(self, editor: TagEditor) -> None:
        self._set_values(tags=list(editor.tags))
        self.draft.tag_error = editor.capacity_error
        self._set_error("tags", editor.field_error)

    # -----------------------------------------------------------------
    # Image
    # -----------------------------------------------------------------

    def stage_image(self, filename: str, payload: bytes, content_type: str) -> None:
        self.coordinator.stage(self.draft, filename, payload, content_type)
        self._set_error("imageSrc", None)
        self._touch()

    def discard_image(self) -> None:
        self.coordinator.discard(self.draft)
        self._revalidate("imageSrc")

    # -----------------------------------------------------------------
    # Confirmation dialog
    # -----------------------------------------------------------------

    def open_confirmation(self) -> dict:
        """Validate everything and open the dialog, valid or not.

        The dialog shows the form-level message while errors remain and
        `submit` refuses to run.
        """
        self.draft.status = models.STATUS_VALIDATING
        errors = validate_form(self.values, self.require_time_order)
        self.draft.field_errors = errors
        if not errors:
            self.draft.tag_error = ""
        self.draft.dialog_open = True
        self.draft.status = models.STATUS_IDLE
        return errors

    def close_confirmation(self) -> None:
        self.draft.dialog_open = False

    # -----------------------------------------------------------------
    # Edit flow load
    # -----------------------------------------------------------------

    def load(self) -> str:
        """Fetch the study being edited and hydrate the draft from it."""
        study_id = self.draft.study_id
        try:
            response = self.api.retrieve(study_id)
        except StudyApiError as e:
            self._log("load_failed", logging.WARNING, error=e.detail)
            self._notify("load_failed")
            return LOAD_FAILED
        if response.status_code == 404:
            self._log("load_not_found")
            return LOAD_NOT_FOUND
        if not response.is_success:
            self._log("load_failed", logging.WARNING, status_code=response.status_code)
            self._notify("load_failed")
            return LOAD_FAILED
        try:
            body = response.json()
            record = StudyRecord.model_validate(body.get("data") if isinstance(body, dict) else None)
        except ValueError as e:
            self._log("load_failed", logging.WARNING, error=str(e))
            self._notify("load_failed")
            return LOAD_FAILED
        self.hydrate(record)
        self._log("load_succeeded")
        return LOAD_LOADED

    def hydrate(self, record: StudyRecord) -> None:
        values = {
            "imageSrc": record.image_src,
            "title": record.title,
            "day": record.day,
            "campus": record.campus,
            "level": record.level,
            "tags": list(record.tags),
            "description": record.description,
            "isRecruiting": record.is_recruiting,
        }
        for field, raw in (("startTime", record.start_time), ("endTime", record.end_time)):
            parsed = parse_time(raw)
            values[field] = format_time(parsed) if parsed else None
        self.draft.field_values = {k: v for k, v in values.items() if v is not None}
        self.draft.saved_image_src = record.image_src

    # -----------------------------------------------------------------
    # Submission
    # -----------------------------------------------------------------

    def submit(self, session: PageSession) -> str:
        """Run the submission pipeline for the draft's mode.

        Returns one of the OUTCOME_* constants. Raises `DialogClosed` for
        an unconfirmed create form and `FormInvalid` when validation fails.
        """
        if self.is_create and not self.draft.dialog_open:
            raise DialogClosed()
        self.draft.redirect_to = None
        self.draft.status = models.STATUS_VALIDATING
        errors = validate_form(self.values, self.require_time_order)
        self.draft.field_errors = errors
        if errors:
            self.draft.status = models.STATUS_IDLE
            self._log("submit_invalid", fields=sorted(errors))
            raise FormInvalid(errors)
        if self.is_create:
            return self._submit_create(session)
        return self._submit_edit(session)

    def _payload(self, image_src: str, is_recruiting: bool) -> StudyPayload:
        """Build the backend body; raises `ValidationError` for values it cannot carry."""
        data = {field: self.values.get(field) for field in FIELD_NAMES}
        data.update(
            imageSrc=image_src,
            isRecruiting=is_recruiting,
            semester=settings.STUDY_SEMESTER,
            year=settings.STUDY_YEAR,
        )
        return StudyPayload.model_validate(data)

    def _fail(self, toast: str, event: str, **context) -> str:
        self.draft.status = models.STATUS_FAILED
        self._notify(toast)
        self._log(event, logging.WARNING, **context)
        return OUTCOME_FAILED

    def _commit(self, obj: UploadedObject) -> None:
        try:
            self.coordinator.commit_on_success(obj)
        except StorageError as e:
            # the backend already references the URL; the study itself is saved
            self._log("commit_failed", logging.ERROR, key=obj.key, error=e.detail)

    def _submit_create(self, session: PageSession) -> str:
        self.draft.dialog_open = False
        if self.coordinator.staged(self.draft) is None:
            self.draft.status = models.STATUS_IDLE
            self._log("submit_aborted", reason="no staged image")
            return OUTCOME_ABORTED

        try:
            payload = self._payload(self.values.get("imageSrc"), True)
        except ValidationError as e:
            return self._fail("create_failed", "payload_invalid", error=str(e))

        self.draft.status = models.STATUS_UPLOADING
        try:
            obj = self.coordinator.upload(self.draft, CREATE_IMAGE_PREFIX)
        except StorageError as e:
            return self._fail("create_failed", "upload_failed", error=e.detail)

        self.draft.status = models.STATUS_SUBMITTING
        payload = payload.model_copy(update={"image_src": obj.url})
        try:
            response = self.api.create(payload.to_wire(), session.access_token)
        except StudyApiError as e:
            self.coordinator.rollback_on_failure(obj)
            return self._fail("create_failed", "create_failed", error=e.detail)
        if not response.is_success:
            self.coordinator.rollback_on_failure(obj)
            return self._fail("create_failed", "create_failed", status_code=response.status_code)

        self._commit(obj)
        self._set_values(imageSrc=obj.url)
        self.coordinator.release(self.draft)
        self.draft.status = models.STATUS_SUCCEEDED
        self.draft.redirect_to = settings.STUDY_INDEX_URL
        self._notify("create_succeeded")
        self._log("create_succeeded", key=obj.key)
        return OUTCOME_SUCCEEDED

    def _submit_edit(self, session: PageSession) -> str:
        study_id = self.draft.study_id
        obj = None
        image_src = self.values.get("imageSrc")
        try:
            payload = self._payload(image_src, self.values.get("isRecruiting", True))
        except ValidationError as e:
            return self._fail("update_failed", "payload_invalid", error=str(e))

        if self.coordinator.staged(self.draft) is not None:
            self.draft.status = models.STATUS_UPLOADING
            try:
                obj = self.coordinator.upload(self.draft, f"{CREATE_IMAGE_PREFIX}/{study_id}")
            except StorageError as e:
                return self._fail("update_failed", "upload_failed", error=e.detail)
            payload = payload.model_copy(update={"image_src": obj.url})

        self.draft.status = models.STATUS_SUBMITTING
        error = None
        try:
            response = self.api.update(study_id, payload.to_wire(), session.access_token)
            if not response.is_success:
                error = f"status {response.status_code}"
        except StudyApiError as e:
            error = e.detail
        if error is not None:
            if obj is not None:
                self.coordinator.rollback_on_failure(obj)
            return self._fail("update_failed", "update_failed", error=error)

        if obj is not None:
            self._commit(obj)
            self._set_values(imageSrc=obj.url)
            self.draft.saved_image_src = obj.url
            self.coordinator.release(self.draft)
        self.draft.status = models.STATUS_SUCCEEDED
        self.draft.redirect_to = f"/mystudy/{study_id}"
        self._notify("update_succeeded")
        self._log("update_succeeded", new_image=obj is not None)
        return OUTCOME_SUCCEEDED

