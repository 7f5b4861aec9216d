"""Image staging and the upload-then-commit-or-delete sequence.

A picked image is first staged on local disk and previewed from there.
Only when the form is submitted is it uploaded to object storage, and
the upload stays provisional until the backend call decides between
`commit_on_success` and `rollback_on_failure`.
"""

import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import models
from .clients import StorageClient, StorageError, UploadedObject

logger = logging.getLogger("studyform.uploads")


@dataclass(frozen=True)
class StagedImage:
    path: Path
    filename: str
    content_type: str
    preview_url: str


def preview_url_for(draft_id: str) -> str:
    return f"/forms/{draft_id}/image/preview"


class ImageUploadCoordinator:
    """Own the staged image of a draft and its round trip to storage."""

    def __init__(self, storage: StorageClient, staging_root: Path):
        self.storage = storage
        self.staging_root = Path(staging_root)

    def _draft_dir(self, draft: models.FormDraft) -> Path:
        return self.staging_root / draft.id

    def staged(self, draft: models.FormDraft) -> Optional[StagedImage]:
        if not draft.staged_path:
            return None
        path = Path(draft.staged_path)
        if not path.exists():
            return None
        return StagedImage(
            path=path,
            filename=draft.staged_filename or path.name,
            content_type=draft.staged_content_type or "application/octet-stream",
            preview_url=draft.preview_url or preview_url_for(draft.id),
        )

    def stage(self, draft: models.FormDraft, filename: str, payload: bytes, content_type: str) -> StagedImage:
        """Replace any staged file of `draft` with `payload`.

        `imageSrc` is pointed at the local preview so the required-image
        rule passes while the file is staged.
        """
        self.discard(draft)
        target_dir = self._draft_dir(draft)
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / filename
        path.write_bytes(payload)
        preview = preview_url_for(draft.id)
        draft.staged_path = str(path)
        draft.staged_filename = filename
        draft.staged_content_type = content_type
        draft.preview_url = preview
        draft.field_values = {**draft.field_values, "imageSrc": preview}
        logger.info("image_staged %s", json.dumps({"draft_id": draft.id, "filename": filename, "bytes": len(payload)}))
        return StagedImage(path=path, filename=filename, content_type=content_type, preview_url=preview)

    def discard(self, draft: models.FormDraft) -> None:
        """Drop the staged file and point `imageSrc` back at the saved image.

        A create draft has no saved image, so its `imageSrc` is cleared.
        """
        if draft.preview_url and draft.field_values.get("imageSrc") == draft.preview_url:
            values = dict(draft.field_values)
            if draft.saved_image_src:
                values["imageSrc"] = draft.saved_image_src
            else:
                values.pop("imageSrc", None)
            draft.field_values = values
        self.release(draft)

    def release(self, draft: models.FormDraft) -> None:
        """Forget the staged file without touching the form values."""
        draft.staged_path = None
        draft.staged_filename = None
        draft.staged_content_type = None
        draft.preview_url = None
        shutil.rmtree(self._draft_dir(draft), ignore_errors=True)

    def upload(self, draft: models.FormDraft, path_prefix: str) -> UploadedObject:
        """Upload the staged file; raises `StorageError` when nothing is staged."""
        staged = self.staged(draft)
        if staged is None:
            raise StorageError("no staged image")
        obj = self.storage.upload(
            staged.filename,
            staged.path.read_bytes(),
            staged.content_type,
            f"{path_prefix}/{staged.filename}",
        )
        logger.info("image_uploaded %s", json.dumps({"draft_id": draft.id, "key": obj.key}))
        return obj

    def commit_on_success(self, obj: UploadedObject) -> None:
        self.storage.commit(obj)
        logger.info("image_committed %s", json.dumps({"key": obj.key}))

    def rollback_on_failure(self, obj: UploadedObject) -> bool:
        """Delete `obj`; a failed delete is logged and reported as False.

        The caller is already on a failure path, so the first failure
        stays the one reported to the user.
        """
        try:
            self.storage.delete(obj)
        except StorageError:
            logger.exception("image_rollback_failed %s", json.dumps({"key": obj.key}))
            return False
        logger.info("image_rolled_back %s", json.dumps({"key": obj.key}))
        return True
