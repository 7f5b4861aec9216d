"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints behind the open-study and
study-edit pages. Controllers are intentionally thin: they load the
caller's draft, delegate to `FormController`, persist the draft and
return its state as JSON.

Endpoints implemented:
- GET /study/open
- GET /mystudy/{study_id}/edit
- GET /forms/{draft_id}
- PATCH /forms/{draft_id}/fields
- PUT /forms/{draft_id}/time/{which}
- POST, DELETE /forms/{draft_id}/tags
- POST, DELETE /forms/{draft_id}/image
- GET /forms/{draft_id}/image/preview
- POST, DELETE /forms/{draft_id}/confirm
- POST /forms/{draft_id}/submit
"""

from fastapi import FastAPI, Depends, UploadFile, File, HTTPException, Request
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
import io
import json
import logging
import os
import time
import uuid
from PIL import Image, UnidentifiedImageError
from .database import create_db_and_tables, get_session
from . import services
from .auth import PageSession, RedirectRequired, get_page_session, require_study_opener
from .clients import StorageClient, StudyApiClient
from .config import settings
from .repositories import FormDraftRepository
from .schemas import FieldsIn, TagIn, TimeIn
from .uploads import ImageUploadCoordinator

app = FastAPI(title="Study Form API")
logger = logging.getLogger("studyform.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

PAGE_PREFIXES = ("/forms", "/study", "/mystudy")

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        if request.url.path.startswith(PAGE_PREFIXES):
            logger.exception(
                "request_failed %s",
                json.dumps(
                    {
                        "request_id": req_id,
                        "path": request.url.path,
                        "method": request.method,
                        "duration_ms": elapsed_ms,
                    },
                    ensure_ascii=True,
                ),
            )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith(PAGE_PREFIXES):
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                },
                ensure_ascii=True,
            ),
        )
    return response


@app.exception_handler(RedirectRequired)
async def redirect_required_handler(request: Request, exc: RedirectRequired):
    logger.info("redirect %s", json.dumps({"path": request.url.path, "to": exc.location, "reason": exc.reason}))
    return RedirectResponse(url=exc.location, status_code=303)


# -----------------------------------------------------------------
# Collaborators (overridden in tests)
# -----------------------------------------------------------------

def get_study_api() -> StudyApiClient:
    return StudyApiClient(settings.STUDY_API_URL, timeout=settings.HTTP_TIMEOUT_SECONDS)


def get_storage() -> StorageClient:
    return StorageClient(settings.STORAGE_API_URL, timeout=settings.HTTP_TIMEOUT_SECONDS)


def get_coordinator(storage: StorageClient = Depends(get_storage)) -> ImageUploadCoordinator:
    return ImageUploadCoordinator(storage, settings.STAGING_DIR)


def get_form(
    draft_id: str,
    db: Session = Depends(get_session),
    session: PageSession = Depends(get_page_session),
    coordinator: ImageUploadCoordinator = Depends(get_coordinator),
    api: StudyApiClient = Depends(get_study_api),
) -> services.FormController:
    """Load the caller's draft; other users' drafts answer 404 like missing ones."""
    draft = FormDraftRepository(db).get_for_owner(draft_id, session.user_id)
    if not draft:
        raise HTTPException(status_code=404, detail="form not found")
    return services.FormController(draft, coordinator, api)


def _save_state(db: Session, form: services.FormController) -> dict:
    state = form.snapshot()
    FormDraftRepository(db).save(form.draft)
    return state


def _purge_expired(repo: FormDraftRepository, coordinator: ImageUploadCoordinator) -> None:
    expired = repo.list_expired(settings.DRAFT_TTL_SECONDS)
    for draft in expired:
        coordinator.release(draft)
        repo.delete(draft)
    if expired:
        logger.info("drafts_purged %s", json.dumps({"count": len(expired)}))


def _validate_upload_filename(filename: str) -> None:
    if not filename or len(filename) > 200:
        raise HTTPException(status_code=400, detail="invalid filename")
    if "/" in filename or "\\" in filename or filename in (".", ".."):
        raise HTTPException(status_code=400, detail="invalid filename path")


def _sniff_image(payload: bytes) -> str:
    """Return the image MIME type or raise 415 for anything else."""
    try:
        img = Image.open(io.BytesIO(payload))
        fmt = img.format
        img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        raise HTTPException(status_code=415, detail="unsupported file content; expected an image")
    return Image.MIME.get(fmt or "", "application/octet-stream")


# -----------------------------------------------------------------
# Pages
# -----------------------------------------------------------------

@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}


@app.get("/study/open")
def open_study_form(
    db: Session = Depends(get_session),
    session: PageSession = Depends(require_study_opener),
    coordinator: ImageUploadCoordinator = Depends(get_coordinator),
    api: StudyApiClient = Depends(get_study_api),
):
    """Start a blank create form for a user allowed to open studies."""
    repo = FormDraftRepository(db)
    _purge_expired(repo, coordinator)
    draft = repo.create(services.new_create_draft(session.user_id))
    return _save_state(db, services.FormController(draft, coordinator, api))


@app.get("/mystudy/{study_id}/edit")
def open_edit_form(
    study_id: int,
    db: Session = Depends(get_session),
    session: PageSession = Depends(get_page_session),
    coordinator: ImageUploadCoordinator = Depends(get_coordinator),
    api: StudyApiClient = Depends(get_study_api),
):
    """Start an edit form hydrated from the backend record.

    A missing study yields the not-found view and no draft. Any other
    load failure still returns a form, carrying an error notification.
    """
    form = services.FormController(services.new_edit_draft(session.user_id, study_id), coordinator, api)
    if form.load() == services.LOAD_NOT_FOUND:
        return JSONResponse(status_code=404, content={"view": "not_found", "studyId": study_id})
    repo = FormDraftRepository(db)
    _purge_expired(repo, coordinator)
    repo.create(form.draft)
    return _save_state(db, form)


# -----------------------------------------------------------------
# Form actions
# -----------------------------------------------------------------

@app.get("/forms/{draft_id}")
def get_form_state(form: services.FormController = Depends(get_form), db: Session = Depends(get_session)):
    return _save_state(db, form)


@app.patch("/forms/{draft_id}/fields")
def update_fields(payload: FieldsIn, form: services.FormController = Depends(get_form), db: Session = Depends(get_session)):
    """Update title/day/campus/level/description, and isRecruiting when editing."""
    try:
        form.update_fields(payload.model_dump(exclude_unset=True, by_alias=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _save_state(db, form)


@app.put("/forms/{draft_id}/time/{which}")
def select_time(which: str, payload: TimeIn, form: services.FormController = Depends(get_form), db: Session = Depends(get_session)):
    """Set the start or end time from a picked point in time."""
    try:
        form.select_time(which, payload.value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _save_state(db, form)


@app.post("/forms/{draft_id}/tags")
def add_tag(payload: TagIn, form: services.FormController = Depends(get_form), db: Session = Depends(get_session)):
    form.add_tag(payload.tag)
    return _save_state(db, form)


@app.delete("/forms/{draft_id}/tags")
def reset_tags(form: services.FormController = Depends(get_form), db: Session = Depends(get_session)):
    form.reset_tags()
    return _save_state(db, form)


@app.post("/forms/{draft_id}/image")
def stage_image(file: UploadFile = File(...), form: services.FormController = Depends(get_form), db: Session = Depends(get_session)):
    """Stage a picked image locally; it is uploaded only on submit."""
    if not file.filename:
        raise HTTPException(status_code=400, detail="no file")
    _validate_upload_filename(file.filename)
    payload = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(payload) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="file too large")
    content_type = _sniff_image(payload)
    form.stage_image(file.filename, payload, content_type)
    return _save_state(db, form)


@app.get("/forms/{draft_id}/image/preview")
def preview_image(form: services.FormController = Depends(get_form)):
    staged = form.coordinator.staged(form.draft)
    if staged is None:
        raise HTTPException(status_code=404, detail="no staged image")
    return FileResponse(staged.path, media_type=staged.content_type)


@app.delete("/forms/{draft_id}/image")
def discard_image(form: services.FormController = Depends(get_form), db: Session = Depends(get_session)):
    form.discard_image()
    return _save_state(db, form)


@app.post("/forms/{draft_id}/confirm")
def open_confirmation(form: services.FormController = Depends(get_form), db: Session = Depends(get_session)):
    """Validate the whole form and open the confirmation dialog."""
    form.open_confirmation()
    return _save_state(db, form)


@app.delete("/forms/{draft_id}/confirm")
def close_confirmation(form: services.FormController = Depends(get_form), db: Session = Depends(get_session)):
    form.close_confirmation()
    return _save_state(db, form)


@app.post("/forms/{draft_id}/submit")
def submit_form(
    form: services.FormController = Depends(get_form),
    session: PageSession = Depends(get_page_session),
    db: Session = Depends(get_session),
):
    """Run the submission pipeline.

    Returns the outcome (`succeeded`, `failed` or `aborted`), the page to
    navigate to on success, and the form state. Invalid forms answer 422
    with the field errors in the state.
    """
    try:
        outcome = form.submit(session)
    except services.DialogClosed:
        raise HTTPException(status_code=409, detail="confirmation dialog is not open")
    except services.FormInvalid:
        state = _save_state(db, form)
        return JSONResponse(status_code=422, content={"outcome": "invalid", "redirectTo": None, "state": state})
    state = _save_state(db, form)
    return {"outcome": outcome, "redirectTo": state["redirectTo"], "state": state}
