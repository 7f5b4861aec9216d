import json
from datetime import datetime, time

import pytest

from studyform import models, services
from studyform.auth import PageSession
from studyform.tags import CAPACITY_MESSAGE
from studyform.uploads import ImageUploadCoordinator

from conftest import STUDY_RECORD, FakeStorage, FakeStudyBackend, make_png

SESSION = PageSession(access_token="token-abc", user_id="user-1", role="ROLE_VERIFIED")


@pytest.fixture
def fakes():
    return FakeStudyBackend(), FakeStorage()


def _controller(tmp_path, fakes, draft):
    backend, storage = fakes
    coordinator = ImageUploadCoordinator(storage.client(), tmp_path)
    return services.FormController(draft, coordinator, backend.client(), require_time_order=False)


def _fill(form, with_image=True):
    form.update_fields({"title": "알고리즘 스터디", "day": "수", "campus": "명륜", "level": "고급",
                        "description": "그래프 탐색을 공부합니다."})
    form.select_time("start", datetime(2025, 3, 5, 9, 0))
    form.select_time("end", time(11, 30))
    form.add_tag("python")
    form.add_tag("graph")
    if with_image:
        form.stage_image("cover.png", make_png(), "image/png")


def test_create_submit_requires_confirmation(tmp_path, fakes):
    form = _controller(tmp_path, fakes, services.new_create_draft("user-1"))
    _fill(form)
    with pytest.raises(services.DialogClosed):
        form.submit(SESSION)


def test_confirmation_opens_dialog_even_when_invalid(tmp_path, fakes):
    form = _controller(tmp_path, fakes, services.new_create_draft("user-1"))
    errors = form.open_confirmation()
    assert "title" in errors
    state = form.snapshot()
    assert state["dialogOpen"] is True
    assert state["dialogMessage"] == "모든 항목이 제대로 입력되었는지 확인해주세요!"
    with pytest.raises(services.FormInvalid):
        form.submit(SESSION)


def test_create_success_commits_and_redirects(tmp_path, fakes):
    backend, storage = fakes
    form = _controller(tmp_path, fakes, services.new_create_draft("user-1"))
    _fill(form)
    assert form.open_confirmation() == {}
    assert form.submit(SESSION) == services.OUTCOME_SUCCEEDED

    created = backend.calls("POST", "/api/study")
    assert len(created) == 1
    assert created[0].headers["Authorization"] == "Bearer token-abc"
    body = json.loads(created[0].content)
    assert body["imageSrc"] == "https://cdn.test/obj-1"
    assert body["isRecruiting"] is True
    assert body["startTime"] == "09:00"
    assert body["endTime"] == "11:30"
    assert body["tags"] == ["python", "graph"]
    assert body["semester"] == "Spring"
    assert body["year"] == 2025

    assert storage.committed == ["obj-1"]
    assert storage.deleted == []
    state = form.snapshot()
    assert state["status"] == models.STATUS_SUCCEEDED
    assert state["redirectTo"] == "/study"
    assert state["dialogOpen"] is False
    assert state["notifications"][0]["title"] == "스터디 생성 완료"


def test_create_backend_failure_deletes_upload(tmp_path, fakes):
    backend, storage = fakes
    backend.create_status = 500
    form = _controller(tmp_path, fakes, services.new_create_draft("user-1"))
    _fill(form)
    form.open_confirmation()
    assert form.submit(SESSION) == services.OUTCOME_FAILED
    assert storage.deleted == ["obj-1"]
    assert storage.committed == []
    state = form.snapshot()
    assert state["redirectTo"] is None
    assert state["status"] == models.STATUS_FAILED
    assert state["notifications"][0]["variant"] == "destructive"
    # the staged file survives so the user can retry
    assert state["stagedImage"]["filename"] == "cover.png"


def test_create_without_staged_image_never_calls_backend(tmp_path, fakes):
    backend, storage = fakes
    form = _controller(tmp_path, fakes, services.new_create_draft("user-1"))
    _fill(form, with_image=False)
    # imageSrc set some other way; only the staged file counts
    form.draft.field_values = {**form.draft.field_values, "imageSrc": "https://elsewhere.test/x.png"}
    form.open_confirmation()
    assert form.submit(SESSION) == services.OUTCOME_ABORTED
    assert backend.calls("POST") == []
    assert storage.uploads == []
    assert form.draft.dialog_open is False


def test_create_upload_failure_skips_backend(tmp_path, fakes):
    backend, storage = fakes
    storage.fail_uploads = True
    form = _controller(tmp_path, fakes, services.new_create_draft("user-1"))
    _fill(form)
    form.open_confirmation()
    assert form.submit(SESSION) == services.OUTCOME_FAILED
    assert backend.calls("POST") == []


def test_fifth_tag_keeps_list_and_sets_capacity_error(tmp_path, fakes):
    form = _controller(tmp_path, fakes, services.new_create_draft("user-1"))
    for tag in ("a", "b", "c", "d"):
        assert form.add_tag(tag)
    assert form.add_tag("e") is False
    assert form.values["tags"] == ["a", "b", "c", "d"]
    assert form.draft.tag_error == CAPACITY_MESSAGE
    form.reset_tags()
    assert form.values["tags"] == []
    assert form.draft.tag_error == ""
    assert "tags" not in form.draft.field_errors


def test_recruiting_toggle_is_edit_only(tmp_path, fakes):
    form = _controller(tmp_path, fakes, services.new_create_draft("user-1"))
    with pytest.raises(services.ModeError):
        form.update_fields({"isRecruiting": False})


def test_description_is_validated_live(tmp_path, fakes):
    form = _controller(tmp_path, fakes, services.new_create_draft("user-1"))
    form.update_fields({"description": "가" * 801})
    assert form.draft.field_errors["description"] == "설명은 800자 이내로 입력해주세요"
    form.update_fields({"description": "짧은 설명"})
    assert "description" not in form.draft.field_errors


def test_edit_load_hydrates_values(tmp_path, fakes):
    form = _controller(tmp_path, fakes, services.new_edit_draft("user-1", 7))
    assert form.load() == services.LOAD_LOADED
    assert form.values["title"] == STUDY_RECORD["title"]
    assert form.values["tags"] == ["python", "algorithm"]
    assert form.values["isRecruiting"] is True
    assert form.draft.saved_image_src == STUDY_RECORD["imageSrc"]


def test_edit_load_not_found(tmp_path, fakes):
    form = _controller(tmp_path, fakes, services.new_edit_draft("user-1", 999))
    assert form.load() == services.LOAD_NOT_FOUND
    assert form.draft.notifications == []


def test_edit_load_error_notifies(tmp_path, fakes):
    backend, _ = fakes
    backend.retrieve_status = 500
    form = _controller(tmp_path, fakes, services.new_edit_draft("user-1", 7))
    assert form.load() == services.LOAD_FAILED
    assert form.draft.notifications[0]["title"] == "스터디 정보 불러오기 실패"


def test_edit_without_new_image_reuses_image_src(tmp_path, fakes):
    backend, storage = fakes
    form = _controller(tmp_path, fakes, services.new_edit_draft("user-1", 7))
    form.load()
    form.update_fields({"title": "새 제목", "isRecruiting": False})
    assert form.submit(SESSION) == services.OUTCOME_SUCCEEDED
    body = json.loads(backend.calls("PUT", "/api/study/7")[0].content)
    assert body["imageSrc"] == STUDY_RECORD["imageSrc"]
    assert body["title"] == "새 제목"
    assert body["isRecruiting"] is False
    assert storage.uploads == []
    assert form.draft.redirect_to == "/mystudy/7"


def test_edit_with_new_image_uploads_under_study_prefix(tmp_path, fakes):
    backend, storage = fakes
    form = _controller(tmp_path, fakes, services.new_edit_draft("user-1", 7))
    form.load()
    form.stage_image("new.png", make_png(), "image/png")
    assert form.submit(SESSION) == services.OUTCOME_SUCCEEDED
    assert b"image/study/7/new.png" in storage.uploads[0]["body"]
    body = json.loads(backend.calls("PUT", "/api/study/7")[0].content)
    assert body["imageSrc"] == "https://cdn.test/obj-1"
    assert storage.committed == ["obj-1"]
    assert form.draft.saved_image_src == "https://cdn.test/obj-1"


def test_edit_failure_deletes_the_uploaded_object_once(tmp_path, fakes):
    backend, storage = fakes
    backend.update_status = 400
    form = _controller(tmp_path, fakes, services.new_edit_draft("user-1", 7))
    form.load()
    form.stage_image("new.png", make_png(), "image/png")
    assert form.submit(SESSION) == services.OUTCOME_FAILED
    assert len(storage.uploads) == 1
    assert storage.deleted == ["obj-1"]
    assert storage.committed == []
    assert form.snapshot()["notifications"][0]["title"] == "스터디 수정 실패"


def test_edit_backend_unreachable_fails(tmp_path, fakes):
    backend, _ = fakes
    form = _controller(tmp_path, fakes, services.new_edit_draft("user-1", 7))
    form.load()
    backend.unreachable = True
    assert form.submit(SESSION) == services.OUTCOME_FAILED
    assert form.draft.status == models.STATUS_FAILED


def test_recruiting_toggle_rejects_null(tmp_path, fakes):
    form = _controller(tmp_path, fakes, services.new_edit_draft("user-1", 7))
    form.load()
    with pytest.raises(ValueError):
        form.update_fields({"isRecruiting": None})
    assert form.values["isRecruiting"] is True


def test_edit_payload_error_fails_before_upload(tmp_path, fakes):
    backend, storage = fakes
    form = _controller(tmp_path, fakes, services.new_edit_draft("user-1", 7))
    form.load()
    form.stage_image("new.png", make_png(), "image/png")
    form.draft.field_values = {**form.values, "isRecruiting": None}
    assert form.submit(SESSION) == services.OUTCOME_FAILED
    assert storage.uploads == []
    assert backend.calls("PUT") == []
    assert form.draft.status == models.STATUS_FAILED
    assert form.snapshot()["notifications"][0]["title"] == "스터디 수정 실패"


def test_edit_load_tolerates_null_tags_and_flag(tmp_path, fakes):
    backend, _ = fakes
    backend.records[7] = {**STUDY_RECORD, "id": "7", "tags": None, "isRecruiting": None}
    form = _controller(tmp_path, fakes, services.new_edit_draft("user-1", 7))
    assert form.load() == services.LOAD_LOADED
    assert form.values["tags"] == []
    assert form.values["isRecruiting"] is True
    assert form.draft.notifications == []
