import io
import json
import os
import tempfile
import time
from pathlib import Path

import httpx
import jwt
import pytest
from PIL import Image

# Point the database and staging area at a scratch directory before the
# app (and its settings) is imported by any test module.
_SCRATCH = Path(tempfile.mkdtemp(prefix="studyform-tests-"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_SCRATCH / 'test.db'}")
os.environ.setdefault("STAGING_DIR", str(_SCRATCH / "staging"))
os.environ["JWT_SECRET"] = "test-secret"

from studyform.clients import StorageClient, StudyApiClient  # noqa: E402


def make_token(user_id="user-1", role="ROLE_VERIFIED", expires_in=3600, secret="test-secret"):
    payload = {"sub": user_id, "exp": int(time.time()) + expires_in}
    if role is not None:
        payload["role"] = role
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(**kwargs):
    return {"Authorization": f"Bearer {make_token(**kwargs)}"}


def make_png(size=(32, 32), color="white") -> bytes:
    img = Image.new("RGB", size, color)
    bio = io.BytesIO()
    img.save(bio, format="PNG")
    return bio.getvalue()


STUDY_RECORD = {
    "id": 7,
    "imageSrc": "https://cdn.test/image/study/7/old.png",
    "title": "알고리즘 스터디",
    "day": "화",
    "startTime": "19:00",
    "endTime": "21:00",
    "campus": "율전",
    "level": "중급",
    "tags": ["python", "algorithm"],
    "description": "매주 백준 문제를 풉니다.",
    "isRecruiting": True,
    "mentor": {"id": 1, "username": "mentor"},
}


class FakeStudyBackend:
    """Backend study API double served through httpx.MockTransport."""

    def __init__(self):
        self.requests = []
        self.records = {STUDY_RECORD["id"]: dict(STUDY_RECORD)}
        self.create_status = 201
        self.update_status = 200
        self.retrieve_status = None
        self.unreachable = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        path = request.url.path
        if request.method == "POST" and path == "/api/study":
            return httpx.Response(self.create_status, json={"message": "ok"})
        if path.startswith("/api/study/"):
            study_id = int(path.rsplit("/", 1)[1])
            if request.method == "GET":
                if self.retrieve_status is not None:
                    return httpx.Response(self.retrieve_status, json={"message": "error"})
                record = self.records.get(study_id)
                if record is None:
                    return httpx.Response(404, json={"message": "not found"})
                return httpx.Response(200, json={"data": record})
            if request.method == "PUT":
                return httpx.Response(self.update_status, json={"message": "ok"})
        return httpx.Response(404)

    def calls(self, method, path=None):
        return [r for r in self.requests if r.method == method and (path is None or r.url.path == path)]

    def client(self) -> StudyApiClient:
        return StudyApiClient("http://backend.test", transport=httpx.MockTransport(self.handler))


class FakeStorage:
    """Object storage double recording uploads, commits and deletes."""

    def __init__(self):
        self.uploads = []
        self.committed = []
        self.deleted = []
        self.fail_uploads = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = request.read()
        path = request.url.path
        if request.method == "POST" and path == "/objects":
            if self.fail_uploads:
                return httpx.Response(503, text="storage unavailable")
            key = f"obj-{len(self.uploads) + 1}"
            self.uploads.append({"key": key, "body": body})
            return httpx.Response(201, json={"key": key, "url": f"https://cdn.test/{key}"})
        if request.method == "POST" and path == "/objects/commit":
            self.committed.append(json.loads(body)["key"])
            return httpx.Response(204)
        if request.method == "DELETE" and path == "/objects":
            self.deleted.append(request.url.params["key"])
            return httpx.Response(204)
        return httpx.Response(404)

    def client(self) -> StorageClient:
        return StorageClient("http://storage.test", transport=httpx.MockTransport(self.handler))


@pytest.fixture
def backend():
    return FakeStudyBackend()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def client(backend, storage):
    """TestClient with the HTTP collaborators replaced by fakes."""
    from fastapi.testclient import TestClient
    from studyform.main import app, get_storage, get_study_api

    app.dependency_overrides[get_study_api] = backend.client
    app.dependency_overrides[get_storage] = storage.client
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
