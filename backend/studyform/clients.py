"""HTTP clients for the backend study API and the object storage service.

Both collaborators live outside this service. The clients only move
bytes: they raise `StudyApiError` / `StorageError` on transport
problems and leave the interpretation of backend status codes to the
caller.
"""

from dataclasses import dataclass
from typing import Optional

import httpx


class StudyApiError(Exception):
    """Raised when the backend study API cannot be reached."""
    def __init__(self, detail: str, status_code: int = 0):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"study API error {status_code}: {detail}")


class StorageError(Exception):
    """Raised when an object storage call fails."""
    def __init__(self, detail: str, status_code: int = 0):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"storage error {status_code}: {detail}")


def _bearer(access_token: str) -> dict:
    return {"Authorization": f"Bearer {access_token}"}


class StudyApiClient:
    """CREATE / RETRIEVE / UPDATE against the backend study endpoints.

    Every call returns the raw `httpx.Response`; `response.is_success`
    decides between the success and failure paths of the form.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
                return client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            raise StudyApiError(f"request failed: {e}") from e

    def create(self, payload: dict, access_token: str) -> httpx.Response:
        """POST /api/study"""
        return self._request("POST", "/api/study", json=payload, headers=_bearer(access_token))

    def retrieve(self, study_id: int) -> httpx.Response:
        """GET /api/study/{id}"""
        return self._request("GET", f"/api/study/{study_id}", headers={"Cache-Control": "no-cache"})

    def update(self, study_id: int, payload: dict, access_token: str) -> httpx.Response:
        """PUT /api/study/{id}"""
        return self._request("PUT", f"/api/study/{study_id}", json=payload, headers=_bearer(access_token))


@dataclass(frozen=True)
class UploadedObject:
    """Handle of a provisional upload: storage key plus public URL."""
    key: str
    url: str


class StorageClient:
    """Provisional upload, commit and delete against object storage.

    An upload is garbage-collected by the storage service unless it is
    committed.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
                response = client.request(method, path, **kwargs)
                response.raise_for_status()
                return response
        except httpx.HTTPStatusError as e:
            raise StorageError(e.response.text or str(e), e.response.status_code) from e
        except httpx.RequestError as e:
            raise StorageError(f"request failed: {e}") from e

    def upload(self, filename: str, payload: bytes, content_type: str, path: str) -> UploadedObject:
        """POST /objects; returns the provisional object handle."""
        response = self._request(
            "POST",
            "/objects",
            files={"file": (filename, payload, content_type)},
            data={"path": path},
        )
        body = response.json()
        try:
            return UploadedObject(key=body["key"], url=body["url"])
        except (KeyError, TypeError) as e:
            raise StorageError(f"malformed upload response: {body!r}", response.status_code) from e

    def commit(self, obj: UploadedObject) -> None:
        """POST /objects/commit"""
        self._request("POST", "/objects/commit", json={"key": obj.key})

    def delete(self, obj: UploadedObject) -> None:
        """DELETE /objects?key=..."""
        self._request("DELETE", "/objects", params={"key": obj.key})
