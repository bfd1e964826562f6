from __future__ import annotations

import json

import requests

from .config import ConfigError, validate_drive_credentials
from .models import DriveCredentials, DriveFolder


UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files?uploadType=multipart"
FILES_URL = "https://www.googleapis.com/drive/v3/files"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


class DriveError(RuntimeError):
    pass


class DriveClient:
    """Minimal Google Drive v3 client authenticated with an OAuth bearer token.

    The OAuth consent flow happens outside this package; the client only
    receives the resulting access token together with the app credentials.
    """

    def __init__(
        self,
        access_token: str,
        credentials: DriveCredentials,
        session: requests.Session | None = None,
        timeout: float = 60,
    ) -> None:
        validate_drive_credentials(credentials)
        if not access_token or not access_token.strip():
            raise ConfigError("not signed in to Google Drive (missing access token)")
        self.access_token = access_token.strip()
        self.credentials = credentials
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def upload_file(
        self,
        data: bytes,
        filename: str,
        folder_id: str,
        mime_type: str = "application/octet-stream",
    ) -> dict:
        metadata = {"name": filename, "parents": [folder_id]}
        files = {
            "metadata": (None, json.dumps(metadata), "application/json"),
            "file": (filename, data, mime_type),
        }
        try:
            response = self.session.post(
                UPLOAD_URL,
                headers=self._auth_headers,
                files=files,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise DriveError(f"upload failed: {exc}") from exc

        if not response.ok:
            raise DriveError(f"upload failed: {_error_message(response)}")
        return response.json()

    def list_folders(self, page_size: int = 100) -> list[DriveFolder]:
        params = {
            "q": f"mimeType='{FOLDER_MIME_TYPE}' and trashed=false",
            "fields": "files(id,name)",
            "orderBy": "name",
            "pageSize": page_size,
            "key": self.credentials.api_key,
        }
        try:
            response = self.session.get(
                FILES_URL,
                headers=self._auth_headers,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise DriveError(f"could not list folders: {exc}") from exc

        if not response.ok:
            raise DriveError(f"could not list folders: {_error_message(response)}")

        return [
            DriveFolder(id=item["id"], name=item.get("name", item["id"]))
            for item in response.json().get("files", [])
            if item.get("id")
        ]


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return response.reason or f"HTTP {response.status_code}"
