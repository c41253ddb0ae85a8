"""Google Drive folder polling."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Mapping

import requests

from rag_pipeline.core.config import Settings
from rag_pipeline.core.errors import ConfigurationError
from rag_pipeline.core.logging import get_logger
from rag_pipeline.ingest.pipeline import IngestOrchestrator

logger = get_logger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
FILES_URL = "https://www.googleapis.com/drive/v3/files"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
GOOGLE_APPS_PREFIX = "application/vnd.google-apps."

# Google-native documents have no bytes of their own and must be exported.
EXPORT_MIME_TYPES: dict[str, str] = {
    "application/vnd.google-apps.document": "text/plain",
    "application/vnd.google-apps.spreadsheet": "text/csv",
    "application/vnd.google-apps.presentation": "text/plain",
}

_LIST_FIELDS = "nextPageToken, files(id, name, mimeType, modifiedTime, webViewLink)"


@dataclass(slots=True)
class DriveFile:
    file_id: str
    name: str
    mime_type: str
    modified_time: str
    web_view_link: str | None = None

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "DriveFile":
        return cls(
            file_id=payload["id"],
            name=payload["name"],
            mime_type=payload["mimeType"],
            modified_time=payload.get("modifiedTime") or "",
            web_view_link=payload.get("webViewLink"),
        )

    @property
    def origin_url(self) -> str:
        return self.web_view_link or f"https://drive.google.com/file/d/{self.file_id}"

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME_TYPE

    @property
    def is_google_native(self) -> bool:
        return self.mime_type.startswith(GOOGLE_APPS_PREFIX)


class DriveClient:
    """Minimal Drive v3 REST client authorised with an OAuth2 refresh token."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        timeout: float = 60.0,
        session: requests.Session | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.timeout = timeout
        self.session = session or requests.Session()
        self._access_token: str | None = None
        self._expires_at = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "DriveClient":
        missing = [
            name
            for name in ("google_client_id", "google_client_secret", "google_refresh_token")
            if not getattr(settings, name)
        ]
        if missing:
            raise ConfigurationError(f"Missing Google Drive credentials: {', '.join(missing)}")
        return cls(
            client_id=settings.google_client_id or "",
            client_secret=settings.google_client_secret or "",
            refresh_token=settings.google_refresh_token or "",
            timeout=settings.request_timeout_seconds,
        )

    def list_files(self, folder_id: str) -> list[DriveFile]:
        """Return every non-trashed file directly inside ``folder_id``, following pagination."""
        files: list[DriveFile] = []
        params: dict[str, Any] = {
            "q": f"'{folder_id}' in parents and trashed = false",
            "fields": _LIST_FIELDS,
            "pageSize": 1000,
        }
        while True:
            payload = self._get(FILES_URL, params).json()
            files.extend(DriveFile.from_api(item) for item in payload.get("files", []))
            page_token = payload.get("nextPageToken")
            if not page_token:
                return files
            params["pageToken"] = page_token

    def download(self, file: DriveFile) -> tuple[bytes, str]:
        """Fetch file bytes and the MIME type they are in; native documents are exported."""
        if file.is_google_native:
            export_type = EXPORT_MIME_TYPES.get(file.mime_type, "text/plain")
            response = self._get(f"{FILES_URL}/{file.file_id}/export", {"mimeType": export_type})
            return response.content, export_type
        response = self._get(f"{FILES_URL}/{file.file_id}", {"alt": "media"})
        return response.content, file.mime_type

    def _get(self, url: str, params: Mapping[str, Any]) -> requests.Response:
        response = self.session.get(url, params=params, headers=self._headers(), timeout=self.timeout)
        if response.status_code == 401:
            # Token revoked or expired early; refresh once and retry.
            self._access_token = None
            response = self.session.get(url, params=params, headers=self._headers(), timeout=self.timeout)
        response.raise_for_status()
        return response

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token()}"}

    def _token(self) -> str:
        if self._access_token and time.monotonic() < self._expires_at:
            return self._access_token
        response = self.session.post(
            TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": self.refresh_token,
                "grant_type": "refresh_token",
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        payload = response.json()
        self._access_token = payload["access_token"]
        # Refresh a minute before the advertised expiry.
        self._expires_at = time.monotonic() + max(float(payload.get("expires_in", 3600)) - 60.0, 0.0)
        return self._access_token


class DriveWatcher:
    """Poll a Drive folder and keep the store in step with it.

    ``known`` maps file id to the last ``modifiedTime`` that was ingested
    successfully. It is only a cache: starting with it empty re-ingests
    everything once. A file missing from a successful listing is deleted
    from the store and then forgotten; a failed listing deletes nothing.
    """

    def __init__(
        self,
        orchestrator: IngestOrchestrator,
        client: DriveClient,
        settings: Settings,
        folder_id: str | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self.folder_id = folder_id or settings.drive_folder_id
        if not self.folder_id:
            raise ConfigurationError("drive_folder_id is required to watch Google Drive")
        self.orchestrator = orchestrator
        self.client = client
        self.poll_interval = poll_interval or settings.poll_interval_seconds
        self.known: dict[str, str] = {}
        self._scan_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="drive-watcher", daemon=True)
        self._thread.start()
        logger.info("Google Drive watcher started for folder %s", self.folder_id)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop polling; a scan already in progress finishes on its own."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Google Drive watcher stopped")

    def scan_once(self) -> bool:
        """Run one diff-and-apply pass; returns ``False`` when the listing failed."""
        with self._scan_lock:
            logger.info("Scanning Google Drive folder %s", self.folder_id)
            try:
                files = self.client.list_files(self.folder_id)
            except requests.RequestException as exc:
                logger.error("Error listing Google Drive folder %s: %s", self.folder_id, exc)
                return False

            current: set[str] = set()
            for file in files:
                if file.is_folder:
                    continue
                current.add(file.file_id)
                if self.known.get(file.file_id) == file.modified_time:
                    continue
                if self._process(file):
                    self.known[file.file_id] = file.modified_time

            for file_id in [file_id for file_id in self.known if file_id not in current]:
                logger.info("Google Drive file removed: %s", file_id, extra={"ctx_source_id": file_id})
                if self.orchestrator.delete(file_id):
                    del self.known[file_id]

            logger.info("Folder scan complete: %s files found, %s tracked", len(current), len(self.known))
            return True

    def _process(self, file: DriveFile) -> bool:
        context = {"ctx_source_id": file.file_id, "ctx_mime_type": file.mime_type}
        logger.info("Processing Google Drive file %s", file.name, extra=context)
        try:
            data, mime_type = self.client.download(file)
            return self.orchestrator.ingest(file.file_id, data, mime_type, file.name, file.origin_url)
        except Exception:
            logger.exception("Google Drive file processing failed: %s", file.name, extra=context)
            return False

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.scan_once()
            except Exception:
                logger.exception("Google Drive scan failed for folder %s", self.folder_id)
            if self._stop_event.wait(self.poll_interval):
                break


__all__ = ["DriveClient", "DriveFile", "DriveWatcher", "EXPORT_MIME_TYPES"]
