"""Async Google Drive client for filing memos as Google Docs.

All Google API calls are wrapped in asyncio.to_thread() to avoid blocking
the event loop. Credentials are the user's OAuth tokens stored on the
google_drive integration; token refresh uses google-auth with the app's
OAuth client id/secret.

Service instances are cached per access token so a filing run that makes
several calls builds the discovery client once.
"""

from __future__ import annotations

import asyncio
import io
from typing import Any

import structlog
from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive.file"]
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
DOCUMENT_MIME_TYPE = "application/vnd.google-apps.document"

# Bound on cached discovery clients (one per live access token)
_MAX_CACHED_SERVICES = 32


class DriveAuthError(Exception):
    """The access token was rejected or could not be refreshed."""


class DriveFile(BaseModel):
    """A file created or updated in Drive."""

    id: str
    web_view_link: str | None = None


def _is_auth_failure(exc: HttpError) -> bool:
    status = getattr(exc, "status_code", None) or getattr(exc.resp, "status", None)
    return int(status or 0) == 401


class DriveClient:
    """Async wrapper around the Drive v3 API for one OAuth client.

    Args:
        client_id: Google OAuth client id (for refresh-token exchange).
        client_secret: Google OAuth client secret.
    """

    def __init__(self, client_id: str, client_secret: str) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._service_cache: dict[str, Any] = {}

    def _credentials(self, access_token: str | None, refresh_token: str | None = None) -> Credentials:
        return Credentials(
            token=access_token,
            refresh_token=refresh_token,
            token_uri=TOKEN_URI,
            client_id=self._client_id,
            client_secret=self._client_secret,
            scopes=DRIVE_SCOPES,
        )

    def _get_service(self, access_token: str) -> Any:
        """Get a cached Drive v3 service instance for an access token."""
        if access_token not in self._service_cache:
            if len(self._service_cache) >= _MAX_CACHED_SERVICES:
                self._service_cache.clear()
            logger.info("building_drive_service")
            self._service_cache[access_token] = build(
                "drive",
                "v3",
                credentials=self._credentials(access_token),
                cache_discovery=False,
            )
        return self._service_cache[access_token]

    async def _call(self, access_token: str, fn: Any) -> Any:
        """Run ``fn(service)`` in a worker thread, mapping auth failures."""
        service = self._get_service(access_token)
        try:
            return await asyncio.to_thread(fn, service)
        except RefreshError as exc:
            self._service_cache.pop(access_token, None)
            raise DriveAuthError(str(exc)) from exc
        except HttpError as exc:
            if _is_auth_failure(exc):
                self._service_cache.pop(access_token, None)
                raise DriveAuthError("Google access token expired or revoked") from exc
            raise

    async def refresh_access_token(self, refresh_token: str) -> str:
        """Exchange a refresh token for a new access token.

        Raises:
            DriveAuthError: If the exchange is rejected.
        """
        credentials = self._credentials(None, refresh_token)
        try:
            await asyncio.to_thread(credentials.refresh, Request())
        except RefreshError as exc:
            raise DriveAuthError(f"Token refresh failed: {exc}") from exc
        logger.info("drive_token_refreshed")
        return credentials.token

    async def ensure_folder(
        self, access_token: str, folder_name: str, cached_folder_id: str | None
    ) -> str:
        """Return a usable folder id, creating the folder lazily.

        The cached id is verified first and discarded if the folder is gone
        or trashed; then an existing folder with the same name is reused;
        otherwise a new folder is created.
        """

        def _resolve(service: Any) -> str:
            if cached_folder_id:
                try:
                    folder = (
                        service.files()
                        .get(fileId=cached_folder_id, fields="id,name,trashed")
                        .execute()
                    )
                    if not folder.get("trashed"):
                        return folder["id"]
                except HttpError as exc:
                    if _is_auth_failure(exc):
                        raise

            escaped = folder_name.replace("'", "\\'")
            found = (
                service.files()
                .list(
                    q=(
                        f"name = '{escaped}' and mimeType = '{FOLDER_MIME_TYPE}' "
                        "and trashed = false"
                    ),
                    fields="files(id,name)",
                    spaces="drive",
                )
                .execute()
            )
            files = found.get("files", [])
            if files:
                return files[0]["id"]

            created = (
                service.files()
                .create(
                    body={"name": folder_name, "mimeType": FOLDER_MIME_TYPE},
                    fields="id",
                )
                .execute()
            )
            return created["id"]

        folder_id = await self._call(access_token, _resolve)
        logger.debug("drive_folder_resolved", folder_id=folder_id)
        return folder_id

    async def create_document(
        self, access_token: str, folder_id: str, title: str, html: str
    ) -> DriveFile:
        """Create a Google Doc from HTML inside ``folder_id``."""

        def _create(service: Any) -> dict:
            media = MediaIoBaseUpload(
                io.BytesIO(html.encode("utf-8")), mimetype="text/html", resumable=False
            )
            return (
                service.files()
                .create(
                    body={
                        "name": title,
                        "mimeType": DOCUMENT_MIME_TYPE,
                        "parents": [folder_id],
                    },
                    media_body=media,
                    fields="id,webViewLink",
                )
                .execute()
            )

        data = await self._call(access_token, _create)
        return DriveFile(id=data["id"], web_view_link=data.get("webViewLink"))

    async def update_document(
        self, access_token: str, file_id: str, title: str, html: str
    ) -> DriveFile:
        """Replace the body and title of an existing Google Doc."""

        def _update(service: Any) -> dict:
            media = MediaIoBaseUpload(
                io.BytesIO(html.encode("utf-8")), mimetype="text/html", resumable=False
            )
            service.files().update(
                fileId=file_id,
                body={"name": title},
                media_body=media,
            ).execute()
            return service.files().get(fileId=file_id, fields="id,webViewLink").execute()

        data = await self._call(access_token, _update)
        return DriveFile(id=data["id"], web_view_link=data.get("webViewLink"))
