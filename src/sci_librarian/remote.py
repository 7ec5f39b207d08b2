"""
Remote File Store
=================

This module defines the `RemoteFileStore` interface used by the synchronizer,
the batch pipeline and the index renderer, together with `DropboxClient`, an
implementation on top of the Dropbox HTTP API v2.

`DropboxClient` encapsulates authentication, folder-listing pagination,
downloads and uploads. Uploads are restricted to a configured path prefix so
a misbehaving rule can never write outside the library folder. Every request
carries a short timeout so a stuck call cannot hold a worker forever.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod

import requests
import structlog

from .config import Settings
from .models import RemoteEntry
from .utils import retry

log = structlog.get_logger(__name__)

API_URL = "https://api.dropboxapi.com/2"
CONTENT_URL = "https://content.dropboxapi.com/2"


class DropboxError(Exception):
    """The Dropbox API answered with a non-success status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UploadNotAllowedError(DropboxError):
    """An upload targeted a path outside the allowed prefix."""


class RemoteFileStore(ABC):
    """Abstract interface of the remote file store."""

    @abstractmethod
    def list_folder(self, path: str) -> list[RemoteEntry]:
        """Return every file (folders excluded) directly inside ``path``."""
        raise NotImplementedError

    @abstractmethod
    def download(self, remote_id: str) -> bytes:
        raise NotImplementedError

    @abstractmethod
    def upload(self, path: str, content: bytes) -> None:
        """Write ``content`` to ``path``, overwriting any existing file."""
        raise NotImplementedError

    def close(self) -> None:
        """Release network resources, if any."""


class DropboxClient(RemoteFileStore):
    """A client for the Dropbox HTTP API."""

    def __init__(self, settings: Settings):
        """Initializes the client with a session and bearer authentication."""
        self.settings = settings
        self.allowed_upload_prefix = settings.DROPBOX_UPLOAD_PREFIX
        self._session = requests.Session()
        self._session.headers.update(
            {"Authorization": f"Bearer {self.settings.DROPBOX_TOKEN}"}
        )

    def close(self) -> None:
        self._session.close()

    @retry(retryable_exceptions=(requests.exceptions.RequestException,))
    def _post(
        self,
        url: str,
        *,
        json_body: dict | None = None,
        data: bytes | None = None,
        api_arg: dict | None = None,
    ) -> requests.Response:
        """Send a POST request and raise `DropboxError` on non-2xx answers."""
        headers = {}
        if api_arg is not None:
            headers["Dropbox-API-Arg"] = json.dumps(api_arg)
        if data is not None:
            headers["Content-Type"] = "application/octet-stream"
        log.debug("Dropbox request", url=url)
        response = self._session.post(
            url,
            json=json_body,
            data=data,
            headers=headers,
            timeout=self.settings.DROPBOX_TIMEOUT,
        )
        if not response.ok:
            raise DropboxError(
                f"Dropbox API error ({response.status_code}): {response.text}",
                status_code=response.status_code,
            )
        return response

    def list_folder(self, path: str) -> list[RemoteEntry]:
        """
        List a folder, following ``has_more`` cursors until exhausted.
        """
        page = self._post(
            f"{API_URL}/files/list_folder",
            json_body={
                "path": path,
                "recursive": False,
                "include_media_info": False,
                "include_deleted": False,
                "include_has_explicit_shared_members": False,
                "include_mounted_folders": True,
                "include_non_downloadable_files": True,
            },
        ).json()
        entries = _file_entries(page)

        while page.get("has_more"):
            cursor = page.get("cursor")
            if not cursor:
                raise DropboxError(
                    "Missing cursor in Dropbox response despite has_more=true"
                )
            page = self._post(
                f"{API_URL}/files/list_folder/continue",
                json_body={"cursor": cursor},
            ).json()
            entries.extend(_file_entries(page))

        log.debug("Listed Dropbox folder", path=path, file_count=len(entries))
        return entries

    def download(self, remote_id: str) -> bytes:
        response = self._post(
            f"{CONTENT_URL}/files/download", api_arg={"path": remote_id}
        )
        return response.content

    def upload(self, path: str, content: bytes) -> None:
        if not path.startswith(self.allowed_upload_prefix):
            raise UploadNotAllowedError(
                f"Upload path not allowed: {path} "
                f"(allowed prefix: {self.allowed_upload_prefix})"
            )
        self._post(
            f"{CONTENT_URL}/files/upload",
            data=content,
            api_arg={
                "path": path,
                "mode": "overwrite",
                "autorename": True,
                "mute": False,
                "strict_conflict": False,
            },
        )
        log.debug("Uploaded file", path=path, size=len(content))


def _file_entries(page: dict) -> list[RemoteEntry]:
    """Extract the file entries of one list_folder page, skipping folders."""
    entries = []
    for item in page.get("entries", []) or []:
        if item.get(".tag") != "file":
            continue
        entries.append(
            RemoteEntry(
                id=str(item.get("id", "")),
                name=str(item.get("name", "")),
                path=str(item.get("path_display", "")),
                content_hash=str(item.get("content_hash", "")),
            )
        )
    return entries
