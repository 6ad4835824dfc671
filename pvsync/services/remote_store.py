"""Remote object store client (OneDrive style drive over HTTP)."""

import mimetypes
import time
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any

import httpx
from loguru import logger

from pvsync.core.exceptions import NotFoundError, RemoteStoreError, TransientNetworkError
from pvsync.schemas.image import RemoteFile, RemoteUpload

RETRYABLE_STATUS_CODES = {408, 429}


class OneDriveClient:
    """Drive client addressing one folder per installation.

    Usage:
        async with OneDriveClient(base_url, "/FVE", token) as drive:
            upload = await drive.upload_file(42, data, "roof.jpg")
    """

    def __init__(
        self,
        base_url: str,
        base_folder: str,
        bearer_token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.base_folder = "/" + base_folder.strip("/")
        self._bearer_token = bearer_token
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Open the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "OneDriveClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def folder_path(self, installation_id: int | str) -> str:
        """Drive path of an installation folder."""
        return f"{self.base_folder}/{installation_id}"

    async def ensure_installation_container(self, installation_id: int | str) -> str:
        """Make sure the installation folder exists, creating it if absent."""
        folder_path = self.folder_path(installation_id)
        response = await self._request("GET", f"/me/drive/root:{folder_path}")

        if response.status_code == 404:
            logger.info(f"Creating installation folder: {folder_path}")
            response = await self._request(
                "POST",
                f"/me/drive/root:{self.base_folder}:/children",
                json={
                    "name": str(installation_id),
                    "folder": {},
                    "@microsoft.graph.conflictBehavior": "fail",
                },
            )
            # 409: created concurrently by someone else
            if response.status_code != 409:
                self._check(response, 200, 201)
        else:
            self._check(response, 200)

        return folder_path

    async def upload_file(
        self,
        installation_id: int | str,
        data: bytes,
        suggested_name: str,
        description: str | None = None,
    ) -> RemoteUpload:
        """Upload file content into the installation folder."""
        folder_path = await self.ensure_installation_container(installation_id)
        file_name = f"{int(time.time() * 1000)}_{PurePosixPath(suggested_name).name}"
        content_type = mimetypes.guess_type(file_name)[0] or "image/jpeg"

        logger.debug(f"Uploading file: {file_name} to {folder_path}")
        response = await self._request(
            "PUT",
            f"/me/drive/root:{folder_path}/{file_name}:/content",
            content=data,
            headers={"Content-Type": content_type},
        )
        self._check(response, 200, 201)

        payload = response.json()
        upload = RemoteUpload(remote_id=payload["id"], url=payload["webUrl"])

        if description is not None:
            await self._update_file_description(upload.remote_id, description)

        logger.info(f"Uploaded {file_name} for installation {installation_id}")
        return upload

    async def list_files(self, installation_id: int | str) -> list[RemoteFile]:
        """Files of the installation folder, newest first."""
        folder_path = await self.ensure_installation_container(installation_id)
        response = await self._request("GET", f"/me/drive/root:{folder_path}:/children")
        self._check(response, 200)

        files = [
            self._to_remote_file(item)
            for item in response.json().get("value", [])
            if item.get("file") is not None
        ]
        files.sort(
            key=lambda f: f.created_at.timestamp() if f.created_at else 0.0,
            reverse=True,
        )
        return files

    async def download_file(self, download_ref: str) -> bytes:
        """Fetch file content from a download URL returned by ``list_files``."""
        response = await self._request("GET", download_ref)
        self._check(response, 200)
        return response.content

    async def delete_file(self, remote_id: str) -> None:
        """Delete a drive item; only an acknowledged (204) delete succeeds."""
        response = await self._request("DELETE", f"/me/drive/items/{remote_id}")
        self._check(response, 204)
        logger.info(f"Deleted remote file: {remote_id}")

    async def _update_file_description(self, remote_id: str, description: str) -> None:
        try:
            response = await self._request(
                "PATCH",
                f"/me/drive/items/{remote_id}",
                json={"description": description},
            )
            self._check(response, 200)
        except (TransientNetworkError, RemoteStoreError, NotFoundError) as e:
            logger.warning(f"Failed to update file description: {e}")

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        await self.start()

        if not url.startswith(("http://", "https://")):
            url = f"{self.base_url}{url}"

        headers = kwargs.pop("headers", {})
        if self._bearer_token:
            headers.setdefault("Authorization", f"Bearer {self._bearer_token}")

        try:
            return await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientNetworkError("Remote store timeout", url=url) from e
        except httpx.RequestError as e:
            raise TransientNetworkError(f"Remote store unreachable: {e}", url=url) from e

    @staticmethod
    def _check(response: httpx.Response, *expected: int) -> None:
        status_code = response.status_code
        if status_code in expected:
            return

        url = str(response.request.url)
        if status_code in RETRYABLE_STATUS_CODES or status_code >= 500:
            raise TransientNetworkError(
                f"Remote store error {status_code}", status_code=status_code, url=url
            )
        if status_code == 404:
            raise NotFoundError("Remote object not found", url=url)
        raise RemoteStoreError(f"Remote store error {status_code}", status_code, url=url)

    @staticmethod
    def _to_remote_file(item: dict[str, Any]) -> RemoteFile:
        created = item.get("createdDateTime")
        return RemoteFile(
            remote_id=item["id"],
            name=item.get("name", ""),
            description=item.get("description") or "",
            url=item.get("webUrl"),
            download_ref=item.get("@microsoft.graph.downloadUrl"),
            created_at=datetime.fromisoformat(created.replace("Z", "+00:00")) if created else None,
        )
