"""Project blob storage on Supabase Storage (JSON bodies and PNG thumbnails)."""

import base64
import binascii
import json
import logging
import re
from typing import Any

import httpx

from account_api.config import settings

logger = logging.getLogger(__name__)

_DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")


class StorageError(Exception):
    """An object storage request failed."""


def build_project_json_path(user_id: str, project_id: str) -> str:
    return f"{user_id}/{project_id}.json"


def build_thumbnail_path(user_id: str, project_id: str) -> str:
    return f"{user_id}/{project_id}.png"


def decode_thumbnail(thumbnail: str) -> bytes:
    """Decode a base64 PNG, with or without a ``data:image/...;base64,`` prefix.

    Raises:
        ValueError: If the payload is not valid base64.
    """
    try:
        return base64.b64decode(_DATA_URL_PREFIX.sub("", thumbnail), validate=True)
    except binascii.Error as e:
        raise ValueError("Thumbnail is not valid base64") from e


class ProjectStorage:
    """Minimal async client for one Supabase Storage bucket."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/") + "/storage/v1"
        self._headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }
        self._bucket = bucket
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            transport=self._transport,
            timeout=httpx.Timeout(30.0),
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        async with self._client() as client:
            try:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise StorageError(f"{method} {url} failed: {e}") from e
        return response

    async def upload(self, path: str, data: bytes, content_type: str, upsert: bool) -> None:
        await self._request(
            "POST",
            f"/object/{self._bucket}/{path}",
            content=data,
            headers={"Content-Type": content_type, "x-upsert": "true" if upsert else "false"},
        )

    async def upload_json(self, path: str, data: Any, upsert: bool) -> None:
        await self.upload(path, json.dumps(data).encode("utf-8"), "application/json", upsert)

    async def download(self, path: str) -> bytes:
        response = await self._request("GET", f"/object/{self._bucket}/{path}")
        return response.content

    async def download_json(self, path: str) -> Any:
        """Download and parse a JSON blob.

        Raises:
            StorageError: If the download fails.
            ValueError: If the blob is not valid JSON.
        """
        return json.loads(await self.download(path))

    async def remove(self, paths: list[str]) -> None:
        await self._request("DELETE", f"/object/{self._bucket}", json={"prefixes": paths})


def get_project_storage() -> ProjectStorage:
    """FastAPI dependency: storage client for the projects bucket."""
    return ProjectStorage(
        base_url=settings.supabase_url,
        service_key=settings.supabase_service_role_key,
        bucket=settings.project_storage_bucket,
    )
