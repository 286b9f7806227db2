"""Azure Blob Storage access for raw message bodies."""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from functools import partial

import structlog
from azure.core.exceptions import ResourceNotFoundError
from azure.storage.blob import BlobClient, BlobServiceClient

logger = structlog.get_logger(__name__)

_executor = ThreadPoolExecutor(max_workers=4)


class BodyStore:
    """Thin async-friendly wrapper around the synchronous Azure Blob SDK.

    Bodies are addressed by their full blob URL, as recorded on the message
    at ingestion time.
    """

    def __init__(self, connection_string: str):
        self._client = BlobServiceClient.from_connection_string(connection_string)

    def _download(self, url: str) -> str | None:
        blob = BlobClient.from_blob_url(url, credential=self._client.credential)
        try:
            data = blob.download_blob().readall()
        except ResourceNotFoundError:
            return None
        return data.decode("utf-8", errors="replace")

    async def get(self, url: str | None) -> str | None:
        """Return the body text at *url*, or ``None`` if it does not exist."""
        if not url:
            return None
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(_executor, partial(self._download, url))
