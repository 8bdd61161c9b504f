"""
Storage gateway: fetch a stored document's bytes and media type by address.

Addresses are routed by scheme: ``http(s)://`` via httpx,
``supabase://bucket/path`` via Supabase Storage, and ``file://`` or plain
paths from the local filesystem.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import httpx

from alignment_api.config import AnalysisSettings
from alignment_api.errors import StorageFetchError
from alignment_api.text_extractor import DOCX, MARKDOWN, PDF, PLAIN_TEXT, normalize_media_type

logger = logging.getLogger(__name__)

GENERIC_MEDIA_TYPES = {"", "application/octet-stream", "binary/octet-stream"}

_SUFFIX_MEDIA_TYPES = {
    ".pdf": PDF,
    ".docx": DOCX,
    ".txt": PLAIN_TEXT,
    ".md": MARKDOWN,
}


@dataclass
class FetchedDocument:
    content: bytes
    media_type: str


def guess_media_type(address: str) -> str:
    path = urlparse(address).path or address
    suffix = Path(unquote(path)).suffix.lower()
    if suffix in _SUFFIX_MEDIA_TYPES:
        return _SUFFIX_MEDIA_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(path)
    return guessed or "application/octet-stream"


def resolve_media_type(declared: Optional[str], address: str) -> str:
    """Keep a specific declared type; re-derive generic or missing ones from the suffix."""
    if declared and normalize_media_type(declared) not in GENERIC_MEDIA_TYPES:
        return declared
    return guess_media_type(address)


class StorageGateway:
    def __init__(self, settings: Optional[AnalysisSettings] = None, supabase_client=None, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or AnalysisSettings()
        self.supabase_client = supabase_client
        self._http_client = http_client

    async def fetch(self, address: str) -> FetchedDocument:
        if not address:
            raise StorageFetchError(address, "Document has no storage address", status_code=404)

        scheme = urlparse(address).scheme.lower()
        if scheme in ("http", "https"):
            document = await self._fetch_http(address)
        elif scheme == "supabase":
            document = await self._fetch_supabase(address)
        elif scheme in ("", "file") or len(scheme) == 1:
            document = await self._fetch_local(address)
        else:
            raise StorageFetchError(address, f"Unsupported storage scheme '{scheme}'", status_code=400)

        logger.info("Fetched %d bytes (%s) from %s", len(document.content), document.media_type, address)
        return document

    async def _fetch_http(self, address: str) -> FetchedDocument:
        try:
            if self._http_client is not None:
                response = await self._http_client.get(address)
            else:
                async with httpx.AsyncClient(timeout=self.settings.storage_fetch_timeout_seconds, follow_redirects=True) as client:
                    response = await client.get(address)
        except httpx.HTTPError as exc:
            raise StorageFetchError(address, str(exc) or type(exc).__name__, status_code=502) from exc

        if response.status_code >= 400:
            raise StorageFetchError(
                address,
                response.reason_phrase or "HTTP error",
                status_code=response.status_code,
            )
        media_type = resolve_media_type(response.headers.get("content-type"), address)
        return FetchedDocument(content=response.content, media_type=media_type)

    async def _fetch_supabase(self, address: str) -> FetchedDocument:
        if self.supabase_client is None:
            raise StorageFetchError(address, "Supabase storage is not configured", status_code=503)

        parsed = urlparse(address)
        bucket = parsed.netloc
        path = unquote(parsed.path.lstrip("/"))
        if not bucket or not path:
            raise StorageFetchError(address, "Supabase address must look like supabase://bucket/path", status_code=400)

        try:
            data = await asyncio.to_thread(self.supabase_client.storage.from_(bucket).download, path)
        except Exception as exc:
            raise StorageFetchError(address, str(exc) or type(exc).__name__, status_code=502) from exc
        return FetchedDocument(content=data, media_type=guess_media_type(path))

    async def _fetch_local(self, address: str) -> FetchedDocument:
        parsed = urlparse(address)
        path = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(address)
        if not path.is_file():
            raise StorageFetchError(address, "file not found", status_code=404)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise StorageFetchError(address, str(exc), status_code=500) from exc
        return FetchedDocument(content=data, media_type=guess_media_type(str(path)))
