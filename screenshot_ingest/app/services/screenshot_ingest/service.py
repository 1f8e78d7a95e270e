import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Optional, Sequence, Tuple

import httpx

from screenshot_ingest.app.core.config import Settings, get_settings
from screenshot_ingest.app.db import models
from screenshot_ingest.app.services.attachment_store import AttachmentStore, MetadataStoreError
from screenshot_ingest.app.services.screenshot_ingest.identity import IdentityVerifier, bearer_token_from_header
from screenshot_ingest.app.services.screenshot_ingest.errors import (
    BadRequest,
    ExtractionFailed,
    FetchFailed,
    MetadataFailed,
    NoImageFound,
    StorageFailed,
    Unauthorized,
    UnsupportedContent,
)
from screenshot_ingest.app.services.screenshot_ingest.fetcher import (
    IMAGE_ACCEPT,
    SOURCE_ACCEPT,
    FetchedContent,
    build_client,
    decode_text,
    media_type,
    read_capped,
    stream_get,
    validate_target_url,
)
from screenshot_ingest.app.services.screenshot_ingest.paths import build_blob_path, extension_for
from screenshot_ingest.app.services.screenshot_ingest.saga import Saga
from screenshot_ingest.app.services.screenshot_ingest.strategies import (
    DEFAULT_STRATEGIES,
    ExtractionStrategy,
    extract_image_url,
    normalize_candidate_url,
)
from screenshot_ingest.app.services.storage.base import BlobSink, BlobSinkError

logger = logging.getLogger(__name__)


@dataclass
class IngestionRequest:
    source_url: Optional[str]
    owner_entity_id: Optional[str]
    caller_id: str


@dataclass
class IngestionResult:
    blob_path: str
    record_id: str
    source_url_used: str
    content_type: str
    size: int
    strategy: Optional[str] = None


class ScreenshotIngestionService:
    """Fetch a screenshot from a caller-supplied URL and store it for an Interessent.

    The URL may point straight at an image or at a screenshot host's landing
    page, in which case the image URL is extracted from the HTML and fetched
    with the page as referer. The blob and its metadata row are written as a
    saga: a failed row insert deletes the blob again.
    """

    def __init__(
        self,
        blob_sink: BlobSink,
        attachment_store: AttachmentStore,
        identity_verifier: IdentityVerifier,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        strategies: Sequence[ExtractionStrategy] = DEFAULT_STRATEGIES,
    ):
        self.blob_sink = blob_sink
        self.attachment_store = attachment_store
        self.identity_verifier = identity_verifier
        self.settings = settings or get_settings()
        self.strategies = strategies
        self._http_client = http_client

    async def authenticate(self, authorization: Optional[str]) -> str:
        token = bearer_token_from_header(authorization)
        return await self.identity_verifier.verify(token)

    async def ingest(self, request: IngestionRequest) -> IngestionResult:
        if not request.caller_id:
            raise Unauthorized()
        source_url = (request.source_url or "").strip()
        owner_id = (request.owner_entity_id or "").strip()
        if not source_url or not owner_id:
            raise BadRequest("Missing imageUrl or interessentId")
        validate_target_url(source_url, self.settings.block_private_hosts)

        logger.info("Downloading screenshot from %s", source_url)
        async with self._client() as client:
            content, strategy = await self._resolve(client, source_url)

        ext = extension_for(content.content_type)
        blob_path = build_blob_path(request.caller_id, ext, owner_entity_id=owner_id)
        loop = asyncio.get_running_loop()
        record = await loop.run_in_executor(None, self._persist, request.caller_id, owner_id, blob_path, content)
        logger.info("Screenshot saved to %s (%d bytes)", blob_path, len(content.data))
        return IngestionResult(
            blob_path=blob_path,
            record_id=record.id,
            source_url_used=content.source_url_used,
            content_type=content.content_type,
            size=len(content.data),
            strategy=strategy,
        )

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with build_client(self.settings.fetch_timeout_seconds, self.settings.scraper_user_agent) as client:
            yield client

    async def _resolve(self, client: httpx.AsyncClient, source_url: str) -> Tuple[FetchedContent, Optional[str]]:
        max_bytes = self.settings.screenshot_max_bytes
        block_private = self.settings.block_private_hosts
        try:
            async with stream_get(client, source_url, self._headers(SOURCE_ACCEPT), block_private) as response:
                if not response.is_success:
                    raise FetchFailed(
                        f"Failed to fetch URL: {response.status_code} {response.reason_phrase}",
                        upstream_status=response.status_code,
                        reason=response.reason_phrase,
                    )
                content_type = media_type(response.headers.get("content-type", ""))
                if content_type.startswith("image/"):
                    data = await read_capped(response, max_bytes)
                    return FetchedContent(data, content_type, source_url), None
                if content_type != "text/html":
                    raise UnsupportedContent("URL does not point to an image or HTML page")
                raw = await read_capped(response, self.settings.html_max_bytes, label="Page")
                html = decode_text(response, raw)
        except httpx.HTTPError as exc:
            raise FetchFailed(f"Failed to fetch URL: {exc}") from exc

        logger.info("Got HTML response from %s, looking for the image", source_url)
        found = extract_image_url(html, source_url, self.strategies)
        if found is None:
            raise NoImageFound()
        strategy, candidate = found
        image_url = normalize_candidate_url(candidate, source_url)
        logger.info("Fetching extracted image %s (strategy=%s)", image_url, strategy)

        headers = self._headers(IMAGE_ACCEPT)
        headers["Referer"] = source_url
        try:
            async with stream_get(client, image_url, headers, block_private) as response:
                if not response.is_success:
                    raise ExtractionFailed(
                        f"Failed to download extracted image: {response.status_code} {response.reason_phrase}",
                        upstream_status=response.status_code,
                    )
                content_type = media_type(response.headers.get("content-type", ""))
                if not content_type.startswith("image/"):
                    raise ExtractionFailed("Extracted URL does not point to an image")
                data = await read_capped(response, max_bytes)
        except httpx.HTTPError as exc:
            raise ExtractionFailed(f"Failed to download extracted image: {exc}") from exc
        return FetchedContent(data, content_type, image_url), strategy

    def _headers(self, accept: str) -> dict:
        return {"User-Agent": self.settings.scraper_user_agent, "Accept": accept}

    def _persist(self, caller_id: str, owner_id: str, blob_path: str, content: FetchedContent) -> models.EmailScreenshot:
        record = models.EmailScreenshot(
            interessent_id=owner_id,
            user_id=caller_id,
            screenshot_path=blob_path,
            created_at=datetime.utcnow(),
        )

        def upload():
            try:
                self.blob_sink.put(blob_path, content.data, content.content_type, overwrite=False)
            except BlobSinkError as exc:
                logger.error("Upload of %s failed: %s", blob_path, exc)
                raise StorageFailed(f"Failed to upload image: {exc}") from exc

        def insert():
            try:
                return self.attachment_store.insert(record)
            except MetadataStoreError as exc:
                raise MetadataFailed(f"Failed to save to database: {exc}") from exc

        saga = Saga()
        saga.add_step("upload_blob", upload, lambda: self.blob_sink.delete(blob_path))
        saga.add_step("insert_metadata", insert)
        try:
            _, stored = saga.run()
        except MetadataFailed as exc:
            exc.compensated = not saga.compensation_failures
            if not exc.compensated:
                logger.error("Blob %s left behind after failed metadata insert", blob_path)
            raise
        return stored
