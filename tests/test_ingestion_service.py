import asyncio
import re
import threading
import uuid

import httpx
import pytest

from screenshot_ingest.app.core.config import get_settings
from screenshot_ingest.app.services.attachment_store import MetadataStoreError
from screenshot_ingest.app.services.screenshot_ingest import (
    BadRequest,
    BlockedHost,
    ExtractionFailed,
    FetchFailed,
    IngestionRequest,
    MetadataFailed,
    NoImageFound,
    PayloadTooLarge,
    ScreenshotIngestionService,
    StorageFailed,
    Unauthorized,
    UnsupportedContent,
)
from screenshot_ingest.app.services.screenshot_ingest.identity import JwtIdentityVerifier
from screenshot_ingest.app.services.storage.base import BlobSink, BlobSinkError

from .conftest import PNG_BYTES, FakeWeb, make_token

PAGE_URL = "https://prntscr.com/abc123"
IMAGE_URL = "https://prnt.sc/abc123.png"


class MemoryBlobSink(BlobSink):
    def __init__(self, fail_put=False, fail_delete=False):
        self.objects = {}
        self.fail_put = fail_put
        self.fail_delete = fail_delete
        self.put_calls = 0

    def put(self, path, data, content_type, overwrite=False):
        self.put_calls += 1
        if self.fail_put:
            raise BlobSinkError("bucket unavailable")
        if path in self.objects and not overwrite:
            raise BlobSinkError("The resource already exists")
        self.objects[path] = (data, content_type)

    def delete(self, path):
        if self.fail_delete:
            raise BlobSinkError("delete refused")
        self.objects.pop(path, None)

    def signed_url(self, path, expires_in):
        return f"https://signed.example/{path}?ttl={expires_in}"


class MemoryStore:
    def __init__(self, fail=False):
        self.records = []
        self.fail = fail

    def insert(self, record):
        if self.fail:
            raise MetadataStoreError("insert violates foreign key")
        record.id = record.id or str(uuid.uuid4())
        self.records.append(record)
        return record


@pytest.fixture
def sink():
    return MemoryBlobSink()


@pytest.fixture
def store():
    return MemoryStore()


def make_service(web: FakeWeb, sink, store, **settings_overrides):
    settings = get_settings().model_copy(update=settings_overrides)
    verifier = JwtIdentityVerifier(settings.auth_secret_key, settings.auth_algorithm)
    return ScreenshotIngestionService(sink, store, verifier, settings=settings, http_client=web.client())


def request(url=PAGE_URL, owner="interessent-7", caller="user-1"):
    return IngestionRequest(source_url=url, owner_entity_id=owner, caller_id=caller)


@pytest.mark.asyncio
async def test_direct_image_is_stored_verbatim(fake_web, sink, store):
    url = "https://cdn.example.com/shot.png"
    body = PNG_BYTES * 100
    fake_web.add(url, content=body, content_type="image/png")
    service = make_service(fake_web, sink, store)

    result = await service.ingest(request(url=url))

    assert re.fullmatch(r"user-1/interessent-7/\d+\.png", result.blob_path)
    assert sink.objects[result.blob_path] == (body, "image/png")
    assert result.strategy is None
    assert len(fake_web.requests) == 1
    first = fake_web.requests[0]
    assert "text/html" in first.headers["accept"] and "image/webp" in first.headers["accept"]
    assert "Mozilla/5.0" in first.headers["user-agent"]
    assert store.records[0].screenshot_path == result.blob_path
    assert store.records[0].interessent_id == "interessent-7"
    assert store.records[0].user_id == "user-1"


@pytest.mark.asyncio
async def test_og_image_page_fetches_image_with_referer(fake_web, sink, store):
    html = f'<html><head><meta property="og:image" content="{IMAGE_URL}"></head><body><img src="/logo.png"></body></html>'
    fake_web.add(PAGE_URL, content=html.encode(), content_type="text/html; charset=utf-8")
    fake_web.add(IMAGE_URL, content=PNG_BYTES, content_type="image/png")
    service = make_service(fake_web, sink, store)

    result = await service.ingest(request())

    assert [str(r.url) for r in fake_web.requests] == [PAGE_URL, IMAGE_URL]
    second = fake_web.requests[1]
    assert second.headers["referer"] == PAGE_URL
    assert second.headers["accept"].startswith("image/")
    assert "text/html" not in second.headers["accept"]
    assert result.strategy == "og_image"
    assert result.source_url_used == IMAGE_URL
    assert result.blob_path.endswith(".png")


@pytest.mark.asyncio
async def test_extension_follows_extracted_image_type(fake_web, sink, store):
    fake_web.add(PAGE_URL, content=b'<img class="screenshot" src="//img.example/s.webp">', content_type="text/html")
    fake_web.add("https://img.example/s.webp", content=b"RIFF0000WEBP", content_type="image/webp")
    service = make_service(fake_web, sink, store)

    result = await service.ingest(request())

    assert result.blob_path.endswith(".webp")
    assert sink.objects[result.blob_path][1] == "image/webp"


@pytest.mark.asyncio
async def test_root_relative_candidate_uses_page_origin(fake_web, sink, store):
    fake_web.add("https://example.com/page", content=b'<meta name="twitter:image" content="/img.png">')
    fake_web.add("https://example.com/img.png", content=PNG_BYTES, content_type="image/png")
    service = make_service(fake_web, sink, store)

    await service.ingest(request(url="https://example.com/page"))

    assert str(fake_web.requests[1].url) == "https://example.com/img.png"


@pytest.mark.asyncio
async def test_missing_fields_are_bad_request(fake_web, sink, store):
    service = make_service(fake_web, sink, store)
    with pytest.raises(BadRequest):
        await service.ingest(request(url=""))
    with pytest.raises(BadRequest):
        await service.ingest(request(owner=None))
    assert fake_web.requests == []


@pytest.mark.asyncio
async def test_missing_caller_is_unauthorized(fake_web, sink, store):
    service = make_service(fake_web, sink, store)
    with pytest.raises(Unauthorized):
        await service.ingest(request(caller=""))
    assert fake_web.requests == []


@pytest.mark.asyncio
async def test_authenticate_verifies_bearer_token(fake_web, sink, store):
    service = make_service(fake_web, sink, store)
    token = make_token("user-9", service.settings)
    assert await service.authenticate(f"Bearer {token}") == "user-9"
    with pytest.raises(Unauthorized):
        await service.authenticate(None)
    with pytest.raises(Unauthorized):
        await service.authenticate("Bearer not-a-token")


@pytest.mark.asyncio
async def test_upstream_error_is_fetch_failed(fake_web, sink, store):
    fake_web.add(PAGE_URL, status=404)
    service = make_service(fake_web, sink, store)

    with pytest.raises(FetchFailed) as excinfo:
        await service.ingest(request())

    assert excinfo.value.upstream_status == 404
    assert excinfo.value.message == "Failed to fetch URL: 404 Not Found"
    assert sink.put_calls == 0


@pytest.mark.asyncio
async def test_transport_error_is_fetch_failed(sink, store):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    settings = get_settings()
    service = ScreenshotIngestionService(
        sink,
        store,
        JwtIdentityVerifier(settings.auth_secret_key),
        settings=settings,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    with pytest.raises(FetchFailed):
        await service.ingest(request())


@pytest.mark.asyncio
async def test_other_content_is_unsupported(fake_web, sink, store):
    fake_web.add(PAGE_URL, content=b"%PDF-1.7", content_type="application/pdf")
    service = make_service(fake_web, sink, store)
    with pytest.raises(UnsupportedContent):
        await service.ingest(request())


@pytest.mark.asyncio
async def test_missing_content_type_is_unsupported(fake_web, sink, store):
    fake_web.add(PAGE_URL, content=b"???", content_type="")
    service = make_service(fake_web, sink, store)
    with pytest.raises(UnsupportedContent):
        await service.ingest(request())


@pytest.mark.asyncio
async def test_page_with_only_ui_images_has_no_image(fake_web, sink, store):
    fake_web.add(PAGE_URL, content=b'<body><img src="/assets/logo.png"><img src="/shot.png"></body>')
    service = make_service(fake_web, sink, store)

    with pytest.raises(NoImageFound):
        await service.ingest(request())
    assert len(fake_web.requests) == 1


@pytest.mark.asyncio
async def test_candidate_http_error_is_extraction_failed(fake_web, sink, store):
    fake_web.add(PAGE_URL, content=f'<meta property="og:image" content="{IMAGE_URL}">'.encode())
    fake_web.add(IMAGE_URL, status=403)
    service = make_service(fake_web, sink, store)

    with pytest.raises(ExtractionFailed) as excinfo:
        await service.ingest(request())
    assert excinfo.value.upstream_status == 403
    assert not isinstance(excinfo.value, FetchFailed)


@pytest.mark.asyncio
async def test_candidate_that_is_not_an_image_is_extraction_failed(fake_web, sink, store):
    fake_web.add(PAGE_URL, content=f'<meta property="og:image" content="{IMAGE_URL}">'.encode())
    fake_web.add(IMAGE_URL, content=b"<html>login</html>", content_type="text/html")
    service = make_service(fake_web, sink, store)

    with pytest.raises(ExtractionFailed, match="does not point to an image"):
        await service.ingest(request())


@pytest.mark.asyncio
async def test_candidate_on_private_host_is_blocked(fake_web, sink, store):
    fake_web.add(PAGE_URL, content=b'<meta property="og:image" content="http://127.0.0.1/admin.png">')
    service = make_service(fake_web, sink, store)

    with pytest.raises(BlockedHost):
        await service.ingest(request())
    assert len(fake_web.requests) == 1


@pytest.mark.asyncio
async def test_private_source_is_blocked_before_fetch(fake_web, sink, store):
    service = make_service(fake_web, sink, store)
    with pytest.raises(BlockedHost):
        await service.ingest(request(url="http://localhost:8000/internal.png"))
    assert fake_web.requests == []


@pytest.mark.asyncio
async def test_oversized_image_is_rejected_without_upload(fake_web, sink, store):
    url = "https://cdn.example.com/huge.png"
    fake_web.add(url, content=b"\x00" * (10 * 1024 * 1024 + 1), content_type="image/png")
    service = make_service(fake_web, sink, store)

    with pytest.raises(PayloadTooLarge):
        await service.ingest(request(url=url))
    assert sink.put_calls == 0
    assert store.records == []


@pytest.mark.asyncio
async def test_image_at_limit_is_accepted(fake_web, sink, store):
    url = "https://cdn.example.com/limit.png"
    fake_web.add(url, content=b"\x00" * 2048, content_type="image/png")
    service = make_service(fake_web, sink, store, screenshot_max_bytes=2048)

    result = await service.ingest(request(url=url))
    assert result.size == 2048


@pytest.mark.asyncio
async def test_upload_failure_is_storage_failed_and_skips_metadata(fake_web, store):
    url = "https://cdn.example.com/shot.png"
    fake_web.add(url, content=PNG_BYTES, content_type="image/png")
    sink = MemoryBlobSink(fail_put=True)
    service = make_service(fake_web, sink, store)

    with pytest.raises(StorageFailed, match="Failed to upload image"):
        await service.ingest(request(url=url))
    assert store.records == []


@pytest.mark.asyncio
async def test_metadata_failure_deletes_uploaded_blob(fake_web, sink):
    url = "https://cdn.example.com/shot.png"
    fake_web.add(url, content=PNG_BYTES, content_type="image/png")
    service = make_service(fake_web, sink, MemoryStore(fail=True))

    with pytest.raises(MetadataFailed) as excinfo:
        await service.ingest(request(url=url))
    assert sink.put_calls == 1
    assert sink.objects == {}
    assert excinfo.value.compensated is True


@pytest.mark.asyncio
async def test_metadata_failure_reported_when_cleanup_fails(fake_web):
    url = "https://cdn.example.com/shot.png"
    fake_web.add(url, content=PNG_BYTES, content_type="image/png")
    sink = MemoryBlobSink(fail_delete=True)
    service = make_service(fake_web, sink, MemoryStore(fail=True))

    with pytest.raises(MetadataFailed, match="Failed to save to database") as excinfo:
        await service.ingest(request(url=url))
    assert excinfo.value.compensated is False
    assert len(sink.objects) == 1


@pytest.mark.asyncio
async def test_concurrent_ingestions_use_distinct_paths(fake_web, sink, store):
    url = "https://cdn.example.com/shot.png"
    fake_web.add(url, content=PNG_BYTES, content_type="image/png")
    service = make_service(fake_web, sink, store)

    first, second = await asyncio.gather(service.ingest(request(url=url)), service.ingest(request(url=url)))

    assert first.blob_path != second.blob_path
    assert len(sink.objects) == 2


@pytest.mark.asyncio
async def test_redirect_to_private_host_is_blocked(fake_web, sink, store):
    url = "https://evil.example/x"
    fake_web.add(url, status=302, headers={"location": "http://127.0.0.1/secret.png"})
    fake_web.add("http://127.0.0.1/secret.png", content=b"internal", content_type="image/png")
    service = make_service(fake_web, sink, store)

    with pytest.raises(BlockedHost):
        await service.ingest(request(url=url))
    assert [str(r.url) for r in fake_web.requests] == [url]
    assert sink.put_calls == 0


@pytest.mark.asyncio
async def test_candidate_redirect_to_numeric_private_host_is_blocked(fake_web, sink, store):
    fake_web.add(PAGE_URL, content=f'<meta property="og:image" content="{IMAGE_URL}">'.encode())
    fake_web.add(IMAGE_URL, status=301, headers={"location": "http://2130706433/admin.png"})
    service = make_service(fake_web, sink, store)

    with pytest.raises(BlockedHost):
        await service.ingest(request())
    assert len(fake_web.requests) == 2
    assert sink.put_calls == 0


@pytest.mark.asyncio
async def test_public_redirect_is_followed(fake_web, sink, store):
    url = "https://cdn.example.com/short"
    final = "https://cdn.example.com/full/shot.png"
    fake_web.add(url, status=302, headers={"location": "/full/shot.png"})
    fake_web.add(final, content=PNG_BYTES, content_type="image/png")
    service = make_service(fake_web, sink, store)

    result = await service.ingest(request(url=url))

    assert sink.objects[result.blob_path] == (PNG_BYTES, "image/png")
    assert [str(r.url) for r in fake_web.requests] == [url, final]


@pytest.mark.asyncio
async def test_redirect_loop_is_fetch_failed(fake_web, sink, store):
    url = "https://cdn.example.com/loop"
    fake_web.add(url, status=302, headers={"location": url})
    service = make_service(fake_web, sink, store)

    with pytest.raises(FetchFailed):
        await service.ingest(request(url=url))
    assert sink.put_calls == 0


@pytest.mark.asyncio
async def test_streamed_image_without_length_is_cut_off(fake_web, sink, store):
    url = "https://cdn.example.com/endless.png"
    chunks_sent = []

    async def body():
        for _ in range(8):
            chunks_sent.append(1)
            yield b"\x00" * 1024

    fake_web.routes[url] = lambda req: httpx.Response(200, headers={"content-type": "image/png"}, content=body())
    service = make_service(fake_web, sink, store, screenshot_max_bytes=4096)

    with pytest.raises(PayloadTooLarge):
        await service.ingest(request(url=url))
    assert len(chunks_sent) < 8
    assert sink.put_calls == 0
    assert store.records == []


@pytest.mark.asyncio
async def test_oversized_html_page_is_rejected(fake_web, sink, store):
    page = f'<meta property="og:image" content="{IMAGE_URL}">'.encode() + b" " * 4096
    fake_web.add(PAGE_URL, content=page)
    fake_web.add(IMAGE_URL, content=PNG_BYTES, content_type="image/png")
    service = make_service(fake_web, sink, store, html_max_bytes=1024)

    with pytest.raises(PayloadTooLarge, match="Page is too large"):
        await service.ingest(request())
    assert len(fake_web.requests) == 1
    assert sink.put_calls == 0


@pytest.mark.asyncio
async def test_html_page_uses_declared_charset(fake_web, sink, store):
    page = f'<meta property="og:image" content="{IMAGE_URL}"><title>Über</title>'.encode("latin-1")
    fake_web.add(PAGE_URL, content=page, content_type="text/html; charset=iso-8859-1")
    fake_web.add(IMAGE_URL, content=PNG_BYTES, content_type="image/png")
    service = make_service(fake_web, sink, store)

    result = await service.ingest(request())
    assert result.source_url_used == IMAGE_URL


class ThreadRecordingSink(MemoryBlobSink):
    def __init__(self):
        super().__init__()
        self.put_threads = []

    def put(self, path, data, content_type, overwrite=False):
        self.put_threads.append(threading.current_thread())
        super().put(path, data, content_type, overwrite=overwrite)


@pytest.mark.asyncio
async def test_persist_runs_off_the_event_loop_thread(fake_web, store):
    url = "https://cdn.example.com/shot.png"
    fake_web.add(url, content=PNG_BYTES, content_type="image/png")
    sink = ThreadRecordingSink()
    service = make_service(fake_web, sink, store)

    await service.ingest(request(url=url))

    assert len(sink.put_threads) == 1
    assert sink.put_threads[0] is not threading.current_thread()
    assert len(store.records) == 1
