import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from screenshot_ingest.app.api.deps import (
    get_attachment_store,
    get_blob_sink,
    get_current_user,
    get_ingestion_service,
)
from screenshot_ingest.app.core.config import get_settings
from screenshot_ingest.app.schemas.auth import CurrentUser
from screenshot_ingest.app.schemas.screenshot import (
    ErrorResponse,
    SaveScreenshotRequest,
    SaveScreenshotResponse,
    ScreenshotOut,
)
from screenshot_ingest.app.services.attachment_store import AttachmentStore, MetadataStoreError
from screenshot_ingest.app.services.screenshot_ingest import (
    IngestionError,
    IngestionRequest,
    ScreenshotIngestionService,
)
from screenshot_ingest.app.services.storage.base import BlobSink, BlobSinkError

router = APIRouter(tags=["screenshots"])
logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


def error_response(message: str, status_code: int) -> JSONResponse:
    body = ErrorResponse(error=message).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=body, headers=CORS_HEADERS)


async def read_save_request(http_request: Request) -> Optional[SaveScreenshotRequest]:
    raw = await http_request.body()
    if not raw.strip():
        return None
    try:
        return SaveScreenshotRequest.model_validate_json(raw)
    except ValidationError as exc:
        errors = [{**err, "loc": ("body", *err.get("loc", ()))} for err in exc.errors()]
        raise RequestValidationError(errors) from exc


@router.options("/functions/v1/save-screenshot-from-url")
@router.options("/screenshots/from-url")
async def save_screenshot_preflight() -> Response:
    return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)


@router.post("/functions/v1/save-screenshot-from-url", response_model=SaveScreenshotResponse)
@router.post("/screenshots/from-url", response_model=SaveScreenshotResponse)
async def save_screenshot_from_url(
    http_request: Request,
    authorization: Optional[str] = Header(None),
    service: ScreenshotIngestionService = Depends(get_ingestion_service),
):
    """Store the screenshot behind ``imageUrl`` for ``interessentId``.

    Every failure is answered with ``{"success": false, "error": ...}``. The
    status is 500 unless DISTINCT_ERROR_STATUS is enabled. The body is only
    parsed once the caller is authenticated.
    """
    settings = get_settings()
    caller_id = None
    try:
        caller_id = await service.authenticate(authorization)
        payload = await read_save_request(http_request)
        request = IngestionRequest(
            source_url=payload.image_url if payload else None,
            owner_entity_id=payload.interessent_id if payload else None,
            caller_id=caller_id,
        )
        result = await service.ingest(request)
    except IngestionError as exc:
        logger.warning(
            "save-screenshot-from-url failed: %s",
            exc.message,
            extra={"user_id": caller_id, "error_code": exc.error_code},
        )
        status_code = exc.status_code if settings.distinct_error_status else status.HTTP_500_INTERNAL_SERVER_ERROR
        return error_response(exc.message, status_code)
    except RequestValidationError:
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("save-screenshot-from-url crashed", extra={"user_id": caller_id})
        return error_response(str(exc) or "Internal error", status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.info(
        "saved screenshot from url",
        extra={
            "user_id": caller_id,
            "interessent_id": request.owner_entity_id,
            "screenshot_path": result.blob_path,
            "strategy": result.strategy,
        },
    )
    body = SaveScreenshotResponse(fileName=result.blob_path)
    return JSONResponse(content=body.model_dump(), headers=CORS_HEADERS)


@router.get("/interessenten/{interessent_id}/screenshots", response_model=List[ScreenshotOut])
def list_screenshots(
    interessent_id: str,
    store: AttachmentStore = Depends(get_attachment_store),
    blob_sink: BlobSink = Depends(get_blob_sink),
    current_user: CurrentUser = Depends(get_current_user),
):
    ttl = get_settings().screenshot_signed_url_ttl_seconds
    items = []
    for record in store.list_for_owner(current_user.id, interessent_id):
        item = ScreenshotOut.model_validate(record)
        try:
            item.signed_url = blob_sink.signed_url(record.screenshot_path, ttl)
        except BlobSinkError:
            logger.warning("Could not sign %s", record.screenshot_path)
        items.append(item)
    return items


@router.delete("/screenshots/{screenshot_id}")
def delete_screenshot(
    screenshot_id: str,
    store: AttachmentStore = Depends(get_attachment_store),
    blob_sink: BlobSink = Depends(get_blob_sink),
    current_user: CurrentUser = Depends(get_current_user),
):
    record = store.get(current_user.id, screenshot_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Screenshot not found")
    try:
        blob_sink.delete(record.screenshot_path)
    except BlobSinkError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Failed to delete image: {exc}") from exc
    try:
        store.delete(record)
    except MetadataStoreError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Failed to delete record: {exc}") from exc
    return {"success": True, "id": screenshot_id}
