from typing import Optional

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from screenshot_ingest.app.core.config import get_settings
from screenshot_ingest.app.db.session import get_db
from screenshot_ingest.app.schemas.auth import CurrentUser
from screenshot_ingest.app.services.attachment_store import AttachmentStore
from screenshot_ingest.app.services.screenshot_ingest import ScreenshotIngestionService, Unauthorized
from screenshot_ingest.app.services.screenshot_ingest.identity import (
    IdentityVerifier,
    JwtIdentityVerifier,
    RemoteIdentityVerifier,
)
from screenshot_ingest.app.services.storage.base import BlobSink
from screenshot_ingest.app.services.storage.local import LocalBlobSink
from screenshot_ingest.app.services.storage.s3 import S3BlobSink

security = HTTPBearer(auto_error=True)


def get_db_session(db: Session = Depends(get_db)) -> Session:
    return db


def get_identity_verifier() -> IdentityVerifier:
    settings = get_settings()
    if settings.identity_provider == "remote":
        if not settings.auth_base_url:
            raise RuntimeError("AUTH_BASE_URL is not configured")
        return RemoteIdentityVerifier(settings.auth_base_url, settings.auth_api_key)
    return JwtIdentityVerifier(settings.auth_secret_key, settings.auth_algorithm)


def get_blob_sink() -> BlobSink:
    settings = get_settings()
    if settings.storage_backend == "s3":
        return S3BlobSink(settings.screenshot_bucket)
    return LocalBlobSink(settings.media_root)


def get_attachment_store(db: Session = Depends(get_db_session)) -> AttachmentStore:
    return AttachmentStore(db)


def get_http_client() -> Optional[httpx.AsyncClient]:
    # None lets the service open its own client per request
    return None


def get_ingestion_service(
    blob_sink: BlobSink = Depends(get_blob_sink),
    store: AttachmentStore = Depends(get_attachment_store),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
    http_client: Optional[httpx.AsyncClient] = Depends(get_http_client),
) -> ScreenshotIngestionService:
    return ScreenshotIngestionService(blob_sink, store, verifier, http_client=http_client)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> CurrentUser:
    try:
        user_id = await verifier.verify(credentials.credentials)
    except Unauthorized:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    return CurrentUser(id=user_id)
