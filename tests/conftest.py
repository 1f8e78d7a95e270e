from typing import Callable, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from screenshot_ingest.app.api.deps import get_blob_sink, get_db_session, get_http_client
from screenshot_ingest.app.core.config import get_settings
from screenshot_ingest.app.db import models  # noqa: F401
from screenshot_ingest.app.db.base import Base
from screenshot_ingest.app.main import create_app
from screenshot_ingest.app.services.storage.local import LocalBlobSink

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 512


@pytest.fixture(scope="session")
def engine():
    engine = create_engine("sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}, future=True)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(bind=connection, autocommit=False, autoflush=False, future=True)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        transaction.rollback()
        connection.close()


class FakeWeb:
    """Routes outbound requests to canned responses and records them."""

    def __init__(self):
        self.routes: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    def add(
        self,
        url: str,
        status: int = 200,
        content: bytes = b"",
        content_type: str = "text/html",
        headers: Optional[Dict[str, str]] = None,
    ):
        response_headers = {"content-type": content_type, **(headers or {})}

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, headers=response_headers, content=content)

        self.routes[url] = handler

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(str(request.url))
        if handler is None:
            return httpx.Response(404)
        return handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))


@pytest.fixture
def fake_web():
    return FakeWeb()


@pytest.fixture
def media_root(tmp_path):
    return tmp_path / "media"


@pytest.fixture
def app(db_session, media_root, fake_web):
    app = create_app()

    def override_db():
        yield db_session

    def override_blob_sink():
        return LocalBlobSink(media_root)

    app.dependency_overrides[get_db_session] = override_db
    app.dependency_overrides[get_blob_sink] = override_blob_sink
    app.dependency_overrides[get_http_client] = fake_web.client
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def auth_settings():
    return get_settings()


def make_token(user_id: str, settings) -> str:
    return jwt.encode({"sub": user_id}, settings.auth_secret_key, algorithm=settings.auth_algorithm)


@pytest.fixture
def user_token(auth_settings):
    return make_token("user-1", auth_settings)


@pytest.fixture
def other_user_token(auth_settings):
    return make_token("user-2", auth_settings)
