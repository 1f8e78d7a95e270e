"""Resolve the caller id from a bearer token."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from jose import JWTError, jwt

from screenshot_ingest.app.services.screenshot_ingest.errors import Unauthorized

logger = logging.getLogger(__name__)


def bearer_token_from_header(value: Optional[str]) -> str:
    if not value:
        raise Unauthorized()
    scheme, _, token = value.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized()
    return token.strip()


class IdentityVerifier(ABC):
    @abstractmethod
    async def verify(self, token: str) -> str:  # pragma: no cover - interface
        raise NotImplementedError


class JwtIdentityVerifier(IdentityVerifier):
    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        self.secret_key = secret_key
        self.algorithm = algorithm

    async def verify(self, token: str) -> str:
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError:
            raise Unauthorized() from None
        sub = payload.get("sub")
        if not sub:
            raise Unauthorized()
        return str(sub)


class RemoteIdentityVerifier(IdentityVerifier):
    """Ask the hosted auth service who owns the token (``GET /auth/v1/user``)."""

    def __init__(self, base_url: str, api_key: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._client = client

    async def verify(self, token: str) -> str:
        headers = {"Authorization": f"Bearer {token}"}
        if self.api_key:
            headers["apikey"] = self.api_key
        url = f"{self.base_url}/auth/v1/user"
        try:
            if self._client is not None:
                resp = await self._client.get(url, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=10.0) as client:
                    resp = await client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Auth service unreachable: %s", exc)
            raise Unauthorized() from exc
        if resp.status_code != 200:
            raise Unauthorized()
        try:
            body = resp.json()
        except ValueError:
            body = None
        user_id = body.get("id") if isinstance(body, dict) else None
        if not user_id:
            raise Unauthorized()
        return str(user_id)
