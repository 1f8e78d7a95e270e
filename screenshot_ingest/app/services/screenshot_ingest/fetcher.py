"""Outbound fetching of caller-supplied URLs."""

import ipaddress
import logging
import socket
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Union
from urllib.parse import urlparse

import httpx

from screenshot_ingest.app.services.screenshot_ingest.errors import BlockedHost, PayloadTooLarge

logger = logging.getLogger(__name__)

SOURCE_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,image/apng,*/*;q=0.8"
IMAGE_ACCEPT = "image/webp,image/apng,image/*,*/*;q=0.8"
MAX_REDIRECTS = 5


@dataclass
class FetchedContent:
    data: bytes
    content_type: str
    source_url_used: str


def _parse_ip(hostname: str) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    try:
        return ipaddress.ip_address(hostname)
    except ValueError:
        pass
    # Shorthand IPv4 forms the resolver still accepts: 2130706433, 127.1, 0x7f000001
    try:
        return ipaddress.IPv4Address(socket.inet_aton(hostname))
    except OSError:
        return None


def is_private_host(host: str) -> bool:
    """Check if a host is a loopback, private, link-local or otherwise non-public address."""
    hostname = host.strip("[]").split("%")[0]
    ip = _parse_ip(hostname)
    if ip is None:
        lowered = hostname.lower().rstrip(".")
        return lowered == "localhost" or lowered.endswith(".localhost")
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_unspecified
        or ip.is_multicast
    )


def validate_target_url(url: str, block_private_hosts: bool = True) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        raise BlockedHost(f"URL must be an absolute http(s) URL: {url}")
    if block_private_hosts and is_private_host(parsed.hostname):
        raise BlockedHost("URL points to a private or disallowed host")


def media_type(content_type: str) -> str:
    """``image/PNG; charset=binary`` -> ``image/png``."""
    return content_type.split(";")[0].strip().lower()


async def read_capped(response: httpx.Response, max_bytes: int, label: str = "Image") -> bytes:
    """Read a streamed body, giving up as soon as it grows past ``max_bytes``."""
    if max_bytes >= 1024 * 1024:
        limit = f"{max_bytes // (1024 * 1024)}MB"
    else:
        limit = f"{max_bytes} bytes"
    too_large = f"{label} is too large (max {limit})"
    declared = response.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise PayloadTooLarge(too_large)
    buffer = bytearray()
    async for chunk in response.aiter_bytes():
        buffer.extend(chunk)
        if len(buffer) > max_bytes:
            raise PayloadTooLarge(too_large)
    return bytes(buffer)


def decode_text(response: httpx.Response, data: bytes) -> str:
    try:
        return data.decode(response.charset_encoding or "utf-8", errors="replace")
    except LookupError:
        return data.decode("utf-8", errors="replace")


@asynccontextmanager
async def stream_get(
    client: httpx.AsyncClient,
    url: str,
    headers: dict,
    block_private_hosts: bool = True,
    max_redirects: int = MAX_REDIRECTS,
) -> AsyncIterator[httpx.Response]:
    """GET ``url`` as a stream, following redirects one hop at a time.

    Every hop is checked with ``validate_target_url`` before it is sent, so a
    public page cannot redirect the fetch onto an internal address.
    """
    request = client.build_request("GET", url, headers=headers)
    for _ in range(max_redirects + 1):
        validate_target_url(str(request.url), block_private_hosts)
        response = await client.send(request, stream=True, follow_redirects=False)
        if response.next_request is None:
            break
        await response.aclose()
        logger.debug("Following redirect from %s to %s", request.url, response.next_request.url)
        request = response.next_request
    else:
        raise httpx.TooManyRedirects("Exceeded maximum allowed redirects", request=request)
    try:
        yield response
    finally:
        await response.aclose()


def build_client(timeout: float, user_agent: str) -> httpx.AsyncClient:
    # Redirects are followed by stream_get so each hop passes the host check
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout, connect=5.0),
        follow_redirects=False,
        headers={"User-Agent": user_agent, "Accept-Language": "en-US,en;q=0.9"},
    )
