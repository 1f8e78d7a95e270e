"""Strategies for locating the real image on a screenshot landing page.

Each strategy is a pure function ``(html, base_url) -> Optional[str]``. They
are tried in the order of ``DEFAULT_STRATEGIES``; the first hit wins.
"""

import logging
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple
from urllib.parse import urlparse

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

SCREENSHOT_HOST_MARKERS = ("prntscr.com", "prnt.sc", "lightshot", "gyazo.com", "i.imgur.com")
UI_ASSET_MARKERS = ("icon", "logo", "button")


class ExtractionStrategy(NamedTuple):
    name: str
    extract: Callable[[str, str], Optional[str]]


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def _meta_content(html: str, attr: str, value: str) -> Optional[str]:
    tag = _soup(html).find("meta", attrs={attr: value})
    if tag is None:
        return None
    content = (tag.get("content") or "").strip()
    return content or None


def og_image(html: str, base_url: str) -> Optional[str]:
    return _meta_content(html, "property", "og:image")


def twitter_image(html: str, base_url: str) -> Optional[str]:
    return _meta_content(html, "name", "twitter:image")


def _looks_like_screenshot(img) -> bool:
    src = img.get("src", "")
    if img.get("id") == "screenshot-image":
        return True
    if "screenshot" in (img.get("class") or []):
        return True
    for value in img.attrs.values():
        text = " ".join(value) if isinstance(value, list) else str(value)
        if "lightshot" in text.lower():
            return True
    return any(host in src.lower() for host in SCREENSHOT_HOST_MARKERS)


def known_host(html: str, base_url: str) -> Optional[str]:
    for img in _soup(html).find_all("img", src=True):
        if _looks_like_screenshot(img):
            return img["src"].strip() or None
    return None


def first_plausible_image(html: str, base_url: str) -> Optional[str]:
    """Only the first ``<img src>`` is considered, and only if it is not a UI asset."""
    img = _soup(html).find("img", src=True)
    if img is None:
        return None
    src = img["src"].strip()
    lowered = src.lower()
    if not src or lowered.startswith("data:"):
        return None
    if any(marker in lowered for marker in UI_ASSET_MARKERS):
        return None
    return src


DEFAULT_STRATEGIES: List[ExtractionStrategy] = [
    ExtractionStrategy("og_image", og_image),
    ExtractionStrategy("twitter_image", twitter_image),
    ExtractionStrategy("known_host", known_host),
    ExtractionStrategy("first_plausible_image", first_plausible_image),
]


def extract_image_url(
    html: str,
    base_url: str,
    strategies: Sequence[ExtractionStrategy] = DEFAULT_STRATEGIES,
) -> Optional[Tuple[str, str]]:
    """Return ``(strategy_name, candidate_url)`` for the first strategy that matches."""
    for strategy in strategies:
        candidate = strategy.extract(html, base_url)
        if candidate:
            logger.info("Found image candidate via %s: %s", strategy.name, candidate)
            return strategy.name, candidate
        logger.debug("Strategy %s found nothing", strategy.name)
    return None


def normalize_candidate_url(candidate: str, source_url: str) -> str:
    """Make an extracted candidate absolute against the origin of ``source_url``."""
    if candidate.startswith("//"):
        return "https:" + candidate
    parsed = urlparse(source_url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    if candidate.startswith("/"):
        return origin + candidate
    if not candidate.startswith("http"):
        return origin + "/" + candidate
    return candidate
