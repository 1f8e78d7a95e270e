import threading
import time
from typing import Optional

EXTENSION_BY_CONTENT_TYPE = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}
DEFAULT_EXTENSION = "jpg"

_stamp_lock = threading.Lock()
_last_stamp = 0


def extension_for(content_type: str) -> str:
    return EXTENSION_BY_CONTENT_TYPE.get(content_type.lower(), DEFAULT_EXTENSION)


def unique_millis() -> int:
    """Wall-clock milliseconds, bumped so no two calls in this process repeat."""
    global _last_stamp
    with _stamp_lock:
        stamp = max(int(time.time() * 1000), _last_stamp + 1)
        _last_stamp = stamp
        return stamp


def build_blob_path(caller_id: str, ext: str, owner_entity_id: Optional[str] = None, stamp: Optional[int] = None) -> str:
    """``{caller}/{owner}/{millis}.{ext}``, or ``{caller}/{millis}.{ext}`` without an owner."""
    stamp = unique_millis() if stamp is None else stamp
    if owner_entity_id:
        return f"{caller_id}/{owner_entity_id}/{stamp}.{ext}"
    return f"{caller_id}/{stamp}.{ext}"
