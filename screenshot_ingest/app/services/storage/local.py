from pathlib import Path

from screenshot_ingest.app.services.storage.base import BlobSink, BlobSinkError


class LocalBlobSink(BlobSink):
    def __init__(self, media_root: Path, url_prefix: str = "/media/"):
        self.media_root = media_root.resolve()
        self.url_prefix = url_prefix
        self.media_root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        destination = (self.media_root / path).resolve()
        if not destination.is_relative_to(self.media_root):
            raise BlobSinkError(f"Path escapes media root: {path}")
        return destination

    def put(self, path: str, data: bytes, content_type: str, overwrite: bool = False) -> None:
        destination = self._resolve(path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        mode = "wb" if overwrite else "xb"
        try:
            with destination.open(mode) as buffer:
                buffer.write(data)
        except FileExistsError as exc:
            raise BlobSinkError(f"Object already exists: {path}") from exc
        except OSError as exc:
            raise BlobSinkError(f"Local write failed: {exc}") from exc

    def delete(self, path: str) -> None:
        destination = self._resolve(path)
        try:
            destination.unlink(missing_ok=True)
        except OSError as exc:
            raise BlobSinkError(f"Local delete failed: {exc}") from exc

    def signed_url(self, path: str, expires_in: int) -> str:
        # Served by the /media static mount; no expiry on local disk
        return f"{self.url_prefix}{path}"
