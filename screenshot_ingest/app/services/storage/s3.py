from screenshot_ingest.app.services.storage.base import BlobSink, BlobSinkError
from screenshot_ingest.app.storage import object_store


class S3BlobSink(BlobSink):
    def __init__(self, bucket: str):
        self.bucket = bucket

    def put(self, path: str, data: bytes, content_type: str, overwrite: bool = False) -> None:
        try:
            object_store.put_bytes(self.bucket, path, content_type, data, overwrite=overwrite)
        except object_store.ObjectStoreError as exc:
            raise BlobSinkError(str(exc)) from exc

    def delete(self, path: str) -> None:
        try:
            object_store.delete_object(self.bucket, path)
        except object_store.ObjectStoreError as exc:
            raise BlobSinkError(str(exc)) from exc

    def signed_url(self, path: str, expires_in: int) -> str:
        try:
            return object_store.presigned_get_url(self.bucket, path, expires_in)
        except object_store.ObjectStoreError as exc:
            raise BlobSinkError(str(exc)) from exc
