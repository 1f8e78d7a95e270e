"""Failure kinds of the screenshot ingestion pipeline.

Every kind is terminal for the request. ``status_code`` is only used when the
API is configured to report distinct statuses; otherwise all render as 500.
"""

from typing import Optional


class IngestionError(Exception):
    error_code = "ingestion_failed"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthorized(IngestionError):
    error_code = "unauthorized"
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class BadRequest(IngestionError):
    error_code = "bad_request"
    status_code = 400


class BlockedHost(IngestionError):
    error_code = "blocked_host"
    status_code = 400


class FetchFailed(IngestionError):
    error_code = "fetch_failed"
    status_code = 502

    def __init__(self, message: str, upstream_status: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.reason = reason


class UnsupportedContent(IngestionError):
    error_code = "unsupported_content"
    status_code = 415


class NoImageFound(IngestionError):
    error_code = "no_image_found"
    status_code = 422

    def __init__(self, message: str = "No image found in the HTML page"):
        super().__init__(message)


class ExtractionFailed(IngestionError):
    error_code = "extraction_failed"
    status_code = 502

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class PayloadTooLarge(IngestionError):
    error_code = "payload_too_large"
    status_code = 413


class StorageFailed(IngestionError):
    error_code = "storage_failed"
    status_code = 500


class MetadataFailed(IngestionError):
    error_code = "metadata_failed"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        # Set by the pipeline once the blob compensation has run
        self.compensated: Optional[bool] = None
