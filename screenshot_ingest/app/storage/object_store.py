"""
Object store helpers for S3-compatible storage (AWS S3 and MinIO).

Screenshots are written with a conditional put so an existing key is never
replaced, and read back by clients through presigned URLs.
"""
import logging
from functools import lru_cache

import boto3
from botocore.client import BaseClient
from botocore.config import Config
from botocore.exceptions import ClientError

from screenshot_ingest.app.core.config import get_settings

logger = logging.getLogger(__name__)


class ObjectStoreError(RuntimeError):
    pass


@lru_cache
def _get_s3_client() -> BaseClient:
    """
    Get or create a boto3 S3 client configured for AWS S3 or MinIO.

    Configuration is determined by environment variables:
    - S3_ENDPOINT_URL: If set, uses MinIO (or custom S3-compatible endpoint)
    - S3_FORCE_PATH_STYLE: If true, uses path-style addressing (required for MinIO)
    - S3_REGION: AWS region (default: us-east-1)
    - AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY: credentials
    """
    settings = get_settings()

    client_kwargs = {}
    if settings.s3_force_path_style:
        client_kwargs["config"] = Config(
            signature_version="s3v4",
            s3={"addressing_style": "path"},
        )
    if settings.s3_endpoint_url:
        client_kwargs["endpoint_url"] = settings.s3_endpoint_url
    if settings.aws_access_key_id and settings.aws_secret_access_key:
        client_kwargs["aws_access_key_id"] = settings.aws_access_key_id
        client_kwargs["aws_secret_access_key"] = settings.aws_secret_access_key

    region = settings.s3_region or "us-east-1"
    return boto3.client("s3", region_name=region, **client_kwargs)


def put_bytes(bucket: str, key: str, content_type: str, data: bytes, overwrite: bool = False) -> str:
    """
    Upload bytes to object storage and return the URI.

    Args:
        bucket: Bucket name
        key: Object key (path)
        content_type: MIME type (e.g., "image/png")
        data: Bytes to upload
        overwrite: When False the put is conditional on the key not existing

    Returns:
        Full URI in format s3://bucket/key

    Raises:
        ObjectStoreError: If upload fails, including when the key already exists
    """
    put_kwargs = {"Bucket": bucket, "Key": key, "Body": data, "ContentType": content_type}
    if not overwrite:
        put_kwargs["IfNoneMatch"] = "*"
    try:
        _get_s3_client().put_object(**put_kwargs)
    except ClientError as exc:
        code = exc.response.get("Error", {}).get("Code")
        if code in {"PreconditionFailed", "ConditionalRequestConflict"}:
            raise ObjectStoreError(f"Object already exists: {uri_for(bucket, key)}") from exc
        logger.exception("Failed to upload object to s3://%s/%s", bucket, key)
        raise ObjectStoreError(f"S3 upload failed: {exc}") from exc
    except Exception as exc:
        logger.exception("Unexpected error uploading object to s3://%s/%s", bucket, key)
        raise ObjectStoreError(f"S3 upload failed: {exc}") from exc
    uri = uri_for(bucket, key)
    logger.debug("Uploaded object to %s", uri)
    return uri


def delete_object(bucket: str, key: str) -> None:
    try:
        _get_s3_client().delete_object(Bucket=bucket, Key=key)
    except ClientError as exc:
        raise ObjectStoreError(f"S3 delete failed: {exc}") from exc


def presigned_get_url(bucket: str, key: str, expires_in: int) -> str:
    try:
        return _get_s3_client().generate_presigned_url(
            "get_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=expires_in,
        )
    except ClientError as exc:
        raise ObjectStoreError(f"S3 presign failed: {exc}") from exc


def uri_for(bucket: str, key: str) -> str:
    """Full s3:// URI for an object; the endpoint comes from configuration."""
    return f"s3://{bucket}/{key}"
