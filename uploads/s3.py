# uploads/s3.py
from __future__ import annotations

import logging
from typing import Tuple

from django.conf import settings
import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


def get_s3_client():
    """
    boto3 client built from the S3_* settings (AWS S3, MinIO and R2 all work).
    """
    cfg = BotoConfig(
        s3={"addressing_style": settings.S3_ADDRESSING_STYLE},
        signature_version=settings.S3_SIGNATURE_VERSION,
    )
    return boto3.client(
        "s3",
        endpoint_url=settings.S3_ENDPOINT_URL,
        region_name=settings.S3_REGION_NAME,
        aws_access_key_id=settings.S3_ACCESS_KEY_ID,
        aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
        config=cfg,
    )


def get_bucket_name() -> str:
    if not settings.S3_BUCKET_NAME:
        raise RuntimeError("S3_BUCKET_NAME is required for audio storage")
    return settings.S3_BUCKET_NAME


def build_audio_key(doctor_id, consultation_id, extension: str, suffix: str = "") -> str:
    return f"consultations/{doctor_id}/{consultation_id}{suffix}.{extension}"


def object_url(key: str) -> str:
    base = getattr(settings, "S3_PUBLIC_BASE_URL", None)
    if base:
        return f"{base.rstrip('/')}/{key}"
    return f"s3://{get_bucket_name()}/{key}"


def key_from_url(url: str) -> str:
    """Inverse of ``object_url``; bare keys are returned unchanged."""
    base = getattr(settings, "S3_PUBLIC_BASE_URL", None)
    if base and url.startswith(base.rstrip('/') + '/'):
        return url[len(base.rstrip('/')) + 1:]
    prefix = f"s3://{get_bucket_name()}/"
    if url.startswith(prefix):
        return url[len(prefix):]
    if "://" in url:
        # Path-style URL: scheme://host/bucket/key
        path = url.split("://", 1)[1].split("/", 1)[-1]
        bucket_prefix = f"{get_bucket_name()}/"
        return path[len(bucket_prefix):] if path.startswith(bucket_prefix) else path
    return url


def upload_audio(key: str, data: bytes, content_type: str) -> str:
    client = get_s3_client()
    client.put_object(
        Bucket=get_bucket_name(),
        Key=key,
        Body=data,
        ContentType=content_type or "application/octet-stream",
    )
    logger.info(f"Stored {len(data)} bytes at {key}")
    return object_url(key)


def download_audio(url: str) -> Tuple[bytes, str]:
    """Return ``(bytes, content_type)`` for a stored recording."""
    key = key_from_url(url)
    client = get_s3_client()
    try:
        obj = client.get_object(Bucket=get_bucket_name(), Key=key)
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code")
        logger.error(f"Could not download {key}: {code}")
        raise
    body = obj["Body"].read()
    logger.info(f"Downloaded {len(body)} bytes from {key}")
    return body, obj.get("ContentType") or ""


def ensure_bucket_exists() -> bool:
    """
    Create the bucket if missing. Returns True when it was created.
    """
    client = get_s3_client()
    bucket = get_bucket_name()

    try:
        client.head_bucket(Bucket=bucket)
        return False
    except ClientError as e:
        code = (e.response.get("Error", {}).get("Code") or "").lower()
        if code not in ("404", "notfound", "nosuchbucket"):
            raise

    params = {"Bucket": bucket}
    region = settings.S3_REGION_NAME
    if region and region != "us-east-1":
        params["CreateBucketConfiguration"] = {"LocationConstraint": region}

    client.create_bucket(**params)
    return True
