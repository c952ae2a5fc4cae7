import io
import logging
import uuid
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import HTTPException, UploadFile
from PIL import Image, UnidentifiedImageError

from lostfound.config import (
    MAX_UPLOAD_BYTES,
    MAX_UPLOAD_SIZE_MB,
    STORAGE_ACCESS_KEY_ID,
    STORAGE_ENDPOINT_URL,
    STORAGE_PUBLIC_URL,
    STORAGE_REGION,
    STORAGE_SECRET_ACCESS_KEY,
)
from lostfound.utils.policies import DELETE, INSERT, Caller, authorize_object

logger = logging.getLogger(__name__)

MIME_TYPES = {"webp": "image/webp", "jpg": "image/jpeg"}


@lru_cache(maxsize=1)
def get_s3_client():
    return boto3.client(
        service_name="s3",
        endpoint_url=STORAGE_ENDPOINT_URL,
        aws_access_key_id=STORAGE_ACCESS_KEY_ID,
        aws_secret_access_key=STORAGE_SECRET_ACCESS_KEY,
        region_name=STORAGE_REGION,
    )


def compress_image(data: bytes, max_width=1400, quality=80):
    try:
        img = Image.open(io.BytesIO(data))
        img = img.convert("RGB")
    except (UnidentifiedImageError, OSError):
        raise HTTPException(status_code=400, detail="File is not a readable image")

    # Resize while keeping aspect ratio
    w, h = img.size
    if w > max_width:
        new_height = int(h * (max_width / w))
        img = img.resize((max_width, new_height), Image.LANCZOS)

    # Try WebP first
    buffer = io.BytesIO()

    try:
        img.save(buffer, format="WEBP", quality=quality, method=6)
        ext = "webp"
    except (OSError, KeyError) as e:
        logger.warning("WebP failed, falling back to JPEG: %s", e)

        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=quality, optimize=True)
        ext = "jpg"

    buffer.seek(0)
    return buffer, ext


def build_object_path(account_id: uuid.UUID, ext: str, now: Optional[datetime] = None) -> str:
    """`{account_id}/{timestamp}.{ext}`; the leading folder is what ownership checks read."""
    now = now or datetime.now(timezone.utc)
    ts = int(now.timestamp() * 1000)
    return f"{account_id}/{ts}.{ext}"


def public_url(bucket: str, path: str) -> str:
    return f"{STORAGE_PUBLIC_URL}/{bucket}/{path}"


def path_from_public_url(bucket: str, url: Optional[str]) -> Optional[str]:
    prefix = f"{STORAGE_PUBLIC_URL}/{bucket}/"
    if url and url.startswith(prefix):
        return url[len(prefix):]
    return None


async def read_image_upload(image: UploadFile) -> bytes:
    if not (image.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Please select an image file")

    raw_bytes = await image.read()

    if len(raw_bytes) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"Image exceeds {MAX_UPLOAD_SIZE_MB}MB limit")

    return raw_bytes


def upload_object(caller: Caller, bucket: str, path: str, buffer: io.BytesIO, ext: str) -> str:
    authorize_object(bucket, INSERT, caller, path)

    try:
        get_s3_client().upload_fileobj(
            buffer,
            bucket,
            path,
            ExtraArgs={"ContentType": MIME_TYPES.get(ext, "application/octet-stream")},
        )
    except (BotoCoreError, ClientError):
        logger.exception("Upload of %s/%s failed", bucket, path)
        raise HTTPException(status_code=502, detail="Upload failed, please try again")

    return public_url(bucket, path)


def upload_image(caller: Caller, bucket: str, raw_bytes: bytes) -> str:
    buffer, ext = compress_image(raw_bytes)
    path = build_object_path(caller.id, ext)
    return upload_object(caller, bucket, path, buffer, ext)


def delete_object(caller: Caller, bucket: str, path: str) -> None:
    authorize_object(bucket, DELETE, caller, path)
    purge_object(bucket, path)


def purge_object(bucket: str, path: str) -> None:
    """Remove an object on behalf of the system, after its row is gone. Best effort."""
    try:
        get_s3_client().delete_object(Bucket=bucket, Key=path)
    except (BotoCoreError, ClientError) as e:
        logger.error("Error deleting storage object %s/%s: %s", bucket, path, e)
