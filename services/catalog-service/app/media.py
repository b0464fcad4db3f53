import io
import logging
import os
import uuid
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.orm import Session

from .db import SessionLocal

logger = logging.getLogger(__name__)

MEDIA_BACKEND = os.getenv("MEDIA_BACKEND", "local").strip().lower()  # local | s3
MEDIA_ROOT = Path(os.getenv("MEDIA_ROOT", "uploads"))
MEDIA_BASE_URL = os.getenv("MEDIA_BASE_URL", "/static").rstrip("/")
MEDIA_BUCKET = os.getenv("MEDIA_BUCKET", "catalog-media")
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL")

MAX_IMAGE_BYTES = int(os.getenv("MAX_IMAGE_BYTES", str(2 * 1024 * 1024)))

ALLOWED_EXT = {".png", ".jpg", ".jpeg", ".webp", ".gif"}
ALLOWED_CONTENT_TYPES = {"image/png", "image/jpeg", "image/webp", "image/gif"}


class LocalMediaStore:
    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def save(self, key: str, data: bytes, content_type: str) -> None:
        dest = self.root / key
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data)

    def delete(self, key: str) -> None:
        (self.root / key).unlink(missing_ok=True)


class S3MediaStore:
    def __init__(self, bucket: str, endpoint_url: str | None = None):
        import boto3

        self.bucket = bucket
        self.client = boto3.client("s3", endpoint_url=endpoint_url) if endpoint_url else boto3.client("s3")

    def save(self, key: str, data: bytes, content_type: str) -> None:
        self.client.upload_fileobj(
            io.BytesIO(data), self.bucket, key, ExtraArgs={"ContentType": content_type}
        )

    def delete(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=key)


def _build_store():
    if MEDIA_BACKEND == "local":
        return LocalMediaStore(MEDIA_ROOT)
    if MEDIA_BACKEND == "s3":
        return S3MediaStore(MEDIA_BUCKET, S3_ENDPOINT_URL)
    raise RuntimeError(f"Unsupported MEDIA_BACKEND={MEDIA_BACKEND}")


store = _build_store()


def public_url(key: str | None) -> str | None:
    if not key:
        return None
    return f"{MEDIA_BASE_URL}/{key}"


def validate_image(filename: str | None, content_type: str | None, data: bytes) -> list[str]:
    """Return every reason the upload is unacceptable (empty list when fine)."""
    problems = []
    ext = Path(filename or "").suffix.lower()
    if ext not in ALLOWED_EXT:
        problems.append("The image must be a file of type: png, jpg, jpeg, webp, gif.")
    if (content_type or "").lower() not in ALLOWED_CONTENT_TYPES:
        problems.append("The image must be an image.")
    if not data:
        problems.append("The image file is empty.")
    elif len(data) > MAX_IMAGE_BYTES:
        problems.append(f"The image may not be greater than {MAX_IMAGE_BYTES // 1024} kilobytes.")
    return problems


def upload_product_image(db: Session, product_id: int, filename: str, content_type: str, data: bytes) -> str:
    """
    Store the image under the product's namespace and return its key.

    The key is tracked on the session so a rollback removes the file again.
    """
    ext = Path(filename).suffix.lower()
    key = f"products/{product_id}/{uuid.uuid4().hex}{ext}"
    store.save(key, data, content_type)
    db.info.setdefault("media_uploaded", []).append(key)
    logger.info("Stored image key=%s bytes=%s", key, len(data))
    return key


def discard_after_commit(db: Session, key: str) -> None:
    db.info.setdefault("media_obsolete", []).append(key)


def _delete_quietly(key: str) -> None:
    try:
        store.delete(key)
        logger.info("Deleted image key=%s", key)
    except Exception:
        # the row change already committed; a stray file must not fail the request
        logger.exception("Failed to delete image key=%s", key)


@event.listens_for(SessionLocal, "after_commit")
def _after_commit(session):
    if session.in_nested_transaction():
        return
    session.info.pop("media_uploaded", None)
    for key in session.info.pop("media_obsolete", []):
        _delete_quietly(key)


@event.listens_for(SessionLocal, "after_soft_rollback")
def _after_rollback(session, previous_transaction):
    if previous_transaction.nested:
        return
    session.info.pop("media_obsolete", None)
    for key in session.info.pop("media_uploaded", []):
        _delete_quietly(key)
