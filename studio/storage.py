"""Blob storage for payment proofs.

``LocalBlobStore`` keeps files under the upload folder and is the default.
``S3BlobStore`` is used when ``BLOB_S3_BUCKET`` is configured.
"""
from __future__ import annotations

import base64
import binascii
import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import BlobStorageError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "application/pdf": "pdf",
}
MAX_PROOF_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True)
class StoredBlob:
    url: str
    public_id: str


@dataclass(frozen=True)
class UploadedFile:
    data: bytes
    mime_type: str

    @property
    def extension(self) -> str:
        return ALLOWED_MIME_TYPES[self.mime_type]


def decode_base64_file(payload: Mapping[str, Any] | None) -> UploadedFile | None:
    """Decode the ``{"base64": ..., "mimeType": ...}`` form field."""
    if not payload:
        return None
    if not isinstance(payload, Mapping):
        raise ValidationError("payment_proof must be an object with base64 and mimeType")
    mime_type = payload.get("mimeType") or payload.get("mime_type") or ""
    if not isinstance(mime_type, str):
        raise ValidationError("mimeType must be a string")
    mime_type = mime_type.lower()
    if mime_type not in ALLOWED_MIME_TYPES:
        raise ValidationError(f"unsupported file type: {mime_type or 'missing'}")
    raw = payload.get("base64") or ""
    if not isinstance(raw, str):
        raise ValidationError("payment proof base64 must be a string")
    # Accept full data URLs as well as bare base64.
    if raw.startswith("data:") and "," in raw:
        raw = raw.split(",", 1)[1]
    try:
        data = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("payment proof is not valid base64") from exc
    if not data:
        raise ValidationError("payment proof is empty")
    if len(data) > MAX_PROOF_BYTES:
        raise ValidationError("payment proof is too large")
    return UploadedFile(data=data, mime_type=mime_type)


def safe_public_id(value: str) -> str:
    return re.sub(r"[^\w.-]", "_", value)


class BlobStore:
    def upload(self, upload: UploadedFile, public_id: str) -> StoredBlob:
        raise NotImplementedError

    def delete(self, public_id: str) -> None:
        raise NotImplementedError


class LocalBlobStore(BlobStore):
    def __init__(self, root: str, base_url: str = "/uploads") -> None:
        self.root = root
        self.base_url = base_url.rstrip("/")

    def _path(self, public_id: str) -> str:
        return os.path.join(self.root, safe_public_id(public_id))

    def upload(self, upload: UploadedFile, public_id: str) -> StoredBlob:
        public_id = f"{safe_public_id(public_id)}.{upload.extension}"
        os.makedirs(self.root, exist_ok=True)
        try:
            with open(self._path(public_id), "wb") as fh:
                fh.write(upload.data)
        except OSError as exc:
            raise BlobStorageError("failed to store payment proof", detail=str(exc)) from exc
        return StoredBlob(url=f"{self.base_url}/{public_id}", public_id=public_id)

    def delete(self, public_id: str) -> None:
        try:
            os.remove(self._path(public_id))
        except FileNotFoundError:
            logger.info("Blob %s already gone", public_id)


class S3BlobStore(BlobStore):
    def __init__(self, bucket: str, *, region: str, prefix: str = "payment_proofs", public_base_url: str | None = None) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.client = boto3.client("s3", region_name=region)
        self.public_base_url = (public_base_url or f"https://{bucket}.s3.{region}.amazonaws.com").rstrip("/")

    def upload(self, upload: UploadedFile, public_id: str) -> StoredBlob:
        key = f"{self.prefix}/{safe_public_id(public_id)}.{upload.extension}"
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=upload.data, ContentType=upload.mime_type)
        except (BotoCoreError, ClientError) as exc:
            raise BlobStorageError("failed to store payment proof", detail=str(exc)) from exc
        return StoredBlob(url=f"{self.public_base_url}/{key}", public_id=key)

    def delete(self, public_id: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=public_id)
        except (BotoCoreError, ClientError) as exc:
            raise BlobStorageError("failed to delete blob", detail=str(exc)) from exc


def create_blob_store(config: Mapping[str, Any]) -> BlobStore:
    bucket = config.get("BLOB_S3_BUCKET")
    if bucket:
        return S3BlobStore(
            bucket,
            region=config.get("AWS_REGION") or "ap-southeast-1",
            public_base_url=config.get("BLOB_PUBLIC_BASE_URL"),
        )
    return LocalBlobStore(config["UPLOAD_FOLDER"], base_url=config.get("BLOB_PUBLIC_BASE_URL") or "/uploads")
