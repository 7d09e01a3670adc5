"""Tests for payment proof decoding and blob stores."""
from __future__ import annotations

import base64
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from studio.errors import BlobStorageError, ValidationError
from studio.storage import (LocalBlobStore, S3BlobStore, UploadedFile,
                            create_blob_store, decode_base64_file)

PDF_BYTES = b"%PDF-1.4 receipt"


def test_decode_accepts_data_url() -> None:
    encoded = "data:application/pdf;base64," + base64.b64encode(PDF_BYTES).decode()

    upload = decode_base64_file({"base64": encoded, "mimeType": "application/pdf"})

    assert upload.data == PDF_BYTES
    assert upload.extension == "pdf"


def test_decode_missing_proof_is_none() -> None:
    assert decode_base64_file(None) is None
    assert decode_base64_file({}) is None


@pytest.mark.parametrize(
    "payload",
    [
        {"base64": "aGVsbG8=", "mimeType": "text/html"},
        {"base64": "not base64!!", "mimeType": "image/png"},
        {"base64": "", "mimeType": "image/png"},
        "abc",
        ["aGVsbG8="],
        {"base64": 123, "mimeType": "image/png"},
        {"base64": "aGVsbG8=", "mimeType": ["image/png"]},
    ],
)
def test_decode_rejects_bad_proofs(payload) -> None:
    with pytest.raises(ValidationError):
        decode_base64_file(payload)


def test_local_store_upload_and_delete(tmp_path) -> None:
    store = LocalBlobStore(str(tmp_path), base_url="/uploads/")

    blob = store.upload(UploadedFile(data=PDF_BYTES, mime_type="application/pdf"), "ana putri/../x")

    assert blob.url == f"/uploads/{blob.public_id}"
    assert "/" not in blob.public_id
    assert (tmp_path / blob.public_id).read_bytes() == PDF_BYTES

    store.delete(blob.public_id)
    store.delete(blob.public_id)
    assert list(tmp_path.iterdir()) == []


def test_s3_store_puts_and_deletes_objects() -> None:
    store = S3BlobStore("proofs-bucket", region="ap-southeast-1", public_base_url="https://cdn.example.com")
    store.client = MagicMock()

    blob = store.upload(UploadedFile(data=PDF_BYTES, mime_type="application/pdf"), "Ana_Putri-x1y2z3")
    store.delete(blob.public_id)

    assert blob.public_id == "payment_proofs/Ana_Putri-x1y2z3.pdf"
    assert blob.url == "https://cdn.example.com/payment_proofs/Ana_Putri-x1y2z3.pdf"
    store.client.put_object.assert_called_once_with(
        Bucket="proofs-bucket", Key=blob.public_id, Body=PDF_BYTES, ContentType="application/pdf",
    )
    store.client.delete_object.assert_called_once_with(Bucket="proofs-bucket", Key=blob.public_id)


def test_s3_upload_failure_is_blob_storage_error() -> None:
    store = S3BlobStore("proofs-bucket", region="ap-southeast-1")
    store.client = MagicMock()
    store.client.put_object.side_effect = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")

    with pytest.raises(BlobStorageError) as excinfo:
        store.upload(UploadedFile(data=PDF_BYTES, mime_type="application/pdf"), "proof")

    assert excinfo.value.status_code == 502


def test_create_blob_store_picks_backend(tmp_path) -> None:
    local = create_blob_store({"UPLOAD_FOLDER": str(tmp_path)})
    s3 = create_blob_store({"BLOB_S3_BUCKET": "proofs-bucket", "AWS_REGION": "ap-southeast-1", "UPLOAD_FOLDER": str(tmp_path)})

    assert isinstance(local, LocalBlobStore)
    assert isinstance(s3, S3BlobStore)
