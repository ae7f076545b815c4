"""Pytest configuration and fixtures for blobstore tests.

This module provides backend fixtures and an in-memory S3 client double.
"""

from __future__ import annotations

import io
import itertools
import re
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from botocore.exceptions import ClientError
from botocore.response import StreamingBody

from blobstore.observability.tracing import reset_tracing
from blobstore.storage.filesystem_store import FilesystemBlobBackend
from blobstore.storage.s3_store import MIN_PART_SIZE, S3BlobBackend

TEST_BUCKET = "test-blobs"

_RANGE_PATTERN = re.compile(r"^bytes=(\d+)-(\d*)$")

TRACING_ENV_VARS = (
    "BLOBSTORE_OTEL_ENABLED",
    "BLOBSTORE_OTEL_TEST_CAPTURE",
    "BLOBSTORE_REQUIRE_OTEL",
    "BLOBSTORE_OTEL_SERVICE_NAME",
    "BLOBSTORE_OTEL_EXPORTER",
    "BLOBSTORE_OTEL_EXPORTER_OTLP_ENDPOINT",
    "BLOBSTORE_OTEL_EXPORTER_OTLP_PROTOCOL",
    "BLOBSTORE_OTEL_RESOURCE_ATTRS",
)


def client_error(code: str, operation: str, status: int = 400) -> ClientError:
    """Build a botocore ClientError the way the S3 client raises it."""
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} (simulated)"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class FakeS3Client:
    """In-memory stand-in for a boto3 S3 client.

    Implements the calls the S3 backend makes. Failures are injected per
    method with ``fail(method, error, after=n)``: the first ``n`` calls
    succeed, the next one raises ``error``.
    """

    def __init__(self, page_size: int = 1000) -> None:
        self.objects: dict[str, dict[str, Any]] = {}
        self.uploads: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.page_size = page_size
        self.delete_errors: set[str] = set()
        self.get_status = 200
        self._failures: dict[str, tuple[Exception, int]] = {}
        self._upload_ids = itertools.count(1)

    def fail(self, method: str, error: Exception, *, after: int = 0) -> None:
        self._failures[method] = (error, after)

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def _record(self, method: str, kwargs: dict[str, Any]) -> None:
        self.calls.append((method, kwargs))
        if method in self._failures:
            error, after = self._failures[method]
            if self.count(method) > after:
                raise error

    def _get(self, bucket: str, key: str, operation: str, code: str) -> dict[str, Any]:
        obj = self.objects.get(key)
        if bucket != TEST_BUCKET or obj is None:
            raise client_error(code, operation, 404)
        return obj

    def put_object(self, **kwargs: Any) -> dict[str, Any]:
        self._record("put_object", kwargs)
        self.objects[kwargs["Key"]] = {
            "Body": bytes(kwargs["Body"]),
            "ContentType": kwargs.get("ContentType"),
            "ContentEncoding": kwargs.get("ContentEncoding"),
        }
        return {"ETag": '"etag"'}

    def create_multipart_upload(self, **kwargs: Any) -> dict[str, Any]:
        self._record("create_multipart_upload", kwargs)
        upload_id = f"upload-{next(self._upload_ids)}"
        self.uploads[upload_id] = {"Key": kwargs["Key"], "Parts": {}, "Args": kwargs}
        return {"UploadId": upload_id}

    def upload_part(self, **kwargs: Any) -> dict[str, Any]:
        self._record("upload_part", kwargs)
        upload = self.uploads[kwargs["UploadId"]]
        upload["Parts"][kwargs["PartNumber"]] = bytes(kwargs["Body"])
        return {"ETag": f'"part-{kwargs["PartNumber"]}"'}

    def complete_multipart_upload(self, **kwargs: Any) -> dict[str, Any]:
        self._record("complete_multipart_upload", kwargs)
        upload = self.uploads.pop(kwargs["UploadId"])
        numbers = [part["PartNumber"] for part in kwargs["MultipartUpload"]["Parts"]]
        args = upload["Args"]
        self.objects[upload["Key"]] = {
            "Body": b"".join(upload["Parts"][n] for n in numbers),
            "ContentType": args.get("ContentType"),
            "ContentEncoding": args.get("ContentEncoding"),
        }
        return {}

    def abort_multipart_upload(self, **kwargs: Any) -> dict[str, Any]:
        self._record("abort_multipart_upload", kwargs)
        self.uploads.pop(kwargs["UploadId"], None)
        return {}

    def get_object(self, **kwargs: Any) -> dict[str, Any]:
        self._record("get_object", kwargs)
        obj = self._get(kwargs["Bucket"], kwargs["Key"], "GetObject", "NoSuchKey")
        data = obj["Body"]
        status = self.get_status

        range_header = kwargs.get("Range")
        if range_header:
            match = _RANGE_PATTERN.match(range_header)
            assert match is not None, f"malformed Range header {range_header!r}"
            start = int(match.group(1))
            end = int(match.group(2)) if match.group(2) else len(data) - 1
            if start >= len(data):
                raise client_error("InvalidRange", "GetObject", 416)
            data = data[start : end + 1]
            status = 206 if status == 200 else status

        response: dict[str, Any] = {
            "Body": StreamingBody(io.BytesIO(data), len(data)),
            "ContentLength": len(data),
            "ContentType": obj["ContentType"],
            "ResponseMetadata": {"HTTPStatusCode": status},
        }
        if obj["ContentEncoding"]:
            response["ContentEncoding"] = obj["ContentEncoding"]
        return response

    def head_object(self, **kwargs: Any) -> dict[str, Any]:
        self._record("head_object", kwargs)
        obj = self._get(kwargs["Bucket"], kwargs["Key"], "HeadObject", "404")
        response = {"ContentLength": len(obj["Body"]), "ContentType": obj["ContentType"]}
        if obj["ContentEncoding"]:
            response["ContentEncoding"] = obj["ContentEncoding"]
        return response

    def delete_object(self, **kwargs: Any) -> dict[str, Any]:
        self._record("delete_object", kwargs)
        self.objects.pop(kwargs["Key"], None)
        return {}

    def list_objects_v2(self, **kwargs: Any) -> dict[str, Any]:
        self._record("list_objects_v2", kwargs)
        names = sorted(name for name in self.objects if name.startswith(kwargs["Prefix"]))
        start = int(kwargs.get("ContinuationToken", "0"))
        page = names[start : start + self.page_size]
        response: dict[str, Any] = {
            "KeyCount": len(page),
            "IsTruncated": start + self.page_size < len(names),
        }
        if page:
            response["Contents"] = [{"Key": name} for name in page]
        if response["IsTruncated"]:
            response["NextContinuationToken"] = str(start + self.page_size)
        return response

    def delete_objects(self, **kwargs: Any) -> dict[str, Any]:
        self._record("delete_objects", kwargs)
        requested = [item["Key"] for item in kwargs["Delete"]["Objects"]]
        if len(requested) > 1000:
            raise client_error("MalformedXML", "DeleteObjects")
        deleted, errors = [], []
        for name in requested:
            if name in self.delete_errors:
                errors.append({"Key": name, "Code": "AccessDenied", "Message": "denied"})
            else:
                self.objects.pop(name, None)
                deleted.append({"Key": name})
        response: dict[str, Any] = {}
        if deleted:
            response["Deleted"] = deleted
        if errors:
            response["Errors"] = errors
        return response


@pytest.fixture(autouse=True)
def reset_tracing_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Run every test with tracing disabled unless the test enables it."""
    for name in TRACING_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_tracing()
    yield
    reset_tracing()


@pytest.fixture
def fs_root(tmp_path: Path) -> Path:
    return tmp_path / "blobs"


@pytest.fixture
def fs_backend(fs_root: Path) -> FilesystemBlobBackend:
    """Create a FilesystemBlobBackend over a temp directory."""
    return FilesystemBlobBackend(fs_root)


@pytest.fixture
def fake_s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def s3_backend(fake_s3: FakeS3Client) -> S3BlobBackend:
    """Create an S3BlobBackend over the in-memory client with the smallest part size."""
    return S3BlobBackend(TEST_BUCKET, client=fake_s3, multipart_part_size=MIN_PART_SIZE)


@pytest.fixture(params=["filesystem", "s3"])
def backend(request: pytest.FixtureRequest) -> Any:
    """Run a test against each backend."""
    fixture_name = {"filesystem": "fs_backend", "s3": "s3_backend"}[request.param]
    return request.getfixturevalue(fixture_name)


@pytest.fixture
def enable_tracing(monkeypatch: pytest.MonkeyPatch) -> Callable[[], None]:
    """Return a function that turns on in-memory span capture."""
    from blobstore.observability.tracing import clear_test_spans, configure_tracing

    def _enable() -> None:
        monkeypatch.setenv("BLOBSTORE_OTEL_ENABLED", "1")
        monkeypatch.setenv("BLOBSTORE_OTEL_TEST_CAPTURE", "1")
        configure_tracing()
        clear_test_spans()

    return _enable
