"""Tests for bucket verification through the MinIO client."""

import pytest
from unittest.mock import patch, MagicMock

from urllib3.exceptions import HTTPError

from s3fs_manager.errors import BucketVerificationError
from s3fs_manager.models import BucketStatus
from s3fs_manager.storage import BucketVerifier, endpoint_from_url


class FakeS3Error(Exception):
    def __init__(self, code):
        super().__init__(f"S3 operation failed; code: {code}")
        self.code = code


@pytest.fixture
def minio():
    client = MagicMock()
    with patch("s3fs_manager.storage.Minio", return_value=client) as cls, \
            patch("s3fs_manager.storage.S3Error", FakeS3Error):
        client.cls = cls
        yield client


def _ensure(**overrides):
    args = dict(url="http://minio:9000", access_key="AK", secret_key="SK", bucket="photos")
    args.update(overrides)
    return BucketVerifier().ensure_bucket(**args)


class TestEndpointFromUrl:
    """Tests for splitting s3fs URLs into Minio endpoints."""

    def test_http(self):
        assert endpoint_from_url("http://localhost:9000") == ("localhost:9000", False)

    def test_https(self):
        assert endpoint_from_url("https://s3.example.com") == ("s3.example.com", True)

    def test_bare_host(self):
        assert endpoint_from_url("minio:9000") == ("minio:9000", False)

    def test_path_ignored(self):
        assert endpoint_from_url("https://s3.example.com/") == ("s3.example.com", True)


class TestEnsureBucket:
    """Tests for bucket existence checks and creation."""

    def test_existing_bucket(self, minio):
        minio.bucket_exists.return_value = True
        assert _ensure() == BucketStatus.EXISTS
        minio.make_bucket.assert_not_called()

    def test_creates_missing_bucket(self, minio):
        minio.bucket_exists.return_value = False
        assert _ensure() == BucketStatus.CREATED
        minio.make_bucket.assert_called_once_with(bucket_name="photos")

    def test_client_settings(self, minio):
        minio.bucket_exists.return_value = True
        _ensure(url="https://s3.example.com")
        kwargs = minio.cls.call_args.kwargs
        assert kwargs["endpoint"] == "s3.example.com"
        assert kwargs["secure"] is True
        assert kwargs["access_key"] == "AK"

    def test_create_race_counts_as_exists(self, minio):
        minio.bucket_exists.return_value = False
        minio.make_bucket.side_effect = FakeS3Error("BucketAlreadyOwnedByYou")
        assert _ensure() == BucketStatus.EXISTS

    def test_access_denied(self, minio):
        minio.bucket_exists.side_effect = FakeS3Error("AccessDenied")
        with pytest.raises(BucketVerificationError, match="AccessDenied") as exc:
            _ensure()
        assert "AccessDenied" in exc.value.diagnostic

    def test_unreachable_server(self, minio):
        minio.bucket_exists.side_effect = HTTPError("Max retries exceeded")
        with pytest.raises(BucketVerificationError, match="Cannot reach") as exc:
            _ensure()
        assert "Max retries" in exc.value.diagnostic

    def test_missing_keys(self, minio):
        with pytest.raises(BucketVerificationError, match="required"):
            _ensure(secret_key="")
        minio.cls.assert_not_called()

    def test_invalid_url(self, minio):
        minio.cls.side_effect = ValueError("bad endpoint")
        with pytest.raises(BucketVerificationError, match="Invalid server URL"):
            _ensure()
