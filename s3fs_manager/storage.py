"""
Bucket verification against the S3/MinIO server.

Checks that a bucket exists before it is mounted and creates it when it
does not. Uses the ``minio`` client; the server URL is the same one s3fs
gets through ``-o url=``.
"""

import logging
from typing import Optional
from urllib.parse import urlparse

from minio import Minio
from minio.error import S3Error
from urllib3.exceptions import HTTPError

from .errors import BucketVerificationError
from .models import BucketStatus

log = logging.getLogger(__name__)

# S3 error codes meaning "it's there already"
_ALREADY_EXISTS = frozenset({"BucketAlreadyOwnedByYou", "BucketAlreadyExists"})


def endpoint_from_url(url: str) -> tuple[str, bool]:
    """Split an s3fs-style URL into (host[:port], secure)."""
    parsed = urlparse(url if "://" in url else f"http://{url}")
    if not parsed.netloc:
        raise BucketVerificationError(f"Invalid server URL: {url!r}")
    return parsed.netloc, parsed.scheme == "https"


class BucketVerifier:
    """Creates the bucket if it is missing."""

    def __init__(self, region: Optional[str] = None):
        self.region = region

    def _client(self, url: str, access_key: str, secret_key: str) -> Minio:
        endpoint, secure = endpoint_from_url(url)
        return Minio(
            endpoint=endpoint,
            access_key=access_key,
            secret_key=secret_key,
            secure=secure,
            region=self.region,
        )

    def ensure_bucket(
        self,
        url: str,
        access_key: str,
        secret_key: str,
        bucket: str,
        acting_user: str = "",
    ) -> BucketStatus:
        """Return EXISTS or CREATED; raise BucketVerificationError otherwise."""
        if not access_key or not secret_key:
            raise BucketVerificationError("Access key and secret key are required")

        try:
            client = self._client(url, access_key, secret_key)
        except ValueError as e:
            raise BucketVerificationError(f"Invalid server URL {url}: {e}") from e

        log.debug(f"Checking bucket {bucket} on {url} for {acting_user or 'current user'}")
        try:
            if client.bucket_exists(bucket_name=bucket):
                log.debug(f"Bucket already exists: {bucket}")
                return BucketStatus.EXISTS
            client.make_bucket(bucket_name=bucket)
            log.info(f"Created bucket: {bucket}")
            return BucketStatus.CREATED
        except S3Error as e:
            if e.code in _ALREADY_EXISTS:
                return BucketStatus.EXISTS
            raise BucketVerificationError(
                f"Failed to verify bucket '{bucket}': {e.code}", diagnostic=str(e),
            ) from e
        except (HTTPError, ValueError, OSError) as e:
            raise BucketVerificationError(
                f"Cannot reach {url} to verify bucket '{bucket}'", diagnostic=str(e),
            ) from e
