"""Provide the S3 storage backend.

The backend is an explicitly constructed object handed to the LFS handler and
the admin routes; nothing in lfsgate reaches for a process-wide client.

Uses the S3 client factory pattern for async operations:
each operation (a whole signing batch counts as one) opens a fresh
aiobotocore client context, which avoids
connection pool exhaustion and hanging issues with aiobotocore.
"""

import logging
import os
import sys
from typing import AsyncIterator, List, Optional

from aiobotocore.config import AioConfig
from aiobotocore.session import AioSession, get_session
from botocore.exceptions import BotoCoreError, ClientError

from lfsgate.exceptions import AuthenticationFailure, BackendUnavailable

LOGLEVEL = os.environ.get("LFSGATE_LOGLEVEL", "INFO").upper()
logging.basicConfig(level=LOGLEVEL, stream=sys.stdout)
logger = logging.getLogger("s3")
logger.setLevel(LOGLEVEL)

# Default URL expiration time (1 hour)
DEFAULT_EXPIRES_IN = 3600

UPLOAD_CONTENT_TYPE = "application/octet-stream"

BACKEND_ERRORS = (BotoCoreError, ClientError)


class S3URLSigner:
    """Sign time-limited download/upload URLs for single object keys.

    Signing never creates, reads or deletes objects, and does not check that
    the object exists; a missing object is only discovered when the client
    uses the URL.

    Used as an async context manager, the signer keeps one client open and
    signs every key on it, so a whole batch costs a single client.
    """

    upload_headers = {"Content-Type": UPLOAD_CONTENT_TYPE}

    def __init__(self, s3_client_factory, bucket: str, expires_in: int = DEFAULT_EXPIRES_IN):
        """Set up the signer.

        Args:
            s3_client_factory: Callable returning an async context manager for an S3 client
            bucket: S3 bucket name
            expires_in: Seconds a signed URL stays valid
        """
        self.s3_client_factory = s3_client_factory
        self.bucket = bucket
        self.expires_in = expires_in
        self._client_context = None
        self._s3_client = None

    async def __aenter__(self):
        client_context = self.s3_client_factory()
        try:
            self._s3_client = await client_context.__aenter__()
        except BACKEND_ERRORS as err:
            logger.error("Failed to open S3 client for signing: %s", err)
            raise BackendUnavailable("Failed to open S3 client") from err
        self._client_context = client_context
        return self

    async def __aexit__(self, exc_type, exc, tb):
        client_context, self._client_context = self._client_context, None
        self._s3_client = None
        await client_context.__aexit__(exc_type, exc, tb)
        return False

    async def sign_for_download(self, key: str) -> str:
        """Return a presigned GET URL for the key."""
        return await self._sign("get_object", {"Bucket": self.bucket, "Key": key})

    async def sign_for_upload(self, key: str) -> str:
        """Return a presigned PUT URL for the key.

        The upload must be sent with `upload_headers`, otherwise S3 rejects it
        with a signature mismatch.
        """
        return await self._sign(
            "put_object",
            {"Bucket": self.bucket, "Key": key, "ContentType": UPLOAD_CONTENT_TYPE},
        )

    async def _sign(self, client_method: str, params: dict) -> str:
        try:
            if self._s3_client is not None:
                return await self._s3_client.generate_presigned_url(
                    client_method,
                    Params=params,
                    ExpiresIn=self.expires_in,
                )
            async with self.s3_client_factory() as s3_client:
                return await s3_client.generate_presigned_url(
                    client_method,
                    Params=params,
                    ExpiresIn=self.expires_in,
                )
        except BACKEND_ERRORS as err:
            logger.error(
                "Failed to sign %s for key %s: %s", client_method, params["Key"], err
            )
            raise BackendUnavailable(f"Failed to sign {client_method}") from err


class S3Backend:
    """Represent the bucket holding the LFS objects."""

    def __init__(
        self,
        bucket: str,
        region_name: Optional[str] = None,
        profile: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        endpoint_url_public: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
    ):
        """Set up the backend.

        Credentials come from the named profile when `profile` is set,
        otherwise from the ambient chain (environment, instance metadata...).
        Explicit access keys take precedence over both.
        """
        self.bucket = bucket
        self.region_name = region_name
        self.profile = profile
        self.endpoint_url = endpoint_url
        self.endpoint_url_public = endpoint_url_public or endpoint_url
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self._session = AioSession(profile=profile) if profile else get_session()

    def create_client_async(self, public=False):
        """Create client async."""
        return self._session.create_client(
            "s3",
            endpoint_url=self.endpoint_url_public if public else self.endpoint_url,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            region_name=self.region_name,
            config=AioConfig(signature_version="s3v4"),
        )

    def get_signer(self, expires_in: int = DEFAULT_EXPIRES_IN) -> S3URLSigner:
        """Return a URL signer whose URLs point at the public endpoint."""
        return S3URLSigner(
            lambda: self.create_client_async(public=True),
            self.bucket,
            expires_in=expires_in,
        )

    async def verify_access(self) -> None:
        """Check that the bucket is reachable with the configured credentials."""
        try:
            async with self.create_client_async() as s3_client:
                await s3_client.list_objects_v2(Bucket=self.bucket, MaxKeys=1)
        except BACKEND_ERRORS as err:
            logger.error("Error authenticating S3 client: %s", err)
            raise AuthenticationFailure(
                f"S3 client authentication failed for bucket {self.bucket}: {err}"
            ) from err
        logger.info("S3 client authenticated successfully (bucket: %s)", self.bucket)

    async def _iter_pages(self, s3_client) -> AsyncIterator[List[str]]:
        """Yield the keys of each listing page until no continuation token remains.

        Pages may be empty while a continuation token is still present.
        """
        continuation_token = None
        while True:
            kwargs = {"Bucket": self.bucket}
            if continuation_token:
                kwargs["ContinuationToken"] = continuation_token
            response = await s3_client.list_objects_v2(**kwargs)
            yield [item["Key"] for item in response.get("Contents", [])]
            continuation_token = response.get("NextContinuationToken")
            if not continuation_token:
                break

    async def list_all_keys(self) -> List[str]:
        """Return every key in the bucket, in the order the backend lists them."""
        keys = []
        try:
            async with self.create_client_async() as s3_client:
                async for page in self._iter_pages(s3_client):
                    keys.extend(page)
        except BACKEND_ERRORS as err:
            logger.error("Error listing objects in S3 bucket: %s", err, exc_info=True)
            raise BackendUnavailable("Failed to list objects") from err
        return keys

    async def delete_all(self) -> int:
        """Delete every object in the bucket, one listing page at a time.

        A failing page stops the drain; pages deleted before it stay deleted.
        Returns the number of deleted objects.
        """
        deleted = 0
        try:
            async with self.create_client_async() as s3_client:
                async for page in self._iter_pages(s3_client):
                    if not page:
                        logger.info("No objects found in this listing page.")
                        continue
                    logger.info("Objects to be deleted: %s", page)
                    response = await s3_client.delete_objects(
                        Bucket=self.bucket,
                        Delete={
                            "Objects": [{"Key": key} for key in page],
                            "Quiet": False,
                        },
                    )
                    errors = response.get("Errors", [])
                    if errors:
                        for error in errors:
                            logger.error(
                                "Failed to delete '%s': %s - %s",
                                error.get("Key"),
                                error.get("Code"),
                                error.get("Message"),
                            )
                        raise BackendUnavailable(
                            f"Failed to delete {len(errors)} object(s)"
                        )
                    deleted += len(response.get("Deleted", page))
        except BACKEND_ERRORS as err:
            logger.error("Error deleting objects in S3 bucket: %s", err, exc_info=True)
            raise BackendUnavailable("Failed to delete objects") from err
        logger.info("Deleted %d object(s) from bucket %s", deleted, self.bucket)
        return deleted
