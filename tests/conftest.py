"""Provide common pytest fixtures."""

import httpx
import pytest
import pytest_asyncio
from botocore.exceptions import EndpointConnectionError

from lfsgate.s3 import S3Backend
from lfsgate.server import create_application, get_argparser

from . import FAKE_S3_URL, TEST_BUCKET


class FakeS3Client:
    """Stand-in for an aiobotocore S3 client.

    `pages` are the key lists returned by successive list_objects_v2 calls,
    linked by continuation tokens.
    """

    def __init__(self, pages=None):
        self.pages = pages if pages is not None else [[]]
        self.unreachable = False
        self.fail_keys = set()
        self.delete_errors = False
        self.presign_calls = []
        self.list_calls = []
        self.delete_calls = []
        self.open_count = 0

    async def __aenter__(self):
        self.open_count += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def _check_reachable(self):
        if self.unreachable:
            raise EndpointConnectionError(endpoint_url=FAKE_S3_URL)

    async def generate_presigned_url(self, client_method, Params=None, ExpiresIn=3600):
        self._check_reachable()
        if Params["Key"] in self.fail_keys:
            raise EndpointConnectionError(endpoint_url=FAKE_S3_URL)
        self.presign_calls.append((client_method, Params, ExpiresIn))
        return (
            f"{FAKE_S3_URL}/{Params['Bucket']}/{Params['Key']}"
            f"?X-Amz-Expires={ExpiresIn}&method={client_method}"
        )

    async def list_objects_v2(self, Bucket, ContinuationToken=None, MaxKeys=None):
        self._check_reachable()
        self.list_calls.append(ContinuationToken)
        index = int(ContinuationToken.split("-")[1]) if ContinuationToken else 0
        response = {"IsTruncated": index + 1 < len(self.pages), "KeyCount": 0}
        keys = self.pages[index]
        if keys:
            response["Contents"] = [{"Key": key} for key in keys]
            response["KeyCount"] = len(keys)
        if index + 1 < len(self.pages):
            response["NextContinuationToken"] = f"token-{index + 1}"
        return response

    async def delete_objects(self, Bucket, Delete):
        self._check_reachable()
        keys = [obj["Key"] for obj in Delete["Objects"]]
        self.delete_calls.append(keys)
        if self.delete_errors:
            return {
                "Errors": [
                    {"Key": key, "Code": "AccessDenied", "Message": "Access Denied"}
                    for key in keys
                ]
            }
        return {"Deleted": [{"Key": key} for key in keys]}


@pytest.fixture
def fake_s3():
    return FakeS3Client()


@pytest.fixture
def backend(fake_s3):
    """An S3Backend whose clients all resolve to the fake client."""
    backend = S3Backend(bucket=TEST_BUCKET, region_name="eu-west-1")
    backend.create_client_async = lambda public=False: fake_s3
    return backend


@pytest.fixture
def app(backend):
    args = get_argparser().parse_args(["--bucket", TEST_BUCKET, "--skip-startup-check"])
    return create_application(args, backend=backend)


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
