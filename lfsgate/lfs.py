"""Git LFS (Large File Storage) Batch API implementation.

This module implements the Git LFS Batch API for handling large file
uploads and downloads via S3 presigned URLs.

Git LFS Protocol:
1. Client sends Batch API request to /{organization}/{repository}/objects/batch
2. Server responds with presigned S3 URLs for upload/download
3. Client uploads/downloads directly to S3 (no bytes pass through this server)

Only the "basic" transfer adapter is supported. Objects of a repository are
stored under `{organization}/{repository}/objects/{oid}`.

Reference: https://github.com/git-lfs/git-lfs/blob/main/docs/api/batch.md
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, List, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from lfsgate.exceptions import BackendUnavailable, InvalidObjectKey, InvalidOperation

logger = logging.getLogger(__name__)

# Git LFS content type
LFS_CONTENT_TYPE = "application/vnd.git-lfs+json"

BASIC_TRANSFER = "basic"


def _check_token(name: str, value: str) -> None:
    if not value:
        raise InvalidObjectKey(f"{name} must not be empty")
    if "/" in value or value in (".", ".."):
        raise InvalidObjectKey(f"{name} is not a path-safe token: {value!r}")


def map_object_key(organization: str, repository: str, oid: str) -> str:
    """Map an LFS object of a repository to its storage key.

    Keys look like `{organization}/{repository}/objects/{oid}`. Since none of
    the three parts may contain a slash, two different repositories can never
    resolve to the same key.

    Raises:
        InvalidObjectKey: If a part is empty or not path-safe
    """
    _check_token("organization", organization)
    _check_token("repository", repository)
    _check_token("oid", oid)
    return f"{organization}/{repository}/objects/{oid}"


class Operation(str, Enum):
    """Batch operations."""

    download = "download"
    upload = "upload"

    @classmethod
    def parse(cls, value) -> "Operation":
        """Decode the `operation` field of a batch request."""
        try:
            return cls(value)
        except ValueError:
            raise InvalidOperation(value) from None


class LFSObjectRequest(BaseModel):
    """A single object in an LFS batch request."""

    oid: str = Field(..., min_length=1, description="The object ID")
    size: int = Field(..., ge=0, description="Size in bytes")


class LFSRef(BaseModel):
    """Git reference information."""

    name: str = Field(..., description="Fully-qualified Git ref (e.g., refs/heads/main)")


class LFSBatchRequest(BaseModel):
    """Git LFS Batch API request body."""

    # decoded by Operation.parse so that any other value maps to a 400
    operation: Any = Field(default=None, description="Either 'download' or 'upload'")
    objects: List[LFSObjectRequest] = Field(..., description="List of objects")
    transfers: List[str] = Field(
        default=[BASIC_TRANSFER], description="Transfer adapters (default: basic)"
    )
    ref: Optional[LFSRef] = Field(default=None, description="Git ref context")
    hash_algo: str = Field(
        default="sha256", description="Hash algorithm (default: sha256)"
    )


class LFSAction(BaseModel):
    """An upload or download action for an LFS object."""

    href: str = Field(..., description="URL for the action")
    header: Optional[dict[str, str]] = Field(
        default=None, description="HTTP headers to include"
    )
    expires_in: Optional[int] = Field(
        default=None, description="Seconds until URL expires"
    )
    expires_at: Optional[str] = Field(
        default=None, description="ISO 8601 timestamp when the URL expires"
    )


class LFSActions(BaseModel):
    """Actions for an LFS object, only the requested operation is set."""

    download: Optional[LFSAction] = None
    upload: Optional[LFSAction] = None


class LFSObjectResponse(BaseModel):
    """Response for a single LFS object in batch response."""

    oid: str
    size: int
    authenticated: Optional[bool] = None
    actions: LFSActions


class LFSBatchResponse(BaseModel):
    """Git LFS Batch API response body."""

    transfer: str = BASIC_TRANSFER
    objects: List[LFSObjectResponse]
    hash_algo: Optional[str] = None


class GitLFSHandler:
    """Handler for Git LFS batch requests of one repository.

    The handler holds no state besides the repository scope and the signer,
    so a new one is created for every request.
    """

    def __init__(self, signer, organization: str, repository: str):
        """Initialize LFS handler.

        Args:
            signer: Object providing async `sign_for_download(key)` and
                    `sign_for_upload(key)`, `expires_in` and `upload_headers`
                    attributes, usable as an async context manager that
                    holds one client for the whole batch
            organization: Organization owning the repository
            repository: Repository name

        Raises:
            InvalidObjectKey: If the repository scope is not path-safe
        """
        _check_token("organization", organization)
        _check_token("repository", repository)
        self.signer = signer
        self.organization = organization
        self.repository = repository

    def _get_object_path(self, oid: str) -> str:
        return map_object_key(self.organization, self.repository, oid)

    async def handle_batch_request(self, request: LFSBatchRequest) -> LFSBatchResponse:
        """Handle a Git LFS Batch API request.

        The batch is all-or-nothing: if signing fails for any object, the
        error propagates and no partial response is built.

        Args:
            request: The batch request

        Returns:
            LFSBatchResponse with one entry per requested object, in request order

        Raises:
            InvalidOperation: If the operation is neither download nor upload
            InvalidObjectKey: If an oid cannot be mapped to a storage key
            BackendUnavailable: If signing fails
        """
        operation = Operation.parse(request.operation)
        if BASIC_TRANSFER not in request.transfers:
            logger.warning(
                "Client did not offer the basic transfer adapter (offered: %s)",
                request.transfers,
            )

        keys = [self._get_object_path(obj.oid) for obj in request.objects]
        if operation is Operation.download:
            handle = self._handle_download
        else:
            handle = self._handle_upload

        # one client for the whole batch, gather keeps the results in request order
        async with self.signer:
            objects = await asyncio.gather(
                *(handle(obj, key) for obj, key in zip(request.objects, keys))
            )

        return LFSBatchResponse(
            transfer=BASIC_TRANSFER,
            objects=list(objects),
            hash_algo=request.hash_algo,
        )

    async def _handle_download(self, obj: LFSObjectRequest, key: str) -> LFSObjectResponse:
        """Handle download request for a single object."""
        download_url = await self.signer.sign_for_download(key)
        return LFSObjectResponse(
            oid=obj.oid,
            size=obj.size,
            actions=LFSActions(
                download=LFSAction(
                    href=download_url,
                    expires_in=self.signer.expires_in,
                )
            ),
        )

    async def _handle_upload(self, obj: LFSObjectRequest, key: str) -> LFSObjectResponse:
        """Handle upload request for a single object."""
        upload_url = await self.signer.sign_for_upload(key)
        return LFSObjectResponse(
            oid=obj.oid,
            size=obj.size,
            actions=LFSActions(
                upload=LFSAction(
                    href=upload_url,
                    header=dict(self.signer.upload_headers),
                    expires_in=self.signer.expires_in,
                )
            ),
        )


def _lfs_error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        content={"message": message},
        status_code=status_code,
        media_type=LFS_CONTENT_TYPE,
    )


def create_lfs_router(get_lfs_handler_callback: Callable) -> APIRouter:
    """Create a FastAPI router for the Git LFS batch endpoint.

    Args:
        get_lfs_handler_callback: Function (request, organization, repository) -> GitLFSHandler

    Returns:
        FastAPI router with the Git LFS batch endpoint
    """
    router = APIRouter()

    @router.post("/{organization}/{repository}/objects/batch")
    async def lfs_batch(organization: str, repository: str, request: Request):
        """Git LFS Batch API endpoint."""
        # Strip .git suffix if present (Git LFS clients may add it)
        if repository.endswith(".git"):
            repository = repository[:-4]

        # Be lenient with the content type - some clients don't set it correctly
        try:
            body = await request.json()
            batch_request = LFSBatchRequest.model_validate(body)
        except ValueError as e:
            logger.error(f"LFS batch: failed to parse request: {e}")
            return _lfs_error(422, f"Invalid request body: {e}")

        logger.info(
            f"LFS batch: organization={organization}, repository={repository}, "
            f"operation={batch_request.operation}, objects={len(batch_request.objects)}"
        )

        try:
            handler = get_lfs_handler_callback(request, organization, repository)
            response = await handler.handle_batch_request(batch_request)
        except InvalidOperation as e:
            logger.error(f"LFS batch: {e}")
            return _lfs_error(400, str(e))
        except InvalidObjectKey as e:
            logger.error(f"LFS batch: {e}")
            return _lfs_error(422, str(e))
        except BackendUnavailable as e:
            logger.error(f"Error processing batch request: {e}", exc_info=True)
            return PlainTextResponse("Internal Server Error", status_code=500)
        except Exception as e:
            logger.error(f"Unexpected error processing batch request: {e}", exc_info=True)
            return PlainTextResponse("Internal Server Error", status_code=500)

        return JSONResponse(
            content=response.model_dump(exclude_none=True),
            media_type=LFS_CONTENT_TYPE,
        )

    return router
