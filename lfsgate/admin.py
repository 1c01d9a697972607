"""Administrative endpoints for the LFS bucket."""

import logging
import os
import sys
from typing import Callable

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from lfsgate.exceptions import BackendUnavailable

LOGLEVEL = os.environ.get("LFSGATE_LOGLEVEL", "INFO").upper()
logging.basicConfig(level=LOGLEVEL, stream=sys.stdout)
logger = logging.getLogger("admin")
logger.setLevel(LOGLEVEL)


def create_admin_router(get_backend_callback: Callable) -> APIRouter:
    """Create a FastAPI router for the admin endpoints.

    Args:
        get_backend_callback: Function (request) -> S3Backend

    Returns:
        FastAPI router with list, delete-all and health endpoints
    """
    router = APIRouter()

    @router.get("/list-objects")
    async def list_objects(request: Request):
        """List every object key in the bucket."""
        backend = get_backend_callback(request)
        try:
            object_keys = await backend.list_all_keys()
        except BackendUnavailable as e:
            logger.error(f"Error listing objects in S3 bucket: {e}")
            return PlainTextResponse("Internal Server Error", status_code=500)
        return JSONResponse({"objectKeys": object_keys})

    @router.delete("/delete-all-objects")
    async def delete_all_objects(request: Request):
        """Delete every object in the bucket."""
        backend = get_backend_callback(request)
        try:
            await backend.delete_all()
        except BackendUnavailable as e:
            logger.error(f"Error handling delete-all-objects request: {e}")
            return PlainTextResponse("Internal Server Error", status_code=500)
        return PlainTextResponse("All objects deleted successfully.")

    @router.get("/health")
    async def health():
        """Used for liveness probe, never touches the backend."""
        return JSONResponse({"status": "ok"})

    return router
