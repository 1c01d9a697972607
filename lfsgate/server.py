"""Provide the server."""

import argparse
import logging
import os
import sys
from contextlib import asynccontextmanager
from os import environ as env

from dotenv import find_dotenv, load_dotenv
from fastapi import FastAPI

from lfsgate import __version__
from lfsgate.admin import create_admin_router
from lfsgate.exceptions import MissingConfiguration
from lfsgate.lfs import GitLFSHandler, create_lfs_router
from lfsgate.s3 import DEFAULT_EXPIRES_IN, S3Backend

LOGLEVEL = os.environ.get("LFSGATE_LOGLEVEL", "INFO").upper()
logging.basicConfig(level=LOGLEVEL, stream=sys.stdout)
logger = logging.getLogger("server")
logger.setLevel(LOGLEVEL)

ENV_FILE = find_dotenv()
if ENV_FILE:
    load_dotenv(ENV_FILE)


def norm_prefix(base_path):
    """Turn a base path into a router prefix ("" for the root)."""
    base_path = base_path.strip("/")
    return f"/{base_path}" if base_path else ""


def get_argparser(add_help=True):
    """Return the argument parser."""
    parser = argparse.ArgumentParser(add_help=add_help)
    parser.add_argument(
        "--from-env",
        action="store_true",
        help="load arguments from environment variables, the environment variables should be in the format of LFSGATE_<ARG_NAME_UPPER>",
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="host for the lfsgate server",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(env.get("PORT", "3000")),
        help="port for the lfsgate server",
    )
    parser.add_argument(
        "--base-path",
        type=str,
        default="/",
        help="the base path for the server",
    )
    parser.add_argument(
        "--bucket",
        type=str,
        default=env.get("S3_BUCKET"),
        help="the S3 bucket holding the LFS objects (default: $S3_BUCKET)",
    )
    parser.add_argument(
        "--region-name",
        type=str,
        default=env.get("AWS_REGION", "eu-west-1"),
        help="the S3 region (default: $AWS_REGION or eu-west-1)",
    )
    parser.add_argument(
        "--profile",
        type=str,
        default=env.get("AWS_PROFILE"),
        help="the AWS profile to load credentials from, the ambient credentials are used if not set",
    )
    parser.add_argument(
        "--endpoint-url",
        type=str,
        default=None,
        help="set endpoint URL for S3-compatible storage, AWS is used if not set",
    )
    parser.add_argument(
        "--endpoint-url-public",
        type=str,
        default=None,
        help="set public endpoint URL for the signed URLs handed to clients",
    )
    parser.add_argument(
        "--access-key-id",
        type=str,
        default=None,
        help="set AccessKeyID for S3, overrides the profile and ambient credentials",
    )
    parser.add_argument(
        "--secret-access-key",
        type=str,
        default=None,
        help="set SecretAccessKey for S3",
    )
    parser.add_argument(
        "--url-expires-in",
        type=int,
        default=DEFAULT_EXPIRES_IN,
        help="seconds a signed upload/download URL stays valid",
    )
    parser.add_argument(
        "--skip-startup-check",
        action="store_true",
        help="do not probe the bucket before serving",
    )
    return parser


def get_args_from_env():
    """Read the server arguments from environment variables."""
    parser = get_argparser(add_help=False)
    args = parser.parse_args([])

    # Get the argument types from the parser
    arg_types = {
        action.dest: action.type
        for action in parser._actions
        if action.type is not None
    }
    arg_bools = {
        action.dest
        for action in parser._actions
        if isinstance(action, argparse._StoreTrueAction)
    }

    for arg_name in vars(args):
        env_var = "LFSGATE_" + arg_name.upper().replace("-", "_")
        if env_var in env:
            value = env[env_var]

            # Handle boolean flags
            if arg_name in arg_bools:
                value = value.lower() in ("true", "1", "yes", "y", "on")
            elif arg_name in arg_types:
                try:
                    value = arg_types[arg_name](value)
                except (ValueError, TypeError) as e:
                    logger.warning(
                        f"Failed to convert environment variable {env_var}={value} "
                        f"to type {arg_types[arg_name]}: {str(e)}"
                    )
                    continue

            setattr(args, arg_name, value)

    return args


def create_application(args, backend=None):
    """Create an lfsgate application.

    Args:
        args: Parsed server arguments
        backend: Storage backend to serve from, built from `args` if not given

    Raises:
        MissingConfiguration: If no bucket is configured
    """
    if args.from_env:
        logger.info("Loading arguments from environment variables")
        _args = get_args_from_env()
        # copy the _args to args
        for key, value in _args.__dict__.items():
            setattr(args, key, value)

    if not args.bucket:
        raise MissingConfiguration(
            "No S3 bucket configured, set S3_BUCKET or pass --bucket."
        )

    if backend is None:
        backend = S3Backend(
            bucket=args.bucket,
            region_name=args.region_name,
            profile=args.profile,
            endpoint_url=args.endpoint_url,
            endpoint_url_public=args.endpoint_url_public,
            access_key_id=args.access_key_id,
            secret_access_key=args.secret_access_key,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # A failing probe aborts startup before any request is accepted
        if not args.skip_startup_check:
            await backend.verify_access()
        logger.info(
            f"Git LFS server ready at port {args.port} (bucket: {args.bucket})"
        )
        yield
        logger.info("Shutting down Git LFS server...")

    application = FastAPI(
        title="lfsgate",
        lifespan=lifespan,
        description="Git LFS batch API serving presigned S3 URLs",
        version=__version__,
    )
    application.state.backend = backend
    application.state.url_expires_in = args.url_expires_in

    def get_lfs_handler(request, organization, repository):
        state = request.app.state
        return GitLFSHandler(
            state.backend.get_signer(state.url_expires_in), organization, repository
        )

    def get_backend(request):
        return request.app.state.backend

    prefix = norm_prefix(args.base_path)
    application.include_router(create_admin_router(get_backend), prefix=prefix)
    application.include_router(create_lfs_router(get_lfs_handler), prefix=prefix)

    if args.host in ("127.0.0.1", "localhost"):
        logger.info(
            "***Note: If you want to enable access from another host, "
            "please start with `--host=0.0.0.0`.***"
        )
    return application
