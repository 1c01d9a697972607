"""Test server configuration and startup."""

import os

import httpx
import pytest

from lfsgate.exceptions import AuthenticationFailure, MissingConfiguration
from lfsgate.server import (
    create_application,
    get_args_from_env,
    get_argparser,
    norm_prefix,
)

from . import TEST_BUCKET


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("S3_BUCKET", "AWS_REGION", "AWS_PROFILE", "PORT"):
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("LFSGATE_") and name != "LFSGATE_LOGLEVEL":
            monkeypatch.delenv(name, raising=False)


class TestConfiguration:
    def test_defaults(self):
        args = get_argparser().parse_args([])
        assert args.bucket is None
        assert args.region_name == "eu-west-1"
        assert args.profile is None
        assert args.port == 3000
        assert args.url_expires_in == 3600

    def test_conventional_variables_seed_defaults(self, monkeypatch):
        monkeypatch.setenv("S3_BUCKET", "my-bucket")
        monkeypatch.setenv("AWS_REGION", "us-east-2")
        monkeypatch.setenv("AWS_PROFILE", "dev")
        monkeypatch.setenv("PORT", "8080")
        args = get_argparser().parse_args([])
        assert args.bucket == "my-bucket"
        assert args.region_name == "us-east-2"
        assert args.profile == "dev"
        assert args.port == 8080

    def test_args_from_env(self, monkeypatch):
        monkeypatch.setenv("LFSGATE_BUCKET", "env-bucket")
        monkeypatch.setenv("LFSGATE_PORT", "9000")
        monkeypatch.setenv("LFSGATE_URL_EXPIRES_IN", "600")
        monkeypatch.setenv("LFSGATE_SKIP_STARTUP_CHECK", "true")
        args = get_args_from_env()
        assert args.bucket == "env-bucket"
        assert args.port == 9000
        assert args.url_expires_in == 600
        assert args.skip_startup_check is True

    def test_args_from_env_bad_value_keeps_default(self, monkeypatch):
        monkeypatch.setenv("LFSGATE_PORT", "not-a-port")
        assert get_args_from_env().port == 3000

    def test_create_application_from_env(self, monkeypatch):
        monkeypatch.setenv("LFSGATE_BUCKET", "env-bucket")
        monkeypatch.setenv("LFSGATE_ENDPOINT_URL", "http://minio:9000")
        monkeypatch.setenv("LFSGATE_PROFILE", "dev")
        app = create_application(get_argparser().parse_args(["--from-env"]))
        backend = app.state.backend
        assert backend.bucket == "env-bucket"
        assert backend.endpoint_url == "http://minio:9000"
        assert backend.endpoint_url_public == "http://minio:9000"
        assert backend._session.profile == "dev"

    def test_missing_bucket(self):
        with pytest.raises(MissingConfiguration):
            create_application(get_argparser().parse_args(["--bucket", ""]))

    @pytest.mark.parametrize(
        "base_path, prefix", [("/", ""), ("", ""), ("/lfs/", "/lfs"), ("lfs", "/lfs")]
    )
    def test_norm_prefix(self, base_path, prefix):
        assert norm_prefix(base_path) == prefix


class TestStartup:
    @pytest.mark.asyncio
    async def test_probe_failure_aborts_startup(self, backend, fake_s3):
        fake_s3.unreachable = True
        app = create_application(
            get_argparser().parse_args(["--bucket", TEST_BUCKET]), backend=backend
        )
        with pytest.raises(AuthenticationFailure):
            async with app.router.lifespan_context(app):
                pass

    @pytest.mark.asyncio
    async def test_probe_success(self, backend, fake_s3):
        app = create_application(
            get_argparser().parse_args(["--bucket", TEST_BUCKET]), backend=backend
        )
        async with app.router.lifespan_context(app):
            assert fake_s3.list_calls == [None]

    @pytest.mark.asyncio
    async def test_skip_startup_check(self, backend, fake_s3):
        fake_s3.unreachable = True
        app = create_application(
            get_argparser().parse_args(["--bucket", TEST_BUCKET, "--skip-startup-check"]),
            backend=backend,
        )
        async with app.router.lifespan_context(app):
            assert fake_s3.list_calls == []

    @pytest.mark.asyncio
    async def test_base_path(self, backend, fake_s3):
        app = create_application(
            get_argparser().parse_args(
                ["--bucket", TEST_BUCKET, "--skip-startup-check", "--base-path", "/lfs"]
            ),
            backend=backend,
        )
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/lfs/health")
            assert response.status_code == 200
            response = await client.post(
                "/lfs/org/repo/objects/batch",
                json={"operation": "download", "objects": [{"oid": "a1", "size": 1}]},
            )
            assert response.status_code == 200
            assert fake_s3.presign_calls[0][1]["Key"] == "org/repo/objects/a1"
