"""Test the lfsgate module."""

TEST_BUCKET = "lfs-test-bucket"
FAKE_S3_URL = "https://fake-s3.local"
