"""Set up the lfsgate package."""
import json
from pathlib import Path

from setuptools import find_packages, setup

DESCRIPTION = (
    "A Git LFS batch API server handing out presigned S3 URLs,"
    " so that large files go straight between Git clients and the bucket."
)

REQUIREMENTS = [
    "aiobotocore>=2.1.0",
    "fastapi>=0.100.0",
    "pydantic>=2.6.1",
    "typing-extensions>=3.7.4.3",  # required by pydantic
    "python-dotenv>=0.19.0",
    "uvicorn>=0.23.2",
]

ROOT_DIR = Path(__file__).parent.resolve()
README_FILE = ROOT_DIR / "README.md"
LONG_DESCRIPTION = README_FILE.read_text(encoding="utf-8")
VERSION_FILE = ROOT_DIR / "lfsgate" / "VERSION"
VERSION = json.loads(VERSION_FILE.read_text(encoding="utf-8"))["version"]


setup(
    name="lfsgate",
    version=VERSION,
    description=DESCRIPTION,
    long_description=LONG_DESCRIPTION,
    long_description_content_type="text/markdown",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    include_package_data=True,
    package_data={"lfsgate": ["VERSION"]},
    install_requires=REQUIREMENTS,
    extras_require={
        "test": [
            "httpx>=0.21.1",
            "pytest>=7.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    zip_safe=False,
    entry_points={"console_scripts": ["lfsgate = lfsgate.__main__:main"]},
)
