"""Shared fixtures that do not need a database."""

from pathlib import Path

import pytest
from dotenv import load_dotenv

from podcore.services.storage_client import StorageClient
from tests.fakes import RecordingDeployTrigger

load_dotenv()


@pytest.fixture
def deploy() -> RecordingDeployTrigger:
    return RecordingDeployTrigger()


@pytest.fixture
def storage(tmp_path: Path) -> StorageClient:
    """Local-filesystem artifact storage under the test's tmp dir."""
    return StorageClient("test-bucket", use_local=True, local_root=str(tmp_path / "storage"))


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Ensure HTTPX uses asyncio backend during tests."""
    return "asyncio"
