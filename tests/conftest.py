from pathlib import Path
from typing import List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from stash.main import app
from stash.services.stash_manager import StashManager
from stash.services.sweeper import WalkSweep

BOUNDARY = "stash-test-boundary"


@pytest.fixture
def storage_root(tmp_path) -> Path:
    root = tmp_path / "stash_cache"
    root.mkdir()
    return root


@pytest.fixture
def manager(storage_root) -> StashManager:
    return StashManager(
        storage_root,
        max_write_bytes=1024 * 1024,
        interval_minutes=60,
        max_age_minutes=60,
        sweep=WalkSweep(),
    )


@pytest.fixture
def client(manager) -> TestClient:
    # Without a `with` block the lifespan (and its sweep loop) never starts
    app.state.manager = manager
    return TestClient(app)


def multipart_body(parts: List[Tuple[str, bytes, Optional[str]]], boundary: str = BOUNDARY) -> bytes:
    """Build a multipart/form-data body from (name, value, filename) tuples."""
    body = b""
    for name, value, filename in parts:
        disposition = f'form-data; name="{name}"'
        if filename is not None:
            disposition += f'; filename="{filename}"'
        body += f"--{boundary}\r\nContent-Disposition: {disposition}\r\n".encode()
        if filename is not None:
            body += b"Content-Type: application/octet-stream\r\n"
        body += b"\r\n" + value + b"\r\n"
    body += f"--{boundary}--\r\n".encode()
    return body


def multipart_content_type(boundary: str = BOUNDARY) -> str:
    return f"multipart/form-data; boundary={boundary}"


async def stream(data: bytes, chunk_size: int = 7):
    """Yield data in small chunks, like a request body arriving over the wire."""
    for i in range(0, len(data), chunk_size):
        yield data[i:i + chunk_size]
    yield b""
