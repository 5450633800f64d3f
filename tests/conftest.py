"""Shared fixtures: a fake node binary and a mock release index."""

import asyncio
import json
import sys
import time
from collections.abc import AsyncIterator, Callable, Iterable
from pathlib import Path

import httpx
import pytest
import pytest_asyncio

from node_keeper.downloader import Downloader
from node_keeper.log_buffer import LogBuffer
from node_keeper.process_manager.runner import ProcessRunner
from node_keeper.process_manager.supervisor import LifecycleSupervisor

EXECUTABLE = "openhash"
RELEASE_URL = "https://releases.test/repos/node/releases/latest"
ASSET_URL = "https://releases.test/download/v1.2.3/openhash"

FAKE_NODE = """#!{python}
import os
import signal
import sys
import time

mode = os.environ.get("FAKE_NODE_MODE", "serve")
print("booting " + " ".join(sys.argv[1:]), flush=True)
print("stderr hello", file=sys.stderr, flush=True)
if mode == "exit":
    sys.exit(3)
if mode == "stubborn":
    signal.signal(signal.SIGTERM, signal.SIG_IGN)
print("ready", flush=True)
while True:
    time.sleep(0.05)
"""

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="fake node is a shebang script")


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll ``predicate`` until it holds, failing the test on timeout."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            pytest.fail("condition not met within timeout")
        await asyncio.sleep(0.02)


def release_payload(size: int, *, asset_name: str = EXECUTABLE) -> dict:
    return {
        "tag_name": "v1.2.3",
        "assets": [
            {"name": "checksums.txt", "browser_download_url": "https://releases.test/sums", "size": 10},
            {"name": asset_name, "browser_download_url": ASSET_URL, "size": size},
        ],
    }


def release_transport(
    chunks: Iterable[bytes],
    *,
    declared_size: int | None = None,
    fail_with: Exception | None = None,
    release_status: int = 200,
) -> httpx.MockTransport:
    """Mock release index serving ``chunks`` as the binary.

    ``declared_size`` is the size the index advertises (defaults to the
    real size); ``fail_with`` is raised after the last chunk is sent.
    """
    chunks = list(chunks)
    size = sum(len(c) for c in chunks) if declared_size is None else declared_size

    async def body() -> AsyncIterator[bytes]:
        for chunk in chunks:
            yield chunk
        if fail_with is not None:
            raise fail_with

    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == RELEASE_URL:
            if release_status != 200:
                return httpx.Response(release_status, json={"message": "Not Found"})
            return httpx.Response(200, content=json.dumps(release_payload(size)))
        if str(request.url) == ASSET_URL:
            return httpx.Response(200, content=body())
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def make_downloader(transport: httpx.MockTransport, progress_interval: float = 0.0) -> Downloader:
    return Downloader(
        RELEASE_URL,
        EXECUTABLE,
        client=httpx.AsyncClient(transport=transport),
        progress_interval=progress_interval,
    )


@pytest.fixture
def node_dir(tmp_path: Path) -> Path:
    """Data directory with a runnable fake node binary in it."""
    path = tmp_path / "data" / "node1"
    path.mkdir(parents=True)
    exe = path / EXECUTABLE
    exe.write_text(FAKE_NODE.format(python=sys.executable), encoding="utf-8")
    exe.chmod(0o755)
    return path


@pytest.fixture
def empty_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data" / "fresh"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def logs() -> LogBuffer:
    return LogBuffer()


@pytest.fixture
def runner(logs: LogBuffer) -> ProcessRunner:
    return ProcessRunner(logs, EXECUTABLE, stop_timeout=2.0)


@pytest_asyncio.fixture
async def supervisor(runner: ProcessRunner, logs: LogBuffer) -> AsyncIterator[LifecycleSupervisor]:
    payload = [b"\x7fELF" + b"\0" * 1020] * 64
    sv = LifecycleSupervisor(
        runner, make_downloader(release_transport(payload)), logs, poll_interval=0.05,
    )
    yield sv
    await sv.close()
