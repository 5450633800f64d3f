"""Release lookup and binary download.

The release index is a GitHub "latest release" endpoint; the binary is
the asset whose name matches ``asset_name``.  Downloads are streamed to a
temporary sibling of the destination and only renamed into place once
complete, so a failed transfer never leaves a half-written binary behind.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, BinaryIO

import httpx

from .errors import NotFoundError, TransferError
from .models import DownloadProgress, ReleaseInfo

log = logging.getLogger(__name__)

USER_AGENT = "node-keeper"
CHUNK_SIZE = 64 * 1024
MIN_PROGRESS_INTERVAL = 0.1  # seconds between coalesced progress events


def _flush_to_disk(out: BinaryIO) -> None:
    out.flush()
    os.fsync(out.fileno())


class Downloader:
    def __init__(
        self,
        release_url: str,
        asset_name: str,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        progress_interval: float = MIN_PROGRESS_INTERVAL,
    ) -> None:
        self.release_url = release_url
        self.asset_name = asset_name
        self._timeout = timeout
        self._client = client
        self._progress_interval = progress_interval

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            yield client

    # ------------------------------------------------------------------
    # Release index
    # ------------------------------------------------------------------

    async def fetch_latest_release(self) -> ReleaseInfo:
        headers = {"Accept": "application/vnd.github+json", "User-Agent": USER_AGENT}
        try:
            async with self._session() as client:
                resp = await client.get(self.release_url, headers=headers)
                if resp.status_code == 404:
                    raise NotFoundError("No published release found", code="NoReleaseFound")
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as exc:
            raise TransferError(
                f"Failed to fetch release info: {exc}", code="NetworkError"
            ) from exc
        except ValueError as exc:
            raise NotFoundError(
                f"Failed to parse release info: {exc}", code="NoReleaseFound"
            ) from exc

        return self._parse_release(data)

    def _parse_release(self, data: Any) -> ReleaseInfo:
        if not isinstance(data, dict):
            raise NotFoundError("Release info has an unexpected shape", code="NoReleaseFound")
        version = str(data.get("tag_name") or "")
        for asset in data.get("assets") or []:
            if isinstance(asset, dict) and asset.get("name") == self.asset_name:
                url = asset.get("browser_download_url")
                if not url:
                    break
                return ReleaseInfo(version=version, url=url, size=int(asset.get("size") or 0))
        raise NotFoundError(
            f"{self.asset_name} not found in release assets", code="NoReleaseFound"
        )

    # ------------------------------------------------------------------
    # Transfer
    # ------------------------------------------------------------------

    async def download(
        self,
        url: str,
        destination: str | Path,
        expected_size: int = 0,
    ) -> AsyncIterator[DownloadProgress]:
        """Stream ``url`` to ``destination``, yielding coalesced progress.

        Progress is emitted at most once per ``progress_interval`` plus a
        final event once all bytes are in.  Returns normally on success;
        raises TransferError on any failure, after removing the partial
        file.
        """
        dest = Path(destination)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".part", dir=dest.parent)
        except OSError as exc:
            raise TransferError(f"Failed to prepare {dest}: {exc}", code="IOError") from exc

        tmp_path = Path(tmp_name)
        committed = False
        try:
            with os.fdopen(fd, "wb") as out:
                async with self._session() as client:
                    async with client.stream("GET", url) as resp:
                        resp.raise_for_status()
                        total = expected_size or int(resp.headers.get("Content-Length") or 0)
                        received = 0
                        last_emit = float("-inf")
                        async for chunk in resp.aiter_bytes(CHUNK_SIZE):
                            await asyncio.to_thread(out.write, chunk)
                            received += len(chunk)
                            now = time.monotonic()
                            if now - last_emit >= self._progress_interval:
                                last_emit = now
                                yield DownloadProgress(received, total)

                if total and received < total:
                    raise TransferError(
                        f"Download ended after {received} of {total} bytes",
                        code="IncompleteTransfer",
                    )
                await asyncio.to_thread(_flush_to_disk, out)

            os.replace(tmp_path, dest)
            committed = True
            if os.name == "posix":
                dest.chmod(0o755)
            log.info("Downloaded %s (%d bytes)", dest, received)
            yield DownloadProgress(received, total)
        except httpx.HTTPError as exc:
            raise TransferError(f"Failed to download executable: {exc}", code="NetworkError") from exc
        except OSError as exc:
            raise TransferError(f"Failed to save executable: {exc}", code="IOError") from exc
        finally:
            if not committed:
                tmp_path.unlink(missing_ok=True)
