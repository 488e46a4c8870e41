"""Streaming transfer from an external fetch process into S3.

MediaTransfer.transfer() pipes yt-dlp's stdout straight into a multipart
upload, holding at most one part in memory. Transfers are idempotent per
destination key: an object already at the key is returned as-is.

Flow:
    object exists? -> pre-flight probe -> spawn yt-dlp -> readiness gate
    -> pump parts (concurrently: wait for exit) -> validate -> complete
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from urllib.parse import urlparse

import httpx

from hearing_ingest.storage.blob_client import BlobClient, MultipartUpload
from hearing_ingest.transfer.fetcher import FetchProcess, build_yt_dlp_args, platform_headers
from hearing_ingest.utils.errors import FetchProcessError, TransferError
from hearing_ingest.utils.http import BROWSER_USER_AGENT, fetch_with_retry, is_success

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
DEFAULT_PART_SIZE = 5 * MIB
DEFAULT_MIN_BYTES = 5 * MIB
DEFAULT_READY_TIMEOUT = 120.0
READ_CHUNK_SIZE = 64 * 1024

# Servers that refuse HEAD get a one-byte ranged GET instead
HEAD_UNSUPPORTED = frozenset({405, 501})

CommandBuilder = Callable[[str, str], list[str]]


def _is_playlist(url: str) -> bool:
    return urlparse(url).path.lower().endswith(".m3u8")


def _preflight_status_ok(status_code: int) -> bool:
    return is_success(status_code) or status_code in HEAD_UNSUPPORTED


def _ranged_status_ok(status_code: int) -> bool:
    # 416 still proves the resource exists
    return is_success(status_code) or status_code == 416


class MediaTransfer:
    """Moves one media source into blob storage per call.

    Args:
        blob_client: Destination bucket client.
        http_client: Shared httpx.AsyncClient for pre-flight probes.
        yt_dlp_binary: Executable name or path.
        part_size: Multipart part size in bytes (S3 minimum is 5 MiB).
        min_bytes: Smallest acceptable download; anything less is treated
            as an error page.
        ready_timeout: Seconds to wait for the first byte of output.
        command_builder: Optional (url, source_branch) -> argv override.
    """

    def __init__(
        self,
        blob_client: BlobClient,
        http_client: httpx.AsyncClient,
        yt_dlp_binary: str = "yt-dlp",
        part_size: int = DEFAULT_PART_SIZE,
        min_bytes: int = DEFAULT_MIN_BYTES,
        ready_timeout: float = DEFAULT_READY_TIMEOUT,
        command_builder: CommandBuilder | None = None,
    ) -> None:
        self.blob_client = blob_client
        self.http_client = http_client
        self.yt_dlp_binary = yt_dlp_binary
        self.part_size = part_size
        self.min_bytes = min_bytes
        self.ready_timeout = ready_timeout
        self.command_builder = command_builder or self._yt_dlp_command

    def _yt_dlp_command(self, url: str, source_branch: str) -> list[str]:
        return [self.yt_dlp_binary, *build_yt_dlp_args(source_branch, url)]

    async def transfer(
        self, source_url: str, destination_key: str, source_branch: str
    ) -> str:
        """Stream source_url into the bucket at destination_key.

        Args:
            source_url: Page or direct media URL handed to yt-dlp.
            destination_key: Object key to write.
            source_branch: Selects platform Referer/Origin headers.

        Returns:
            Storage locator (public URL) of the stored object.

        Raises:
            TransferError: On any failure, chained to the underlying cause.
                Nothing is left at destination_key when this is raised.
        """
        if self.blob_client.object_exists(destination_key):
            logger.info("Object already stored at %s, skipping download", destination_key)
            return self.blob_client.locator_for(destination_key)

        try:
            await self._preflight(source_url, source_branch)
        except Exception as exc:
            raise TransferError(
                f"Pre-flight check failed for {source_url}: {exc}",
                key=destination_key,
            ) from exc

        argv = self.command_builder(source_url, source_branch)
        upload: MultipartUpload | None = None
        try:
            async with FetchProcess(argv) as fetch:
                first_chunk = await self._await_first_chunk(fetch)
                upload = await asyncio.to_thread(
                    self.blob_client.start_multipart_upload, destination_key
                )
                received = await self._stream(fetch, upload, first_chunk)
                if received < self.min_bytes:
                    raise FetchProcessError(
                        f"Stream finished but file too small "
                        f"({received / MIB:.2f} MB < {self.min_bytes / MIB:.2f} MB "
                        f"floor), likely an error page",
                        exit_code=fetch.returncode,
                        bytes_received=received,
                    )
                await asyncio.to_thread(upload.complete)
        except Exception as exc:
            await self._cleanup(destination_key, upload)
            raise TransferError(
                f"Transfer to {destination_key} failed: {exc}",
                key=destination_key,
            ) from exc
        except asyncio.CancelledError:
            await self._cleanup(destination_key, upload)
            raise

        logger.info(
            "Stored %.2f MB at %s", received / MIB, destination_key
        )
        return self.blob_client.locator_for(destination_key)

    async def _preflight(self, url: str, source_branch: str) -> None:
        """Fail fast on dead or forbidden sources before spawning yt-dlp."""
        headers = {"User-Agent": BROWSER_USER_AGENT, **platform_headers(source_branch)}
        if not _is_playlist(url):
            response = await fetch_with_retry(
                self.http_client,
                "HEAD",
                url,
                acceptable_status=_preflight_status_ok,
                headers=headers,
                follow_redirects=True,
            )
            if response.status_code not in HEAD_UNSUPPORTED:
                return
        await fetch_with_retry(
            self.http_client,
            "GET",
            url,
            acceptable_status=_ranged_status_ok,
            headers={**headers, "Range": "bytes=0-0"},
            follow_redirects=True,
        )

    async def _await_first_chunk(self, fetch: FetchProcess) -> bytes:
        """Readiness gate: first output bytes, or fail before any upload exists."""
        try:
            chunk = await asyncio.wait_for(
                fetch.read(READ_CHUNK_SIZE), timeout=self.ready_timeout
            )
        except asyncio.TimeoutError as exc:
            raise FetchProcessError(
                f"yt-dlp produced no output: timed out after {self.ready_timeout:g}s"
            ) from exc
        if not chunk:
            code = await fetch.wait()
            raise FetchProcessError(
                f"yt-dlp exited (code {code}) without producing data: {fetch.stderr_tail}",
                exit_code=code,
            )
        return chunk

    async def _stream(
        self, fetch: FetchProcess, upload: MultipartUpload, first_chunk: bytes
    ) -> int:
        """Pump stdout into parts while concurrently validating the exit code.

        Returns:
            Total bytes received.
        """
        buffer = bytearray(first_chunk)
        received = len(first_chunk)

        async def pump() -> None:
            nonlocal received
            while True:
                while len(buffer) >= self.part_size:
                    part = bytes(buffer[: self.part_size])
                    del buffer[: self.part_size]
                    await asyncio.to_thread(upload.upload_part, part)
                chunk = await fetch.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                received += len(chunk)
                buffer.extend(chunk)
            if buffer:
                await asyncio.to_thread(upload.upload_part, bytes(buffer))
                buffer.clear()

        async def wait_exit() -> None:
            code = await fetch.wait()
            if code != 0:
                raise FetchProcessError(
                    f"yt-dlp failed (exit code {code}): {fetch.stderr_tail}",
                    exit_code=code,
                    bytes_received=received,
                )

        tasks = [asyncio.create_task(pump()), asyncio.create_task(wait_exit())]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return received

    async def _cleanup(self, key: str, upload: MultipartUpload | None) -> None:
        """Abort the upload and remove anything written at key. Never raises."""
        if upload is not None:
            await asyncio.to_thread(upload.abort)
        try:
            await asyncio.to_thread(self.blob_client.delete_object, key)
        except Exception:
            logger.warning("Cleanup delete of %s failed", key, exc_info=True)
