"""yt-dlp invocation: argument construction and the child-process guard."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from hearing_ingest.utils.errors import FetchProcessError
from hearing_ingest.utils.http import BROWSER_USER_AGENT

logger = logging.getLogger(__name__)

STDERR_TAIL_BYTES = 4096

COMMON_ARGS = [
    "--no-playlist",
    # Media goes to stdout so it can be streamed without a temp file
    "--output",
    "-",
    "--no-part",
    "--fixup",
    "never",
    "--no-cache-dir",
    "--user-agent",
    BROWSER_USER_AGENT,
    "--add-header",
    "DNT:1",
    "--add-header",
    "Sec-Fetch-Mode:cors",
    "--add-header",
    "Sec-Fetch-Site:cross-site",
    "--socket-timeout",
    "30",
    "--fragment-retries",
    "10",
    "--retry-sleep",
    "5",
    "--hls-prefer-native",
    # Older government servers negotiate legacy TLS and ship broken certs
    "--legacy-server-connect",
    "--no-check-certificate",
]


@dataclass(frozen=True)
class PlatformConfig:
    referer: str
    origin: str
    extra_args: tuple[str, ...] = ()


PLATFORM_CONFIGS: dict[str, PlatformConfig] = {
    "castus": PlatformConfig(
        referer="https://cloud.castus.tv/",
        origin="https://cloud.castus.tv",
    ),
    "michigan_house": PlatformConfig(
        referer="https://www.house.mi.gov/",
        origin="https://www.house.mi.gov",
    ),
}

SOURCE_PLATFORMS: dict[str, str] = {
    "senate": "castus",
    "house": "michigan_house",
}


def platform_for(source_branch: str) -> PlatformConfig | None:
    platform = SOURCE_PLATFORMS.get(source_branch)
    return PLATFORM_CONFIGS[platform] if platform else None


def platform_headers(source_branch: str) -> dict[str, str]:
    """Referer/Origin headers the source's media servers expect."""
    config = platform_for(source_branch)
    if config is None:
        return {}
    return {"Referer": config.referer, "Origin": config.origin}


def build_yt_dlp_args(source_branch: str, url: str) -> list[str]:
    """Build the yt-dlp argument list (without the binary) for one download.

    Args:
        source_branch: Branch the media belongs to; selects Referer/Origin.
        url: Page or direct media URL.

    Returns:
        Common flags, platform headers, then the URL.
    """
    args = list(COMMON_ARGS)
    config = platform_for(source_branch)
    if config is not None:
        args += [
            "--add-header",
            f"Referer:{config.referer}",
            "--add-header",
            f"Origin:{config.origin}",
            *config.extra_args,
        ]
    args.append(url)
    return args


class FetchProcess:
    """Async context manager owning one external fetch process.

    The child is killed on every exit path (error, early return and task
    cancellation) so an interrupted transfer never leaves an orphan writing
    into a closed pipe.

    Usage:
        async with FetchProcess(["yt-dlp", *args]) as fetch:
            chunk = await fetch.read(65536)
            exit_code = await fetch.wait()
    """

    def __init__(self, argv: Sequence[str]) -> None:
        if not argv:
            raise ValueError("argv must name a program")
        self.argv = list(argv)
        self.process: asyncio.subprocess.Process | None = None
        self._stderr = bytearray()
        self._stderr_task: asyncio.Task | None = None

    async def __aenter__(self) -> FetchProcess:
        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise FetchProcessError(
                f"Failed to start {self.argv[0]}: {exc}"
            ) from exc
        self._stderr_task = asyncio.create_task(self._drain_stderr())
        logger.debug("Started %s (pid %d)", self.argv[0], self.process.pid)
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.terminate()

    async def _drain_stderr(self) -> None:
        assert self.process is not None and self.process.stderr is not None
        while True:
            data = await self.process.stderr.read(4096)
            if not data:
                return
            self._stderr += data
            # Keep only the tail; yt-dlp prints progress lines continuously
            if len(self._stderr) > STDERR_TAIL_BYTES * 2:
                del self._stderr[:-STDERR_TAIL_BYTES]

    @property
    def stderr_tail(self) -> str:
        return bytes(self._stderr[-STDERR_TAIL_BYTES:]).decode("utf-8", "replace").strip()

    @property
    def returncode(self) -> int | None:
        return self.process.returncode if self.process else None

    async def read(self, size: int) -> bytes:
        """Read up to size bytes of stdout; b"" at end of stream."""
        assert self.process is not None and self.process.stdout is not None
        return await self.process.stdout.read(size)

    async def wait(self) -> int:
        """Wait for exit and for stderr to be fully collected."""
        assert self.process is not None
        code = await self.process.wait()
        if self._stderr_task is not None:
            await self._stderr_task
        return code

    def kill(self) -> None:
        if self.process is not None and self.process.returncode is None:
            try:
                self.process.kill()
            except ProcessLookupError:
                pass

    async def terminate(self) -> None:
        """Kill the child if still running and reap it."""
        if self.process is None:
            return
        if self.process.returncode is None:
            logger.warning(
                "Killing %s (pid %d)", self.argv[0], self.process.pid
            )
            self.kill()
            await self.process.wait()
        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass
