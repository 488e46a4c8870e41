"""Pre-run readiness probes.

Critical dependencies (database and schema, S3 bucket, yt-dlp binary) raise
DependencyError and stop the run before a JobRun is created. The
transcription provider is non-critical: a failed probe becomes a warning
and items simply fail their transcription stage later.
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy import Engine

from hearing_ingest.storage import db
from hearing_ingest.storage.blob_client import BlobClient
from hearing_ingest.transcription.interface import TranscriptionProvider
from hearing_ingest.utils.errors import DependencyError, IngestError

logger = logging.getLogger(__name__)

YT_DLP_VERSION_TIMEOUT = 30.0


async def check_yt_dlp(binary: str = "yt-dlp") -> str:
    """Return the installed yt-dlp version.

    Raises:
        DependencyError: If the binary is missing, hangs or exits non-zero.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            binary,
            "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise DependencyError(
            f"yt-dlp binary '{binary}' could not be started: {exc}",
            dependency="yt-dlp",
        ) from exc

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(), timeout=YT_DLP_VERSION_TIMEOUT
        )
    except asyncio.TimeoutError as exc:
        process.kill()
        await process.wait()
        raise DependencyError(
            f"'{binary} --version' timed out", dependency="yt-dlp"
        ) from exc

    if process.returncode != 0:
        raise DependencyError(
            f"'{binary} --version' exited with code {process.returncode}: "
            f"{stderr.decode('utf-8', 'replace').strip()}",
            dependency="yt-dlp",
        )
    return stdout.decode("utf-8", "replace").strip()


async def check_readiness(
    engine: Engine,
    blob_client: BlobClient,
    transcription_provider: TranscriptionProvider | None,
    yt_dlp_binary: str = "yt-dlp",
) -> list[str]:
    """Probe every dependency the run needs.

    Returns:
        Warnings from non-critical probes (empty when all is well).

    Raises:
        DependencyError: On the first critical dependency that fails.
    """
    try:
        db.ping(engine)
        db.check_schema(engine)
    except IngestError as exc:
        raise DependencyError(str(exc), dependency="database") from exc

    try:
        await asyncio.to_thread(blob_client.check_access)
    except IngestError as exc:
        raise DependencyError(str(exc), dependency="s3") from exc

    version = await check_yt_dlp(yt_dlp_binary)
    logger.info("Dependencies ready (yt-dlp %s)", version)

    warnings: list[str] = []
    if transcription_provider is not None:
        try:
            await transcription_provider.check_health()
        except Exception as exc:
            logger.warning("Transcription provider unhealthy", exc_info=True)
            warnings.append(f"Transcription provider health check failed: {exc}")
    return warnings
