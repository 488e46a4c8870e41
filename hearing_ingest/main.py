"""Command-line entry point for one scheduled ingestion run.

Usage:
    hearing-ingest --region=MI --source=senate [--days=7]

SIGTERM/SIGINT cancel the running job; any yt-dlp child is killed by its
guard and the store engine is disposed before the process exits.
"""

import argparse
import asyncio
import logging
import signal
import sys

from hearing_ingest.config import Settings, load_settings
from hearing_ingest.observability.logger import setup_logging
from hearing_ingest.orchestrator import build_context, run_scheduled_job
from hearing_ingest.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="hearing-ingest",
        description="Discover, store and transcribe recent hearing recordings.",
    )
    parser.add_argument(
        "--region", "--state", dest="region", required=True, help="Region code, e.g. MI"
    )
    parser.add_argument(
        "--source", required=True, help="Source branch, e.g. house or senate"
    )
    parser.add_argument(
        "--days", type=int, default=7, help="Discovery look-back window (default 7)"
    )
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace, settings: Settings) -> None:
    """Run the job as a cancellable task with signal handlers installed."""
    context = build_context(settings)
    loop = asyncio.get_running_loop()
    task = asyncio.create_task(
        run_scheduled_job(context, args.region, args.source, args.days)
    )

    def _shutdown(sig: signal.Signals) -> None:
        logger.warning("Received %s, cancelling run", sig.name)
        task.cancel()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _shutdown, sig)
    try:
        await task
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        await context.aclose()


def main(argv: list[str] | None = None) -> None:
    """Parse arguments, run one job and exit 0 on success, 1 on failure."""
    args = parse_args(argv)
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        setup_logging()
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)

    setup_logging(settings.log_level)
    logger.info(
        "Starting job %s/%s (%d days look-back)",
        args.region,
        args.source,
        args.days,
        extra={"region": args.region, "source": args.source},
    )
    try:
        asyncio.run(_run(args, settings))
    except asyncio.CancelledError:
        logger.critical(
            "Job %s/%s cancelled by signal",
            args.region,
            args.source,
            extra={"region": args.region, "source": args.source},
        )
        sys.exit(1)
    except Exception as exc:
        logger.critical(
            "Fatal job error [%s-%s]: %s",
            args.region,
            args.source,
            exc,
            exc_info=True,
            extra={"region": args.region, "source": args.source},
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
