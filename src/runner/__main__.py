from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from src.config import get_settings
from src.db.connection import create_engine_from_settings, create_sessionmaker
from src.models.normalization import NormalizationProgress
from src.ops.events import configure_ops_event_logging
from src.pipeline.summarize import summary_file_name, to_json
from src.runner.main import (
    AREA_TYPES,
    build_services,
    check_cache_available,
    load_readings,
    run_pipeline,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Normalize and classify XRF readings for one job.")
    parser.add_argument("--readings", type=Path, required=True, help="JSON file of mapped readings")
    parser.add_argument("--job-number", required=True)
    parser.add_argument("--area-type", choices=AREA_TYPES, default="Units")
    parser.add_argument("--source-file", default=None, help="Name of the original inspection export")
    parser.add_argument("--output", type=Path, default=None, help="Write summary JSON here")
    parser.add_argument(
        "--share-client",
        action="store_true",
        help="Use one rate-limited AI client for both component and substrate names",
    )
    return parser.parse_args(argv)


def _log_progress(progress: NormalizationProgress) -> None:
    logger.info("[%s] %s", progress.stage.value, progress.message)


async def _main(args: argparse.Namespace) -> int:
    settings = get_settings()
    events = configure_ops_event_logging(settings.ops_event_buffer_size)
    engine = create_engine_from_settings(settings)
    session_factory = create_sessionmaker(engine)
    try:
        await check_cache_available(session_factory)
        services = build_services(
            settings=settings,
            session_factory=session_factory,
            share_grouping_client=args.share_client,
        )
        result = await run_pipeline(
            services=services,
            readings=load_readings(args.readings),
            job_number=args.job_number,
            area_type=args.area_type,
            source_file_name=args.source_file or args.readings.name,
            on_progress=_log_progress,
        )
    finally:
        await engine.dispose()

    digest = events.digest(result.run_id)
    if digest["warnings"] or digest["errors"]:
        logger.warning(
            "Run %s finished with %d warnings and %d errors: %s",
            result.run_id,
            digest["warnings"],
            digest["errors"],
            ", ".join(f"{name}={count}" for name, count in sorted(digest["event_types"].items())),
        )

    payload = to_json(result.summary)
    if args.output is None:
        print(payload)
    else:
        target = args.output
        if target.is_dir():
            target = target / summary_file_name(args.job_number, args.area_type)
        target.write_text(payload, encoding="utf-8")
        logger.info("Wrote summary to %s", target)
    return 0


def main(argv: list[str] | None = None) -> int:
    return asyncio.run(_main(_parse_args(argv)))


sys.exit(main())
