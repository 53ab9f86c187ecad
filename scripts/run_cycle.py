"""
Run one fetch cycle for each configured source (or the ones named)

    python scripts/run_cycle.py            # every enabled source
    python scripts/run_cycle.py nvd misp   # selected sources
"""

import argparse
import asyncio
import json
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import async_session_maker
from core.exceptions import CycleInProgressError
from core.logging import build_log_queue, setup_logging
from ingestion.loaders.mongo_loader import MongoMirror
from ingestion.runner import FetchCycleController
from ingestion.sources import build_sources
from models.base import CycleState

logger = logging.getLogger(__name__)


async def run_cycles(source_ids) -> int:
    """Run the cycles; returns the process exit code"""
    log_queue = build_log_queue()
    setup_logging(log_queue)

    sources = build_sources()
    selected = source_ids or list(sources)

    unknown = [source_id for source_id in selected if source_id not in sources]
    if unknown:
        logger.error(f"Unknown sources: {', '.join(unknown)} (known: {', '.join(sources) or 'none'})")
        return 2

    if not selected:
        logger.warning("No sources configured. Nothing to fetch.")
        return 0

    mirror = MongoMirror.from_settings()
    failed = 0

    try:
        for source_id in selected:
            async with async_session_maker() as session:
                try:
                    result = await FetchCycleController(session, sources[source_id], mirror=mirror).run()
                except CycleInProgressError as e:
                    logger.warning(e.message)
                    continue

            print(json.dumps(result.to_summary().model_dump(mode="json", by_alias=True)))
            if result.state is CycleState.FAILED:
                failed += 1
    finally:
        if log_queue is not None:
            report = await log_queue.flush()
            logger.info(f"Shipped {report.sent_entries} log entries ({report.dropped_entries} dropped)")

    if failed:
        logger.error(f"{failed} of {len(selected)} fetch cycles failed")
        return 1
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run one fetch cycle per source")
    parser.add_argument("sources", nargs="*", help="Source ids (default: all enabled sources)")
    args = parser.parse_args(argv)
    return asyncio.run(run_cycles(args.sources))


if __name__ == "__main__":
    sys.exit(main())
