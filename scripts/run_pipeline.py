"""Run the promotion pipeline once from the command line.

Prints the run report as JSON and exits non-zero when the run failed.

Run from the project root:
    python scripts/run_pipeline.py
    python scripts/run_pipeline.py --date 2024-01-15 --no-notify
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Scrape, extract and store today's promotions.")
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Target publication date (YYYY-MM-DD); defaults to today",
    )
    parser.add_argument(
        "--no-notify",
        action="store_true",
        help="Skip the active-promotions e-mail report",
    )
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    from mercado_radar.database import close_db, init_models
    from mercado_radar.pipeline import run_pipeline

    args = parse_args(argv)
    await init_models()
    try:
        report = await run_pipeline(args.date, notify=False if args.no_notify else None)
    finally:
        await close_db()

    print(json.dumps(report.as_dict(), indent=2, ensure_ascii=False))
    if not report.success:
        logger.error("Run failed: %s", report.error)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
