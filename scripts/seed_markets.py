"""Load the monitored markets from a JSON file.

The file holds a list of objects with ``name``, ``city`` and
``instagram_username``.  Markets whose username already exists are skipped.

Run from the project root:
    python scripts/seed_markets.py markets.json
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from sqlalchemy import select

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def load_entries(path: Path) -> list[dict]:
    entries = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(entries, list):
        raise ValueError(f"{path} must contain a JSON array")
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValueError(f"Entry {entry!r} is not an object")
        for key in ("name", "city", "instagram_username"):
            if not entry.get(key) or not isinstance(entry[key], str):
                raise ValueError(f"Entry {entry!r} is missing '{key}'")
    return entries


async def seed(entries: list[dict], session) -> int:
    from mercado_radar.models import Market

    added = 0
    for entry in entries:
        username = entry["instagram_username"].lstrip("@").strip().lower()
        result = await session.execute(
            select(Market).where(Market.instagram_username == username)
        )
        if result.scalar_one_or_none():
            logger.info("Skipping @%s (already present)", username)
            continue
        session.add(
            Market(
                name=entry["name"].strip(),
                city=entry["city"].strip(),
                instagram_username=username,
            )
        )
        added += 1
    await session.commit()
    return added


async def main(argv=None) -> int:
    from mercado_radar.database import async_session, close_db, init_models

    parser = argparse.ArgumentParser(description="Seed monitored markets.")
    parser.add_argument("file", type=Path, help="JSON file with the markets")
    args = parser.parse_args(argv)

    try:
        entries = load_entries(args.file)
    except (OSError, ValueError) as exc:
        logger.error("Cannot read %s: %s", args.file, exc)
        return 1

    await init_models()
    try:
        async with async_session() as session:
            added = await seed(entries, session)
    finally:
        await close_db()

    logger.info("Added %d of %d markets.", added, len(entries))
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
