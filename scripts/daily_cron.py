#!/usr/bin/env python3
"""Daily cron script: resolves a day's answer and generates its articles.

For deployments that run the web app with SCHEDULER_ENABLED=false and drive
generation from an external cron instead.

Usage:
    python scripts/daily_cron.py                  # today
    python scripts/daily_cron.py --date 2024-03-01
    python scripts/daily_cron.py --word CRANE     # pin the word instead of resolving
    python scripts/daily_cron.py --force          # regenerate even if articles exist

Crontab example:
    1 0 * * * /path/to/venv/bin/python /path/to/scripts/daily_cron.py

Articles are written to $STORAGE_PATH/articles.json (default ./data/articles).
"""

import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path

# Add backend to sys.path so the script also runs from a plain checkout
_BACKEND_DIR = Path(__file__).resolve().parent.parent / "backend"
sys.path.insert(0, str(_BACKEND_DIR))

from wordhint.generator import generate_articles  # noqa: E402
from wordhint.logging_config import setup_logging  # noqa: E402
from wordhint.models import AnswerRecord  # noqa: E402
from wordhint.services import build_services  # noqa: E402
from wordhint.words import sequence_number  # noqa: E402

logger = logging.getLogger("wordhint.cron")


async def fetch_and_generate(
    target_date: date | None = None,
    word: str | None = None,
    force: bool = False,
) -> int:
    services = build_services()
    store, resolver = services.store, services.resolver
    store.initialize()

    day = target_date or resolver.today()
    if word:
        record = AnswerRecord(
            word=word.strip().upper(),
            sequence_number=sequence_number(day),
            date=day,
            source="Manual",
            is_authoritative=False,
        )
    else:
        record = await resolver.resolve_for_date(day, force=force)

    if store.has_key(record.word) and not force:
        logger.info(
            "[cron] Articles for %s already exist. Use --force to regenerate.", record.word
        )
        return 0

    logger.info("[cron] Generating articles for %s (%s, %s).", record.word, day, record.source)
    stored = store.upsert_many(record.word, generate_articles(record.word, record))
    logger.info("[cron] Stored %d articles for %s.", len(stored), record.word)
    return 0 if record.is_authoritative or word else 2


def main() -> None:
    parser = argparse.ArgumentParser(description="Resolve a day's answer and generate articles.")
    parser.add_argument(
        "--date",
        help="Target date in YYYY-MM-DD format (default: today)",
        default=None,
    )
    parser.add_argument("--word", help="Use this word instead of resolving it.", default=None)
    parser.add_argument(
        "--force",
        action="store_true",
        help="Bypass the answer cache and regenerate existing articles.",
    )
    args = parser.parse_args()

    setup_logging()
    target = date.fromisoformat(args.date) if args.date else None
    # Exit status 2 flags that the offline fallback word was used
    sys.exit(asyncio.run(fetch_and_generate(target, word=args.word, force=args.force)))


if __name__ == "__main__":
    main()
