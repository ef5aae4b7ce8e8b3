#!/usr/bin/env python3
"""
Pre-populate the OSRS Agent wiki cache.

Usage
-----
Seed a few pages:
    python scripts/seed_wiki_cache.py Zulrah Vorkath "Abyssal whip"

Seed every title listed in a file (one per line, # for comments):
    python scripts/seed_wiki_cache.py --file titles.txt

Refetch pages even if a fresh copy is already cached:
    python scripts/seed_wiki_cache.py --force --file titles.txt

Background
----------
The chat backend fills the cache lazily: a page is stored the first time the model
calls getWikiPage/searchWiki for it, and refetched once it is older than the TTL.
Cached pages are also the corpus the context retriever searches before each answer,
so seeding common bosses and quests gives retrieval something to find on a fresh
install.
"""

import argparse
import logging
import os
import sys
import time

# Make sure project root is on the path so we can import backend/
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backend.config import configure_logging
from backend.main import get_settings, get_wiki_cache, get_wiki_client, get_wiki_repository

logger = logging.getLogger("seed_wiki_cache")

# Pause between wiki requests so the seeding run stays polite.
DELAY = 1.0


def read_titles(path: str) -> list[str]:
    with open(path, "r", encoding="utf-8") as fh:
        return [line.strip() for line in fh if line.strip() and not line.lstrip().startswith("#")]


def seed(titles: list[str], force: bool = False) -> tuple[int, int, int]:
    """Returns (stored, skipped, failed) counts."""
    cache = get_wiki_cache()
    wiki = get_wiki_client()
    stored = skipped = failed = 0

    for title in titles:
        if not force and cache.get(title) is not None:
            print(f"  {title} … cached, skipping")
            skipped += 1
            continue

        print(f"  {title} … ", end="", flush=True)
        page = wiki.get_page(title)
        if page is None or not page.content:
            print("not found")
            failed += 1
        elif cache.put(page.title, page.content, page.url, page.image_url):
            print(f"stored ({len(page.content):,} chars)")
            stored += 1
        else:
            print("fetch ok, cache write failed")
            failed += 1
        time.sleep(DELAY)

    return stored, skipped, failed


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Pre-populate the OSRS Agent wiki cache.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("titles", nargs="*", help="Wiki page titles to cache.")
    parser.add_argument("--file", help="File with one page title per line.")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Refetch pages even when a fresh copy is already cached.",
    )
    args = parser.parse_args()

    titles = list(args.titles)
    if args.file:
        titles.extend(read_titles(args.file))
    if not titles:
        parser.error("give at least one title or --file")

    configure_logging(get_settings().log_level)
    print(f"Seeding {len(titles)} page(s) into {get_settings().chroma_dir} …")
    stored, skipped, failed = seed(titles, force=args.force)
    print(
        f"\nDone. stored={stored} skipped={skipped} failed={failed}. "
        f"Cache now holds {get_wiki_repository().count()} page(s)."
    )


if __name__ == "__main__":
    main()
