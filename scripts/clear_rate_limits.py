#!/usr/bin/env python3
"""
Clear rate limit keys from the shared counter store.

Usage:
    KV_REDIS_URL=redis://localhost:6379/0 python scripts/clear_rate_limits.py
    python scripts/clear_rate_limits.py --prefix ratelimit:expensive
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional, Sequence

sys.path.insert(0, str(Path(__file__).parent.parent))

from corpusguard.app.core.config import settings
from corpusguard.app.exceptions import CorpusGuardError
from corpusguard.app.services.rate_limit.store import SlidingWindowStore, create_store


async def clear_rate_limits(store: SlidingWindowStore, prefix: str) -> int:
    """Delete every key under ``prefix`` and return how many were removed."""
    return await store.clear(f"{prefix.rstrip(':')}:*")


async def _run(prefix: str) -> int:
    store = create_store(settings)
    try:
        return await clear_rate_limits(store, prefix)
    finally:
        await store.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Clear rate limit keys")
    parser.add_argument(
        "--prefix",
        default=settings.rate_limit_key_prefix,
        help="Key prefix to clear (default: %(default)s)",
    )
    args = parser.parse_args(argv)

    print("Clearing rate limit keys...")
    try:
        deleted = asyncio.run(_run(args.prefix))
    except CorpusGuardError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    if deleted:
        print(f"Cleared {deleted} rate limit keys")
    else:
        print("No rate limit keys to clear")
    return 0


if __name__ == "__main__":
    sys.exit(main())
