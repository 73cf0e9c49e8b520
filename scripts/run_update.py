#!/usr/bin/env python3
"""Run one stocks refresh from the command line, outside the scheduler.

Usage:
    python scripts/run_update.py delta
    python scripts/run_update.py full
    python scripts/run_update.py manual AAPL MSFT NVDA
"""

import asyncio
import json
import logging
import os
import sys

# Ensure project root is on sys.path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("run_update")


async def main(argv: list[str]) -> int:
    from screener.db import close_db, init_db
    from screener.jobs.update_stocks import MODES, run_update
    from screener.services.enrichment import create_pipeline

    mode = argv[0] if argv else "delta"
    symbols = argv[1:]
    if mode not in MODES:
        print(f"Unknown mode {mode!r}; expected one of {', '.join(MODES)}")
        return 2
    if mode == "manual" and not symbols:
        print("manual mode needs at least one symbol")
        return 2

    await init_db()
    pipeline = create_pipeline()
    try:
        summary = await run_update(pipeline, mode=mode, symbols=symbols)
    finally:
        await pipeline.close()
        await close_db()

    print(json.dumps(summary, indent=2))
    return 0 if summary["success"] else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
