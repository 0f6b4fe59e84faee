#!/usr/bin/env python3
"""
Refresh EDGAR fundamentals for one or more tickers synchronously.
Usage: python scripts/refresh_fundamentals.py AAPL MSFT [--json-only]
"""

import argparse
import logging
import sys

from edgar_fundamentals.services.runtime import get_runtime


def main(argv=None, runtime=None) -> int:
    parser = argparse.ArgumentParser(description="Refresh EDGAR fundamentals for the given tickers.")
    parser.add_argument("tickers", nargs="+", help="Ticker symbols, e.g. AAPL MSFT")
    parser.add_argument("--json-only", action="store_true", help="Only rewrite snapshot files; skip the database")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    runtime = runtime or get_runtime()
    failures = 0
    for ticker in args.tickers:
        try:
            result = runtime.workflow.process_ticker(ticker, json_only=args.json_only)
        except Exception as e:
            failures += 1
            print(f"✗ {ticker.upper()}: {e}")
            continue
        filing = f"{result.filing.form} {result.filing.filed.isoformat()}" if result.filing else "no recent filing"
        print(f"✓ {result.ticker}: {len(result.periods)} periods, {result.stored} stored ({filing})")
        if result.snapshot_path:
            print(f"  snapshot: {result.snapshot_path}")

    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
