#!/usr/bin/env python3
"""
fetch_sources.py — Prefetch every release archive of a tap

Build-time script for offline or containerized installs: downloads the
archive of every formula in the tap into a cache directory and verifies
each against its recorded checksum.

Usage:
    python deploy/fetch_sources.py --dest /var/cache/formula-engine
"""

import argparse
import os
import sys

from formula_engine_core import FormulaError, Tap, fetch_archive

DEFAULT_TAP = os.path.join(os.path.dirname(__file__), '..', 'Formula')


def fetch_all_sources(tap, dest_dir, timeout=120):
    """Fetch and verify every archive in the tap.

    Returns:
        (fetched, failed): lists of (name, version, path) and (name, error).
    """
    os.makedirs(dest_dir, exist_ok=True)

    formulas = tap.formulas()
    if not formulas:
        print("WARNING: No formulas found in tap")
        return [], []

    print(f"Found {len(formulas)} formula(s) in {tap.path}")
    print()

    fetched = []
    failed = []
    for formula in formulas:
        print(f"  Fetching {formula.name} {formula.version}...")
        try:
            path = fetch_archive(formula, dest_dir, timeout=timeout)
        except FormulaError as e:
            print(f"    FAIL: {e}", file=sys.stderr)
            failed.append((formula.name, str(e)))
            continue
        size = os.path.getsize(path)
        fetched.append((formula.name, formula.version, path))
        print(f"    OK: {os.path.basename(path)} ({size:,} bytes)")

    return fetched, failed


def main():
    parser = argparse.ArgumentParser(
        description="Download and verify every release archive of a tap")
    parser.add_argument("--tap", default=DEFAULT_TAP,
                        help="Formula directory (default: Formula/)")
    parser.add_argument("--dest", required=True,
                        help="Cache directory for archives")
    parser.add_argument("--timeout", type=int, default=120,
                        help="Download timeout in seconds (default: 120)")
    args = parser.parse_args()

    print("=" * 60)
    print("Formula Source Fetcher")
    print("=" * 60)
    print(f"Destination: {args.dest}")
    print()

    try:
        fetched, failed = fetch_all_sources(
            Tap(args.tap), args.dest, timeout=args.timeout)
    except FormulaError as e:
        print(f"\nFATAL: {e}", file=sys.stderr)
        sys.exit(1)

    print()
    print("=" * 60)
    print(f"Summary: {len(fetched)} fetched, {len(failed)} failed")
    for name, version, path in fetched:
        print(f"  {name} {version} — {os.path.basename(path)}")
    print("=" * 60)

    if failed or not fetched:
        sys.exit(1)


if __name__ == "__main__":
    main()
