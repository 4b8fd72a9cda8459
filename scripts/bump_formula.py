#!/usr/bin/env python3
"""
Formula release bump

Records a new release of an existing formula as the next revision:
computes the digest of the new release archive and writes the formula
with the new source_url / checksum / version. The previous revision's
checksum is never edited in place; the new revision must have its own
URL, its own checksum and a newer version.

Usage:
  python scripts/bump_formula.py qvm-ffmpeg --url https://.../qvm-ffmpeg-v0.1.0.tar.gz
  python scripts/bump_formula.py qvm-ffmpeg --url URL --archive local.tar.gz
  python scripts/bump_formula.py qvm-ffmpeg --url URL --dry-run
"""

import argparse
import dataclasses
import os
import sys
import tempfile

from formula_engine_core import (
    FormulaError,
    FormulaValidationError,
    Tap,
    check_supersedes,
    download_archive,
    file_digest,
    version_from_url,
)

DEFAULT_TAP = os.path.join(os.path.dirname(__file__), '..', 'Formula')


def digest_remote(url, algorithm, timeout=120, ssl_noverify=False):
    """Download url to a temp dir and return its hex digest.

    Honors FORMULA_SSL_CERT / FORMULA_SSL_VERIFY like every other download.
    """
    with tempfile.TemporaryDirectory() as tmp:
        path = download_archive(url, tmp, algorithm=algorithm,
                                timeout=timeout, ssl_noverify=ssl_noverify,
                                filename="archive")
        return file_digest(path, algorithm)


def bump(tap, name, url, archive=None, version=None, dry_run=False):
    """Build the next revision of name and write it to the tap.

    Returns:
        The new Formula.
    """
    current = tap.get(name)
    algorithm = current.checksum_algorithm
    if archive:
        checksum = file_digest(archive, algorithm)
    else:
        print(f"Downloading {url} ...")
        checksum = digest_remote(url, algorithm)

    new_version = version or version_from_url(url) or ""
    new = dataclasses.replace(current, source_url=url, checksum=checksum,
                              version=new_version)

    print(f"Formula:  {name}")
    print(f"Version:  {current.version} -> {new.version}")
    print(f"URL:      {new.source_url}")
    print(f"{algorithm.upper()}:  {checksum}")

    if dry_run:
        errors = check_supersedes(current, new)
        print()
        print("=== DRY RUN (no files will be written) ===")
        if errors:
            for e in errors:
                print(f"  ERROR: {e}")
            print("Actual run would fail.")
        else:
            print("New revision supersedes the current one — OK to proceed.")
        return new

    tap.update(new)
    print()
    print(f"Wrote {tap.formula_path(name)}")
    return new


def main():
    parser = argparse.ArgumentParser(
        description='Record a new release of a formula')
    parser.add_argument('name', help='Formula name')
    parser.add_argument('--url', required=True,
                        help='URL of the new release archive')
    parser.add_argument('--archive',
                        help='Local copy of the archive (skip download)')
    parser.add_argument('--version',
                        help='Explicit version (default: detect from URL)')
    parser.add_argument('--tap', default=DEFAULT_TAP,
                        help='Formula directory (default: Formula/)')
    parser.add_argument('--dry-run', action='store_true',
                        help='Preview without writing the formula')
    args = parser.parse_args()

    try:
        bump(Tap(args.tap), args.name, args.url, archive=args.archive,
             version=args.version, dry_run=args.dry_run)
    except FormulaValidationError as e:
        print("Error: new revision rejected:", file=sys.stderr)
        for err in e.errors:
            print(f"  {err}", file=sys.stderr)
        raise SystemExit(1)
    except (FormulaError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)


if __name__ == '__main__':
    main()
