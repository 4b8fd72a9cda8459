#!/usr/bin/env python3
"""
Formula Validator / Linter — CLI wrapper.

Validation logic lives in formula_engine_core.validator.

Usage:
  python scripts/validate_formula.py Formula/qvm-ffmpeg.json
  python scripts/validate_formula.py Formula/qvm-ffmpeg.json --online
  # exit code 0: no errors (warnings only), exit code 1: errors found
"""

import argparse
import sys

from formula_engine_core import validate_formula_file


def main():
    parser = argparse.ArgumentParser(description="Validate formula files")
    parser.add_argument("paths", nargs="+", help="Formula .json files")
    parser.add_argument("--online", action="store_true",
                        help="Check URL reachability and executables on PATH")
    args = parser.parse_args()

    total_errors = 0
    total_warnings = 0
    for path in args.paths:
        print(path)
        errors, warnings = validate_formula_file(
            path, check_url=args.online, check_executables=args.online)
        for w in warnings:
            print(f"  WARNING: {w}")
        for e in errors:
            print(f"  ERROR: {e}")
        total_errors += len(errors)
        total_warnings += len(warnings)

    if total_errors:
        print(f"\n{total_errors} error(s), {total_warnings} warning(s)")
        sys.exit(1)
    else:
        print(f"\nOK — {total_warnings} warning(s), 0 errors")
        sys.exit(0)


if __name__ == '__main__':
    main()
