#!/usr/bin/env python3
"""
Generate index.json for a tap.

Reads every formula in the tap directory, validates it, and writes an
index with the current revision of each formula. Invalid formulas are
reported and left out.

Usage:
  python scripts/generate_tap_index.py              # writes Formula/index.json
  python scripts/generate_tap_index.py --dry-run    # preview without writing
  python scripts/generate_tap_index.py --output site/index.json
"""

import argparse
import json
import os
import sys

from formula_engine_core import FormulaError, Tap, validate_formula

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(SCRIPT_DIR)
DEFAULT_TAP = os.path.join(PROJECT_ROOT, 'Formula')


def generate_index(tap):
    """Build the index dict, skipping formulas that fail validation.

    Returns:
        (index, skipped) where skipped is a list of (name, reasons).
    """
    index = tap.build_index()
    skipped = []
    for name in tap.names():
        try:
            errors, _ = validate_formula(tap.get(name))
        except FormulaError as e:
            errors = [str(e)]
        if errors:
            skipped.append((name, errors))
            index['formulas'].pop(name, None)
    return index, skipped


def main():
    parser = argparse.ArgumentParser(description='Generate a tap index.json')
    parser.add_argument('--tap', default=DEFAULT_TAP,
                        help='Formula directory (default: Formula/)')
    parser.add_argument('--output', default=None,
                        help='Output path (default: <tap>/index.json)')
    parser.add_argument('--dry-run', action='store_true',
                        help='Print the index instead of writing it')
    args = parser.parse_args()

    tap = Tap(args.tap)
    try:
        index, skipped = generate_index(tap)
    except FormulaError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)

    for name, errors in skipped:
        print(f"  SKIP {name}: {'; '.join(errors)}", file=sys.stderr)

    if args.dry_run:
        print(json.dumps(index, indent=2, ensure_ascii=False))
        return

    output = args.output or os.path.join(tap.path, 'index.json')
    with open(output, 'w', encoding='utf-8') as f:
        json.dump(index, f, indent=2, ensure_ascii=False)
        f.write('\n')
    print(f"Wrote {output}: {len(index['formulas'])} formula(s)")


if __name__ == '__main__':
    main()
