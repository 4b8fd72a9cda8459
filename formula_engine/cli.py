#!/usr/bin/env python3
"""
formula-engine command line

Usage:
  formula-engine info qvm-ffmpeg
  formula-engine validate qvm-ffmpeg --online
  formula-engine deps qvm-ffmpeg
  formula-engine fetch qvm-ffmpeg
  formula-engine install qvm-ffmpeg --prefix /opt/cellar
  formula-engine list
  formula-engine outdated

Paths default to FORMULA_TAP / FORMULA_PREFIX / FORMULA_CACHE.
Exit codes: 0 success, 1 failure, 2 usage error.
"""

import argparse
import logging
import os
import sys

from formula_engine_core import (
    Cellar,
    Formula,
    FormulaDependencyError,
    FormulaError,
    FormulaValidationError,
    Tap,
    default_dependency_check,
    fetch_archive,
    find_missing_dependencies,
    resolve_install_order,
    validate_formula,
)

from . import __version__, env_paths


def _load(tap, name_or_path):
    """Load a formula by tap name, or from a file path."""
    if name_or_path.endswith(".json") or os.sep in name_or_path:
        return Formula.from_file(name_or_path)
    return tap.get(name_or_path)


def _print_issues(errors, warnings):
    for w in warnings:
        print(f"  WARNING: {w}")
    for e in errors:
        print(f"  ERROR: {e}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_info(args, tap, cellar):
    formula = _load(tap, args.formula)
    print(f"{formula.name}: {formula.version}")
    print(formula.description)
    print(formula.homepage)
    print()
    print(f"From:     {formula.source_url}")
    print(f"Checksum: {formula.checksum_algorithm}:{formula.checksum}")
    if formula.build_dependencies:
        print(f"Build:    {', '.join(sorted(formula.build_dependencies))}")
    if formula.runtime_dependencies:
        print(f"Required: {', '.join(sorted(formula.runtime_dependencies))}")
    installed = cellar.installed_version(formula.name)
    print(f"Installed: {installed or 'no'}")
    return 0


def cmd_validate(args, tap, cellar):
    formula = _load(tap, args.formula)
    errors, warnings = validate_formula(
        formula, check_url=args.online, check_executables=args.online)
    _print_issues(errors, warnings)
    failed = bool(errors) or (args.strict and bool(warnings))
    if failed:
        print(f"\n{len(errors)} error(s), {len(warnings)} warning(s)")
        return 1
    print(f"\nOK: {formula.name} {formula.version}, {len(warnings)} warning(s)")
    return 0


def cmd_deps(args, tap, cellar):
    formula = _load(tap, args.formula)
    if args.order:
        for name in resolve_install_order(tap, formula.name, cellar):
            print(name)
        return 0
    for dep in sorted(formula.build_dependencies):
        print(f"{dep} (build)")
    for dep in sorted(formula.runtime_dependencies):
        print(dep)
    return 0


def cmd_fetch(args, tap, cellar):
    formula = _load(tap, args.formula)
    path = fetch_archive(formula, args.cache, ssl_noverify=args.insecure)
    print(f"Verified {formula.checksum_algorithm}: {path}")
    return 0


def cmd_install(args, tap, cellar):
    formula = _load(tap, args.formula)
    if formula.name in tap:
        order = resolve_install_order(tap, formula.name, cellar)
    else:
        order = [] if cellar.is_installed(formula.name) else [formula.name]
    if not order:
        print(f"{formula.name} {cellar.installed_version(formula.name)} "
              f"is already installed")
        return 0

    for name in order:
        target = formula if name == formula.name else tap.get(name)
        print(f"==> Installing {target.name} {target.version}")
        result = target.install(cellar, cache_dir=args.cache,
                                keep_tmp=args.keep_tmp,
                                ssl_noverify=args.insecure)
        print(f"==> {result.name} {result.version} installed to {result.prefix}")
    return 0


def cmd_list(args, tap, cellar):
    for pkg in cellar.list_packages():
        print(f"{pkg['name']} {pkg['version']}")
    return 0


def cmd_outdated(args, tap, cellar):
    report = tap.compare_with_cellar(cellar)
    for item in report["outdated"]:
        print(f"{item['name']} ({item['local_version']}) < {item['tap_version']}")
    return 0


def cmd_missing(args, tap, cellar):
    formula = _load(tap, args.formula)
    missing = find_missing_dependencies(
        formula, default_dependency_check(cellar))
    for name in missing:
        print(name)
    return 1 if missing else 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def build_parser():
    tap_dir, prefix, cache = env_paths()

    parser = argparse.ArgumentParser(
        prog="formula-engine",
        description="Validate, fetch and install package formulas")
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {__version__}")
    parser.add_argument("--tap", default=tap_dir,
                        help=f"Formula directory (default: {tap_dir})")
    parser.add_argument("--prefix", default=prefix,
                        help=f"Cellar root (default: {prefix})")
    parser.add_argument("--cache", default=cache,
                        help=f"Download cache (default: {cache})")
    parser.add_argument("--log-level",
                        default=os.environ.get("FORMULA_LOG_LEVEL", "info"),
                        choices=["debug", "info", "warning", "error"],
                        help="Log level (default: FORMULA_LOG_LEVEL or info)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("info", help="Show formula metadata")
    p.add_argument("formula")
    p.set_defaults(func=cmd_info)

    p = sub.add_parser("validate", help="Validate a formula")
    p.add_argument("formula", help="Formula name or path to a .json file")
    p.add_argument("--online", action="store_true",
                   help="Also check URL reachability and executables on PATH")
    p.add_argument("--strict", action="store_true",
                   help="Treat warnings as errors")
    p.set_defaults(func=cmd_validate)

    p = sub.add_parser("deps", help="List declared dependencies")
    p.add_argument("formula")
    p.add_argument("--order", action="store_true",
                   help="Show the dependency-first install order from the tap")
    p.set_defaults(func=cmd_deps)

    p = sub.add_parser(
        "missing", help="List dependencies not available",
        description="A dependency is available if it is installed in the "
                    "cellar, is an executable on PATH, or is a library "
                    "module known to pkg-config.")
    p.add_argument("formula")
    p.set_defaults(func=cmd_missing)

    for name, func, helptext in (("fetch", cmd_fetch, "Download and verify"),
                                 ("install", cmd_install, "Install a formula")):
        p = sub.add_parser(name, help=helptext)
        p.add_argument("formula")
        p.add_argument("--insecure", action="store_true",
                       help="Skip TLS verification (checksum still enforced)")
        if name == "install":
            p.add_argument("--keep-tmp", action="store_true",
                           help="Keep the staging directory")
        p.set_defaults(func=func)

    p = sub.add_parser("list", help="List installed kegs")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("outdated", help="List kegs older than the tap")
    p.set_defaults(func=cmd_outdated)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(levelname)s %(name)s: %(message)s")

    tap = Tap(args.tap)
    cellar = Cellar(args.prefix)
    try:
        return args.func(args, tap, cellar)
    except FormulaDependencyError as e:
        print(f"Error: {e}", file=sys.stderr)
        print(f"Install first: {' '.join(e.missing)}", file=sys.stderr)
        return 1
    except FormulaValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        for err in e.errors:
            print(f"  {err}", file=sys.stderr)
        return 1
    except FormulaError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
