#!/usr/bin/env python3
"""
Formula Engine Production Web Viewer

Production entry point for serving a tap via gunicorn/uvicorn.

Usage:
    # Direct run
    python -m formula_engine.serve_web

    # With gunicorn
    gunicorn 'formula_engine.serve_web:create_app()' -c deploy/gunicorn.conf.py

Environment variables:
    FORMULA_TAP       — Formula directory (default: ./Formula)
    FORMULA_PREFIX    — Cellar root shown under /api/installed
    FORMULA_PORT      — Server port (default: 8000)
    FORMULA_WORKERS   — Number of worker processes (default: 2)
    FORMULA_LOG_LEVEL — Log level (default: info)
"""

import os
import sys


def create_app():
    """Application factory for gunicorn.

    Reads FORMULA_TAP / FORMULA_PREFIX and returns the FastAPI app.
    """
    from formula_engine import env_paths
    from formula_engine.app import app, _set_paths_for_testing

    tap, prefix, _ = env_paths()
    if not os.path.isdir(tap):
        print(f"WARNING: tap directory not found: {tap}", file=sys.stderr)
    _set_paths_for_testing(tap, prefix)
    return app


def main():
    """CLI entry point — run directly with uvicorn (no gunicorn needed)."""
    import argparse

    parser = argparse.ArgumentParser(description='Formula Engine Web Viewer')
    parser.add_argument('--tap', type=str, default=None,
                        help='Formula directory (overrides FORMULA_TAP env)')
    parser.add_argument('--prefix', type=str, default=None,
                        help='Cellar root (overrides FORMULA_PREFIX env)')
    parser.add_argument('--port', type=int, default=None,
                        help='Server port (overrides FORMULA_PORT env, default: 8000)')
    parser.add_argument('--workers', type=int, default=None,
                        help='Number of workers (overrides FORMULA_WORKERS env, default: 2)')
    parser.add_argument('--log-level', type=str, default=None,
                        help='Log level (overrides FORMULA_LOG_LEVEL env, default: info)')
    args = parser.parse_args()

    # CLI args override env vars
    if args.tap:
        os.environ['FORMULA_TAP'] = os.path.abspath(args.tap)
    if args.prefix:
        os.environ['FORMULA_PREFIX'] = os.path.abspath(args.prefix)
    if args.port:
        os.environ['FORMULA_PORT'] = str(args.port)
    if args.workers:
        os.environ['FORMULA_WORKERS'] = str(args.workers)
    if args.log_level:
        os.environ['FORMULA_LOG_LEVEL'] = args.log_level

    port = int(os.environ.get('FORMULA_PORT', '8000'))
    workers = int(os.environ.get('FORMULA_WORKERS', '2'))
    log_level = os.environ.get('FORMULA_LOG_LEVEL', 'info')

    from formula_engine import env_paths
    tap, prefix, _ = env_paths()

    print("=" * 60)
    print("Formula Engine Web Viewer")
    print("=" * 60)
    print(f"Tap:     {tap}")
    print(f"Cellar:  {prefix}")
    print(f"Bind:    0.0.0.0:{port}")
    print(f"Workers: {workers}")
    print("=" * 60)
    print()

    import uvicorn
    uvicorn.run(
        'formula_engine.serve_web:create_app',
        host='0.0.0.0',
        port=port,
        workers=workers,
        log_level=log_level,
        factory=True,
    )


if __name__ == '__main__':
    main()
