"""formula_engine — command line and web viewer for package formulas."""

import os

__version__ = "0.1.0"

HOME_DIR = os.path.join("~", ".formula-engine")
DEFAULT_TAP = "Formula"
DEFAULT_PREFIX = os.path.join(HOME_DIR, "Cellar")
DEFAULT_CACHE = os.path.join(HOME_DIR, "cache")


def env_paths():
    """Resolve (tap, prefix, cache) from FORMULA_* environment variables."""
    tap = os.environ.get("FORMULA_TAP") or DEFAULT_TAP
    prefix = os.environ.get("FORMULA_PREFIX") or DEFAULT_PREFIX
    cache = os.environ.get("FORMULA_CACHE") or DEFAULT_CACHE
    return tuple(os.path.abspath(os.path.expanduser(p))
                 for p in (tap, prefix, cache))
