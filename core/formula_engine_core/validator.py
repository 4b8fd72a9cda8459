"""
validator.py — Formula validator / linter (pure stdlib)

Checks a Formula record before it is used. Returns (errors, warnings),
two lists of "<field>: <reason>" strings. A formula is accepted when
errors is empty.

Network and environment checks (URL reachability, executables on PATH)
are opt-in so that offline validation stays side-effect free.
"""

import logging
import os
import re
import shutil
import string
import urllib.error
import urllib.parse
import urllib.request

from .fetch import USER_AGENT, _create_ssl_context, file_digest
from .formula import (
    STD_CMAKE_ARGS,
    STEP_NAMES,
    TEMPLATE_FIELDS,
    Formula,
    FormulaError,
    compare_versions,
    parse_version,
    version_from_url,
)

logger = logging.getLogger(__name__)

NAME_RE = re.compile(r'^[a-z0-9][a-z0-9+_.@\-]*$')

HEX_RE = re.compile(r'^[0-9a-f]+$')

# hex digest lengths by algorithm
DIGEST_LENGTHS = {
    "sha256": 64,
    "sha384": 96,
    "sha512": 128,
}


def _check_url(field_name, url, errors, warnings):
    parsed = urllib.parse.urlparse(url or "")
    if parsed.scheme not in ("http", "https", "file"):
        errors.append(f"{field_name}: must be an http, https or file URL "
                      f"(got {url!r})")
        return False
    if parsed.scheme == "file":
        if not parsed.path:
            errors.append(f"{field_name}: file URL has no path")
            return False
        return True
    if not parsed.netloc:
        errors.append(f"{field_name}: URL has no host")
        return False
    if parsed.scheme == "http":
        warnings.append(f"{field_name}: uses plain http")
    return True


def check_url_reachable(url, timeout=10):
    """HEAD the URL. Returns None if reachable, else an error string."""
    req = urllib.request.Request(url, method="HEAD",
                                 headers={"User-Agent": USER_AGENT})
    try:
        with urllib.request.urlopen(req, timeout=timeout,
                                    context=_create_ssl_context()) as resp:
            logger.debug("HEAD %s -> %s", url, getattr(resp, "status", "?"))
        return None
    except urllib.error.HTTPError as e:
        return f"HTTP {e.code}"
    except (urllib.error.URLError, OSError) as e:
        return f"unreachable ({e})"


def _program_available(program):
    if os.path.isabs(program):
        return os.path.isfile(program) and os.access(program, os.X_OK)
    return shutil.which(program) is not None


def _placeholders(arg):
    try:
        return [f for _, f, _, _ in string.Formatter().parse(arg) if f is not None]
    except ValueError:
        return None


def _validate_steps(formula, errors, check_executables):
    steps = formula.install_steps
    names = tuple(s.name for s in steps)
    if names != STEP_NAMES:
        errors.append(
            f"install_steps: must be exactly {', '.join(STEP_NAMES)} in order "
            f"(got {', '.join(names) or 'none'})")
    for step in steps:
        if not step.argv:
            errors.append(f"install_steps.{step.name}: empty command")
            continue
        for arg in step.argv:
            if arg == STD_CMAKE_ARGS:
                continue
            fields = _placeholders(arg)
            if fields is None:
                errors.append(
                    f"install_steps.{step.name}: malformed template {arg!r}")
                continue
            unknown = [f for f in fields if f not in TEMPLATE_FIELDS]
            if unknown:
                errors.append(
                    f"install_steps.{step.name}: unknown placeholder "
                    f"{{{unknown[0]}}}")
        if check_executables and not _program_available(step.argv[0]):
            errors.append(
                f"install_steps.{step.name}: executable not found: "
                f"{step.argv[0]}")


def validate_formula(formula, check_url=False, check_executables=False,
                     timeout=10):
    """Validate a Formula.

    Args:
        formula: Formula instance.
        check_url: Also HEAD source_url to confirm it is reachable.
        check_executables: Also confirm every step's program is on PATH.
        timeout: Network timeout for check_url.

    Returns:
        (errors, warnings) — lists of strings.
    """
    errors = []
    warnings = []

    # --- identity -------------------------------------------------------
    if not formula.name:
        errors.append("name: must not be empty")
    elif not NAME_RE.match(formula.name):
        errors.append(f"name: invalid identifier {formula.name!r}")

    if not (formula.description or "").strip():
        warnings.append("description: empty")

    _check_url("homepage", formula.homepage, errors, warnings)

    # --- source ----------------------------------------------------------
    url_ok = _check_url("source_url", formula.source_url, errors, warnings)
    if url_ok and check_url:
        problem = check_url_reachable(formula.source_url, timeout=timeout)
        if problem:
            errors.append(f"source_url: {problem}")

    algorithm = formula.checksum_algorithm
    if algorithm not in DIGEST_LENGTHS:
        errors.append(f"checksum_algorithm: unsupported {algorithm!r}")
    else:
        expected_len = DIGEST_LENGTHS[algorithm]
        if len(formula.checksum) != expected_len:
            errors.append(
                f"checksum: {algorithm} digest must be {expected_len} hex "
                f"characters (got {len(formula.checksum)})")
        elif not HEX_RE.match(formula.checksum):
            errors.append("checksum: must be lowercase hexadecimal")

    # --- version ---------------------------------------------------------
    if not formula.version:
        errors.append("version: not set and not detectable from source_url")
    else:
        try:
            parse_version(formula.version)
        except ValueError:
            errors.append(f"version: unparseable {formula.version!r}")
        else:
            detected = version_from_url(formula.source_url)
            if detected and detected != formula.version:
                warnings.append(
                    f"version: {formula.version} differs from "
                    f"{detected} in source_url")

    # --- dependencies ----------------------------------------------------
    for field_name in ("build_dependencies", "runtime_dependencies"):
        for dep in sorted(getattr(formula, field_name)):
            if not dep or dep != dep.strip():
                errors.append(f"{field_name}: invalid identifier {dep!r}")
            elif dep == formula.name:
                errors.append(f"{field_name}: formula depends on itself")
    for dep in sorted(formula.build_dependencies & formula.runtime_dependencies):
        warnings.append(f"build_dependencies: {dep} is also a runtime dependency")

    # --- install steps ---------------------------------------------------
    _validate_steps(formula, errors, check_executables)

    if errors:
        logger.debug("Formula %s: %d error(s)", formula.name, len(errors))
    return errors, warnings


def validate_formula_file(path, **options):
    """Parse and validate a formula file. Returns (errors, warnings)."""
    try:
        formula = Formula.from_file(path)
    except FormulaError as e:
        return [f"file: {e}"], []
    return validate_formula(formula, **options)


def check_supersedes(old, new):
    """Check that new can replace old as the next revision.

    Each release gets its own URL/checksum pair; a recorded checksum is
    never reused or edited in place.

    Returns:
        List of error strings (empty = OK).
    """
    errors = []
    if old.name != new.name:
        errors.append(f"name: {new.name!r} does not match {old.name!r}")
    if old.source_url == new.source_url:
        errors.append("source_url: unchanged from the previous revision")
    if old.checksum == new.checksum:
        errors.append("checksum: unchanged from the previous revision")
    try:
        if compare_versions(new.version, old.version) <= 0:
            errors.append(
                f"version: {new.version} is not newer than {old.version}")
    except ValueError as e:
        errors.append(f"version: {e}")
    return errors


def verify_artifact(formula, path):
    """Return True if the file at path matches the formula's checksum."""
    try:
        return file_digest(path, formula.checksum_algorithm) == formula.checksum
    except (FormulaError, OSError):
        return False

