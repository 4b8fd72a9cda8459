"""
installer.py — Install executor (pure stdlib)

Realizes a Formula on the local machine:

  1. check declared dependencies      (FormulaDependencyError)
  2. fetch + verify the archive       (FormulaChecksumError / FormulaDownloadError)
  3. extract into a staging directory
  4. configure -> build -> install    (FormulaBuildError on first non-zero exit)

Each step is a blocking subprocess. There are no retries; the only
cleanup on failure is removing the partially populated keg directory.
"""

import logging
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass

from .fetch import extract_archive, fetch_archive
from .formula import (
    FormulaBuildError,
    FormulaDependencyError,
    FormulaError,
    parse_version,
)

logger = logging.getLogger(__name__)


def std_cmake_args(prefix):
    """Standard CMake arguments for installing into prefix."""
    return [
        f"-DCMAKE_INSTALL_PREFIX={os.fspath(prefix)}",
        "-DCMAKE_INSTALL_LIBDIR=lib",
        "-DCMAKE_BUILD_TYPE=Release",
        "-DCMAKE_FIND_FRAMEWORK=LAST",
        "-DCMAKE_VERBOSE_MAKEFILE=ON",
        "-Wno-dev",
        "-DBUILD_TESTING=OFF",
    ]


# ---------------------------------------------------------------------------
# Cellar
# ---------------------------------------------------------------------------

class Cellar:
    """Install root. Each installed release is a keg at <root>/<name>/<version>."""

    def __init__(self, root):
        self.root = os.path.abspath(os.path.expanduser(os.fspath(root)))

    def __repr__(self):
        return f"Cellar({self.root!r})"

    def keg_path(self, name, version):
        return os.path.join(self.root, name, version)

    def installed_versions(self, name):
        pkg_dir = os.path.join(self.root, name)
        if not os.path.isdir(pkg_dir):
            return []
        return sorted(v for v in os.listdir(pkg_dir)
                      if os.path.isdir(os.path.join(pkg_dir, v)))

    def installed_version(self, name):
        """Return the newest installed version of name, or None."""
        versions = self.installed_versions(name)
        if not versions:
            return None
        try:
            return max(versions, key=parse_version)
        except ValueError:
            return versions[-1]

    def is_installed(self, name):
        return bool(self.installed_versions(name))

    def list_packages(self):
        """List installed kegs as [{'name', 'version', 'path'}] sorted by name."""
        if not os.path.isdir(self.root):
            return []
        packages = []
        for name in sorted(os.listdir(self.root)):
            if name.startswith("."):
                continue
            version = self.installed_version(name)
            if version:
                packages.append({
                    "name": name,
                    "version": version,
                    "path": self.keg_path(name, version),
                })
        return packages

    def uninstall(self, name):
        """Remove every installed version of name. Returns True if removed."""
        pkg_dir = os.path.join(self.root, name)
        if not os.path.isdir(pkg_dir):
            return False
        shutil.rmtree(pkg_dir)
        logger.info("Uninstalled %s", name)
        return True


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

# pkg-config module names that differ from the dependency name
PKG_CONFIG_MODULES = {
    "freetype": "freetype2",
    "nlohmann-json": "nlohmann_json",
}


def pkg_config_exists(name):
    """Return True if pkg-config knows a library module for name."""
    pkg_config = shutil.which("pkg-config")
    if pkg_config is None:
        return False
    module = PKG_CONFIG_MODULES.get(name, name)
    try:
        proc = subprocess.run([pkg_config, "--exists", module], check=False,
                              stdout=subprocess.DEVNULL,
                              stderr=subprocess.DEVNULL)
    except OSError as e:
        logger.debug("pkg-config failed for %s: %s", module, e)
        return False
    return proc.returncode == 0


def default_dependency_check(cellar):
    """Return a predicate for dependency availability.

    A dependency is available if it is installed in cellar, is an
    executable on PATH, or is a library module known to pkg-config.
    """
    def is_available(name):
        if cellar.is_installed(name) or shutil.which(name) is not None:
            return True
        return pkg_config_exists(name)
    return is_available


def find_missing_dependencies(formula, is_available):
    """Return the sorted declared dependencies that are not available."""
    return sorted(d for d in formula.dependencies if not is_available(d))


def resolve_install_order(tap, name, cellar):
    """Determine dependency-first install order for a formula.

    Only formulas present in the tap are considered; other declared
    dependencies are left to whoever provides them. Formulas already
    installed in the cellar are skipped.

    Returns:
        List of formula names, dependencies first.
    """
    result = []
    visited = set()

    def _resolve(current):
        if current in visited:
            return
        visited.add(current)
        if current not in tap:
            return
        formula = tap.get(current)
        for dep in sorted(formula.dependencies):
            _resolve(dep)
        if not cellar.is_installed(current):
            result.append(current)

    _resolve(name)
    return result


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InstallResult:
    name: str
    version: str
    prefix: str
    archive: str
    steps: tuple


def run_steps(formula, source_dir, build_dir, prefix, runner=subprocess.run,
              env=None):
    """Run the formula's install steps in order.

    Output from the build tool is not captured; it reaches the terminal
    unchanged.

    Returns:
        Tuple of the step names that ran.

    Raises:
        FormulaBuildError: On the first step that exits non-zero.
    """
    completed = []
    for step_name, argv in formula.render_steps(source_dir, build_dir, prefix):
        logger.info("==> %s: %s", step_name, " ".join(argv))
        try:
            proc = runner(argv, cwd=os.fspath(source_dir), env=env, check=False)
        except OSError as e:
            logger.error("%s step could not start: %s", step_name, e)
            raise FormulaBuildError(step_name, 127, argv) from e
        if proc.returncode != 0:
            logger.error("%s step exited with %d", step_name, proc.returncode)
            raise FormulaBuildError(step_name, proc.returncode, argv)
        completed.append(step_name)
    return tuple(completed)


def install_formula(formula, cellar, cache_dir, is_available=None,
                    runner=subprocess.run, env=None, keep_tmp=False,
                    **fetch_kwargs):
    """Install formula into cellar.

    Args:
        formula: Formula to install.
        cellar: Cellar instance (the install root).
        cache_dir: Download cache directory.
        is_available: Optional callable(name) -> bool for dependency checks.
                      Defaults to default_dependency_check(cellar).
        runner: subprocess.run-compatible callable for the install steps.
        env: Environment for the install steps (None = inherit).
        keep_tmp: Keep the staging directory after the install.
        **fetch_kwargs: Passed to fetch_archive (timeout, ssl_noverify, ...).

    Returns:
        InstallResult.

    Raises:
        FormulaDependencyError, FormulaChecksumError, FormulaDownloadError,
        FormulaBuildError, FormulaError.
    """
    if is_available is None:
        is_available = default_dependency_check(cellar)

    prefix = cellar.keg_path(formula.name, formula.version)
    if os.path.exists(prefix):
        raise FormulaError(
            f"{formula.name} {formula.version} is already installed at {prefix}")

    missing = find_missing_dependencies(formula, is_available)
    if missing:
        raise FormulaDependencyError(
            f"{formula.name} has missing dependencies: {', '.join(missing)}",
            missing)

    archive = fetch_archive(formula, cache_dir, **fetch_kwargs)

    staging = tempfile.mkdtemp(prefix=f"{formula.name}-")
    logger.debug("Staging in %s", staging)
    try:
        source_dir = extract_archive(archive, os.path.join(staging, "src"))
        build_dir = os.path.join(source_dir, "build")
        os.makedirs(prefix)
        installed = False
        try:
            steps = run_steps(formula, source_dir, build_dir, prefix,
                              runner=runner, env=env)
            installed = True
        finally:
            # a partial keg never survives an unfinished install
            if not installed:
                shutil.rmtree(prefix, ignore_errors=True)
                _prune_empty(os.path.dirname(prefix))
    finally:
        if keep_tmp:
            logger.info("Kept staging directory %s", staging)
        else:
            shutil.rmtree(staging, ignore_errors=True)

    logger.info("Installed %s %s to %s", formula.name, formula.version, prefix)
    return InstallResult(formula.name, formula.version, prefix, archive, steps)


def _prune_empty(path):
    try:
        os.rmdir(path)
    except OSError:
        pass
