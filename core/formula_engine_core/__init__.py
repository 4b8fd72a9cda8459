"""formula_engine_core — pure-stdlib library for package formulas."""

__version__ = "0.1.0"

from .formula import (
    Formula, InstallStep, DEFAULT_INSTALL_STEPS,
    FormulaError, FormulaParseError, FormulaValidationError,
    FormulaChecksumError, FormulaDependencyError,
    FormulaDownloadError, FormulaSSLError, FormulaBuildError,
    parse_version, compare_versions, version_from_url,
)
from .validator import (
    validate_formula, validate_formula_file,
    check_supersedes, verify_artifact,
)
from .fetch import (
    file_digest, verify_checksum, download_archive, fetch_archive,
    extract_archive,
)
from .installer import (
    Cellar, InstallResult, std_cmake_args,
    find_missing_dependencies, default_dependency_check, pkg_config_exists,
    resolve_install_order, run_steps, install_formula,
)
from .tap import Tap
