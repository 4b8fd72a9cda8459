"""
tap.py — a directory of formula files

A tap holds one current revision per formula name, stored as
<name>.json. A new release replaces the previous revision; the
replacement must carry its own URL, checksum and a newer version.
"""

import logging
import os
from datetime import datetime, timezone

from .formula import (
    Formula,
    FormulaError,
    FormulaValidationError,
    compare_versions,
)
from .validator import check_supersedes, validate_formula

logger = logging.getLogger(__name__)

TAP_INDEX_VERSION = "1.0"

FORMULA_SUFFIX = ".json"


class Tap:
    """Formula files in a directory (a Formula/ subdirectory wins if present)."""

    def __init__(self, path):
        path = os.path.abspath(os.path.expanduser(os.fspath(path)))
        nested = os.path.join(path, "Formula")
        self.path = nested if os.path.isdir(nested) else path

    def __repr__(self):
        return f"Tap({self.path!r})"

    def __contains__(self, name):
        return os.path.isfile(self.formula_path(name))

    def formula_path(self, name):
        return os.path.join(self.path, f"{name}{FORMULA_SUFFIX}")

    def names(self):
        if not os.path.isdir(self.path):
            return []
        return sorted(f[:-len(FORMULA_SUFFIX)] for f in os.listdir(self.path)
                      if f.endswith(FORMULA_SUFFIX) and f != "index.json")

    def get(self, name):
        """Load the current revision of name.

        Raises:
            FormulaError: If the tap has no such formula.
        """
        if name not in self:
            raise FormulaError(f"No formula named '{name}' in {self.path}")
        formula = Formula.from_file(self.formula_path(name))
        if formula.name != name:
            raise FormulaError(
                f"{self.formula_path(name)} declares name '{formula.name}'")
        return formula

    def formulas(self):
        """Load every formula in the tap; unreadable files are skipped."""
        result = []
        for name in self.names():
            try:
                result.append(self.get(name))
            except FormulaError as e:
                logger.warning("Skipping formula %s: %s", name, e)
        return result

    def update(self, formula):
        """Write formula as the current revision.

        Raises:
            FormulaValidationError: If the formula is invalid or does not
                properly supersede the existing revision.
        """
        errors, _ = validate_formula(formula)
        if formula.name in self:
            errors += check_supersedes(self.get(formula.name), formula)
        if errors:
            raise FormulaValidationError(
                f"Cannot update {formula.name}: {'; '.join(errors)}", errors)
        os.makedirs(self.path, exist_ok=True)
        formula.dump(self.formula_path(formula.name))
        logger.info("Wrote %s %s to %s", formula.name, formula.version, self.path)
        return self.formula_path(formula.name)

    def build_index(self):
        """Return the tap index: every formula with its current version."""
        formulas = {}
        for formula in self.formulas():
            formulas[formula.name] = formula.to_dict()
        return {
            "tap_version": TAP_INDEX_VERSION,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "formulas": formulas,
        }

    def compare_with_cellar(self, cellar):
        """Compare tap formulas with installed kegs.

        Returns:
            dict with keys available / outdated / up_to_date. Each item is
            a dict with name, tap_version and (if installed) local_version.
        """
        local_map = {p["name"]: p["version"] for p in cellar.list_packages()}
        available = []
        outdated = []
        up_to_date = []

        for formula in self.formulas():
            entry = {"name": formula.name, "tap_version": formula.version}
            if formula.name not in local_map:
                available.append(entry)
                continue
            entry["local_version"] = local_map[formula.name]
            try:
                newer = compare_versions(formula.version,
                                         entry["local_version"]) > 0
            except ValueError:
                continue
            (outdated if newer else up_to_date).append(entry)

        return {
            "available": available,
            "outdated": outdated,
            "up_to_date": up_to_date,
        }
