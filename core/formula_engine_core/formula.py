"""
formula.py — Formula manifest record (pure stdlib)

A Formula is an immutable record describing one software release:
identity (name, description, homepage), the release archive
(source_url + checksum), declared build/runtime dependencies and a
fixed three-step install recipe (configure, build, install) that
delegates to CMake.

Formula files are JSON:

    {
      "name": "qvm-ffmpeg",
      "description": "...",
      "homepage": "https://...",
      "source_url": "https://.../qvm-ffmpeg-v0.0.0-test3-g.tar.gz",
      "checksum": "fd12...9c69",
      "build_dependencies": ["cmake", "pkg-config"],
      "runtime_dependencies": ["ffmpeg", ...]
    }

`install_steps`, `checksum_algorithm` and `version` are optional.
"""

import json
import logging
import os
import re
import urllib.parse
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_CHECKSUM_ALGORITHM = "sha256"

# Placeholder that expands to the full std_cmake_args list
STD_CMAKE_ARGS = "{std_cmake_args}"

STEP_NAMES = ("configure", "build", "install")

TEMPLATE_FIELDS = ("source_dir", "build_dir", "prefix", "name", "version")

_FIELDS = (
    "name", "description", "homepage", "source_url", "checksum",
    "checksum_algorithm", "version", "build_dependencies",
    "runtime_dependencies", "install_steps",
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class FormulaError(Exception):
    """Base exception for formula operations."""


class FormulaParseError(FormulaError):
    """Raised when a formula file cannot be read or has the wrong shape."""


class FormulaValidationError(FormulaError):
    """Raised when a formula fails validation.

    `errors` holds the individual "<field>: <reason>" messages.
    """

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.errors = list(errors or [])


class FormulaChecksumError(FormulaError):
    """Raised when an archive does not hash to the recorded checksum."""


class FormulaDependencyError(FormulaError):
    """Raised when declared dependencies are not available."""

    def __init__(self, message, missing=None):
        super().__init__(message)
        self.missing = list(missing or [])


class FormulaDownloadError(FormulaError):
    """Raised when the release archive cannot be downloaded."""


class FormulaSSLError(FormulaDownloadError):
    """Raised when an SSL certificate verification error occurs."""


class FormulaBuildError(FormulaError):
    """Raised when an install step exits non-zero."""

    def __init__(self, step, returncode, argv):
        super().__init__(
            f"{step} step failed with exit code {returncode}: "
            f"{' '.join(argv)}")
        self.step = step
        self.returncode = returncode
        self.argv = list(argv)


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------

_VERSION_RE = re.compile(r'^v?(\d+(?:\.\d+)*)(?:-([0-9A-Za-z.\-]+))?$')

# GitHub release download: /<owner>/<repo>/releases/download/<tag>/<file>
_RELEASE_TAG_RE = re.compile(r'/releases/download/([^/]+)/')

# Archive filename: <name>-<version>.<ext>
_ARCHIVE_RE = re.compile(
    r'-v?(\d+(?:\.\d+)+(?:-[0-9A-Za-z.\-]+?)?)'
    r'\.(?:tar\.gz|tgz|tar\.bz2|tbz2?|tar\.xz|txz|tar|zip)$')


def parse_version(text):
    """Parse a version string into a sortable tuple.

    The numeric core is padded to three components. A prerelease suffix
    sorts before the plain release of the same core:
    0.0.0-test3-g < 0.0.0 < 0.1.0.

    Raises:
        ValueError: If the text is not a dotted numeric version.
    """
    m = _VERSION_RE.match(text or "")
    if not m:
        raise ValueError(f"Invalid version: {text!r}")
    core = [int(p) for p in m.group(1).split(".")]
    while len(core) < 3:
        core.append(0)
    pre = m.group(2)
    if pre is None:
        return (tuple(core), 1, ())
    parts = tuple((0, int(p), "") if p.isdigit() else (1, 0, p)
                  for p in re.split(r'[.\-]', pre))
    return (tuple(core), 0, parts)


def compare_versions(a, b):
    """Return -1, 0 or 1 as version a is older than, equal to or newer than b."""
    pa, pb = parse_version(a), parse_version(b)
    return (pa > pb) - (pa < pb)


def version_from_url(url):
    """Detect the release version embedded in an archive URL.

    Looks at a GitHub release tag first, then at the archive filename.
    A leading 'v' is dropped. Returns None if nothing is detectable.
    """
    path = urllib.parse.urlparse(url or "").path
    m = _RELEASE_TAG_RE.search(path)
    if m:
        tag = urllib.parse.unquote(m.group(1))
        candidate = tag[1:] if tag[:1] in ("v", "V") else tag
        try:
            parse_version(candidate)
            return candidate
        except ValueError:
            pass
    filename = path.rsplit("/", 1)[-1]
    m = _ARCHIVE_RE.search(filename)
    if m:
        return m.group(1)
    return None


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InstallStep:
    """One step of the install recipe: a name and an argv template."""

    name: str
    argv: tuple

    def __post_init__(self):
        object.__setattr__(self, "argv", tuple(self.argv))

    def render(self, context, cmake_args):
        """Substitute placeholders and expand {std_cmake_args}."""
        out = []
        for arg in self.argv:
            if arg == STD_CMAKE_ARGS:
                out.extend(cmake_args)
            else:
                out.append(arg.format(**context))
        return out


DEFAULT_INSTALL_STEPS = (
    InstallStep("configure", ("cmake", "-S", "{source_dir}",
                              "-B", "{build_dir}", STD_CMAKE_ARGS)),
    InstallStep("build", ("cmake", "--build", "{build_dir}")),
    InstallStep("install", ("cmake", "--install", "{build_dir}")),
)


@dataclass(frozen=True)
class Formula:
    """A package manifest for a single software release."""

    name: str
    description: str
    homepage: str
    source_url: str
    checksum: str
    checksum_algorithm: str = DEFAULT_CHECKSUM_ALGORITHM
    build_dependencies: frozenset = field(default_factory=frozenset)
    runtime_dependencies: frozenset = field(default_factory=frozenset)
    install_steps: tuple = DEFAULT_INSTALL_STEPS
    version: str = ""

    def __post_init__(self):
        # Normalize so that records built in code match parsed ones
        object.__setattr__(self, "build_dependencies",
                           frozenset(self.build_dependencies))
        object.__setattr__(self, "runtime_dependencies",
                           frozenset(self.runtime_dependencies))
        object.__setattr__(self, "install_steps", tuple(
            s if isinstance(s, InstallStep)
            else InstallStep(s["name"], tuple(s["argv"]))
            for s in self.install_steps))
        object.__setattr__(self, "checksum", (self.checksum or "").lower())
        if not self.version:
            object.__setattr__(self, "version",
                               version_from_url(self.source_url) or "")

    # -- serialization -----------------------------------------------------

    @classmethod
    def from_dict(cls, data):
        """Build a Formula from a parsed JSON object.

        Raises:
            FormulaParseError: On unknown keys, missing required keys
                or wrongly typed values.
        """
        if not isinstance(data, dict):
            raise FormulaParseError("Formula must be a JSON object")
        unknown = sorted(set(data) - set(_FIELDS))
        if unknown:
            raise FormulaParseError(f"Unknown formula keys: {', '.join(unknown)}")
        required = ("name", "description", "homepage", "source_url", "checksum")
        missing = [k for k in required if k not in data]
        if missing:
            raise FormulaParseError(
                f"Missing formula keys: {', '.join(missing)}")
        for key in required + ("checksum_algorithm", "version"):
            if key in data and not isinstance(data[key], str):
                raise FormulaParseError(f"'{key}' must be a string")
        for key in ("build_dependencies", "runtime_dependencies"):
            value = data.get(key, [])
            if not isinstance(value, list) or not all(
                    isinstance(v, str) for v in value):
                raise FormulaParseError(f"'{key}' must be a list of strings")

        kwargs = dict(data)
        if "install_steps" in data:
            kwargs["install_steps"] = _parse_steps(data["install_steps"])
        return cls(**kwargs)

    @classmethod
    def from_file(cls, path):
        """Load a Formula from a JSON file."""
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise FormulaParseError(f"Cannot read formula {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise FormulaParseError(f"Invalid formula JSON in {path}: {e}") from e
        logger.debug("Loaded formula from %s", path)
        return cls.from_dict(data)

    def to_dict(self):
        """Return the JSON-serializable form (dependency lists sorted)."""
        return {
            "name": self.name,
            "description": self.description,
            "homepage": self.homepage,
            "source_url": self.source_url,
            "checksum": self.checksum,
            "checksum_algorithm": self.checksum_algorithm,
            "version": self.version,
            "build_dependencies": sorted(self.build_dependencies),
            "runtime_dependencies": sorted(self.runtime_dependencies),
            "install_steps": [
                {"name": s.name, "argv": list(s.argv)}
                for s in self.install_steps
            ],
        }

    def dump(self, path):
        """Write the formula as JSON to path."""
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
            f.write("\n")

    # -- derived -------------------------------------------------------------

    @property
    def dependencies(self):
        return self.build_dependencies | self.runtime_dependencies

    @property
    def archive_filename(self):
        path = urllib.parse.urlparse(self.source_url).path
        return urllib.parse.unquote(path.rsplit("/", 1)[-1]) or self.name

    def render_steps(self, source_dir, build_dir, prefix):
        """Return [(step_name, argv), ...] with templates filled in."""
        from .installer import std_cmake_args

        context = {
            "source_dir": os.fspath(source_dir),
            "build_dir": os.fspath(build_dir),
            "prefix": os.fspath(prefix),
            "name": self.name,
            "version": self.version,
        }
        cmake_args = std_cmake_args(prefix)
        return [(s.name, s.render(context, cmake_args))
                for s in self.install_steps]

    # -- installable capability ---------------------------------------------

    def validate(self, **options):
        """Validate this formula. Returns (errors, warnings)."""
        from .validator import validate_formula
        return validate_formula(self, **options)

    def install(self, cellar, **options):
        """Validate, then install this formula into cellar.

        Raises:
            FormulaValidationError: If the formula is not well-formed.
            FormulaError: Any failure from the install pipeline.
        """
        from .installer import install_formula

        errors, _ = self.validate()
        if errors:
            raise FormulaValidationError(
                f"Formula {self.name} is invalid", errors)
        return install_formula(self, cellar, **options)


def _parse_steps(raw):
    if not isinstance(raw, list):
        raise FormulaParseError("'install_steps' must be a list")
    steps = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict) or set(item) != {"name", "argv"}:
            raise FormulaParseError(
                f"install_steps[{i}] must be an object with 'name' and 'argv'")
        argv = item["argv"]
        if not isinstance(item["name"], str) or not isinstance(argv, list) \
                or not all(isinstance(a, str) for a in argv):
            raise FormulaParseError(
                f"install_steps[{i}] has a non-string name or argv entry")
        steps.append(InstallStep(item["name"], tuple(argv)))
    return tuple(steps)
