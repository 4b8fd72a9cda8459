"""
Shared test fixtures for the Formula Engine test suite.

  - make_archive: factory building a .tar.gz source tree in tmp_path
  - hello_archive: a small release archive with a single top-level dir
  - hello_formula: Formula for hello_archive (file:// URL, real checksum)
    whose steps run the current Python interpreter instead of cmake
  - qvm_formula: the shipped qvm-ffmpeg formula
  - tap_dir / tap: a tap holding hello + qvm-ffmpeg
  - cellar: an empty Cellar under tmp_path
  - client: TestClient wired to tap_dir and cellar
"""

import hashlib
import io
import os
import shutil
import sys
import tarfile

import pytest

from formula_engine_core import Cellar, Formula, InstallStep, Tap

REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
QVM_FORMULA_PATH = os.path.join(REPO_ROOT, "Formula", "qvm-ffmpeg.json")

# Python stand-ins for cmake configure / build / install.
_CONFIGURE = ("import os, sys; os.makedirs(sys.argv[1], exist_ok=True); "
              "open(os.path.join(sys.argv[1], 'plan.txt'), 'w').write(sys.argv[2])")
_BUILD = ("import os, sys; "
          "src = open(os.path.join(sys.argv[1], 'plan.txt')).read(); "
          "open(os.path.join(sys.argv[1], 'hello'), 'w').write('built ' + src)")
_INSTALL = ("import os, shutil, sys; "
            "os.makedirs(os.path.join(sys.argv[2], 'bin'), exist_ok=True); "
            "shutil.copy(os.path.join(sys.argv[1], 'hello'), "
            "os.path.join(sys.argv[2], 'bin', 'hello'))")

PYTHON_STEPS = (
    InstallStep("configure", (sys.executable, "-c", _CONFIGURE,
                              "{build_dir}", "{name}-{version}")),
    InstallStep("build", (sys.executable, "-c", _BUILD, "{build_dir}")),
    InstallStep("install", (sys.executable, "-c", _INSTALL,
                            "{build_dir}", "{prefix}")),
)


def sha256_of(path):
    with open(path, "rb") as f:
        return hashlib.sha256(f.read()).hexdigest()


def _add_file(tf, name, content):
    data = content.encode("utf-8")
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = 0o644
    tf.addfile(info, io.BytesIO(data))


@pytest.fixture
def make_archive(tmp_path):
    """Return a factory: make_archive(filename, files, top='pkg') -> path."""
    dist = tmp_path / "dist"
    dist.mkdir(exist_ok=True)

    def _make(filename, files=None, top="pkg"):
        files = files or {"CMakeLists.txt": "project(hello)\n"}
        path = dist / filename
        with tarfile.open(path, "w:gz") as tf:
            for name, content in files.items():
                member = f"{top}/{name}" if top else name
                _add_file(tf, member, content)
        return str(path)

    return _make


@pytest.fixture
def hello_archive(make_archive):
    return make_archive("hello-1.0.0.tar.gz", {
        "CMakeLists.txt": "project(hello)\n",
        "src/main.c": "int main(void) { return 0; }\n",
    }, top="hello-1.0.0")


def make_formula(archive_path, name="hello", steps=PYTHON_STEPS, **overrides):
    fields = dict(
        name=name,
        description="Hello test package",
        homepage="https://example.com/hello",
        source_url="file://" + archive_path,
        checksum=sha256_of(archive_path),
        build_dependencies=frozenset({"cmake"}),
        runtime_dependencies=frozenset({"zlib"}),
        install_steps=steps,
    )
    fields.update(overrides)
    return Formula(**fields)


@pytest.fixture
def hello_formula(hello_archive):
    return make_formula(hello_archive)


@pytest.fixture
def qvm_formula():
    return Formula.from_file(QVM_FORMULA_PATH)


@pytest.fixture
def tap_dir(tmp_path, hello_formula):
    path = tmp_path / "tap" / "Formula"
    path.mkdir(parents=True)
    hello_formula.dump(str(path / "hello.json"))
    shutil.copy(QVM_FORMULA_PATH, str(path / "qvm-ffmpeg.json"))
    return str(tmp_path / "tap")


@pytest.fixture
def tap(tap_dir):
    return Tap(tap_dir)


@pytest.fixture
def cellar(tmp_path):
    return Cellar(str(tmp_path / "Cellar"))


@pytest.fixture
def cache_dir(tmp_path):
    path = tmp_path / "cache"
    path.mkdir()
    return str(path)


@pytest.fixture
def all_available():
    return lambda name: True


@pytest.fixture
def client(tap_dir, cellar):
    from fastapi.testclient import TestClient
    from formula_engine import app as app_module

    saved = (app_module.FORMULA_TAP, app_module.FORMULA_PREFIX)
    app_module._set_paths_for_testing(tap_dir, cellar.root)
    with TestClient(app_module.app) as c:
        yield c
    app_module._set_paths_for_testing(*saved)
