"""
Tests for the formula-engine command line (formula_engine.cli).
"""

import json
import os
from unittest import mock

import pytest

from formula_engine.cli import main


@pytest.fixture
def run(tap_dir, cellar, cache_dir):
    """Return run(*argv) -> exit code, with tap/prefix/cache pinned."""
    def _run(*argv):
        return main(["--tap", tap_dir, "--prefix", cellar.root,
                     "--cache", cache_dir, *argv])
    return _run


@pytest.fixture
def deps_available():
    with mock.patch("formula_engine_core.installer.default_dependency_check",
                    return_value=lambda name: True):
        yield


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 2

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert "formula-engine 0.1.0" in capsys.readouterr().out


class TestInfo:
    def test_info(self, run, capsys):
        assert run("info", "qvm-ffmpeg") == 0
        out = capsys.readouterr().out
        assert "qvm-ffmpeg: 0.0.0-test3-g" in out
        assert "Build:    cmake, pkg-config" in out
        assert "Installed: no" in out

    def test_info_unknown(self, run, capsys):
        assert run("info", "nope") == 1
        assert "No formula named 'nope'" in capsys.readouterr().err


class TestValidate:
    def test_shipped_formula_valid(self, run, capsys):
        assert run("validate", "qvm-ffmpeg") == 0
        assert "OK: qvm-ffmpeg 0.0.0-test3-g" in capsys.readouterr().out

    def test_by_path(self, run, tap, capsys):
        assert run("validate", tap.formula_path("hello")) == 0

    def test_errors_exit_1(self, run, tmp_path, qvm_formula, capsys):
        data = qvm_formula.to_dict()
        data["checksum"] = "fd12"
        path = tmp_path / "broken.json"
        path.write_text(json.dumps(data))
        assert run("validate", str(path)) == 1
        assert "ERROR: checksum" in capsys.readouterr().out

    def test_strict_fails_on_warnings(self, run, tmp_path, qvm_formula):
        data = qvm_formula.to_dict()
        data["description"] = ""
        path = tmp_path / "nodesc.json"
        path.write_text(json.dumps(data))
        assert run("validate", str(path)) == 0
        assert run("validate", "--strict", str(path)) == 1

    def test_unparseable_file(self, run, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        assert run("validate", str(path)) == 1
        assert "Invalid formula JSON" in capsys.readouterr().err


class TestDeps:
    def test_lists_declared(self, run, capsys):
        assert run("deps", "qvm-ffmpeg") == 0
        lines = capsys.readouterr().out.splitlines()
        assert lines[:2] == ["cmake (build)", "pkg-config (build)"]
        assert "nlohmann-json" in lines

    def test_order(self, run, capsys):
        assert run("deps", "--order", "hello") == 0
        assert capsys.readouterr().out.splitlines() == ["hello"]

    def test_missing(self, run, capsys):
        with mock.patch("formula_engine_core.installer.shutil.which",
                        return_value=None):
            assert run("missing", "hello") == 1
        assert capsys.readouterr().out.splitlines() == ["cmake", "zlib"]

    def test_nothing_missing(self, run, capsys):
        with mock.patch("formula_engine_core.installer.shutil.which",
                        return_value="/usr/bin/tool"):
            assert run("missing", "hello") == 0
        assert capsys.readouterr().out == ""


class TestFetch:
    def test_fetch_verifies(self, run, cache_dir, capsys):
        assert run("fetch", "hello") == 0
        assert "Verified sha256" in capsys.readouterr().out
        assert os.listdir(cache_dir) == ["hello-1.0.0.tar.gz"]

    def test_fetch_checksum_mismatch(self, run, tmp_path, hello_formula,
                                     cache_dir, capsys):
        data = hello_formula.to_dict()
        data["checksum"] = "0" * 64
        path = tmp_path / "hello-swapped.json"
        path.write_text(json.dumps(data))
        assert run("fetch", str(path)) == 1
        assert "SHA256 mismatch" in capsys.readouterr().err
        assert os.listdir(cache_dir) == []


class TestInstall:
    def test_install(self, run, cellar, deps_available, capsys):
        assert run("install", "hello") == 0
        out = capsys.readouterr().out
        assert "==> Installing hello 1.0.0" in out
        hello = os.path.join(cellar.keg_path("hello", "1.0.0"), "bin", "hello")
        with open(hello) as f:
            assert f.read() == "built hello-1.0.0"

    def test_already_installed(self, run, cellar, deps_available, capsys):
        os.makedirs(cellar.keg_path("hello", "1.0.0"))
        assert run("install", "hello") == 0
        assert "already installed" in capsys.readouterr().out

    def test_missing_dependencies(self, run, cellar, capsys):
        with mock.patch("formula_engine_core.installer.shutil.which",
                        return_value=None):
            assert run("install", "hello") == 1
        err = capsys.readouterr().err
        assert "missing dependencies: cmake, zlib" in err
        assert "Install first: cmake zlib" in err
        assert not cellar.is_installed("hello")

    def test_invalid_formula_not_installed(self, run, tmp_path, hello_formula,
                                           cellar, deps_available, capsys):
        path = str(tmp_path / "hello-bad.json")
        data = hello_formula.to_dict()
        data["install_steps"] = data["install_steps"][:2]
        with open(path, "w") as f:
            f.write(json.dumps(data))
        assert run("install", path) == 1
        err = capsys.readouterr().err
        assert "Formula hello is invalid" in err
        assert "  install_steps: must be exactly configure, build, install" in err
        assert not cellar.is_installed("hello")

    def test_invalid_checksum_names_field(self, run, tmp_path, hello_formula,
                                          cellar, deps_available, capsys):
        data = hello_formula.to_dict()
        data["checksum"] = "xyz"
        path = tmp_path / "hello-bad-checksum.json"
        path.write_text(json.dumps(data))
        assert run("install", str(path)) == 1
        err = capsys.readouterr().err.splitlines()
        assert "Error: Formula hello is invalid" in err
        assert "  checksum: sha256 digest must be 64 hex characters (got 3)" in err
        assert not cellar.is_installed("hello")


class TestListAndOutdated:
    def test_list(self, run, cellar, capsys):
        os.makedirs(cellar.keg_path("hello", "1.0.0"))
        assert run("list") == 0
        assert capsys.readouterr().out == "hello 1.0.0\n"

    def test_outdated(self, run, cellar, capsys):
        os.makedirs(cellar.keg_path("hello", "0.9.0"))
        assert run("outdated") == 0
        assert capsys.readouterr().out == "hello (0.9.0) < 1.0.0\n"
