"""
Tests for formula_engine_core.validator — the manifest validator.
"""

import dataclasses
import sys
import urllib.error
from unittest import mock

from formula_engine_core import (
    InstallStep,
    check_supersedes,
    validate_formula,
    validate_formula_file,
    verify_artifact,
)

from conftest import make_formula


def _replace(formula, **changes):
    return dataclasses.replace(formula, **changes)


def _fields(errors):
    return {e.split(":", 1)[0] for e in errors}


class TestValidateFormula:
    def test_shipped_formula_is_valid(self, qvm_formula):
        errors, warnings = validate_formula(qvm_formula)
        assert errors == []
        assert warnings == []

    def test_test_formula_is_valid(self, hello_formula):
        errors, _ = validate_formula(hello_formula)
        assert errors == []

    def test_bad_name(self, qvm_formula):
        errors, _ = validate_formula(_replace(qvm_formula, name="Bad Name"))
        assert "name" in _fields(errors)

    def test_empty_name(self, qvm_formula):
        errors, _ = validate_formula(_replace(qvm_formula, name=""))
        assert "name: must not be empty" in errors

    def test_source_url_scheme(self, qvm_formula):
        errors, _ = validate_formula(
            _replace(qvm_formula, source_url="ftp://example.com/x-1.0.tar.gz",
                     version="1.0"))
        assert "source_url" in _fields(errors)

    def test_source_url_without_host(self, qvm_formula):
        errors, _ = validate_formula(
            _replace(qvm_formula, source_url="https:///x-1.0.tar.gz",
                     version="1.0"))
        assert "source_url: URL has no host" in errors

    def test_http_homepage_is_warning(self, qvm_formula):
        errors, warnings = validate_formula(
            _replace(qvm_formula, homepage="http://example.com"))
        assert errors == []
        assert "homepage: uses plain http" in warnings

    def test_checksum_wrong_length(self, qvm_formula):
        errors, _ = validate_formula(_replace(qvm_formula, checksum="fd12"))
        assert any(e.startswith("checksum: sha256 digest must be 64") for e in errors)

    def test_checksum_wrong_alphabet(self, qvm_formula):
        errors, _ = validate_formula(_replace(qvm_formula, checksum="z" * 64))
        assert "checksum: must be lowercase hexadecimal" in errors

    def test_sha512_length(self, qvm_formula):
        errors, _ = validate_formula(
            _replace(qvm_formula, checksum_algorithm="sha512", checksum="a" * 128))
        assert errors == []

    def test_unknown_algorithm(self, qvm_formula):
        errors, _ = validate_formula(
            _replace(qvm_formula, checksum_algorithm="md5", checksum="a" * 32))
        assert "checksum_algorithm" in _fields(errors)

    def test_missing_version(self, qvm_formula):
        errors, _ = validate_formula(
            _replace(qvm_formula, source_url="https://example.com/latest.tar.gz",
                     version=""))
        assert "version: not set and not detectable from source_url" in errors

    def test_version_mismatch_is_warning(self, qvm_formula):
        errors, warnings = validate_formula(_replace(qvm_formula, version="0.2.0"))
        assert errors == []
        assert any(w.startswith("version: 0.2.0 differs") for w in warnings)

    def test_empty_dependency(self, qvm_formula):
        errors, _ = validate_formula(
            _replace(qvm_formula, runtime_dependencies={"ffmpeg", ""}))
        assert "runtime_dependencies: invalid identifier ''" in errors

    def test_whitespace_dependency(self, qvm_formula):
        errors, _ = validate_formula(
            _replace(qvm_formula, build_dependencies={" cmake"}))
        assert "build_dependencies" in _fields(errors)

    def test_self_dependency(self, qvm_formula):
        errors, _ = validate_formula(
            _replace(qvm_formula, runtime_dependencies={"qvm-ffmpeg"}))
        assert "runtime_dependencies: formula depends on itself" in errors

    def test_dependency_in_both_sets_is_warning(self, qvm_formula):
        _, warnings = validate_formula(
            _replace(qvm_formula, runtime_dependencies={"cmake"}))
        assert "build_dependencies: cmake is also a runtime dependency" in warnings

    def test_steps_must_be_three_in_order(self, qvm_formula):
        steps = qvm_formula.install_steps
        errors, _ = validate_formula(
            _replace(qvm_formula, install_steps=(steps[1], steps[0], steps[2])))
        assert any(e.startswith("install_steps: must be exactly configure, build, "
                                "install") for e in errors)

    def test_missing_step(self, qvm_formula):
        errors, _ = validate_formula(
            _replace(qvm_formula, install_steps=qvm_formula.install_steps[:2]))
        assert "install_steps" in _fields(errors)

    def test_empty_step(self, qvm_formula):
        steps = (InstallStep("configure", ()),) + qvm_formula.install_steps[1:]
        errors, _ = validate_formula(_replace(qvm_formula, install_steps=steps))
        assert "install_steps.configure: empty command" in errors

    def test_unknown_placeholder(self, qvm_formula):
        steps = qvm_formula.install_steps[:2] + (
            InstallStep("install", ("cmake", "--install", "{destdir}")),)
        errors, _ = validate_formula(_replace(qvm_formula, install_steps=steps))
        assert "install_steps.install: unknown placeholder {destdir}" in errors

    def test_check_executables(self, qvm_formula, hello_formula):
        with mock.patch("formula_engine_core.validator.shutil.which",
                        return_value=None):
            errors, _ = validate_formula(qvm_formula, check_executables=True)
        assert "install_steps.configure: executable not found: cmake" in errors

        # absolute interpreter path resolves without PATH lookup
        assert hello_formula.install_steps[0].argv[0] == sys.executable
        errors, _ = validate_formula(hello_formula, check_executables=True)
        assert errors == []


class TestUrlReachability:
    def test_reachable(self, qvm_formula):
        mock_resp = mock.MagicMock()
        mock_resp.status = 200
        mock_resp.__enter__ = mock.MagicMock(return_value=mock_resp)
        mock_resp.__exit__ = mock.MagicMock(return_value=False)

        captured = []

        def capture_urlopen(req, **kwargs):
            captured.append(req)
            return mock_resp

        with mock.patch("formula_engine_core.validator.urllib.request.urlopen",
                        side_effect=capture_urlopen):
            errors, _ = validate_formula(qvm_formula, check_url=True)

        assert errors == []
        assert captured[0].get_method() == "HEAD"
        assert captured[0].full_url == qvm_formula.source_url

    def test_http_404(self, qvm_formula):
        exc = urllib.error.HTTPError(qvm_formula.source_url, 404, "Not Found",
                                     {}, None)
        with mock.patch("formula_engine_core.validator.urllib.request.urlopen",
                        side_effect=exc):
            errors, _ = validate_formula(qvm_formula, check_url=True)
        assert "source_url: HTTP 404" in errors

    def test_network_error(self, qvm_formula):
        with mock.patch("formula_engine_core.validator.urllib.request.urlopen",
                        side_effect=urllib.error.URLError("timeout")):
            errors, _ = validate_formula(qvm_formula, check_url=True)
        assert any(e.startswith("source_url: unreachable") for e in errors)

    def test_offline_by_default(self, qvm_formula):
        with mock.patch("formula_engine_core.validator.urllib.request.urlopen") as m:
            validate_formula(qvm_formula)
        m.assert_not_called()


class TestValidateFile:
    def test_valid_file(self, tap, hello_formula):
        errors, _ = validate_formula_file(tap.formula_path("hello"))
        assert errors == []

    def test_parse_error_reported(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("[]", encoding="utf-8")
        errors, warnings = validate_formula_file(str(path))
        assert len(errors) == 1
        assert errors[0].startswith("file: ")
        assert warnings == []


# ---------------------------------------------------------------------------
# Revisions and artifacts
# ---------------------------------------------------------------------------

class TestRevisions:
    def test_next_release_supersedes(self, make_archive):
        old = make_formula(make_archive("hello-1.0.0.tar.gz", {"a": "1"}))
        new = make_formula(make_archive("hello-1.1.0.tar.gz", {"a": "2"}))
        assert check_supersedes(old, new) == []

    def test_same_url_rejected(self, hello_formula):
        new = _replace(hello_formula, checksum="b" * 64, version="2.0.0")
        errors = check_supersedes(hello_formula, new)
        assert "source_url: unchanged from the previous revision" in errors

    def test_reused_checksum_rejected(self, hello_formula):
        new = _replace(hello_formula,
                       source_url=hello_formula.source_url.replace("1.0.0", "2.0.0"))
        errors = check_supersedes(hello_formula, new)
        assert "checksum: unchanged from the previous revision" in errors

    def test_older_version_rejected(self, make_archive):
        old = make_formula(make_archive("hello-1.1.0.tar.gz", {"a": "1"}))
        new = make_formula(make_archive("hello-1.0.0.tar.gz", {"a": "2"}))
        errors = check_supersedes(old, new)
        assert "version: 1.0.0 is not newer than 1.1.0" in errors

    def test_different_name_rejected(self, make_archive):
        old = make_formula(make_archive("hello-1.0.0.tar.gz", {"a": "1"}))
        new = make_formula(make_archive("other-1.1.0.tar.gz", {"a": "2"}),
                           name="other")
        assert "name" in _fields(check_supersedes(old, new))

    def test_swapped_checksums_fail_verification(self, make_archive):
        """Each revision's checksum only validates its own artifact."""
        a1 = make_archive("hello-1.0.0.tar.gz", {"a": "1"})
        a2 = make_archive("hello-1.1.0.tar.gz", {"a": "2"})
        r1, r2 = make_formula(a1), make_formula(a2)
        assert r1.source_url != r2.source_url

        assert verify_artifact(r1, a1)
        assert verify_artifact(r2, a2)

        swapped1 = _replace(r1, checksum=r2.checksum)
        swapped2 = _replace(r2, checksum=r1.checksum)
        assert not verify_artifact(swapped1, a1)
        assert not verify_artifact(swapped2, a2)

    def test_flipped_byte_rejected(self, hello_formula, hello_archive, tmp_path):
        data = bytearray(open(hello_archive, "rb").read())
        for offset in (0, len(data) // 2, len(data) - 1):
            tampered = bytearray(data)
            tampered[offset] ^= 0x01
            path = tmp_path / f"tampered-{offset}.tar.gz"
            path.write_bytes(bytes(tampered))
            assert not verify_artifact(hello_formula, str(path))

    def test_test3_checksum_rejects_other_release(self, qvm_formula, make_archive):
        """A v0.1.0 artifact never matches the v0.0.0-test3-g checksum."""
        other = make_archive("qvm-ffmpeg-v0.1.0.tar.gz",
                             {"CMakeLists.txt": "project(qvm VERSION 0.1.0)\n"},
                             top="qvm-ffmpeg-v0.1.0")
        assert not verify_artifact(qvm_formula, other)

    def test_missing_artifact(self, hello_formula, tmp_path):
        assert not verify_artifact(hello_formula, str(tmp_path / "gone.tar.gz"))
