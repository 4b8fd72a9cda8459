"""
fetch.py — release archive download, verification and extraction (pure stdlib)

Downloads an archive to a .tmp file, hashes it while streaming, and only
renames it into place once the digest matches the formula's checksum.
Nothing is extracted from an archive that has not been verified.

No external dependencies — uses only Python stdlib (urllib, hashlib,
tarfile, zipfile).
"""

import hashlib
import logging
import os
import ssl
import tarfile
import tempfile
import urllib.error
import urllib.request
import zipfile

from .formula import (
    DEFAULT_CHECKSUM_ALGORITHM,
    FormulaChecksumError,
    FormulaDownloadError,
    FormulaError,
    FormulaSSLError,
)

logger = logging.getLogger(__name__)

USER_AGENT = "formula-engine"

CHUNK_SIZE = 8192

_TAR_SUFFIXES = (".tar.gz", ".tgz", ".tar.bz2", ".tbz", ".tbz2",
                 ".tar.xz", ".txz", ".tar")


def _create_ssl_context():
    """Create an SSL context for archive downloads.

    Supports the following environment variables:
      - FORMULA_SSL_CERT: Path to a custom CA certificate bundle (PEM).
      - FORMULA_SSL_VERIFY: Set to "0" to disable certificate verification.
            Archive integrity is still enforced by the checksum.

    Returns:
        ssl.SSLContext or None (None = use urllib defaults).
    """
    ssl_verify = os.environ.get("FORMULA_SSL_VERIFY", "1").strip()
    ssl_cert = os.environ.get("FORMULA_SSL_CERT", "").strip()

    if ssl_verify == "0":
        logger.warning(
            "SSL certificate verification disabled (FORMULA_SSL_VERIFY=0). "
            "This is insecure and should only be used for troubleshooting."
        )
        return _create_noverify_ssl_context()

    if ssl_cert:
        if not os.path.isfile(ssl_cert):
            logger.warning("FORMULA_SSL_CERT file not found: %s", ssl_cert)
            return None
        logger.info("Using custom CA bundle: %s", ssl_cert)
        return ssl.create_default_context(cafile=ssl_cert)

    return None


def _create_noverify_ssl_context():
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def _is_ssl_error(exc):
    """Check whether an exception is caused by SSL certificate verification."""
    if isinstance(exc, ssl.SSLError):
        return True
    # urllib wraps SSL errors in URLError
    if isinstance(exc, urllib.error.URLError):
        return isinstance(getattr(exc, "reason", None), ssl.SSLError)
    return False


def _new_hash(algorithm):
    try:
        return hashlib.new(algorithm)
    except ValueError as e:
        raise FormulaChecksumError(
            f"Unsupported checksum algorithm: {algorithm}") from e


def _short(digest):
    return f"{digest[:16]}..."


# ---------------------------------------------------------------------------
# Checksums
# ---------------------------------------------------------------------------

def file_digest(path, algorithm=DEFAULT_CHECKSUM_ALGORITHM):
    """Calculate the hex digest of a file using 8KB chunks."""
    h = _new_hash(algorithm)
    with open(path, "rb") as f:
        while True:
            chunk = f.read(CHUNK_SIZE)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def verify_checksum(path, expected, algorithm=DEFAULT_CHECKSUM_ALGORITHM):
    """Verify that the file at path hashes to expected.

    Raises:
        FormulaChecksumError: On mismatch.
    """
    actual = file_digest(path, algorithm)
    if actual != expected.lower():
        raise FormulaChecksumError(
            f"{algorithm.upper()} mismatch for {os.path.basename(path)}: "
            f"expected {_short(expected)}, got {_short(actual)}")
    logger.debug("Checksum OK for %s", path)


# ---------------------------------------------------------------------------
# Download
# ---------------------------------------------------------------------------

def download_archive(url, dest_dir, expected=None,
                     algorithm=DEFAULT_CHECKSUM_ALGORITHM,
                     progress_callback=None, timeout=60, ssl_noverify=False,
                     filename=None):
    """Download a release archive and verify its checksum.

    Downloads to a .tmp file first, verifies the digest if one is
    expected, then renames to the final filename.

    Args:
        url: Archive URL (http, https or file).
        dest_dir: Directory to save the file in.
        expected: Expected hex digest (or None to skip verification).
        algorithm: hashlib algorithm name of the expected digest.
        progress_callback: Optional callable(bytes_downloaded, total_bytes).
                           total_bytes may be 0 if Content-Length is absent.
        timeout: Socket timeout in seconds.
        ssl_noverify: If True, skip SSL certificate verification.
        filename: Destination filename (default: last URL path segment).

    Returns:
        Path to the verified archive.

    Raises:
        FormulaSSLError: On SSL certificate verification failure.
        FormulaDownloadError: On other network failure.
        FormulaChecksumError: On digest mismatch.
    """
    filename = filename or url.rsplit("/", 1)[-1]
    dest_path = os.path.join(dest_dir, filename)

    logger.info("Downloading %s to %s", url, dest_dir)

    req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    if ssl_noverify:
        ssl_ctx = _create_noverify_ssl_context()
        logger.debug("SSL verification disabled for download")
    else:
        ssl_ctx = _create_ssl_context()

    digest = _new_hash(algorithm)
    tmp_fd, tmp_path = tempfile.mkstemp(suffix=".tmp", dir=dest_dir)
    try:
        downloaded = 0
        try:
            with urllib.request.urlopen(req, timeout=timeout,
                                        context=ssl_ctx) as resp:
                total = int(resp.headers.get("Content-Length", 0) or 0)
                while True:
                    chunk = resp.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    os.write(tmp_fd, chunk)
                    digest.update(chunk)
                    downloaded += len(chunk)
                    if progress_callback:
                        progress_callback(downloaded, total)
        except (urllib.error.URLError, OSError) as e:
            if _is_ssl_error(e):
                raise FormulaSSLError(
                    f"SSL certificate verification failed: {e}") from e
            raise FormulaDownloadError(f"Download failed: {e}") from e
        finally:
            os.close(tmp_fd)

        actual = digest.hexdigest()
        if expected is not None and actual != expected.lower():
            raise FormulaChecksumError(
                f"{algorithm.upper()} mismatch for {filename}: "
                f"expected {_short(expected)}, got {_short(actual)}")

        os.replace(tmp_path, dest_path)
        logger.info("Downloaded: %s (%d bytes)", filename, downloaded)
        return dest_path
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)


def fetch_archive(formula, cache_dir, **kwargs):
    """Return a verified archive for formula, downloading if needed.

    A cached archive is reused only if it still matches the checksum;
    otherwise it is discarded and downloaded again.
    """
    os.makedirs(cache_dir, exist_ok=True)
    cached = os.path.join(cache_dir, formula.archive_filename)
    if os.path.exists(cached):
        try:
            verify_checksum(cached, formula.checksum, formula.checksum_algorithm)
            logger.info("Using cached archive %s", cached)
            return cached
        except FormulaChecksumError:
            logger.warning("Discarding cached archive with bad checksum: %s",
                           cached)
            os.unlink(cached)
    return download_archive(
        formula.source_url, cache_dir, formula.checksum,
        algorithm=formula.checksum_algorithm,
        filename=formula.archive_filename, **kwargs)


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

def _check_member_path(dest_dir, member_name):
    root = os.path.realpath(dest_dir)
    target = os.path.realpath(os.path.join(root, member_name))
    if target != root and not target.startswith(root + os.sep):
        raise FormulaError(f"Archive member escapes extraction dir: {member_name}")


def extract_archive(archive_path, dest_dir):
    """Extract a release archive into dest_dir.

    Returns:
        The single top-level directory of the archive if there is exactly
        one, otherwise dest_dir itself.

    Raises:
        FormulaError: On unsupported formats, corrupt archives or members
            that would land outside dest_dir.
    """
    os.makedirs(dest_dir, exist_ok=True)
    lower = archive_path.lower()
    logger.info("Extracting %s", os.path.basename(archive_path))
    try:
        if lower.endswith(".zip"):
            with zipfile.ZipFile(archive_path) as zf:
                for name in zf.namelist():
                    _check_member_path(dest_dir, name)
                zf.extractall(dest_dir)
        elif lower.endswith(_TAR_SUFFIXES):
            with tarfile.open(archive_path) as tf:
                for member in tf.getmembers():
                    _check_member_path(dest_dir, member.name)
                    if member.issym() or member.islnk():
                        _check_member_path(
                            dest_dir,
                            os.path.join(os.path.dirname(member.name),
                                         member.linkname))
                if hasattr(tarfile, "data_filter"):
                    tf.extractall(dest_dir, filter="data")
                else:
                    tf.extractall(dest_dir)
        else:
            raise FormulaError(
                f"Unsupported archive format: {os.path.basename(archive_path)}")
    except (tarfile.TarError, zipfile.BadZipFile) as e:
        raise FormulaError(f"Corrupt archive {archive_path}: {e}") from e

    entries = os.listdir(dest_dir)
    if len(entries) == 1 and os.path.isdir(os.path.join(dest_dir, entries[0])):
        return os.path.join(dest_dir, entries[0])
    return dest_dir
