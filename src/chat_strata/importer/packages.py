"""Import package validation, extraction and retention.

A package is the file (or directory) a provider export was delivered as:
a .zip archive, a single payload file, or an already-extracted directory.
"""

import os
import re
import shutil
import zipfile
from pathlib import Path

from chat_strata.errors import ValidationError, WriteFailure
from chat_strata.logging import get_logger

logger = get_logger("packages")

SUPPORTED_SUFFIXES = (".zip", ".json", ".ndjson", ".jsonl", ".txt", ".md", ".markdown")

ARTIFACT_NAME = "download-artifact"

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_filename(name: str) -> str:
    """Filesystem-safe file name; characters outside [A-Za-z0-9._-] become "_"."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", name).lstrip(".")
    return cleaned or "payload"


def package_suffix(package: Path) -> str:
    return "" if package.is_dir() else package.suffix.lower()


def validate_package(package: Path) -> Path:
    """Check that a package exists, is readable and has a supported format.

    Args:
        package: Path to the export package

    Returns:
        The resolved package path

    Raises:
        ValidationError: If the package is missing, unreadable or unsupported
    """
    package = package.expanduser()
    if not package.exists():
        raise ValidationError(f"Import package does not exist: {package}")
    if not os.access(package, os.R_OK):
        raise ValidationError(f"Import package is not readable: {package}")
    if package.is_dir():
        return package.resolve()

    suffix = package.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ValidationError(
            f"Unsupported package type {suffix or '(none)'}: expected one of {', '.join(SUPPORTED_SUFFIXES)}"
        )
    if suffix == ".zip" and not zipfile.is_zipfile(package):
        raise ValidationError(f"Import package is not a valid zip archive: {package}")
    return package.resolve()


def _is_within_directory(root: Path, candidate: Path) -> bool:
    return candidate.resolve().is_relative_to(root.resolve())


def safe_extractall(archive: zipfile.ZipFile, target: Path) -> int:
    """Extract every archive member while preventing path traversal.

    Returns:
        Number of files extracted

    Raises:
        ValidationError: If a member would land outside target
    """
    target = target.resolve()
    members = [info for info in archive.infolist() if info.filename]
    for info in members:
        if not _is_within_directory(target, target / info.filename):
            raise ValidationError(f"Blocked unsafe archive entry: {info.filename}")
    for info in members:
        archive.extract(info, target)
    return sum(1 for info in members if not info.is_dir())


def extract_package(package: Path, dest: Path) -> int:
    """Extract a validated package into dest.

    Zip archives are unpacked, single files copied under a sanitized name,
    directories copied recursively.

    Returns:
        Number of payload files placed under dest

    Raises:
        ValidationError: If the archive is corrupt or unsafe
        WriteFailure: If dest cannot be written
    """
    try:
        dest.mkdir(parents=True, exist_ok=True)
        if package.is_dir():
            shutil.copytree(package, dest, dirs_exist_ok=True)
            count = sum(1 for p in dest.rglob("*") if p.is_file())
        elif package.suffix.lower() == ".zip":
            try:
                with zipfile.ZipFile(package) as archive:
                    count = safe_extractall(archive, dest)
            except zipfile.BadZipFile as exc:
                raise ValidationError(f"Corrupt zip archive {package}: {exc}") from exc
        else:
            shutil.copy2(package, dest / sanitize_filename(package.name))
            count = 1
    except OSError as exc:
        raise WriteFailure(f"Failed to extract {package} to {dest}: {exc}") from exc

    logger.info("Extracted package: package=%s dest=%s files=%d", package, dest, count)
    return count


def retain_package(package: Path, job_raw_root: Path) -> Path:
    """Copy the original package into the job's raw area as download-artifact<ext>.

    Returns:
        Path of the retained copy
    """
    dest = job_raw_root / f"{ARTIFACT_NAME}{package_suffix(package)}"
    try:
        job_raw_root.mkdir(parents=True, exist_ok=True)
        if package.is_dir():
            shutil.copytree(package, dest, dirs_exist_ok=True)
        else:
            shutil.copy2(package, dest)
    except OSError as exc:
        raise WriteFailure(f"Failed to retain package {package}: {exc}") from exc

    logger.info("Retained package: package=%s dest=%s", package, dest)
    return dest


def remove_package(package: Path) -> None:
    """Delete a package the importer was given ownership of."""
    if package.is_dir():
        shutil.rmtree(package)
    else:
        package.unlink(missing_ok=True)
    logger.info("Removed consumed package: package=%s", package)
