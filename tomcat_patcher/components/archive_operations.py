"""
HOMESERVER Update Management System
Copyright (C) 2024 HOMESERVER LLC

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""

"""
Archive analysis and extraction.

A patch tarball is walked twice with the same routine. The first walk only
counts regular files per install group so the eviction planner knows what the
archive is about to replace; the second walk writes the entries into the
Tomcat instance.
"""

import fnmatch
import gzip
import lzma
import os
import shutil
import tarfile
import zlib
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..utils.config import PatcherConfig
from ..utils.errors import ArchiveError
from ..utils.index import is_safe_relative, log_message, path_exists

# An entry path must be longer than this to carry a "root/group" key.
MIN_GROUP_PATH_LENGTH = len("components/a")

ARCHIVE_READ_ERRORS = (tarfile.TarError, EOFError, zlib.error, lzma.LZMAError, gzip.BadGzipFile)

_COMPRESSION_SUFFIXES = (
    (".tgz", "gz"),
    (".gz", "gz"),
    (".tbz2", "bz2"),
    (".tbz", "bz2"),
    (".bz2", "bz2"),
    (".txz", "xz"),
    (".xz", "xz"),
)

ArchiveEntryBucket = Dict[str, int]


def detect_compression(archive_path: str) -> str:
    """Return the tarfile compression name implied by the file extension ('' for plain tar)."""
    lowered = archive_path.lower()
    for suffix, compression in _COMPRESSION_SUFFIXES:
        if lowered.endswith(suffix):
            return compression
    return ""


def normalize_entry_name(name: str) -> str:
    """Drop a leading './' so entries line up with instance-relative paths."""
    if name.startswith("./"):
        return name[2:]
    return name


def group_key(path: str) -> Optional[str]:
    """First two path segments of an entry, or None when the path is too shallow."""
    if len(path) <= MIN_GROUP_PATH_LENGTH:
        return None
    parts = path.split("/")
    if len(parts) < 2:
        return None
    return f"{parts[0]}/{parts[1]}"


def is_library_jar(path: str, config: PatcherConfig) -> bool:
    """Shared-library jars are tracked one by one instead of per directory."""
    return path.startswith(tuple(config.library_dirs)) and path.endswith(config.library_suffix)


def is_protected(path: str, config: PatcherConfig) -> bool:
    """Operator-customised files that extraction must not clobber once present."""
    return any(fnmatch.fnmatchcase(path, pattern) for pattern in config.protected_patterns)


def record_entry(bucket: ArchiveEntryBucket, path: str, config: PatcherConfig) -> None:
    """Count one regular-file entry into the bucket."""
    key = group_key(path)
    if key is None:
        return
    if is_library_jar(path, config):
        bucket[path] = 1
    else:
        bucket[key] = bucket.get(key, 0) + 1


@dataclass
class ExtractionResult:
    """What one pass over an archive saw and did."""
    archive_path: str
    write_files: bool
    bucket: ArchiveEntryBucket = field(default_factory=dict)
    written: List[str] = field(default_factory=list)
    directories_created: List[str] = field(default_factory=list)
    protected: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    unsupported: List[str] = field(default_factory=list)


class ArchiveOperations:
    """Walks patch tarballs relative to one Tomcat instance root."""

    def __init__(self, config: PatcherConfig, instance_root: str):
        self.config = config
        self.instance_root = instance_root

    def analyze(self, archive_path: str) -> ExtractionResult:
        """Dry pass: build the entry bucket without touching the filesystem."""
        return self.unroll(archive_path, write_files=False)

    def extract(self, archive_path: str) -> ExtractionResult:
        """Write pass: materialise every entry under the instance root."""
        return self.unroll(archive_path, write_files=True)

    def unroll(self, archive_path: str, write_files: bool) -> ExtractionResult:
        """
        Walk every entry of a (possibly compressed) tarball.

        Args:
            archive_path: Path to the tarball; compression follows the extension
            write_files: When False only the bucket is built

        Returns:
            ExtractionResult: Bucket plus per-entry bookkeeping

        Raises:
            ArchiveError: If the archive cannot be opened or read, or a
                directory entry cannot be created
        """
        result = ExtractionResult(archive_path=archive_path, write_files=write_files)
        mode = f"r|{detect_compression(archive_path)}"
        label = "Unrolling" if write_files else "Scanning"
        log_message(f"[ARCHIVE] {label} {archive_path} (mode {mode})")

        try:
            tar = tarfile.open(archive_path, mode=mode)
        except (OSError, *ARCHIVE_READ_ERRORS) as e:
            raise ArchiveError(f"Could not open patch: {archive_path}: {e}")

        try:
            with tar:
                for member in tar:
                    self._handle_member(tar, member, result)
        except ArchiveError:
            raise
        except (OSError, *ARCHIVE_READ_ERRORS) as e:
            raise ArchiveError(f"Could not read tarball {archive_path}: {e}")

        if write_files:
            log_message(
                f"[ARCHIVE] ✓ Unrolled {archive_path}: {len(result.written)} files, "
                f"{len(result.directories_created)} dirs, {len(result.protected)} protected, "
                f"{len(result.failed)} failed"
            )
        else:
            log_message(f"[ARCHIVE] Scan of {archive_path} found {len(result.bucket)} groups", "DEBUG")
        return result

    def _handle_member(self, tar: tarfile.TarFile, member: tarfile.TarInfo, result: ExtractionResult) -> None:
        name = normalize_entry_name(member.name)
        if not name or name in (".", "./"):
            return

        if not is_safe_relative(name):
            log_message(f"[ARCHIVE] ✗ Skipping entry outside the instance root: {member.name}", "ERROR")
            result.failed.append(name)
            return

        if member.isdir():
            if result.write_files:
                self._create_directory(name.rstrip("/"), member.mode, result)
            return

        if not member.isreg():
            log_message(f"[ARCHIVE] Unable to untar type {member.type!r} in file {name}", "ERROR")
            result.unsupported.append(name)
            return

        record_entry(result.bucket, name, self.config)

        if not result.write_files:
            return

        target = os.path.join(self.instance_root, name)
        if is_protected(name, self.config) and path_exists(target):
            log_message(f"[ARCHIVE] Skipping protected file: {name}", "DEBUG")
            result.protected.append(name)
            return

        self._write_file(tar, member, name, target, result)

    def _create_directory(self, name: str, mode: int, result: ExtractionResult) -> None:
        target = os.path.join(self.instance_root, name)
        if path_exists(target):
            return
        try:
            os.makedirs(target, mode=mode & 0o7777)
        except OSError as e:
            raise ArchiveError(f"Could not create directory: {name}: {e}")
        log_message(f"[ARCHIVE] Creating directory: {name}", "DEBUG")
        result.directories_created.append(name)

    def _write_file(self, tar: tarfile.TarFile, member: tarfile.TarInfo, name: str,
                    target: str, result: ExtractionResult) -> None:
        source = tar.extractfile(member)
        try:
            os.makedirs(os.path.dirname(target) or self.instance_root, exist_ok=True)
            with open(target, "wb") as handle:
                if source is not None:
                    shutil.copyfileobj(source, handle)
        except ARCHIVE_READ_ERRORS:
            raise
        except OSError as e:
            log_message(f"[ARCHIVE] ✗ Could not create file from tarball: {name}: {e}", "ERROR")
            result.failed.append(name)
            return

        try:
            os.chmod(target, member.mode & 0o7777)
        except OSError as e:
            log_message(f"[ARCHIVE] ✗ Could not chmod file: {name}: {e}", "ERROR")
            result.failed.append(name)
            return

        log_message(f"[ARCHIVE] Unrolled tarball file: {name}", "DEBUG")
        result.written.append(name)
