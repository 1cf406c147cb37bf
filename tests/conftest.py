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

"""Shared fixtures: a throwaway Tomcat instance tree and a tarball builder."""

import io
import tarfile
from pathlib import Path

import pytest

from tomcat_patcher.components.archive_operations import detect_compression
from tomcat_patcher.utils.config import PatcherConfig


@pytest.fixture
def instance_root(tmp_path: Path) -> Path:
    """Minimal Tomcat instance layout with a control script owned by the test user."""
    root = tmp_path / "tomcat"
    for name in ("bin", "logs", "sakai", "components", "webapps", "lib"):
        (root / name).mkdir(parents=True)
    script = root / "bin" / "catalina.sh"
    script.write_text("#!/bin/sh\nexit 0\n")
    script.chmod(0o755)
    return root


@pytest.fixture
def config(tmp_path: Path) -> PatcherConfig:
    cache = tmp_path / "cache"
    cache.mkdir()
    return PatcherConfig(
        token="test-token",
        patch_dir=str(cache),
        patch_web="https://patches.example.test/",
        startup_settle_seconds=40,
        startup_poll_seconds=10,
        startup_wait_seconds=80,
    )


@pytest.fixture
def make_tarball(tmp_path: Path):
    """
    Build a tarball under tmp_path/archives.

    files maps entry name -> content (str or bytes); directories lists
    directory entries written before the files; links maps entry name ->
    symlink target.
    """
    archive_dir = tmp_path / "archives"
    archive_dir.mkdir(exist_ok=True)

    def _make(name, files, directories=(), links=None, mode=0o644):
        path = archive_dir / name
        compression = detect_compression(name)
        write_mode = f"w:{compression}" if compression else "w"
        with tarfile.open(path, write_mode) as tar:
            for directory in directories:
                info = tarfile.TarInfo(directory)
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
            for entry, content in files.items():
                data = content if isinstance(content, bytes) else content.encode()
                info = tarfile.TarInfo(entry)
                info.size = len(data)
                info.mode = mode
                tar.addfile(info, io.BytesIO(data))
            for entry, target in (links or {}).items():
                info = tarfile.TarInfo(entry)
                info.type = tarfile.SYMTYPE
                info.linkname = target
                tar.addfile(info)
        return str(path)

    return _make
