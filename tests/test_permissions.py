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

"""Tests for instance existence and ownership checks."""

import os

import pytest

from tomcat_patcher.utils.errors import SetupError
from tomcat_patcher.utils.permissions import (
    check_instance_exists,
    check_instance_ownership,
    get_ownership,
)


def test_existing_instance_passes(instance_root):
    check_instance_exists(str(instance_root))


def test_missing_instance_fails(tmp_path):
    with pytest.raises(SetupError, match="does not exist"):
        check_instance_exists(str(tmp_path / "nope"))


def test_ownership_matches_agent(instance_root):
    info = check_instance_ownership(str(instance_root), "bin/catalina.sh")

    assert info.matches
    assert info.uid == os.getuid()


def test_ownership_mismatch_fails(instance_root):
    with pytest.raises(SetupError, match="differs from"):
        check_instance_ownership(str(instance_root), "bin/catalina.sh", agent_uid=os.getuid() + 1)


def test_missing_control_script_fails(instance_root):
    (instance_root / "bin/catalina.sh").unlink()

    with pytest.raises(SetupError):
        get_ownership(str(instance_root / "bin/catalina.sh"))
