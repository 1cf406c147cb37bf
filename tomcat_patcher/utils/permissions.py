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
Instance Ownership Checks

The agent must run as the same account that owns the Tomcat instance; files it
writes during extraction would otherwise end up with an owner the service
cannot read. These checks run before the patch is claimed.
"""

import os
import pwd
from dataclasses import dataclass
from typing import Optional

from .errors import SetupError
from .index import log_message


@dataclass
class OwnershipInfo:
    """Ownership of a single path compared to the running agent."""
    path: str
    uid: int
    owner: str
    agent_uid: int

    @property
    def matches(self) -> bool:
        return self.uid == self.agent_uid


def _owner_name(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


def check_instance_exists(instance_root: str) -> None:
    """
    Make sure the instance root is an existing directory.

    Raises:
        SetupError: If the directory is missing
    """
    if not os.path.isdir(instance_root):
        raise SetupError(f"Tomcat directory does not exist: {instance_root}")
    log_message(f"Found Tomcat directory: {instance_root}", "DEBUG")


def get_ownership(path: str, agent_uid: Optional[int] = None) -> OwnershipInfo:
    """Stat a path and describe who owns it relative to the agent."""
    agent_uid = os.getuid() if agent_uid is None else agent_uid
    try:
        stat_info = os.stat(path)
    except OSError as e:
        raise SetupError(f"Could not open file: {path}: {e}")
    return OwnershipInfo(
        path=path,
        uid=stat_info.st_uid,
        owner=_owner_name(stat_info.st_uid),
        agent_uid=agent_uid,
    )


def check_instance_ownership(instance_root: str, control_script: str, agent_uid: Optional[int] = None) -> OwnershipInfo:
    """
    Compare the owner of the control script with the agent's uid.

    Args:
        instance_root: Tomcat instance directory
        control_script: Control script path relative to the instance root
        agent_uid: Override for the agent uid (defaults to os.getuid())

    Returns:
        OwnershipInfo: Ownership details when they match

    Raises:
        SetupError: If the script is missing or owned by another account
    """
    script_path = os.path.join(instance_root, control_script)
    info = get_ownership(script_path, agent_uid)
    log_message(f"Tomcat ownership: {info.owner} (uid {info.uid})", "DEBUG")

    if not info.matches:
        raise SetupError(
            f"Patcher uid {info.agent_uid} ({_owner_name(info.agent_uid)}) differs from "
            f"Tomcat uid {info.uid} ({info.owner}) on {script_path}"
        )
    return info
