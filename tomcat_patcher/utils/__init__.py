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
Utilities shared by the patch agent components.
"""

from .index import log_message, path_exists, is_safe_relative, is_within
from .config import PatcherConfig, load_config, TOKEN_ENV_VAR
from .errors import (
    PatchError,
    SetupError,
    PortalError,
    ApplyError,
    TransferError,
    ArchiveError,
    EvictionError,
    PropertyError
)
from .permissions import check_instance_exists, check_instance_ownership
from .network import resolve_host_ips
from .transcript import OutputTranscript

__all__ = [
    'log_message',
    'path_exists',
    'is_safe_relative',
    'is_within',
    'PatcherConfig',
    'load_config',
    'TOKEN_ENV_VAR',
    'PatchError',
    'SetupError',
    'PortalError',
    'ApplyError',
    'TransferError',
    'ArchiveError',
    'EvictionError',
    'PropertyError',
    'check_instance_exists',
    'check_instance_ownership',
    'resolve_host_ips',
    'OutputTranscript'
]
