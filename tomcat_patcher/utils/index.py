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

import logging
import os
from pathlib import PurePosixPath

LOGGER_NAME = "tomcat_patcher"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def log_message(message, level="INFO"):
    """
    Log a message through the shared patcher logger.
    Args:
        message (str): The message to log.
        level (str): Log level (e.g., 'DEBUG', 'INFO', 'ERROR').
    """
    logging.getLogger(LOGGER_NAME).log(_LEVELS.get(level, logging.INFO), message)


def path_exists(path) -> bool:
    """Return True when anything (file, directory, dangling link) lives at path."""
    return os.path.lexists(path)


def is_safe_relative(name: str) -> bool:
    """
    Check that an archive-relative path stays inside the directory it is joined to.

    Args:
        name: Relative POSIX path as it appears inside an archive

    Returns:
        bool: False for absolute paths or paths with '..' segments
    """
    if not name:
        return False
    pure = PurePosixPath(name)
    if pure.is_absolute():
        return False
    return ".." not in pure.parts


def is_within(root, candidate) -> bool:
    """Return True when candidate resolves to root itself or something beneath it."""
    root_real = os.path.realpath(root)
    candidate_real = os.path.realpath(candidate)
    return candidate_real == root_real or candidate_real.startswith(root_real + os.sep)
