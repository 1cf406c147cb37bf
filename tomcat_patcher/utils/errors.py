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
Error taxonomy for the patch agent.

Setup errors abort before the portal is told anything. Apply errors happen
after the patch has been claimed, so the orchestrator still owes the portal a
terminal report. Per-entry problems are never raised; they are collected on
the result objects of the component that hit them.
"""

ERROR_UNKNOWN = -1
ERROR_TRANSFER = -2
ERROR_ARCHIVE = -3
ERROR_EVICTION = -4
ERROR_PROPERTY = -5
ERROR_STOP = -6


class PatchError(Exception):
    """Base exception carrying the numeric code reported to the portal."""

    code = ERROR_UNKNOWN

    def __init__(self, message: str, code: int = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class SetupError(PatchError):
    """Environment or configuration problem found before the patch is claimed."""
    pass


class PortalError(PatchError):
    """The admin portal could not be reached or rejected a request."""
    pass


class ApplyError(PatchError):
    """Fatal failure after the claim report; the run stops at this stage."""
    pass


class TransferError(ApplyError):
    code = ERROR_TRANSFER


class ArchiveError(ApplyError):
    code = ERROR_ARCHIVE


class EvictionError(ApplyError):
    code = ERROR_EVICTION


class PropertyError(ApplyError):
    code = ERROR_PROPERTY
