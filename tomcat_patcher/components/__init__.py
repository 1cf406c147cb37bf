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
Component-based patch application: one class per stage of a patch run.
"""

from .archive_operations import ArchiveOperations, ExtractionResult
from .eviction_planner import EvictionPlanner, EvictionPlan, replace_version_digits
from .property_patcher import PropertyPatcher
from .process_controller import ProcessController
from .readiness_monitor import ReadinessMonitor, ReadinessResult, ReadinessState
from .archive_transport import ArchiveTransport
from .portal_client import PortalClient
from .patch_orchestrator import PatchOrchestrator, PatchDescriptor, Outcome

__all__ = [
    'ArchiveOperations',
    'ExtractionResult',
    'EvictionPlanner',
    'EvictionPlan',
    'replace_version_digits',
    'PropertyPatcher',
    'ProcessController',
    'ReadinessMonitor',
    'ReadinessResult',
    'ReadinessState',
    'ArchiveTransport',
    'PortalClient',
    'PatchOrchestrator',
    'PatchDescriptor',
    'Outcome'
]
