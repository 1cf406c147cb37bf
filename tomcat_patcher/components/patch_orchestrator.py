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
Patch Orchestrator Component

Runs one patch end to end:
- Fetch the manifest and verify the instance can be patched
- Claim the patch with an in-progress report
- Stop Tomcat, apply property changes and archives
- Start Tomcat and classify the startup
- Send exactly one terminal report

Setup problems raise before the claim and are never reported. Once the claim
has gone out, every path ends in a terminal report.
"""

import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from ..utils.config import PatcherConfig
from ..utils.errors import ERROR_STOP, ERROR_UNKNOWN, ApplyError, PortalError, SetupError
from ..utils.index import log_message
from ..utils.network import resolve_host_ips
from ..utils.permissions import check_instance_exists, check_instance_ownership
from ..utils.transcript import OutputTranscript
from .archive_operations import ArchiveOperations
from .archive_transport import ArchiveTransport
from .eviction_planner import EvictionPlanner
from .portal_client import PortalClient
from .process_controller import ProcessController
from .property_patcher import PropertyPatcher
from .readiness_monitor import UNKNOWN_STARTUP, ReadinessMonitor, ReadinessState

# A 'files' value this short cannot name an archive.
MIN_FILES_LENGTH = 3


class Outcome(Enum):
    """Result codes understood by the admin portal."""
    SUCCESS = "1"
    SERVICE_DOWN = "2"
    NO_SHUTDOWN = "4"
    DEFERRED = "8"
    IN_PROGRESS = "10"


_READINESS_OUTCOMES = {
    ReadinessState.READY: Outcome.SUCCESS,
    ReadinessState.FAILED: Outcome.SERVICE_DOWN,
    ReadinessState.DEFERRED: Outcome.DEFERRED,
}


@dataclass(frozen=True)
class PatchDescriptor:
    """One unit of work as handed out by the portal."""
    patch_id: str
    instance_root: str
    archives: Tuple[str, ...] = ()
    properties: str = ""

    @classmethod
    def from_manifest(cls, manifest: Mapping[str, Any]) -> "PatchDescriptor":
        """
        Build a descriptor from the portal's JSON manifest.

        Raises:
            SetupError: If patch_id or tomcat_dir is missing
        """
        def text(key: str) -> str:
            value = manifest.get(key)
            return "" if value is None else str(value)

        patch_id = text("patch_id").strip()
        instance_root = text("tomcat_dir").strip()
        if not patch_id:
            raise SetupError("Manifest is missing patch_id")
        if not instance_root:
            raise SetupError("Manifest is missing tomcat_dir")

        files = text("files")
        archives = tuple(files.split()) if len(files) > MIN_FILES_LENGTH else ()
        return cls(
            patch_id=patch_id,
            instance_root=instance_root,
            archives=archives,
            properties=text("sakaiprops"),
        )


class PatchOrchestrator:
    """Sequences the components for one run of the agent."""

    def __init__(self, config: PatcherConfig,
                 portal: Optional[PortalClient] = None,
                 transport: Optional[ArchiveTransport] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 agent_uid: Optional[int] = None):
        self.config = config
        self.portal = portal or PortalClient(config)
        self.transport = transport or ArchiveTransport(config)
        self._sleep = sleep
        self.agent_uid = agent_uid
        self.transcript = OutputTranscript()

    def run(self, ips: Optional[str] = None) -> Dict[str, Any]:
        """
        Ask the portal for work and apply it.

        Args:
            ips: JSON array of host addresses; detected when omitted

        Returns:
            Dict with 'patched' False when the portal had nothing queued,
            otherwise the result of apply()

        Raises:
            SetupError: Before the claim, if the manifest or instance is unusable
            PortalError: If the portal cannot be reached
        """
        ips = ips if ips is not None else resolve_host_ips(self.config.local_ip)
        manifest = self.portal.fetch_manifest(ips)
        if not manifest:
            log_message("No patches returned from portal")
            return {"success": True, "patched": False, "outcome": None}

        descriptor = PatchDescriptor.from_manifest(manifest)
        log_message(f"Patch returned from portal: {descriptor.patch_id} for {descriptor.instance_root}", "DEBUG")
        return self.apply(descriptor)

    def apply(self, descriptor: PatchDescriptor) -> Dict[str, Any]:
        """Claim, patch, restart and report one descriptor."""
        start_time = time.time()
        root = descriptor.instance_root

        log_message("=" * 60)
        log_message(f"APPLYING PATCH {descriptor.patch_id} TO {root}")
        log_message("=" * 60)

        # Step 1: Make sure this agent may touch the instance
        log_message("Step 1: Checking Tomcat directory and ownership...")
        check_instance_exists(root)
        check_instance_ownership(root, self.config.control_script, self.agent_uid)

        # Step 2: Claim the patch so no other agent picks it up
        log_message("Step 2: Claiming patch with admin portal...")
        self.portal.report(Outcome.IN_PROGRESS.value, "0", descriptor.patch_id)

        try:
            return self._patch_claimed(descriptor, start_time)
        except PortalError:
            raise
        except Exception as e:
            log_message(f"✗ Unexpected error while patching {descriptor.patch_id}: {e}", "ERROR")
            self.transcript.append(f"Patch failed: {e}\n")
            self._finish(descriptor, Outcome.SERVICE_DOWN, ERROR_UNKNOWN, start_time, error=str(e))
            raise

    def _patch_claimed(self, descriptor: PatchDescriptor, start_time: float) -> Dict[str, Any]:
        root = descriptor.instance_root
        controller = ProcessController(self.config, root, self.transcript, self._sleep)

        # Step 3: Stop Tomcat
        log_message("Step 3: Stopping Tomcat...")
        if not controller.stop():
            self.transcript.append("Tomcat could not be stopped\n")
            return self._finish(descriptor, Outcome.NO_SHUTDOWN, ERROR_STOP, start_time,
                                error="Tomcat could not be stopped")

        # Step 4: Apply properties and archives
        log_message("Step 4: Applying patch contents...")
        try:
            details = self._apply_contents(descriptor)
        except ApplyError as e:
            log_message(f"✗ Patch {descriptor.patch_id} failed: {e.message}", "ERROR")
            self.transcript.append(f"Patch failed: {e.message}\n")
            return self._finish(descriptor, Outcome.SERVICE_DOWN, e.code, start_time, error=e.message)

        # Step 5: Start Tomcat and wait for it
        log_message("Step 5: Starting Tomcat...")
        controller.start(descriptor.patch_id)

        log_message("Step 6: Waiting for Tomcat startup...")
        readiness = ReadinessMonitor(self.config, root, self._sleep).wait_for_startup()
        outcome = _READINESS_OUTCOMES[readiness.state]
        startup = readiness.startup_ms if outcome is Outcome.SUCCESS else UNKNOWN_STARTUP
        return self._finish(descriptor, outcome, startup, start_time, details=details)

    def _apply_contents(self, descriptor: PatchDescriptor) -> Dict[str, Any]:
        root = descriptor.instance_root
        details: Dict[str, Any] = {"properties": [], "archives": [], "connectors_removed": []}

        if descriptor.properties:
            patcher = PropertyPatcher(self.config, root)
            details["properties"] = [change.key for change in patcher.apply(descriptor.properties, descriptor.patch_id)]

        operations = ArchiveOperations(self.config, root)
        planner = EvictionPlanner(self.config, root)
        for locator in descriptor.archives:
            archive_path = self.transport.fetch(locator)
            scan = operations.analyze(archive_path)
            eviction = planner.evict(scan.bucket)
            extraction = operations.extract(archive_path)
            details["archives"].append({
                "archive": os.path.basename(archive_path),
                "evicted": eviction.removed,
                "written": len(extraction.written),
                "protected": extraction.protected,
                "failed": extraction.failed + eviction.failed,
            })

        details["connectors_removed"] = planner.remove_duplicate_connector_jars()
        return details

    def _finish(self, descriptor: PatchDescriptor, outcome: Outcome, value: int, start_time: float,
                error: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self.portal.report(outcome.value, str(value), descriptor.patch_id, self.transcript.text())

        duration = time.time() - start_time
        symbol = "✓" if outcome is Outcome.SUCCESS else "✗"
        log_message("=" * 60)
        log_message(f"{symbol} PATCH {descriptor.patch_id} FINISHED: {outcome.name} ({duration:.1f}s)")
        log_message("=" * 60)

        return {
            "success": outcome is Outcome.SUCCESS,
            "patched": True,
            "patch_id": descriptor.patch_id,
            "outcome": outcome.name,
            "result_value": outcome.value,
            "start_uptime": value,
            "error": error,
            "details": details or {},
            "duration": duration,
        }
