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
Tomcat process control.

Stopping is graceful first (the instance's own control script), then forceful:
after a grace interval every surviving JVM that belongs to the instance is
killed, and the check-and-kill is repeated to absorb slow shutdowns.

A JVM belongs to the instance when its executable name is one of the
configured process names and either its working directory lies under the
instance root or its -Dcatalina.base argument points at it.
"""

import os
import subprocess
import time
from typing import Callable, List, Optional, Sequence

import psutil

from ..utils.config import PatcherConfig
from ..utils.index import is_within, log_message, path_exists
from ..utils.transcript import OutputTranscript

CATALINA_BASE_ARG = "-Dcatalina.base="


class ProcessController:
    """Drives one Tomcat instance through stop and start."""

    def __init__(self, config: PatcherConfig, instance_root: str,
                 transcript: Optional[OutputTranscript] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.instance_root = instance_root
        self.transcript = transcript if transcript is not None else OutputTranscript()
        self._sleep = sleep

    @property
    def script_path(self) -> str:
        return os.path.join(self.instance_root, self.config.control_script)

    def run_control(self, args: Sequence[str]) -> bool:
        """
        Run the control script with the given arguments and keep its output.

        Returns:
            bool: True when the script exited with status 0
        """
        cmd = [self.script_path, *args]
        log_message(f"[PROCESS] Running: {' '.join(cmd)}", "DEBUG")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, cwd=self.instance_root)
        except OSError as e:
            log_message(f"[PROCESS] ✗ Could not run {self.config.control_script}: {e}", "ERROR")
            self.transcript.append(f"{' '.join(cmd)}: {e}\n")
            return False

        self.transcript.append(result.stdout)
        self.transcript.append(result.stderr)
        if result.returncode != 0:
            log_message(
                f"[PROCESS] {self.config.control_script} {' '.join(args)} exited with {result.returncode}",
                "WARNING"
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Process discovery
    # ------------------------------------------------------------------
    def _belongs_to_instance(self, info: dict) -> bool:
        names = self.config.process_names
        name = info.get("name") or ""
        exe = os.path.basename(info.get("exe") or "")
        if name not in names and exe not in names:
            return False

        cwd = info.get("cwd")
        if cwd and is_within(self.instance_root, cwd):
            return True

        for arg in info.get("cmdline") or []:
            if arg.startswith(CATALINA_BASE_ARG):
                base = arg[len(CATALINA_BASE_ARG):]
                if base and os.path.realpath(base) == os.path.realpath(self.instance_root):
                    return True
        return False

    def find_service_processes(self) -> List[psutil.Process]:
        """Return the live processes that belong to this Tomcat instance."""
        matches = []
        for proc in psutil.process_iter(["pid", "name", "exe", "cwd", "cmdline"]):
            if self._belongs_to_instance(proc.info):
                matches.append(proc)
        return matches

    def kill_survivors(self) -> int:
        """Send SIGKILL to every instance process still running; returns how many were signalled."""
        killed = 0
        for proc in self.find_service_processes():
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied as e:
                log_message(f"[PROCESS] ✗ Not allowed to kill pid {proc.pid}: {e}", "ERROR")
                continue
            log_message(f"[PROCESS] Killed surviving Tomcat process {proc.pid}")
            killed += 1
        return killed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def stop(self) -> bool:
        """
        Stop Tomcat, escalating to kill when the graceful stop is not enough.

        Returns:
            bool: True when no instance process is left running
        """
        log_message("[PROCESS] Stopping Tomcat")
        self.run_control(self.config.stop_args)
        self._sleep(self.config.stop_grace_seconds)

        for _ in range(self.config.kill_passes):
            self.kill_survivors()
            self._sleep(self.config.stop_grace_seconds)

        survivors = self.find_service_processes()
        if survivors:
            pids = [proc.pid for proc in survivors]
            log_message(f"[PROCESS] ✗ Tomcat processes still running after stop: {pids}", "ERROR")
            return False

        log_message("[PROCESS] ✓ Tomcat stopped")
        return True

    def rotate_startup_log(self, patch_id: str) -> Optional[str]:
        """Move the previous startup log aside so readiness only sees fresh output."""
        current = os.path.join(self.instance_root, self.config.startup_log)
        if not path_exists(current):
            return None

        rotated = f"{current}-pre-patch-{patch_id}"
        try:
            os.replace(current, rotated)
        except OSError as e:
            log_message(f"[PROCESS] Could not rotate {self.config.startup_log}: {e}", "WARNING")
            return None

        log_message(f"[PROCESS] Rotated startup log to {os.path.basename(rotated)}", "DEBUG")
        return rotated

    def start(self, patch_id: str) -> bool:
        log_message("[PROCESS] Starting Tomcat")
        self.rotate_startup_log(patch_id)
        started = self.run_control(self.config.start_args)
        if started:
            log_message("[PROCESS] ✓ Start command issued")
        return started
