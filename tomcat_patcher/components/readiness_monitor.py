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
Startup readiness detection.

After the start command the monitor waits a settle interval, then re-reads the
fresh startup log on a fixed poll interval until the wait budget runs out. The
first line that carries either a known transient-failure signature or the
startup marker decides the outcome.
"""

import os
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..utils.config import PatcherConfig
from ..utils.index import log_message

UNKNOWN_STARTUP = -1

# Tomcat 8.5+ logs "Server startup in [4512] milliseconds".
_BRACKETED_MS = re.compile(r"\[(\d+)\]")
# Older releases log "Server startup in 4512 ms"; small numbers are not durations.
BARE_TOKEN_MINIMUM = 1000


class ReadinessState(Enum):
    READY = "ready"
    FAILED = "failed"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class ReadinessResult:
    state: ReadinessState
    startup_ms: int = UNKNOWN_STARTUP
    line: str = ""


def _bare_duration(text: str) -> Optional[int]:
    for token in text.split():
        if token.isdigit() and int(token) > BARE_TOKEN_MINIMUM:
            return int(token)
    return None


def parse_startup_time(line: str, marker: str = "Server startup in") -> int:
    """
    Pull the startup duration in milliseconds out of a marker line.

    Args:
        line: Log line containing the startup marker
        marker: Marker text; the number after it is preferred

    Returns:
        int: Milliseconds, or -1 when no usable number is present
    """
    position = line.find(marker)
    tail = line[position + len(marker):] if position >= 0 else line

    match = _BRACKETED_MS.search(tail)
    if match and int(match.group(1)) > 0:
        return int(match.group(1))

    for text in (tail, line):
        duration = _bare_duration(text)
        if duration is not None:
            return duration
    return UNKNOWN_STARTUP


class ReadinessMonitor:
    """Polls the startup log of one instance."""

    def __init__(self, config: PatcherConfig, instance_root: str,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.instance_root = instance_root
        self._sleep = sleep

    @property
    def log_path(self) -> str:
        return os.path.join(self.instance_root, self.config.startup_log)

    def check_log(self) -> Optional[ReadinessResult]:
        """
        Scan the startup log once.

        Returns:
            ReadinessResult or None: None while neither marker nor signature is present
        """
        line_count = 0
        try:
            with open(self.log_path, 'r', errors='replace') as f:
                for line_count, line in enumerate(f, start=1):
                    line = line.rstrip("\n")
                    for signature in self.config.defer_signatures:
                        if signature in line:
                            log_message(f"[READY] Found deferral signature: {line}", "WARNING")
                            return ReadinessResult(ReadinessState.DEFERRED, UNKNOWN_STARTUP, line)
                    if self.config.startup_marker in line:
                        startup_ms = parse_startup_time(line, self.config.startup_marker)
                        log_message(f"[READY] Found '{self.config.startup_marker}': {startup_ms}", "DEBUG")
                        if startup_ms > 0:
                            return ReadinessResult(ReadinessState.READY, startup_ms, line)
                        return ReadinessResult(ReadinessState.FAILED, UNKNOWN_STARTUP, line)
        except FileNotFoundError:
            log_message(f"[READY] {self.config.startup_log} not written yet", "DEBUG")
            return None
        except OSError as e:
            log_message(f"[READY] Could not read {self.config.startup_log}: {e}", "WARNING")
            return None

        log_message(f"[READY] Scanned {line_count} lines", "DEBUG")
        return None

    def wait_for_startup(self) -> ReadinessResult:
        """Block until the startup log decides the outcome or the wait runs out."""
        settle = self.config.startup_settle_seconds
        poll = self.config.startup_poll_seconds
        budget = self.config.startup_wait_seconds

        log_message(f"[READY] Waiting {settle}s before checking {self.config.startup_log}")
        self._sleep(settle)

        for elapsed in range(settle, budget, poll):
            result = self.check_log()
            if result is not None:
                if result.state is ReadinessState.READY:
                    log_message(f"[READY] ✓ Tomcat started in {result.startup_ms} ms")
                return result
            self._sleep(poll)
            log_message(f"[READY] Checking logs again. Seconds elapsed: {elapsed + poll}", "DEBUG")

        log_message(f"[READY] ✗ No startup marker after {budget}s", "ERROR")
        return ReadinessResult(ReadinessState.FAILED, UNKNOWN_STARTUP)
