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

import time
from typing import Any, Callable, Dict, Optional

import requests

from ..utils.config import PatcherConfig
from ..utils.errors import PortalError
from ..utils.index import log_message

# Bodies this short ("{}", "null", "[]") mean the portal has nothing queued.
EMPTY_BODY_LIMIT = 5


class PortalClient:
    """Talks to the admin portal: one manifest fetch and the outcome reports."""

    def __init__(self, config: PatcherConfig, session: Optional[requests.Session] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config
        self.session = session or requests.Session()
        self._clock = clock

    def fetch_manifest(self, ips: str) -> Optional[Dict[str, Any]]:
        """
        Ask the portal whether a patch is queued for this host.

        Args:
            ips: JSON array of this host's IPv4 addresses

        Returns:
            dict or None: The manifest, or None when there is nothing to do

        Raises:
            PortalError: If the portal is unreachable, answers non-200 or sends garbage
        """
        headers = {
            "X-Auth-Token": self.config.token,
            "Content-Type": "text/plain",
            "User-Agent": self.config.user_agent,
        }
        try:
            resp = self.session.get(
                self.config.portal_url,
                params={"ips": ips},
                headers=headers,
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as e:
            raise PortalError(f"Could not reach admin portal: {e}")

        if resp.status_code != 200:
            raise PortalError(f"Bad HTTP fetch: {resp.status_code} {resp.reason}")

        if len(resp.content) <= EMPTY_BODY_LIMIT:
            return None

        try:
            data = resp.json()
        except ValueError as e:
            raise PortalError(f"Admin portal returned invalid JSON: {e}")

        if not isinstance(data, dict):
            raise PortalError(f"Admin portal returned unexpected data: {type(data).__name__}")
        log_message(f"[PORTAL] Raw data from admin portal: {data}", "DEBUG")
        return data or None

    def report(self, result_value: str, start_uptime: str, patch_id: str, result_text: str = "") -> None:
        """
        POST one outcome report.

        Raises:
            PortalError: If the report could not be delivered
        """
        values = {
            "result_value": result_value,
            "start_uptime": start_uptime,
            "last_attempt": str(int(self._clock())),
            "patch_id": patch_id,
            "result": result_text,
        }
        log_message(f"[PORTAL] Values being sent to admin portal: {values}", "DEBUG")
        try:
            resp = self.session.post(
                self.config.report_url,
                data=values,
                headers={"User-Agent": self.config.user_agent},
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as e:
            raise PortalError(f"Could not POST update: {e}")

        if not resp.ok:
            raise PortalError(f"Admin portal rejected update: {resp.status_code} {resp.reason}")
        log_message(f"[PORTAL] Reported result {result_value} for patch {patch_id}", "DEBUG")
