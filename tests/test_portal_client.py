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

"""Tests for the admin portal client with a fake HTTP session."""

import json

import pytest
import requests

from tomcat_patcher.components.portal_client import PortalClient
from tomcat_patcher.utils.errors import PortalError


class _FakeResponse:
    def __init__(self, status_code=200, body=b"", reason="OK"):
        self.status_code = status_code
        self.content = body
        self.reason = reason

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return json.loads(self.content.decode())


class _FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response or _FakeResponse()
        self.error = error
        self.calls = []

    def _respond(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error:
            raise self.error
        return self.response

    def get(self, url, **kwargs):
        return self._respond("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._respond("POST", url, **kwargs)


MANIFEST = {
    "patch_id": "63547",
    "tomcat_dir": "/opt/tomcat/",
    "files": "sakai-23.1.tar.gz",
    "sakaiprops": "portal.cdn.version=547",
}


def test_fetch_manifest_sends_ips_and_auth_headers(config):
    session = _FakeSession(_FakeResponse(body=json.dumps(MANIFEST).encode()))

    manifest = PortalClient(config, session).fetch_manifest('["10.0.0.5"]')

    assert manifest == MANIFEST
    method, url, kwargs = session.calls[0]
    assert method == "GET"
    assert url == config.portal_url
    assert kwargs["params"] == {"ips": '["10.0.0.5"]'}
    assert kwargs["headers"] == {
        "X-Auth-Token": "test-token",
        "Content-Type": "text/plain",
        "User-Agent": "TomcatPatcher v1.0",
    }


@pytest.mark.parametrize("body", [b"", b"{}", b"null", b"[]", b"  {} "])
def test_short_bodies_mean_no_patch(config, body):
    session = _FakeSession(_FakeResponse(body=body))

    assert PortalClient(config, session).fetch_manifest("[]") is None


def test_non_200_is_a_portal_error(config):
    session = _FakeSession(_FakeResponse(status_code=403, reason="Forbidden"))

    with pytest.raises(PortalError, match="403"):
        PortalClient(config, session).fetch_manifest("[]")


def test_unreachable_portal_is_a_portal_error(config):
    session = _FakeSession(error=requests.ConnectionError("no route to host"))

    with pytest.raises(PortalError):
        PortalClient(config, session).fetch_manifest("[]")


def test_invalid_json_is_a_portal_error(config):
    session = _FakeSession(_FakeResponse(body=b"<html>maintenance</html>"))

    with pytest.raises(PortalError):
        PortalClient(config, session).fetch_manifest("[]")


def test_report_posts_form_fields(config):
    session = _FakeSession()
    client = PortalClient(config, session, clock=lambda: 1715938262.7)

    client.report("1", "4512", "63547", "Tomcat started.\n")

    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", config.report_url)
    assert kwargs["data"] == {
        "result_value": "1",
        "start_uptime": "4512",
        "last_attempt": "1715938262",
        "patch_id": "63547",
        "result": "Tomcat started.\n",
    }


def test_report_failure_raises(config):
    session = _FakeSession(_FakeResponse(status_code=500, reason="Server Error"))

    with pytest.raises(PortalError):
        PortalClient(config, session).report("10", "0", "63547")
