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

"""Tests for archive lookup and download against fake sessions and a local HTTP server."""

import os
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest
import requests

from tomcat_patcher.components.archive_transport import ArchiveTransport
from tomcat_patcher.utils.errors import TransferError

from tests.helpers import write_file


class _FakeResponse:
    def __init__(self, status_code=200, body=b"", headers=None):
        self.status_code = status_code
        self.body = body
        self.headers = headers if headers is not None else {"Content-Length": str(len(body))}

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.body), chunk_size):
            yield self.body[start:start + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class _FakeSession:
    def __init__(self, responses):
        self.responses = responses
        self.headers = {}
        self.requested = []

    def get(self, url, stream=False, timeout=None):
        self.requested.append(url)
        response = self.responses.get(url, _FakeResponse(404))
        if isinstance(response, Exception):
            raise response
        return response


def test_local_path_used_as_is(config, tmp_path):
    archive = write_file(tmp_path / "local/patch.tar.gz", "data")
    session = _FakeSession({})

    assert ArchiveTransport(config, session).fetch(str(archive)) == str(archive)
    assert session.requested == []


def test_candidate_urls_prefer_legacy_patch_dir(config):
    transport = ArchiveTransport(config, _FakeSession({}))

    assert transport.candidate_urls("/patches/2024/fix.tar.gz") == [
        "https://patches.example.test/patches/2024/fix.tar.gz",
        "https://patches.example.test/sakai-builder/fix.tar.gz",
    ]
    assert transport.candidate_urls("fix.tar.gz") == [
        "https://patches.example.test/sakai-builder/fix.tar.gz",
    ]


def test_download_into_patch_dir(config):
    body = b"tarball bytes" * 100
    url = "https://patches.example.test/sakai-builder/fix.tar.gz"
    session = _FakeSession({url: _FakeResponse(body=body)})

    path = ArchiveTransport(config, session).fetch("fix.tar.gz")

    assert path == f"{config.patch_dir}/fix.tar.gz"
    with open(path, "rb") as handle:
        assert handle.read() == body
    assert session.headers["User-Agent"] == config.user_agent


def test_stale_cached_copy_is_replaced(config):
    cached = write_file(Path(config.patch_dir) / "fix.tar.gz", "stale")
    url = "https://patches.example.test/sakai-builder/fix.tar.gz"
    session = _FakeSession({url: _FakeResponse(body=b"fresh")})

    ArchiveTransport(config, session).fetch("fix.tar.gz")

    assert cached.read_bytes() == b"fresh"


def test_cached_copy_reused_when_enabled(config):
    cached = write_file(Path(config.patch_dir) / "fix.tar.gz", "cached")
    session = _FakeSession({})
    transport = ArchiveTransport(config.with_overrides(reuse_cached_archives=True), session)

    assert transport.fetch("fix.tar.gz") == str(cached)
    assert session.requested == []


def test_falls_through_to_next_url(config):
    legacy = "https://patches.example.test/patches/fix.tar.gz"
    builder = "https://patches.example.test/sakai-builder/fix.tar.gz"
    session = _FakeSession({
        legacy: requests.ConnectionError("connection refused"),
        builder: _FakeResponse(body=b"ok"),
    })

    path = ArchiveTransport(config, session).fetch("/patches/fix.tar.gz")

    assert session.requested == [legacy, builder]
    with open(path, "rb") as handle:
        assert handle.read() == b"ok"


def test_not_found_anywhere_raises(config):
    with pytest.raises(TransferError) as excinfo:
        ArchiveTransport(config, _FakeSession({})).fetch("missing.tar.gz")
    assert excinfo.value.code == -2


def test_short_read_is_fatal_and_leaves_nothing_behind(config):
    url = "https://patches.example.test/sakai-builder/fix.tar.gz"
    response = _FakeResponse(body=b"half", headers={"Content-Length": "1024"})

    with pytest.raises(TransferError):
        ArchiveTransport(config, _FakeSession({url: response})).fetch("fix.tar.gz")

    assert os.listdir(config.patch_dir) == []


def test_missing_content_length_accepts_body(config):
    url = "https://patches.example.test/sakai-builder/fix.tar.gz"
    response = _FakeResponse(body=b"chunked", headers={})

    path = ArchiveTransport(config, _FakeSession({url: response})).fetch("fix.tar.gz")

    with open(path, "rb") as handle:
        assert handle.read() == b"chunked"


class _BrokenResponse(_FakeResponse):
    def iter_content(self, chunk_size=1):
        yield self.body
        raise requests.exceptions.ChunkedEncodingError("IncompleteRead(4 bytes read, 1020 more expected)")


def test_body_error_is_fatal_and_skips_remaining_urls(config):
    legacy = "https://patches.example.test/patches/fix.tar.gz"
    builder = "https://patches.example.test/sakai-builder/fix.tar.gz"
    session = _FakeSession({
        legacy: _BrokenResponse(body=b"half", headers={"Content-Length": "1024"}),
        builder: _FakeResponse(body=b"ok"),
    })

    with pytest.raises(TransferError) as excinfo:
        ArchiveTransport(config, session).fetch("/patches/fix.tar.gz")

    assert excinfo.value.code == -2
    assert session.requested == [legacy]
    assert os.listdir(config.patch_dir) == []


class _PatchHandler(BaseHTTPRequestHandler):
    def do_GET(self):
        if self.path == "/patches/fix.tar.gz":
            self.send_response(200)
            self.send_header("Content-Length", "1000")
            self.end_headers()
            self.wfile.write(b"0123456789")
        else:
            self.send_response(200)
            self.send_header("Content-Length", "2")
            self.end_headers()
            self.wfile.write(b"ok")

    def log_message(self, format, *args):
        pass


@pytest.fixture
def patch_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _PatchHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}/"
    server.shutdown()
    server.server_close()


def test_truncated_download_from_server_is_fatal(config, patch_server):
    transport = ArchiveTransport(config.with_overrides(patch_web=patch_server))

    with pytest.raises(TransferError):
        transport.fetch("/patches/fix.tar.gz")

    assert os.listdir(config.patch_dir) == []
