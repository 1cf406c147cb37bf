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

"""Tests for host address discovery."""

import json
import socket
from collections import namedtuple

from tomcat_patcher.utils import network

Addr = namedtuple("Addr", "family address netmask broadcast ptp")
Stats = namedtuple("Stats", "isup duplex speed mtu")


def _patch_interfaces(monkeypatch, addrs, stats):
    monkeypatch.setattr(network.psutil, "net_if_addrs", lambda: addrs)
    monkeypatch.setattr(network.psutil, "net_if_stats", lambda: stats)


def test_detects_ipv4_on_up_interfaces(monkeypatch):
    _patch_interfaces(
        monkeypatch,
        {
            "lo": [Addr(socket.AF_INET, "127.0.0.1", None, None, None)],
            "eth0": [
                Addr(socket.AF_INET, "10.0.0.5", None, None, None),
                Addr(socket.AF_INET6, "fe80::1", None, None, None),
            ],
            "eth1": [Addr(socket.AF_INET, "192.168.1.20", None, None, None)],
            "docker0": [Addr(socket.AF_INET, "172.17.0.1", None, None, None)],
        },
        {
            "lo": Stats(True, 0, 0, 65536),
            "eth0": Stats(True, 2, 1000, 1500),
            "eth1": Stats(True, 2, 1000, 1500),
            "docker0": Stats(False, 0, 0, 1500),
        },
    )

    assert network.detect_ipv4_addresses() == ["10.0.0.5", "192.168.1.20"]
    assert json.loads(network.resolve_host_ips()) == ["10.0.0.5", "192.168.1.20"]


def test_override_used_only_when_plausible(monkeypatch):
    _patch_interfaces(
        monkeypatch,
        {"eth0": [Addr(socket.AF_INET, "10.0.0.5", None, None, None)]},
        {"eth0": Stats(True, 2, 1000, 1500)},
    )

    assert network.resolve_host_ips("203.0.113.9") == '["203.0.113.9"]'
    assert network.resolve_host_ips("abc") == '["10.0.0.5"]'


def test_no_addresses_gives_empty_list(monkeypatch):
    _patch_interfaces(monkeypatch, {}, {})

    assert network.resolve_host_ips() == "[]"
