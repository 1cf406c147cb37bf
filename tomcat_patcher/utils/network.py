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

import ipaddress
import json
import socket
from typing import List

import psutil

from .index import log_message


def detect_ipv4_addresses() -> List[str]:
    """
    List the IPv4 addresses of interfaces that are up and not loopback.
    Returns:
        list: Dotted-quad strings in interface order
    """
    addresses = []
    stats = psutil.net_if_stats()

    for name, addrs in psutil.net_if_addrs().items():
        iface = stats.get(name)
        if iface is None or not iface.isup:
            continue
        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            try:
                ip = ipaddress.IPv4Address(addr.address)
            except ValueError:
                continue
            if ip.is_loopback:
                continue
            addresses.append(str(ip))

    if not addresses:
        log_message("No IPv4 address found. Are you connected to the network?", "WARNING")
    return addresses


def resolve_host_ips(local_ip: str = "") -> str:
    """
    Build the JSON array of addresses the portal uses to pick patches.

    Args:
        local_ip: Operator override; used only when it looks like a real value

    Returns:
        str: JSON array, e.g. '["10.0.0.5"]'
    """
    if len(local_ip) > 3:
        log_message(f"User-overridden IP: {local_ip}", "DEBUG")
        return json.dumps([local_ip])

    addresses = detect_ipv4_addresses()
    log_message(f"Auto-detected IPs on this server: {addresses}", "DEBUG")
    return json.dumps(addresses)
