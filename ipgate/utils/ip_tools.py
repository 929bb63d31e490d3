from __future__ import annotations

import ipaddress


def strip_port(address: str) -> str:
    """Remove a trailing port from ``host:port`` or ``[host]:port`` forms."""

    address = address.strip()
    if address.startswith("["):
        host, _, _ = address[1:].partition("]")
        return host
    # A bare IPv6 address has more than one colon and no port.
    if address.count(":") == 1:
        return address.split(":", 1)[0]
    return address


def normalize_ipv4(address: str) -> str:
    """Return the canonical IPv4 form of a client address.

    Ports are stripped and IPv4-mapped IPv6 addresses (``::ffff:a.b.c.d``) are
    unwrapped.

    Raises:
        ValueError: If the address is not an IPv4 address.
    """

    host = strip_port(address)
    try:
        ip = ipaddress.ip_address(host)
    except ValueError as exc:
        raise ValueError("Invalid IP address") from exc

    if isinstance(ip, ipaddress.IPv6Address):
        if ip.ipv4_mapped is None:
            raise ValueError("Only IPv4 client addresses are supported")
        ip = ip.ipv4_mapped
    return str(ip)
