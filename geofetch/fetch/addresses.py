"""Private and reserved address classification for SSRF defense.

Hostnames are classified only when they are IP literals; DNS names are not
resolved here.
"""

import re
import socket
from ipaddress import (
    IPv4Address,
    IPv4Network,
    IPv6Address,
    IPv6Network,
    ip_address,
)


IPAddress = IPv4Address | IPv6Address

PRIVATE_IPV4_NETWORKS: tuple[tuple[IPv4Network, str], ...] = tuple(
    (IPv4Network(cidr), label)
    for cidr, label in (
        ("10.0.0.0/8", "private network"),
        ("172.16.0.0/12", "private network"),
        ("192.168.0.0/16", "private network"),
        ("127.0.0.0/8", "loopback"),
        ("169.254.0.0/16", "link-local"),
        ("0.0.0.0/8", "this network"),
        ("100.64.0.0/10", "shared address space"),
        ("192.0.0.0/24", "IETF protocol assignments"),
        ("192.0.2.0/24", "documentation"),
        ("198.18.0.0/15", "benchmarking"),
        ("198.51.100.0/24", "documentation"),
        ("203.0.113.0/24", "documentation"),
        ("233.252.0.0/24", "documentation"),
        ("224.0.0.0/4", "multicast"),
        ("240.0.0.0/4", "reserved"),
    )
)

PRIVATE_IPV6_NETWORKS: tuple[tuple[IPv6Network, str], ...] = tuple(
    (IPv6Network(cidr), label)
    for cidr, label in (
        ("::1/128", "loopback"),
        ("::/128", "unspecified"),
        ("::/96", "IPv4-compatible"),
        ("fe80::/10", "link-local"),
        ("fec0::/10", "site-local"),
        ("fc00::/7", "unique-local"),
        ("ff00::/8", "multicast"),
        ("100::/64", "discard-only"),
        ("2001:db8::/32", "documentation"),
    )
)

# Only the Teredo /32; the rest of 2001::/16 holds public allocations
TEREDO_NETWORK = IPv6Network("2001::/32")

# Numeric host spellings that inet_aton accepts (2130706433, 0x7f.1, 127.1)
_LEGACY_IPV4_PATTERN = re.compile(
    r"^(0x[0-9a-f]*|[0-9]+)(\.(0x[0-9a-f]*|[0-9]+)){0,3}$", re.IGNORECASE
)


def normalize_hostname(hostname: str) -> str:
    """Normalize a hostname before classification.

    Strips IPv6 bracket notation (``[::1]`` -> ``::1``), a trailing root
    dot, and lowercases.

    Args:
        hostname: Raw hostname from a parsed URL.

    Returns:
        Normalized hostname.
    """
    host = hostname.strip().lower()
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if host.endswith(".") and ":" not in host:
        host = host[:-1]
    return host


def parse_ip_literal(hostname: str) -> IPAddress | None:
    """Interpret a hostname as an IP address if it is one.

    Args:
        hostname: Normalized hostname.

    Returns:
        The address, or None for DNS names.
    """
    try:
        return ip_address(hostname)
    except ValueError:
        pass

    if _LEGACY_IPV4_PATTERN.match(hostname):
        try:
            return IPv4Address(socket.inet_aton(hostname))
        except OSError:
            return None
    return None


def classify_address(address: IPAddress) -> str | None:
    """Return the reserved range an address falls in, if any.

    IPv4-mapped and 6to4 IPv6 addresses are unwrapped and the embedded
    IPv4 address classified.

    Args:
        address: Address to classify.

    Returns:
        Human-readable range label, or None for public addresses.
    """
    if isinstance(address, IPv6Address):
        mapped = address.ipv4_mapped
        if mapped is not None:
            return classify_address(mapped)
        if address in TEREDO_NETWORK:
            return "Teredo tunnel"
        embedded = address.sixtofour
        if embedded is not None:
            label = classify_address(embedded)
            return f"6to4 embedding {label}" if label else None
        for network, label in PRIVATE_IPV6_NETWORKS:
            if address in network:
                return label
        return None

    for network, label in PRIVATE_IPV4_NETWORKS:
        if address in network:
            return label
    return None


def private_address_label(hostname: str) -> str | None:
    """Classify a hostname as a private/reserved address.

    Args:
        hostname: Hostname, bracketed or not.

    Returns:
        Range label if the hostname is a private/reserved IP literal.
    """
    address = parse_ip_literal(normalize_hostname(hostname))
    if address is None:
        return None
    return classify_address(address)


def is_private_address(hostname: str) -> bool:
    """Check if a hostname is a private/reserved IP literal."""
    return private_address_label(hostname) is not None
