"""URL safety checks for outbound fetches.

Guards the crawler against SSRF: only HTTP(S) on standard ports, no
loopback, private, link-local, metadata or reserved addresses, either as a
literal host or as any address the hostname resolves to at validation time.
"""

import asyncio
import ipaddress
import logging
import socket
from typing import Awaitable, Callable, Optional
from urllib.parse import urlsplit

from chatkb.core.config import settings
from chatkb.core.constants import (
    ERR_DNS_FAILED,
    ERR_DNS_PRIVATE,
    ERR_INVALID_URL,
    ERR_LOCALHOST,
    ERR_METADATA,
    ERR_PORT,
    ERR_PRIVATE_IPV4,
    ERR_PRIVATE_IPV6,
    ERR_PROTOCOL,
)
from chatkb.ingestion.models import ValidationResult

logger = logging.getLogger(__name__)

Resolver = Callable[[str], Awaitable[list[str]]]

ALLOWED_SCHEMES = {"http", "https"}
ALLOWED_PORTS = {None, 80, 443}

BLOCKED_HOSTNAMES = {"localhost", "localhost.localdomain", "ip6-localhost", "ip6-loopback"}
METADATA_HOSTNAMES = {"metadata", "metadata.google.internal", "instance-data"}
METADATA_ADDRESSES = {
    ipaddress.ip_address("169.254.169.254"),
    ipaddress.ip_address("fd00:ec2::254"),
}

PRIVATE_IPV4_RANGES = [
    ipaddress.ip_network("0.0.0.0/8"),  # "This" network
    ipaddress.ip_network("10.0.0.0/8"),  # RFC 1918
    ipaddress.ip_network("100.64.0.0/10"),  # RFC 6598 carrier-grade NAT
    ipaddress.ip_network("169.254.0.0/16"),  # Link-local
    ipaddress.ip_network("172.16.0.0/12"),  # RFC 1918
    ipaddress.ip_network("192.0.0.0/24"),  # IETF protocol assignments
    ipaddress.ip_network("192.0.2.0/24"),  # TEST-NET-1
    ipaddress.ip_network("192.168.0.0/16"),  # RFC 1918
    ipaddress.ip_network("198.18.0.0/15"),  # Benchmarking
    ipaddress.ip_network("198.51.100.0/24"),  # TEST-NET-2
    ipaddress.ip_network("203.0.113.0/24"),  # TEST-NET-3
    ipaddress.ip_network("224.0.0.0/4"),  # Multicast
    ipaddress.ip_network("240.0.0.0/4"),  # Reserved, includes broadcast
]

PRIVATE_IPV6_RANGES = [
    ipaddress.ip_network("::/128"),  # Unspecified
    ipaddress.ip_network("fc00::/7"),  # Unique local
    ipaddress.ip_network("fe80::/10"),  # Link-local
    ipaddress.ip_network("fec0::/10"),  # Site-local (deprecated)
    ipaddress.ip_network("ff00::/8"),  # Multicast
]

LOOPBACK_V4 = ipaddress.ip_network("127.0.0.0/8")
LOOPBACK_V6 = ipaddress.ip_address("::1")


def classify_address(
    address: ipaddress.IPv4Address | ipaddress.IPv6Address,
) -> Optional[str]:
    """Return the block reason for an IP address, or None if it is public."""
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped

    if address in METADATA_ADDRESSES:
        return ERR_METADATA

    if isinstance(address, ipaddress.IPv4Address):
        if address in LOOPBACK_V4:
            return ERR_LOCALHOST
        if any(address in network for network in PRIVATE_IPV4_RANGES):
            return ERR_PRIVATE_IPV4
        return None

    if address == LOOPBACK_V6:
        return ERR_LOCALHOST
    if any(address in network for network in PRIVATE_IPV6_RANGES):
        return ERR_PRIVATE_IPV6
    return None


def _parse_ip(host: str) -> Optional[ipaddress.IPv4Address | ipaddress.IPv6Address]:
    try:
        # Drop an IPv6 zone id such as fe80::1%eth0
        return ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        return None


def _check_static(url: str) -> tuple[Optional[str], Optional[str], bool]:
    """Checks that need no network access.

    Returns ``(error, hostname, is_literal_ip)``.
    """
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError:
        return ERR_INVALID_URL, None, False

    scheme = parts.scheme.lower()
    if not scheme:
        return ERR_INVALID_URL, None, False
    if scheme not in ALLOWED_SCHEMES:
        return ERR_PROTOCOL, None, False
    if not parts.netloc:
        return ERR_INVALID_URL, None, False

    hostname = (parts.hostname or "").rstrip(".").lower()
    if not hostname:
        return ERR_INVALID_URL, None, False

    if port not in ALLOWED_PORTS:
        return ERR_PORT, hostname, False

    if hostname in BLOCKED_HOSTNAMES or hostname.endswith(".localhost"):
        return ERR_LOCALHOST, hostname, False
    if hostname in METADATA_HOSTNAMES:
        return ERR_METADATA, hostname, False

    address = _parse_ip(hostname)
    if address is not None:
        return classify_address(address), hostname, True

    return None, hostname, False


async def resolve_host(hostname: str) -> list[str]:
    """Resolve A and AAAA records for a hostname."""
    loop = asyncio.get_running_loop()
    infos = await asyncio.wait_for(
        loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM),
        timeout=settings.dns_timeout_seconds,
    )
    return sorted({info[4][0] for info in infos})


async def validate_url(url: str, resolver: Optional[Resolver] = None) -> ValidationResult:
    """Full safety check, including DNS resolution of the hostname.

    Every resolved address is checked with the same rules as a literal IP,
    so a public-looking name pointing at an internal address is rejected.
    """
    error, hostname, is_literal_ip = _check_static(url)
    if error:
        return ValidationResult(valid=False, error=error)
    if is_literal_ip:
        return ValidationResult(valid=True)

    resolve = resolver or resolve_host
    try:
        addresses = await resolve(hostname)
    except (OSError, asyncio.TimeoutError, UnicodeError) as e:
        logger.info(f"DNS resolution failed for {hostname}: {e}")
        return ValidationResult(valid=False, error=ERR_DNS_FAILED)

    if not addresses:
        return ValidationResult(valid=False, error=ERR_DNS_FAILED)

    for raw in addresses:
        address = _parse_ip(raw)
        if address is None:
            return ValidationResult(valid=False, error=ERR_DNS_FAILED)
        reason = classify_address(address)
        if reason == ERR_LOCALHOST:
            logger.warning(f"Blocked {hostname}: resolves to loopback {raw}")
            return ValidationResult(valid=False, error=ERR_LOCALHOST)
        if reason:
            logger.warning(f"Blocked {hostname}: resolves to {raw}")
            return ValidationResult(valid=False, error=ERR_DNS_PRIVATE.format(address=raw))

    return ValidationResult(valid=True)


def should_block_request(url: str) -> bool:
    """Cheap per-request filter without DNS, for browser subresources."""
    error, _, _ = _check_static(url)
    return error is not None and error != ERR_PORT
