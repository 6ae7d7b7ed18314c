"""
Client address resolution for incoming requests.
"""

import ipaddress
import logging
from typing import Mapping, Optional

from auditlog.models import MAX_ADDRESS_LENGTH, NULL_ADDRESS

logger = logging.getLogger(__name__)

# Checked in order, before the raw connection address.
PROXY_HEADERS = (
    "cf-connecting-ip",       # Cloudflare
    "client-ip",              # Proxy
    "x-forwarded-for",        # Load balancer/proxy
    "x-forwarded",            # Proxy
    "x-cluster-client-ip",    # Cluster
    "forwarded-for",          # Proxy
    "forwarded",              # RFC 7239
)


def normalize_address(value: Optional[str]) -> Optional[str]:
    """
    Return the canonical text form of an IP address, or None if invalid.

    Accepts bracketed IPv6 (``[::1]``), ``host:port`` IPv4 and bracketed
    IPv6 with a port (``[::1]:8080``).
    """
    if not value:
        return None

    candidate = value.strip().strip('"')

    if candidate.startswith("["):
        end = candidate.find("]")
        if end == -1:
            return None
        candidate = candidate[1:end]
    elif candidate.count(":") == 1:
        candidate = candidate.split(":", 1)[0]

    # Drop the IPv6 zone index (fe80::1%eth0)
    candidate = candidate.split("%", 1)[0]

    try:
        address = str(ipaddress.ip_address(candidate))
    except ValueError:
        return None

    if len(address) > MAX_ADDRESS_LENGTH:
        return None
    return address


def _first_hop(header: str, value: str) -> str:
    first = value.split(",", 1)[0].strip()
    if header == "forwarded":
        for part in first.split(";"):
            key, _, param = part.strip().partition("=")
            if key.lower() == "for":
                return param
        return ""
    return first


def resolve_client_ip(
    headers: Mapping[str, str],
    remote_addr: Optional[str] = None,
    trust_proxy_headers: bool = True
) -> str:
    """
    Resolve the originating address of a request.

    Args:
        headers: Request headers (lookup must be case-insensitive or lowercased)
        remote_addr: Address of the directly connected peer
        trust_proxy_headers: Whether forwarded-for style headers are honoured

    Returns:
        The first syntactically valid address found, or ``0.0.0.0``
    """
    if trust_proxy_headers:
        for header in PROXY_HEADERS:
            value = headers.get(header)
            if not value:
                continue
            address = normalize_address(_first_hop(header, value))
            if address:
                return address
            logger.debug(f"Ignoring invalid address in {header}: {value!r}")

    return normalize_address(remote_addr) or NULL_ADDRESS
