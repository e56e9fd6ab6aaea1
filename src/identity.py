"""
Identity hashing for one-submission-per-identity admission.

Raw network addresses are never stored or logged. They are turned into
a salted BLAKE2b-256 digest that is stable across restarts (same salt,
same address, same token) and cannot be reversed to the address.
"""

import hashlib
import ipaddress
import os
from collections.abc import Collection, Mapping

IDENTITY_TOKEN_LENGTH = 64

# Header precedence when the peer is a trusted proxy or CDN
CLIENT_IP_HEADERS = ("CF-Connecting-IP", "X-Forwarded-For", "X-Real-IP")


def hash_identity(raw_identity: str, salt: str) -> str:
    """
    Derive a stable, non-reversible identity token.

    Args:
        raw_identity: Submitter's network origin (already known to be present)
        salt: Process-wide secret salt

    Returns:
        64-character lowercase hex digest

    Raises:
        ValueError: If the salt is empty
    """
    if not salt or not salt.strip():
        raise ValueError("Identity salt cannot be empty")

    data = (salt + raw_identity).encode("utf-8")
    return hashlib.blake2b(data, digest_size=32).hexdigest()


def validate_ip_address(value: str) -> bool:
    """True for a syntactically valid IPv4 or IPv6 address."""
    if not value or not isinstance(value, str):
        return False
    try:
        ipaddress.ip_address(value.strip())
        return True
    except ValueError:
        return False


def load_trusted_proxies(value: str | None = None) -> frozenset[str]:
    """
    Parse the TRUSTED_PROXIES comma-separated list.

    If not set, forwarding headers are NOT trusted.
    """
    if value is None:
        value = os.getenv("TRUSTED_PROXIES", "")
    return frozenset(ip.strip() for ip in value.split(",") if ip.strip())


def extract_client_ip(
    headers: Mapping[str, str],
    remote_addr: str | None = None,
    trusted_proxies: Collection[str] = frozenset(),
) -> str:
    """
    Extract the originating client address.

    Forwarding headers are only read when the socket peer is a trusted
    proxy. Then the order is CF-Connecting-IP, the rightmost untrusted
    hop of X-Forwarded-For, X-Real-IP. Every candidate must be a valid
    address; otherwise the peer address is used.

    Returns:
        The address, or an empty string when none is available
    """
    peer = (remote_addr or "").strip()
    if not peer or peer not in trusted_proxies:
        return peer

    for header in CLIENT_IP_HEADERS:
        value = headers.get(header)
        if not value:
            continue
        if header == "X-Forwarded-For":
            hops = [hop.strip() for hop in value.split(",")]
            for hop in reversed(hops):
                if validate_ip_address(hop) and hop not in trusted_proxies:
                    return hop
            # Every hop is a proxy; fall back to the leftmost valid one
            for hop in hops:
                if validate_ip_address(hop):
                    return hop
        elif validate_ip_address(value):
            return value.strip()

    return peer


def token_prefix(identity_token: str) -> str:
    """Short prefix safe to put in logs."""
    return identity_token[:8]
