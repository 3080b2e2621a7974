import hashlib
import ipaddress
from datetime import UTC, datetime
from typing import Iterable

from fastapi import Request

from app.core.config import settings


def utc_now() -> datetime:
    """
    Current time as an aware UTC datetime

    Returns:
        datetime: Now, in UTC
    """
    return datetime.now(UTC)


def sha256_hex(value: str) -> str:
    """
    Hex encoded SHA-256 digest of a UTF-8 string

    Args:
        value (str): The string to hash

    Returns:
        str: Lowercase hex digest
    """
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def is_trusted_proxy(address: str, trusted_proxies: Iterable[str]) -> bool:
    """
    Check an address against trusted proxy addresses and networks

    Args:
        address: IP address of a hop
        trusted_proxies: Addresses or CIDR networks, e.g. "10.0.0.0/8"

    Returns:
        bool: True if the address belongs to a trusted proxy
    """
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False

    return any(ip in ipaddress.ip_network(proxy, strict=False) for proxy in trusted_proxies)


def get_client_ip(request: Request, trusted_proxies: Iterable[str] | None = None) -> str:
    """
    Get the client IP address of a request

    The socket peer is the client unless it is a trusted proxy. Only then are the
    forwarding headers read: X-Forwarded-For is walked from the right and the first
    hop that is not a trusted proxy wins, then X-Real-IP and X-Client-IP.

    Args:
        request: FastAPI request object
        trusted_proxies: Proxy addresses or networks, defaults to settings.trusted_proxies

    Returns:
        Client IP address as a string
    """
    trusted = list(trusted_proxies if trusted_proxies is not None else settings.trusted_proxies_list)
    peer = request.client.host if request.client else None

    if peer is None:
        return "unknown"

    if not is_trusted_proxy(peer, trusted):
        return peer

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
        for hop in reversed(hops):
            if not is_trusted_proxy(hop, trusted):
                return hop
        if hops:
            return hops[0]

    for header in ("X-Real-IP", "X-Client-IP"):
        value = request.headers.get(header, "").strip()
        if value:
            return value

    return peer


def path_matches(path: str, exact: list[str], prefixes: list[str]) -> bool:
    """
    Check a request path against exact paths and path prefixes

    A prefix matches the path itself and anything below it ("/verify" matches
    "/verify" and "/verify/abc" but not "/verifyx").

    Args:
        path: Request path
        exact: Paths that must match exactly
        prefixes: Path prefixes

    Returns:
        bool: True if the path is covered
    """
    if path in exact:
        return True

    return any(path == prefix or path.startswith(prefix.rstrip("/") + "/") for prefix in prefixes)
