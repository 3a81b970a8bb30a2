# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Outbound HTTP helpers shared by webhook, mail and document collaborators.
"""

import ipaddress
from typing import Optional
from urllib.parse import urlparse

import httpx


ALLOWED_SCHEMES = ("http", "https")
BLOCKED_HOSTNAMES = ("localhost", "localhost.localdomain", "metadata.google.internal")


def is_url_safe(url: str, allow_private: bool = False) -> bool:
    """
    SSRF guard for user-configured URLs.

    Rejects non-http(s) schemes and, unless allow_private is set,
    loopback, private, link-local and reserved addresses.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return False

    if parsed.scheme.lower() not in ALLOWED_SCHEMES or not parsed.hostname:
        return False

    if allow_private:
        return True

    hostname = parsed.hostname.lower()
    if hostname in BLOCKED_HOSTNAMES or hostname.endswith(".localhost"):
        return False

    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return True  # Plain hostname

    return not (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_unspecified
        or address.is_multicast
    )


def create_http_client(
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> httpx.AsyncClient:
    """AsyncClient for collaborator calls; tests pass an httpx.MockTransport"""
    return httpx.AsyncClient(timeout=timeout, transport=transport)
