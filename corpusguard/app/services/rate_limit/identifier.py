"""Client identifier resolution.

Derives the per-caller rate limit key from request headers. Proxies and
NAT mean the key is not globally unique; that approximation is accepted.
"""

import re
from typing import Mapping, Optional

ANONYMOUS_IDENTIFIER = "anonymous"

FORWARDED_FOR_HEADER = "x-forwarded-for"
REAL_IP_HEADER = "x-real-ip"

# Longest legitimate value is a bracketed IPv6 address with zone and port
MAX_IDENTIFIER_LENGTH = 128
_IDENTIFIER_PATTERN = re.compile(r"^[0-9A-Za-z.:\[\]%_-]+$")


def _clean(candidate: Optional[str]) -> Optional[str]:
    if candidate is None:
        return None
    candidate = candidate.strip()
    if not candidate or len(candidate) > MAX_IDENTIFIER_LENGTH:
        return None
    if not _IDENTIFIER_PATTERN.match(candidate):
        return None
    return candidate


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    # Plain dicts are case sensitive, Starlette headers are not
    for key, candidate in headers.items():
        if key.lower() == name:
            return candidate
    return None


def get_client_identifier(headers: Mapping[str, str]) -> str:
    """Get the rate limit identifier for a request.

    Preference order: first address in X-Forwarded-For, then X-Real-IP,
    then the shared ``anonymous`` sentinel so unattributable callers still
    fall under a global limit. Malformed values are skipped, never raised.

    Args:
        headers: Request headers (Starlette ``Headers`` or a plain mapping)

    Returns:
        Client identifier string
    """
    forwarded_for = _header(headers, FORWARDED_FOR_HEADER)
    if forwarded_for:
        client_ip = _clean(forwarded_for.split(",")[0])
        if client_ip:
            return client_ip

    real_ip = _clean(_header(headers, REAL_IP_HEADER))
    if real_ip:
        return real_ip

    return ANONYMOUS_IDENTIFIER
