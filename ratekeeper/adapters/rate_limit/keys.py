"""Framework-neutral request context and key derivation.

Limiters never see a web framework request. The HTTP layer converts its
request into a :class:`RequestContext` and the limiter applies an injected
``key_of`` function to it.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Mapping

UNKNOWN_CLIENT = "unknown"


@dataclass(frozen=True)
class RequestContext:
    """What a limiter may know about an inbound request.

    Attributes:
        client_host: Peer address seen by the server, if any.
        headers: Request headers with lower-cased names.
        account_id: Authenticated account identifier, if any.
    """

    client_host: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    account_id: str | None = None

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


@dataclass(frozen=True)
class GeoInfo:
    """Resolved origin of a request."""

    country: str | None = None
    is_anonymized: bool = False


def client_address(context: RequestContext, *, trust_forwarded_for: bool = True) -> str:
    """Network origin of the request.

    The first address of ``X-Forwarded-For`` wins when trusted, then the peer
    address, then ``"unknown"``.
    """

    if trust_forwarded_for:
        forwarded = context.header("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    return context.client_host or UNKNOWN_CLIENT


def default_key_of(context: RequestContext) -> str:
    """Default ``key_of``: ``ip:<address>``."""
    return f"ip:{client_address(context)}"


def peer_key_of(context: RequestContext) -> str:
    """``key_of`` ignoring proxy headers (for deployments without a trusted proxy)."""
    return f"ip:{client_address(context, trust_forwarded_for=False)}"


def account_or_ip_key_of(context: RequestContext) -> str:
    """Group by account when authenticated, by network origin otherwise."""
    if context.account_id:
        return f"account:{context.account_id}"
    return default_key_of(context)


def make_geo_from_headers(
    country_header: str = "X-Geo-Country",
    anonymized_header: str = "X-Geo-Anonymized",
):
    """Build a ``geo_of`` reading headers injected by the edge proxy."""

    def geo_of(context: RequestContext) -> GeoInfo | None:
        country = context.header(country_header)
        anonymized = (context.header(anonymized_header) or "").strip().lower()
        if not country and not anonymized:
            return None
        return GeoInfo(
            country=country.strip().upper() if country else None,
            is_anonymized=anonymized in {"1", "true", "yes"},
        )

    return geo_of


def fingerprint_key(key: str) -> str:
    """Hash a limiter key for logging without exposing addresses or ids."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]
