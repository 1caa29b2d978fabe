"""
Target Policy

Predicates deciding whether a target URL may be fetched. The gateway
consults one before dispatching the outbound request.
"""

from typing import Iterable, Protocol

import httpx


class TargetPolicy(Protocol):
    """Decides whether the relay may fetch a target URL."""

    def __call__(self, url: httpx.URL) -> bool:
        ...


def allow_all(url: httpx.URL) -> bool:
    """Default policy: every target is permitted."""
    return True


class DomainAllowList:
    """
    Permits targets whose host is a listed domain or a subdomain of one.

    `example.com` admits `example.com` and `api.example.com` but not
    `badexample.com`.
    """

    def __init__(self, domains: Iterable[str]):
        self.domains = frozenset(d.lower().lstrip(".") for d in domains if d)

    def __call__(self, url: httpx.URL) -> bool:
        host = url.host.lower().rstrip(".")
        if not host:
            return False
        return any(host == d or host.endswith("." + d) for d in self.domains)

    def __repr__(self) -> str:
        return f"DomainAllowList({sorted(self.domains)!r})"


def build_policy(allowed_domains: Iterable[str]) -> TargetPolicy:
    """Build the policy for a configured domain list; empty means allow all."""
    domains = [d for d in allowed_domains if d]
    if not domains:
        return allow_all
    return DomainAllowList(domains)
