"""
corsrelay Proxy Module

Provides the forwarding endpoint that fetches third-party URLs on behalf
of browser callers.
"""

from corsrelay.proxy.gateway import RelayGateway, create_relay_app
from corsrelay.proxy.forwarder import UpstreamForwarder, ForwardResult
from corsrelay.proxy.policy import DomainAllowList, allow_all

__all__ = [
    "RelayGateway",
    "create_relay_app",
    "UpstreamForwarder",
    "ForwardResult",
    "DomainAllowList",
    "allow_all",
]
