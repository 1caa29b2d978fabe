"""
corsrelay - CORS Forwarding Relay
Fetches third-party URLs on behalf of browser callers.
"""

__version__ = "0.1.0"
