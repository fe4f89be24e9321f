"""
============================================================================
APPWATCH - CONTROL API PACKAGE
============================================================================
HTTP surface over the monitoring engine (aiohttp).

    • ControlServer       — routes, rate-limit middleware, lifecycle
    • client_identifier   — client address used for rate limiting

============================================================================
"""

from api.server import ControlServer, client_identifier

__all__ = [
    "ControlServer",
    "client_identifier",
]
