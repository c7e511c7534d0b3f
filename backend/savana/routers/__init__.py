"""
Routers Package
===============

Routers are like the reception desk - they direct incoming requests
to the right place.
"""

from .readings import router as readings_router, poll_router, set_collector, get_collector

__all__ = [
    "readings_router",
    "poll_router",
    "set_collector",
    "get_collector",
]
