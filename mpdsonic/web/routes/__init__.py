"""
Web Routes Package.

This package contains FastAPI route modules:
- rest: Subsonic REST API endpoints (/rest/*)
"""

from mpdsonic.web.routes.rest import register_rest_routes

__all__ = ["register_rest_routes"]
