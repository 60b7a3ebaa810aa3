"""
mpdsonic Web Layer.

This package provides the Subsonic-compatible REST API.

Components:
- WebServer: FastAPI application with all routes
- reply: Envelope rendering and format negotiation
- dispatch: Adapts handlers into endpoints
- auth: Credential checks guarding every route
"""

from mpdsonic.web.server import WebServer

__all__ = ["WebServer"]
