"""
mpdsonic - A Subsonic-compatible REST gateway for MPD.

mpdsonic lets Subsonic clients browse, stream and annotate the library of
an MPD server. The backend stays the source of truth; mpdsonic keeps no
catalog of its own.
"""

__version__ = "0.1.0"

from mpdsonic.server import MpdsonicServer

__all__ = ["MpdsonicServer", "__version__"]
