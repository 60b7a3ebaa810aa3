"""
Core domain package.

This package contains logic which should be independent of the web layer:
identifier encoding, library access and the ListenBrainz client.

Consumers should import from the specific module they need
(e.g. `mpdsonic.core.ids`).
"""
