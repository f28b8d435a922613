"""
corsproxy
=========

HTTP relay that lets browser clients fetch arbitrary URLs by re-issuing the
request and adding permissive cross-origin headers to the response.

Modules:
    - main: Application factory, logging setup and command-line entry point
    - config: Immutable settings loaded from the environment
    - proxy: The catch-all proxy route, outbound client and header filtering
"""
