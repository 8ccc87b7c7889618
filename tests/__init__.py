"""
jjalcloud indexer test suite.

This package contains:
- unit/: Unit tests (no network, fakes for WebSocket and HTTP)
- integration/: Integration tests (SQLite store, mocked PDS)
"""
