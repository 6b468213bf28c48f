"""
Collaboration store test suite.

This package contains:
- unit/: Unit tests (no external dependencies, cluster client mocked)
- integration/: Store and access gate over the in-memory backend
"""
