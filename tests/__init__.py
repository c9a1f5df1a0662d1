"""
optidoc Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Model, atomic and query flows over the in-memory store,
  and the Cosmos DB adapter over mocked clients
"""
