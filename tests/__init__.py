"""
arcrepo Test Suite
==================

Test organization mirrors the source code structure:
    tests/
    ├── test_core/          → Tests for arcrepo.core (config, models, exceptions)
    ├── test_transport/     → Tests for arcrepo.transport (httpx wrapper, codecs)
    ├── test_pubsub/        → Tests for arcrepo.pubsub (in-memory and Redis buses)
    ├── test_cache/         → Tests for arcrepo.cache (LRU cache, invalidation)
    ├── test_iteration/     → Tests for arcrepo.iteration (paging, import status)
    ├── test_client/        → RestRepositoryClient against an in-process repository
    └── conftest.py         → Shared pytest fixtures and the FakeRepository

Running Tests:
    pytest                          # Run all tests
    pytest tests/test_cache/        # Run only cache tests
    pytest -k multipart             # Run tests matching a keyword
"""
