"""
Test Suite for Nebula Cache.

Test organization:
    - unit/: Unit tests for individual components
    - fixtures/: Shared test fixtures and sample data

Running Tests:
    pytest tests/                           # All tests
    pytest tests/unit/test_cache_service.py # One component
"""
