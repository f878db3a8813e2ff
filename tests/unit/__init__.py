"""
Unit Tests - Testing Individual Components in Isolation.

Time is driven by a fake clock and background work by inline executors,
so unit tests stay fast and deterministic. HTTP is served by
httpx.MockTransport.

Test Files:
    - test_cache_service.py: TTL, LRU, conditional updates, refresh
    - test_cache_middleware.py: Request wrapping, fallback, single-flight
    - test_github_client.py: REST client over the middleware
    - test_config_loader.py: Configuration loading/validation
"""
