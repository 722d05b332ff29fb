"""
Test Suite

Contains unit tests for the backend system.

Structure:
- tests/unit/: Tests for individual components (normalizer, cache, connectors,
  multiplexer, services, HTTP boundary). Network I/O is always mocked.

Uses pytest with pytest-asyncio for testing async functionality.
"""
