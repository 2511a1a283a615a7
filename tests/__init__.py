"""
Tests for the dental scheduling agent.

Running Tests:
    pytest tests/unit -v

The unit tests run against an in-memory OpenDental fake (see conftest.py)
and mocked Claude clients; no network access is needed.
"""
