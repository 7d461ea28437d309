"""Tests for the knowledge store components.

Unit tests run against the in-memory provider, a mocked OpenSearch client
and a mocked embedding service transport. Tests that need live services are
marked ``integration``.
"""
