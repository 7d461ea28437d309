"""Integration tests against live services (skipped when unavailable)."""
