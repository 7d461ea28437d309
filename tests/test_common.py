"""Tests for common utilities."""

import pytest
import structlog

from clarity.common.config import BaseConfig, VectorStoreConfig, get_config
from clarity.common.logging import configure_logging, log_performance
from clarity.common.metrics import MetricsCollector


def test_config_loading(monkeypatch):
    """Test configuration defaults."""
    for name in ("CLARITY_ENV", "LOG_LEVEL", "VECTOR_DB_PROVIDER"):
        monkeypatch.delenv(name, raising=False)

    config = VectorStoreConfig(_env_file=None)
    assert config.clarity_env == "local"
    assert config.log_level == "INFO"
    assert config.vector_db_provider == "memory"
    assert config.vector_dimension == 384
    assert config.vector_default_top_k == 10


def test_config_reads_environment(monkeypatch):
    """Environment variables override defaults, case-insensitively."""
    monkeypatch.setenv("VECTOR_DB_PROVIDER", "opensearch")
    monkeypatch.setenv("OPENSEARCH_HOSTS", "http://os-1:9200, http://os-2:9200")
    monkeypatch.setenv("vector_dimension", "768")

    config = VectorStoreConfig(_env_file=None)
    assert config.vector_db_provider == "opensearch"
    assert config.vector_dimension == 768
    assert config.opensearch_host_list == ["http://os-1:9200", "http://os-2:9200"]


def test_config_rejects_invalid_values():
    """Non-positive sizes are rejected at load time."""
    with pytest.raises(ValueError):
        VectorStoreConfig(_env_file=None, vector_dimension=0)


def test_get_config():
    """Component names map to their config classes."""
    assert isinstance(get_config("vector-store"), VectorStoreConfig)
    unknown = get_config("something-else")
    assert isinstance(unknown, BaseConfig)
    assert not isinstance(unknown, VectorStoreConfig)


def test_logging_configuration():
    """Test logging configuration."""
    # This should not raise an exception
    configure_logging("test-service", "INFO", "json")
    configure_logging("test-service", "debug", "console")
    log_performance("unit_test", 1.5, provider="memory")


def test_logging_binds_service_and_environment():
    """Service and environment are attached to every log line."""
    configure_logging("test-service", "INFO", "json", environment="staging")
    assert structlog.contextvars.get_contextvars() == {"service": "test-service", "env": "staging"}

    configure_logging("test-service")
    assert structlog.contextvars.get_contextvars() == {"service": "test-service"}


def test_metrics_collector():
    """Test metrics collector."""
    collector = MetricsCollector("test-service")
    assert collector.service_name == "test-service"

    collector.record_vector_store_operation("search", "memory")
    collector.record_vector_store_operation("store", "memory", "error")
    collector.record_search("memory", 0.05)
    collector.record_provider_fallback("opensearch", "memory")
    collector.record_usage("dropped")

    metrics = collector.get_metrics()
    assert isinstance(metrics, str)
    assert "clarity_vector_store_operations_total" in metrics
    assert 'status="error"' in metrics
    assert "clarity_vector_provider_fallbacks_total" in metrics


def test_metrics_collectors_are_independent():
    """Two collectors never collide on metric registration."""
    first = MetricsCollector("a")
    second = MetricsCollector("b")
    first.record_usage("recorded")

    assert 'clarity_usage_records_total{outcome="recorded"} 1.0' in first.get_metrics()
    assert 'outcome="recorded"' not in second.get_metrics()
