"""Tests for Prometheus metrics."""
import pytest
from httpx import AsyncClient, ASGITransport
from prometheus_client import CollectorRegistry
from ragbridge.main import create_app
from ragbridge.metrics import Metrics


def test_app_up_and_info():
    registry = CollectorRegistry()
    Metrics(service_name="ragbridge", version="1.2.3", registry=registry)

    assert registry.get_sample_value("app_up", {"service": "ragbridge", "version": "1.2.3"}) == 1
    assert registry.get_sample_value("app_info", {"service": "ragbridge", "version": "1.2.3"}) == 1


def test_record_query_settled():
    registry = CollectorRegistry()
    metrics = Metrics(registry=registry)

    metrics.record_query_settled("answered", 0.2)
    metrics.record_query_settled("answered", 0.4)
    metrics.record_query_settled("timeout", 30.0)

    assert registry.get_sample_value("ragbridge_responses_total", {"outcome": "answered"}) == 2
    assert registry.get_sample_value("ragbridge_responses_total", {"outcome": "timeout"}) == 1
    assert registry.get_sample_value("ragbridge_query_latency_seconds_count", {"outcome": "answered"}) == 2
    assert registry.get_sample_value("ragbridge_query_latency_seconds_sum", {"outcome": "answered"}) == pytest.approx(0.6)


def test_pending_gauge():
    registry = CollectorRegistry()
    metrics = Metrics(registry=registry)

    metrics.set_pending_queries(3)
    assert registry.get_sample_value("ragbridge_queries_pending") == 3


def test_process_metrics_collected():
    registry = CollectorRegistry()
    Metrics(service_name="ragbridge", registry=registry)

    assert registry.get_sample_value("process_resident_memory_bytes", {"service": "ragbridge"}) > 0


def test_independent_registries():
    """Two apps in one process must not collide on metric registration."""
    first = Metrics()
    second = Metrics()
    first.set_pending_queries(1)
    assert second.registry.get_sample_value("ragbridge_queries_pending") == 0


@pytest.mark.asyncio
async def test_http_requests_counted(test_settings):
    app = create_app(test_settings)
    registry = app.state.metrics.registry
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.get("/health")
        await client.get("/health")
        await client.get("/metrics/")

    labels = {"service": "ragbridge", "method": "GET", "path": "/health", "status": "200"}
    assert registry.get_sample_value("http_requests_total", labels) == 2
    assert registry.get_sample_value("http_requests_active", {"service": "ragbridge"}) == 0
    assert registry.get_sample_value(
        "http_requests_total", {"service": "ragbridge", "method": "GET", "path": "/metrics/", "status": "200"}
    ) is None
