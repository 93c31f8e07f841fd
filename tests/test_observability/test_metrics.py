"""Tests for Prometheus metrics."""

from prometheus_client import REGISTRY

from alert_engine.observability.metrics import get_metrics


def _sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestMetricsCollector:
    def test_singleton(self):
        assert get_metrics() is get_metrics()

    def test_transition_counter(self):
        before = _sample(
            "alert_engine_state_transitions_total", from_state="PENDING", to_state="FIRING",
        )
        get_metrics().record_transition("PENDING", "FIRING")
        after = _sample(
            "alert_engine_state_transitions_total", from_state="PENDING", to_state="FIRING",
        )
        assert after == before + 1

    def test_queue_depth_gauge(self):
        get_metrics().set_queue_depth("LOW", 7)
        assert _sample("alert_engine_trigger_queue_depth", severity="LOW") == 7

    def test_circuit_state_gauge(self):
        metrics = get_metrics()
        metrics.set_circuit_state("ch-metrics", "open")
        assert _sample("alert_engine_channel_circuit_state", channel="ch-metrics") == 2
        metrics.set_circuit_state("ch-metrics", "closed")
        assert _sample("alert_engine_channel_circuit_state", channel="ch-metrics") == 0

    def test_dispatch_counts_only_non_zero_outcomes(self):
        before = _sample("alert_engine_dispatch_items_total", severity="MEDIUM", outcome="failed")
        get_metrics().record_dispatch("MEDIUM", sent=3, failed=0, latency=0.2)
        after = _sample("alert_engine_dispatch_items_total", severity="MEDIUM", outcome="failed")
        assert after == before
