"""Tests for the resolution performance monitor."""

import logging

from org_assignments.services.performance_monitor import PerformanceMonitor


class TestPerformanceMonitor:
    """Test PerformanceMonitor."""

    def test_empty_stats(self):
        stats = PerformanceMonitor().get_stats()
        assert stats["count"] == 0
        assert stats["exceeds_sla"] is False

    def test_stats(self):
        monitor = PerformanceMonitor(window_size=100, sla_seconds=1)
        for ms in (10.0, 20.0, 30.0):
            monitor.record(ms)
        monitor.record(5.0, used_cache=True)

        stats = monitor.get_stats()
        assert stats["count"] == 4
        assert stats["avg_ms"] == 16.25
        assert stats["max_ms"] == 30.0
        assert stats["cache_hit_rate"] == 0.25
        assert stats["sla_violations"] == 0

    def test_sla_violation_logged(self, caplog):
        monitor = PerformanceMonitor(sla_seconds=0.5)

        with caplog.at_level(logging.WARNING):
            violated = monitor.record(750.0)

        assert violated is True
        assert "SLA violation" in caplog.text
        stats = monitor.get_stats()
        assert stats["exceeds_sla"] is True
        assert stats["total_sla_violations"] == 1

    def test_window_is_bounded(self):
        monitor = PerformanceMonitor(window_size=3)
        for ms in (100.0, 1.0, 1.0, 1.0):
            monitor.record(ms)

        stats = monitor.get_stats()
        assert stats["count"] == 3
        assert stats["max_ms"] == 1.0
        assert stats["total_recorded"] == 4

    def test_reset(self):
        monitor = PerformanceMonitor()
        monitor.record(1.0)
        monitor.reset()
        assert monitor.get_stats()["total_recorded"] == 0
