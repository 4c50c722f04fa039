"""Tests for the metric registry and formatters."""

import pytest

from racereview.metrics import (
    MEASURED_METRICS,
    PROFILE_METRICS,
    TOTAL_METRICS,
    Category,
    MetricDefinition,
    MetricRegistry,
    format_bytes,
    format_ms,
    format_requests,
)


class TestRegistry:
    def test_definition_order_is_fixed(self):
        assert PROFILE_METRICS.keys() == (
            'networkTransferSize',
            'networkRequestCount',
            'domContentLoaded',
            'domComplete',
            'jsHeapUsedSize',
            'scriptDuration',
            'layoutDuration',
            'recalcStyleDuration',
            'taskDuration',
        )

    def test_order_stable_across_calls(self):
        assert PROFILE_METRICS.definitions_in_order() == PROFILE_METRICS.definitions_in_order()

    def test_lookup(self):
        metric = PROFILE_METRICS.lookup('jsHeapUsedSize')
        assert metric.name == 'JS Heap Used'
        assert metric.category == Category.MEMORY
        assert metric.unit == 'bytes'

    def test_lookup_missing_returns_none(self):
        assert PROFILE_METRICS.lookup('fps') is None

    def test_keys_unique(self):
        keys = PROFILE_METRICS.keys()
        assert len(keys) == len(set(keys))

    def test_duplicate_keys_rejected(self):
        metric = PROFILE_METRICS.lookup('domComplete')
        with pytest.raises(ValueError):
            MetricRegistry([metric, metric])

    def test_definitions_are_immutable(self):
        metric = PROFILE_METRICS.lookup('domComplete')
        with pytest.raises(AttributeError):
            metric.name = 'changed'

    def test_all_metrics_have_required_properties(self):
        for metric in PROFILE_METRICS:
            assert isinstance(metric, MetricDefinition)
            assert metric.name
            assert callable(metric.format)
            assert isinstance(metric.category, Category)


class TestScopedRegistries:
    def test_keys_are_prefixed(self):
        assert MEASURED_METRICS.keys()[0] == 'measured.networkTransferSize'
        assert TOTAL_METRICS.keys()[0] == 'total.networkTransferSize'

    def test_scope_recorded(self):
        assert all(m.scope == 'measured' for m in MEASURED_METRICS)
        assert all(m.scope == 'total' for m in TOTAL_METRICS)

    def test_same_order_as_base(self):
        base = PROFILE_METRICS.keys()
        assert tuple(k.split('.', 1)[1] for k in TOTAL_METRICS.keys()) == base

    def test_base_untouched(self):
        assert PROFILE_METRICS.lookup('networkTransferSize').scope is None

    def test_unknown_scope(self):
        with pytest.raises(ValueError):
            PROFILE_METRICS.scoped('partial')


class TestFormatters:
    def test_bytes(self):
        assert format_bytes(0) == '0 B'
        assert format_bytes(500) == '500.0 B'
        assert format_bytes(1024) == '1.0 KB'
        assert format_bytes(1536) == '1.5 KB'
        assert format_bytes(1048576) == '1.0 MB'

    def test_ms(self):
        assert format_ms(0.5) == '500μs'
        assert format_ms(50) == '50.0ms'
        assert format_ms(1500) == '1.50s'

    def test_requests(self):
        assert format_requests(5) == '5 req'
        assert format_requests(5.0) == '5 req'
