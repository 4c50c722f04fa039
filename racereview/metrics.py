#!/usr/bin/env python3
"""
Metric Registry - Performance counters captured for each racer.

Counters come from the Chrome DevTools Protocol (Performance.getMetrics)
and the Performance API while a race runs. All metrics are "lower is
better": smaller transfer, fewer requests, less time.

The registry is built once at import and never mutated. Iteration order is
definition order, which is also the order comparisons are reported in.
"""

import math
from dataclasses import dataclass, replace
from enum import Enum
from types import MappingProxyType
from typing import Callable, Iterator, Optional, Tuple

MEASURED_SCOPE = 'measured'
TOTAL_SCOPE = 'total'
SCOPES = (MEASURED_SCOPE, TOTAL_SCOPE)


class Category(str, Enum):
    NETWORK = 'network'
    LOADING = 'loading'
    MEMORY = 'memory'
    COMPUTATION = 'computation'
    RENDERING = 'rendering'


def format_bytes(value: float) -> str:
    """Format a byte count: 1536 -> '1.5 KB'."""
    if value == 0:
        return '0 B'
    k = 1024
    sizes = ['B', 'KB', 'MB', 'GB']
    i = int(math.floor(math.log(abs(value)) / math.log(k)))
    i = max(0, min(i, len(sizes) - 1))
    return f"{value / k ** i:.1f} {sizes[i]}"


def format_ms(value: float) -> str:
    """Format milliseconds: 0.5 -> '500μs', 50 -> '50.0ms', 1500 -> '1.50s'."""
    if value < 1:
        return f"{value * 1000:.0f}μs"
    if value < 1000:
        return f"{value:.1f}ms"
    return f"{value / 1000:.2f}s"


def format_requests(value: float) -> str:
    if float(value).is_integer():
        value = int(value)
    return f"{value} req"


@dataclass(frozen=True)
class MetricDefinition:
    """A single comparable counter."""
    key: str
    name: str
    description: str
    unit: str
    category: Category
    format: Callable[[float], str]
    scope: Optional[str] = None  # 'measured' or 'total' for scoped registries


class MetricRegistry:
    """
    Ordered, read-only table of metric definitions.

    Lookup goes through a read-only mapping built from the same tuple, so
    the two views can never disagree.
    """

    def __init__(self, definitions):
        self._definitions: Tuple[MetricDefinition, ...] = tuple(definitions)
        by_key = {}
        for definition in self._definitions:
            if definition.key in by_key:
                raise ValueError(f"Duplicate metric key: {definition.key}")
            by_key[definition.key] = definition
        self._by_key = MappingProxyType(by_key)

    def definitions_in_order(self) -> Tuple[MetricDefinition, ...]:
        return self._definitions

    def lookup(self, key: str) -> Optional[MetricDefinition]:
        return self._by_key.get(key)

    def keys(self) -> Tuple[str, ...]:
        return tuple(d.key for d in self._definitions)

    def scoped(self, scope: str) -> 'MetricRegistry':
        """Registry with keys prefixed by scope, e.g. 'total.networkTransferSize'."""
        if scope not in SCOPES:
            raise ValueError(f"Unknown scope: {scope}")
        return MetricRegistry(
            replace(d, key=f"{scope}.{d.key}", scope=scope)
            for d in self._definitions
        )

    def __iter__(self) -> Iterator[MetricDefinition]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, key) -> bool:
        return key in self._by_key


PROFILE_METRICS = MetricRegistry([
    # Network
    MetricDefinition(
        key='networkTransferSize',
        name='Network Transfer',
        description='Total bytes transferred over network',
        unit='bytes',
        category=Category.NETWORK,
        format=format_bytes,
    ),
    MetricDefinition(
        key='networkRequestCount',
        name='Network Requests',
        description='Total number of network requests',
        unit='requests',
        category=Category.NETWORK,
        format=format_requests,
    ),

    # Timing (Performance API)
    MetricDefinition(
        key='domContentLoaded',
        name='DOM Content Loaded',
        description='Time until DOMContentLoaded event',
        unit='ms',
        category=Category.LOADING,
        format=format_ms,
    ),
    MetricDefinition(
        key='domComplete',
        name='DOM Complete',
        description='Time until DOM is fully loaded',
        unit='ms',
        category=Category.LOADING,
        format=format_ms,
    ),

    # Runtime (CDP Performance.getMetrics)
    MetricDefinition(
        key='jsHeapUsedSize',
        name='JS Heap Used',
        description='JavaScript heap memory used',
        unit='bytes',
        category=Category.MEMORY,
        format=format_bytes,
    ),
    MetricDefinition(
        key='scriptDuration',
        name='Script Execution',
        description='Total JavaScript execution time',
        unit='ms',
        category=Category.COMPUTATION,
        format=format_ms,
    ),
    MetricDefinition(
        key='layoutDuration',
        name='Layout Time',
        description='Time spent calculating layouts',
        unit='ms',
        category=Category.RENDERING,
        format=format_ms,
    ),
    MetricDefinition(
        key='recalcStyleDuration',
        name='Style Recalculation',
        description='Time spent recalculating styles',
        unit='ms',
        category=Category.RENDERING,
        format=format_ms,
    ),
    MetricDefinition(
        key='taskDuration',
        name='Task Duration',
        description='Total time spent on browser tasks',
        unit='ms',
        category=Category.COMPUTATION,
        format=format_ms,
    ),
])

MEASURED_METRICS = PROFILE_METRICS.scoped(MEASURED_SCOPE)
TOTAL_METRICS = PROFILE_METRICS.scoped(TOTAL_SCOPE)

CATEGORY_LABELS = {
    Category.NETWORK: 'Network',
    Category.LOADING: 'Loading',
    Category.MEMORY: 'Memory',
    Category.COMPUTATION: 'Computation',
    Category.RENDERING: 'Rendering',
}
