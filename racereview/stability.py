#!/usr/bin/env python3
"""
Visual Stability - Polls browser performance counters until rendering settles.

The race harness awaits wait_for_stability() before ending a measurement so
that style recalculations, layouts and long tasks triggered by the last
interaction are included in the timing.

Each sample is checked for stability first, then for the timeout, so the
sample that completes the stability window is never reported as a timeout.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Union

logger = logging.getLogger(__name__)

# Counters compared between consecutive samples
STABILITY_COUNTERS = ('taskDuration', 'layoutCount', 'recalcStyleCount')


@dataclass(frozen=True)
class StabilityConfig:
    """Timing for the stability poller, all in milliseconds."""
    stability_window: int = 300  # counters must be unchanged this long
    timeout: int = 5000          # give up after this long
    poll_interval: int = 50      # time between samples


@dataclass(frozen=True)
class StabilityResult:
    stable: bool
    elapsed: int  # ms since the first sample

    def to_dict(self) -> dict:
        return {'stable': self.stable, 'elapsed': self.elapsed}


CounterSource = Callable[[], Union[Mapping[str, Any], Awaitable[Mapping[str, Any]]]]


def _now_ms() -> float:
    return time.monotonic() * 1000


async def _sample(get_counters: CounterSource) -> Mapping[str, Any]:
    result = get_counters()
    if inspect.isawaitable(result):
        result = await result
    return result


def _counters_changed(prev: Mapping[str, Any], curr: Mapping[str, Any]) -> bool:
    return any(prev.get(name) != curr.get(name) for name in STABILITY_COUNTERS)


async def wait_for_stability(get_counters: CounterSource,
                             config: StabilityConfig = StabilityConfig()) -> StabilityResult:
    """
    Wait until performance counters stop changing for config.stability_window.

    Args:
        get_counters: Zero-argument callable (sync or async) returning a
            mapping with taskDuration, layoutCount and recalcStyleCount.
        config: Window, timeout and poll interval in ms.

    Returns:
        StabilityResult(stable=True) once the window is reached, or
        StabilityResult(stable=False) after the timeout. Exceptions raised
        by get_counters propagate to the caller.
    """
    start = _now_ms()
    prev = await _sample(get_counters)
    stable_since = _now_ms()
    samples = 1

    while True:
        await asyncio.sleep(config.poll_interval / 1000)

        curr = await _sample(get_counters)
        sample_time = _now_ms()
        elapsed = int(sample_time - start)
        samples += 1

        if _counters_changed(prev, curr):
            stable_since = sample_time
            prev = curr
        elif sample_time - stable_since >= config.stability_window:
            logger.debug(f"Counters stable after {elapsed}ms ({samples} samples)")
            return StabilityResult(stable=True, elapsed=elapsed)

        if elapsed >= config.timeout:
            logger.info(f"Counters still changing after {elapsed}ms, giving up ({samples} samples)")
            return StabilityResult(stable=False, elapsed=elapsed)
