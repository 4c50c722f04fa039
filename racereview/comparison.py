#!/usr/bin/env python3
"""
Profile Comparison - Ranks racers metric by metric.

For every metric in registry order, pulls each racer's value from its
counter snapshot, picks the racer with the lowest value, and tallies wins.
Missing data never raises: a metric nobody measured is dropped, and a
metric with fewer than two values (or a shared best value) has no winner.

Profiles captured with the --profile flag carry two scopes per racer:
'measured' (between raceStart/raceEnd) and 'total' (whole session). Each
scope is compared on its own.
"""

import logging
import math
from dataclasses import dataclass, field
from numbers import Real
from typing import Dict, List, Mapping, Optional, Sequence

from .metrics import (
    CATEGORY_LABELS,
    MEASURED_METRICS,
    MEASURED_SCOPE,
    PROFILE_METRICS,
    TOTAL_METRICS,
    TOTAL_SCOPE,
    Category,
    MetricRegistry,
)

logger = logging.getLogger(__name__)

TIE = 'tie'
PLACEHOLDER = '-'


@dataclass(frozen=True)
class Comparison:
    """One metric compared across all racers."""
    key: str
    name: str
    category: Category
    unit: str
    values: List[Optional[float]]
    formatted: List[str]
    winner: Optional[str] = None
    diff: Optional[float] = None
    diff_percent: Optional[float] = None
    rankings: List[str] = field(default_factory=list)  # best first, measured racers only

    def to_dict(self) -> dict:
        return {
            'key': self.key,
            'name': self.name,
            'category': self.category.value,
            'unit': self.unit,
            'values': list(self.values),
            'formatted': list(self.formatted),
            'winner': self.winner,
            'diff': self.diff,
            'diff_percent': self.diff_percent,
            'rankings': list(self.rankings),
        }


@dataclass(frozen=True)
class ProfileComparisonResult:
    comparisons: List[Comparison]
    wins: Dict[str, int]
    overall_winner: Optional[str]
    by_category: Dict[str, List[Comparison]]

    def to_dict(self) -> dict:
        return {
            'comparisons': [c.to_dict() for c in self.comparisons],
            'wins': dict(self.wins),
            'overall_winner': self.overall_winner,
            'by_category': {
                category: [c.key for c in comps]
                for category, comps in self.by_category.items()
            },
        }


@dataclass(frozen=True)
class ScopedProfileComparison:
    measured: ProfileComparisonResult
    total: ProfileComparisonResult

    @property
    def comparisons(self) -> List[Comparison]:
        return self.measured.comparisons + self.total.comparisons

    def to_dict(self) -> dict:
        return {
            MEASURED_SCOPE: self.measured.to_dict(),
            TOTAL_SCOPE: self.total.to_dict(),
        }


def _extract_value(snapshot, key: str) -> Optional[float]:
    """Value for key, or None if the snapshot lacks a usable number."""
    if not isinstance(snapshot, Mapping):
        return None
    value = snapshot.get(key)
    # bool is a Real subclass but never a counter
    if isinstance(value, bool) or not isinstance(value, Real):
        return None
    if not math.isfinite(value):
        return None
    return value


def _pick_winner(values: Sequence[Optional[float]]) -> Optional[int]:
    """Index of the strict unique minimum among present values."""
    present = [(v, i) for i, v in enumerate(values) if v is not None]
    if len(present) < 2:
        return None
    best = min(v for v, _ in present)
    holders = [i for v, i in present if v == best]
    if len(holders) != 1:
        return None
    return holders[0]


def _overall_winner(names: Sequence[str], wins: Dict[str, int],
                    has_comparisons: bool) -> Optional[str]:
    if not has_comparisons:
        return None
    top = max(wins[name] for name in names)
    leaders = [name for name in names if wins[name] == top]
    if len(leaders) == 1:
        return leaders[0]
    return TIE


def group_by_category(comparisons: Sequence[Comparison]) -> Dict[str, List[Comparison]]:
    groups: Dict[str, List[Comparison]] = {}
    for comp in comparisons:
        groups.setdefault(comp.category.value, []).append(comp)
    return groups


def compare(names: Sequence[str], snapshots: Sequence,
            registry: MetricRegistry = PROFILE_METRICS) -> ProfileComparisonResult:
    """
    Compare counter snapshots across racers.

    Args:
        names: Racer names, at least two, unique.
        snapshots: One mapping (or None) per racer, aligned with names.
        registry: Metrics to compare, in report order.

    Returns:
        ProfileComparisonResult with comparisons in registry order.
    """
    names = list(names)
    snapshots = list(snapshots)
    if len(snapshots) < len(names):
        snapshots.extend([None] * (len(names) - len(snapshots)))

    comparisons: List[Comparison] = []
    wins = {name: 0 for name in names}

    for metric in registry.definitions_in_order():
        values = [_extract_value(snapshots[i], metric.key) for i in range(len(names))]

        # Nobody measured it
        if all(v is None for v in values):
            continue

        formatted = [metric.format(v) if v is not None else PLACEHOLDER for v in values]
        rankings = [names[i] for i in sorted(
            (i for i, v in enumerate(values) if v is not None),
            key=lambda i: values[i],
        )]

        winner = diff = diff_percent = None
        win_idx = _pick_winner(values)
        if win_idx is not None:
            win_value = values[win_idx]
            runner_up = min(v for i, v in enumerate(values) if v is not None and i != win_idx)
            winner = names[win_idx]
            diff = runner_up - win_value
            diff_percent = diff / win_value * 100 if win_value != 0 else 0
            wins[winner] += 1

        comparisons.append(Comparison(
            key=metric.key,
            name=metric.name,
            category=metric.category,
            unit=metric.unit,
            values=values,
            formatted=formatted,
            winner=winner,
            diff=diff,
            diff_percent=diff_percent,
            rankings=rankings,
        ))

    overall = _overall_winner(names, wins, bool(comparisons))
    logger.debug(f"Compared {len(comparisons)} metrics for {names}: wins={wins}, overall={overall}")

    return ProfileComparisonResult(
        comparisons=comparisons,
        wins=wins,
        overall_winner=overall,
        by_category=group_by_category(comparisons),
    )


def _prefixed(snapshot, scope: str) -> Optional[dict]:
    """Re-key one scope of a profile as 'scope.metric' for the scoped registries."""
    if not isinstance(snapshot, Mapping):
        return None
    section = snapshot.get(scope)
    if not isinstance(section, Mapping):
        return None
    return {f"{scope}.{key}": value for key, value in section.items()}


def build_profile_comparison(names: Sequence[str], profile_data: Sequence) -> ScopedProfileComparison:
    """
    Compare profiles carrying 'measured' and 'total' scopes.

    Each entry of profile_data looks like
    {'measured': {'networkTransferSize': 500}, 'total': {'networkTransferSize': 1000}}
    or None when a racer captured no profile.
    """
    measured = compare(names, [_prefixed(p, MEASURED_SCOPE) for p in profile_data], MEASURED_METRICS)
    total = compare(names, [_prefixed(p, TOTAL_SCOPE) for p in profile_data], TOTAL_METRICS)
    return ScopedProfileComparison(measured=measured, total=total)


def is_scoped_profile(profile_data: Sequence) -> bool:
    """True if any racer's profile is split into measured/total scopes."""
    return any(
        isinstance(p, Mapping) and (MEASURED_SCOPE in p or TOTAL_SCOPE in p)
        for p in profile_data
    )


def _markdown_tables(result: ProfileComparisonResult, names: Sequence[str]) -> List[str]:
    lines = []
    for category, comps in result.by_category.items():
        lines.append(f"#### {CATEGORY_LABELS.get(Category(category), category)}")
        lines.append('')
        lines.append('| Metric | ' + ' | '.join(names) + ' | Winner | Diff |')
        lines.append('|---|' + '---|' * len(names) + '---|---|')
        for comp in comps:
            winner = comp.winner or PLACEHOLDER
            diff = f"{comp.diff_percent:.1f}%" if comp.diff_percent is not None else PLACEHOLDER
            lines.append(f"| {comp.name} | " + ' | '.join(comp.formatted) + f" | {winner} | {diff} |")
        lines.append('')
    return lines


def _markdown_score(result: ProfileComparisonResult, names: Sequence[str]) -> List[str]:
    score = ' - '.join(f"{name} {result.wins.get(name, 0)}" for name in names)
    lines = [f"**Profile Score:** {score}"]
    if result.overall_winner == TIE:
        lines.append('**Profile Result:** Tie')
    elif result.overall_winner:
        lines.append(f"**Profile Winner:** {result.overall_winner}")
    return lines


def build_profile_markdown(result, names: Sequence[str]) -> str:
    """
    Markdown section for a profile comparison.

    Accepts a ProfileComparisonResult or a ScopedProfileComparison. Returns
    an empty string when nothing was compared.
    """
    if not result.comparisons:
        return ''

    lines = ['### Performance Profile Analysis', '', '*Lower values are better for all metrics*', '']

    if isinstance(result, ScopedProfileComparison):
        sections = [('During Measurement', result.measured), ('Total Session', result.total)]
        for title, scoped in sections:
            if not scoped.comparisons:
                continue
            lines.append(f"#### {title}")
            lines.append('')
            lines.extend(_markdown_tables(scoped, names))
            lines.extend(_markdown_score(scoped, names))
            lines.append('')
    else:
        lines.extend(_markdown_tables(result, names))
        lines.extend(_markdown_score(result, names))
        lines.append('')

    return '\n'.join(lines)
