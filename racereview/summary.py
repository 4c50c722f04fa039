#!/usr/bin/env python3
"""
Race Summary - Loads what the race harness wrote for one race.

Results layout:
    results/
      react-vs-angular/
        summary.json
        react/react.race.webm
        angular/angular.race.webm

summary.json:
    {
        "racers": ["react", "angular"],
        "overall_winner": "react",
        "rankings": ["react", "angular"],
        "profile": [{"measured": {...}, "total": {...}}, {...}],
        "clip_times": [{"start": 1.52, "end": 3.0}, null],
        "videos": ["react/react.race.webm", "angular/angular.race.webm"]
    }
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .alignment import ClipRange, clips_from_list
from .comparison import build_profile_comparison, compare, is_scoped_profile

logger = logging.getLogger(__name__)

SUMMARY_FILE = 'summary.json'


@dataclass
class RaceSummary:
    name: str
    racers: List[str]
    overall_winner: Optional[str] = None
    rankings: List[str] = field(default_factory=list)
    profile: List[Optional[dict]] = field(default_factory=list)
    clip_times: List[Optional[ClipRange]] = field(default_factory=list)
    videos: List[str] = field(default_factory=list)
    race_dir: Optional[Path] = None

    @classmethod
    def from_dict(cls, name: str, data: dict, race_dir: Optional[Path] = None) -> 'RaceSummary':
        racers = data.get('racers') or []
        if len(racers) < 2:
            raise ValueError(f"Race {name} needs at least two racers, got {len(racers)}")
        if len(set(racers)) != len(racers):
            raise ValueError(f"Race {name} has duplicate racer names: {racers}")

        return cls(
            name=name,
            racers=list(racers),
            overall_winner=data.get('overall_winner'),
            rankings=list(data.get('rankings') or []),
            profile=list(data.get('profile') or []),
            clip_times=clips_from_list(data.get('clip_times')),
            videos=list(data.get('videos') or []),
            race_dir=race_dir,
        )

    @classmethod
    def from_json(cls, race_dir) -> 'RaceSummary':
        race_dir = Path(race_dir)
        with open(race_dir / SUMMARY_FILE) as f:
            data = json.load(f)
        return cls.from_dict(race_dir.name, data, race_dir)

    def video_paths(self) -> List[Path]:
        """Absolute video paths in racer order."""
        base = self.race_dir or Path('.')
        return [base / v for v in self.videos]

    @property
    def has_profile(self) -> bool:
        return any(p for p in self.profile)

    def profile_comparison(self):
        """Scoped comparison when profiles carry measured/total, flat otherwise."""
        if is_scoped_profile(self.profile):
            return build_profile_comparison(self.racers, self.profile)
        return compare(self.racers, self.profile)


def find_races(results_dir) -> List[str]:
    """Names of race directories under results_dir that contain a summary."""
    results_dir = Path(results_dir)
    if not results_dir.is_dir():
        logger.warning(f"Results directory not found: {results_dir}")
        return []
    return sorted(p.name for p in results_dir.iterdir() if (p / SUMMARY_FILE).is_file())
