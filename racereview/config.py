#!/usr/bin/env python3
"""
Review configuration.

Loaded from a JSON file; any key left out keeps its default. The results
and export directories can also be set from the environment
(RACEREVIEW_RESULTS_DIR, RACEREVIEW_EXPORT_DIR), which wins over the file.
"""

import json
import os
from dataclasses import dataclass
from typing import Optional

from .alignment import FPS
from .stability import StabilityConfig


@dataclass
class ReviewConfig:
    results_dir: str = './results'
    export_dir: str = './exports'
    export_fps: float = FPS
    tile_width: int = 640
    tile_height: int = 360
    # Visual stability polling (ms)
    stability_window_ms: int = 300
    stability_timeout_ms: int = 5000
    poll_interval_ms: int = 50
    host: str = '0.0.0.0'
    port: int = 5050

    config_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'ReviewConfig':
        defaults = cls()
        return cls(
            results_dir=data.get('results_dir', defaults.results_dir),
            export_dir=data.get('export_dir', defaults.export_dir),
            export_fps=float(data.get('export_fps', defaults.export_fps)),
            tile_width=int(data.get('tile_width', defaults.tile_width)),
            tile_height=int(data.get('tile_height', defaults.tile_height)),
            stability_window_ms=int(data.get('stability_window_ms', defaults.stability_window_ms)),
            stability_timeout_ms=int(data.get('stability_timeout_ms', defaults.stability_timeout_ms)),
            poll_interval_ms=int(data.get('poll_interval_ms', defaults.poll_interval_ms)),
            host=data.get('host', defaults.host),
            port=int(data.get('port', defaults.port)),
        )

    @classmethod
    def from_json(cls, path: str) -> 'ReviewConfig':
        with open(path) as f:
            data = json.load(f)
        config = cls.from_dict(data)
        config.config_path = path
        return config.with_env_overrides()

    @classmethod
    def load(cls, path: Optional[str] = None) -> 'ReviewConfig':
        """From path if given (or RACEREVIEW_CONFIG), else defaults, then env overrides."""
        path = path or os.environ.get('RACEREVIEW_CONFIG')
        if path:
            return cls.from_json(path)
        return cls().with_env_overrides()

    def with_env_overrides(self) -> 'ReviewConfig':
        self.results_dir = os.environ.get('RACEREVIEW_RESULTS_DIR', self.results_dir)
        self.export_dir = os.environ.get('RACEREVIEW_EXPORT_DIR', self.export_dir)
        return self

    def stability(self) -> StabilityConfig:
        return StabilityConfig(
            stability_window=self.stability_window_ms,
            timeout=self.stability_timeout_ms,
            poll_interval=self.poll_interval_ms,
        )

    @property
    def tile_size(self):
        return (self.tile_width, self.tile_height)
