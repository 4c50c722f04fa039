#!/usr/bin/env python3
"""
Review Session - One synchronized playback of a race's recordings.

Holds the raw clip ranges as captured plus the session's own calibration
offsets. Every seek recomputes positions from the offset-adjusted clips, so
an adjustment takes effect on the next frame without touching the raw data.
"""

import logging
from typing import Dict, List, Optional, Sequence

from .alignment import (
    FRAME_STEP,
    AlignedClip,
    CalibrationOffsets,
    ClipRange,
    compute_aligned_clip,
    elapsed_for_fraction,
    map_elapsed,
    placement_order,
    step_elapsed,
    stream_elapsed,
)

logger = logging.getLogger(__name__)


class ReviewSession:
    """Synchronized playback state for one race."""

    def __init__(self, session_id: str, racers: Sequence[str],
                 clips: Sequence[Optional[ClipRange]],
                 overall_winner: Optional[str] = None,
                 rankings: Optional[Sequence[str]] = None,
                 race: Optional[str] = None):
        self.session_id = session_id
        self.race = race
        self.racers = list(racers)
        # Pad or trim so clips stay index-aligned with racers
        raw = list(clips)[:len(self.racers)]
        raw.extend([None] * (len(self.racers) - len(raw)))
        self.raw_clips: List[Optional[ClipRange]] = raw
        self.offsets = CalibrationOffsets()
        self.order = placement_order(self.racers, overall_winner, rankings)
        self.elapsed = 0.0

    def clips(self) -> List[Optional[ClipRange]]:
        """Offset-adjusted clips."""
        return self.offsets.apply(self.raw_clips)

    def aligned_clip(self) -> Optional[AlignedClip]:
        return compute_aligned_clip(self.clips())

    @property
    def synchronized(self) -> bool:
        return self.aligned_clip() is not None

    def seek(self, elapsed: float) -> dict:
        """Seek every stream to a shared elapsed time and report positions."""
        aligned = self.aligned_clip()
        if aligned is None:
            # No usable clip: streams play independently
            self.elapsed = max(0.0, elapsed)
            return self._frame_state(aligned)
        self.elapsed = max(0.0, min(aligned.duration, elapsed))
        return self._frame_state(aligned)

    def seek_fraction(self, fraction: float) -> dict:
        aligned = self.aligned_clip()
        if aligned is None:
            return self._frame_state(aligned)
        return self.seek(elapsed_for_fraction(fraction, aligned))

    def step(self, frames: int) -> dict:
        aligned = self.aligned_clip()
        if aligned is None:
            return self.seek(self.elapsed + frames * FRAME_STEP)
        return self.seek(step_elapsed(self.elapsed, frames, aligned))

    def adjust_offset(self, stream_index: int, delta_frames: int) -> int:
        if not 0 <= stream_index < len(self.racers):
            raise IndexError(f"No stream {stream_index} (racers: {len(self.racers)})")
        value = self.offsets.adjust(stream_index, delta_frames)
        logger.info(f"[{self.session_id}] {self.racers[stream_index]} offset now {value} frames "
                    f"({value * FRAME_STEP:+.3f}s)")
        return value

    def reset_offsets(self) -> None:
        self.offsets.reset()
        logger.info(f"[{self.session_id}] Calibration offsets reset")

    def _frame_state(self, aligned: Optional[AlignedClip]) -> dict:
        clips = self.clips()
        positions = map_elapsed(clips, self.elapsed) if aligned is not None else {}
        streams = []
        for i in self.order:
            clip = clips[i]
            position = positions.get(i)
            streams.append({
                'index': i,
                'racer': self.racers[i],
                'position': position,
                'elapsed': stream_elapsed(position, clip) if position is not None else None,
                'at_end': position is not None and position >= clip.end,
            })
        return {
            'elapsed': self.elapsed,
            'synchronized': aligned is not None,
            'aligned_clip': aligned.to_dict() if aligned is not None else None,
            'streams': streams,
        }

    def calibration(self) -> dict:
        """Calibration export: offsets plus adjusted clip times per racer."""
        clips = self.clips()
        offsets = self.offsets.snapshot()
        racers: Dict[str, dict] = {}
        for i, name in enumerate(self.racers):
            raw = self.raw_clips[i]
            racers[name] = {
                'offset_frames': offsets.get(i, 0),
                'offset_sec': round(offsets.get(i, 0) * FRAME_STEP, 3),
                'original': raw.to_dict() if raw is not None else None,
                'adjusted': clips[i].to_dict() if clips[i] is not None else None,
            }
        return {'frame_step': FRAME_STEP, 'racers': racers}

    def to_dict(self) -> dict:
        state = self._frame_state(self.aligned_clip())
        state['session_id'] = self.session_id
        state['race'] = self.race
        state['racers'] = list(self.racers)
        state['order'] = list(self.order)
        state['calibration'] = self.calibration()
        return state
