#!/usr/bin/env python3
"""
Clip Alignment - Keeps every racer's recording in lockstep during review.

Each recording has its own clip range: the local start/end (seconds) of
the portion that is "the race". Recordings start at different offsets, so
playback works in a shared elapsed-time domain instead:

    aligned.start = min(valid starts)
    aligned.end   = aligned.start + max(valid durations)

An elapsed time e maps to clamp(clip.start + e, clip.start, clip.end) in
every stream. Shorter races stop on their own last frame while longer ones
keep going, and the scrubber at 100% puts every stream on its clip end.

Calibration offsets correct clip-start detection drift in whole frames
(25fps, 0.04s per frame). They live outside the clips; the same alignment
functions take either the raw or the offset-adjusted clips.
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

FPS = 25
FRAME_STEP = 1.0 / FPS  # 0.04s


@dataclass(frozen=True)
class ClipRange:
    """Race segment of one recording, in that recording's own time base."""
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def is_valid(self) -> bool:
        return (math.isfinite(self.start) and math.isfinite(self.end)
                and self.end >= self.start)

    @classmethod
    def from_dict(cls, d) -> Optional['ClipRange']:
        """Build from {'start': s, 'end': e}; None for anything unusable."""
        if not isinstance(d, Mapping):
            return None
        try:
            clip = cls(start=float(d['start']), end=float(d['end']))
        except (KeyError, TypeError, ValueError):
            return None
        return clip if clip.is_valid else None

    def to_dict(self) -> dict:
        return {'start': self.start, 'end': self.end}


@dataclass(frozen=True)
class AlignedClip:
    """Shared playback window in the elapsed-time domain."""
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_dict(self) -> dict:
        return {'start': self.start, 'end': self.end, 'duration': self.duration}


def clips_from_list(items) -> List[Optional[ClipRange]]:
    """Parse a JSON list of {start, end} / null entries."""
    if not items:
        return []
    return [ClipRange.from_dict(item) for item in items]


def _is_valid(clip: Optional[ClipRange]) -> bool:
    return clip is not None and clip.is_valid


def compute_aligned_clip(clips: Sequence[Optional[ClipRange]]) -> Optional[AlignedClip]:
    """
    Shared window across all streams with a valid clip range.

    Returns None when no stream has one; callers then play each stream
    independently.
    """
    valid = [clip for clip in clips if _is_valid(clip)]
    if not valid:
        return None
    start = min(clip.start for clip in valid)
    duration = max(clip.duration for clip in valid)
    return AlignedClip(start=start, end=start + duration)


def map_elapsed(clips: Sequence[Optional[ClipRange]], elapsed: float) -> Dict[int, float]:
    """
    Absolute position in each stream for a shared elapsed time.

    Streams without a valid clip range are left out of the result.
    """
    positions = {}
    for i, clip in enumerate(clips):
        if not _is_valid(clip):
            continue
        target = clip.start + elapsed
        positions[i] = max(clip.start, min(clip.end, target))
    return positions


def stream_elapsed(position: float, clip: ClipRange) -> float:
    """Local elapsed time of a stream at an absolute position."""
    return position - clip.start


def apply_offsets(clips: Sequence[Optional[ClipRange]],
                  offsets: Mapping[int, int]) -> List[Optional[ClipRange]]:
    """
    Shift each clip start by its calibration offset (frames x FRAME_STEP).

    The start is clamped into [0, end] so an adjusted clip is never
    inverted. Streams without a valid clip stay None.
    """
    adjusted = []
    for i, clip in enumerate(clips):
        if not _is_valid(clip):
            adjusted.append(None)
            continue
        frames = offsets.get(i, 0)
        if not frames:
            adjusted.append(clip)
            continue
        start = clip.start + frames * FRAME_STEP
        start = max(0.0, min(clip.end, start))
        adjusted.append(ClipRange(start=start, end=clip.end))
    return adjusted


class CalibrationOffsets:
    """
    Per-stream clip-start corrections in whole frames.

    Owned by a single review session. Only adjust() and reset() change it;
    snapshot() hands out a copy.
    """

    def __init__(self):
        self._offsets: Dict[int, int] = {}

    def adjust(self, stream_index: int, delta_frames: int) -> int:
        """Add delta_frames to a stream's offset and return the new offset."""
        if isinstance(delta_frames, bool) or not isinstance(delta_frames, int):
            raise TypeError(f"delta_frames must be an int, got {delta_frames!r}")
        if isinstance(stream_index, bool) or not isinstance(stream_index, int) or stream_index < 0:
            raise TypeError(f"stream_index must be a non-negative int, got {stream_index!r}")
        value = self._offsets.get(stream_index, 0) + delta_frames
        if value:
            self._offsets[stream_index] = value
        else:
            self._offsets.pop(stream_index, None)
        return value

    def reset(self) -> None:
        self._offsets = {}

    def get(self, stream_index: int) -> int:
        return self._offsets.get(stream_index, 0)

    def seconds(self, stream_index: int) -> float:
        return self.get(stream_index) * FRAME_STEP

    def snapshot(self) -> Dict[int, int]:
        return dict(self._offsets)

    def apply(self, clips: Sequence[Optional[ClipRange]]) -> List[Optional[ClipRange]]:
        return apply_offsets(clips, self._offsets)

    def __bool__(self) -> bool:
        return bool(self._offsets)


def step_elapsed(elapsed: float, frames: int, aligned: AlignedClip) -> float:
    """Move elapsed by whole frames, staying inside the aligned window."""
    target = elapsed + frames * FRAME_STEP
    return max(0.0, min(aligned.duration, target))


def elapsed_for_fraction(fraction: float, aligned: AlignedClip) -> float:
    """Scrubber position (0..1) to elapsed time."""
    fraction = max(0.0, min(1.0, fraction))
    return fraction * aligned.duration


def placement_order(names: Sequence[str], overall_winner: Optional[str] = None,
                    rankings: Optional[Sequence[str]] = None) -> List[int]:
    """
    Display order of streams as indices into names, winner first.

    Uses the full rankings when given, otherwise moves the overall winner to
    the front and keeps the rest in racer order. Names missing from rankings
    are appended in racer order.
    """
    order: List[int] = []
    if rankings:
        for name in rankings:
            if name in names and names.index(name) not in order:
                order.append(names.index(name))
    elif overall_winner in names:
        order.append(names.index(overall_winner))

    order.extend(i for i in range(len(names)) if i not in order)
    return order
