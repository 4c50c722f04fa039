#!/usr/bin/env python3
"""
Side-by-side Export - Renders all race recordings into one synchronized video.

The export walks the aligned window one output frame at a time and runs an
explicit state machine for each frame:

    Idle -> AligningSeek -> BufferReady -> Capturing -> (next frame) AligningSeek
                                                     -> Finalizing -> Idle

AligningSeek issues a seek to every stream for the same elapsed time.
BufferReady reads one frame back from every stream, and only after all
seeks were issued. Capturing composites the tiles and hands them to the
writer. Any state may jump to Finalizing when the export is stopped or fails.

When no stream has a usable clip range the export falls back to each
recording's full length, unsynchronized.
"""

import logging
import math
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .alignment import FPS, ClipRange, compute_aligned_clip, map_elapsed

logger = logging.getLogger(__name__)

DEFAULT_TILE_SIZE = (640, 360)  # width, height

# Racer label colors, in racer order
RACER_COLORS = ['#e74c3c', '#3498db', '#27ae60', '#f39c12', '#9b59b6', '#1abc9c']


class ExportState(str, Enum):
    IDLE = 'idle'
    ALIGNING_SEEK = 'aligning_seek'
    BUFFER_READY = 'buffer_ready'
    CAPTURING = 'capturing'
    FINALIZING = 'finalizing'


_TRANSITIONS = {
    ExportState.IDLE: {ExportState.ALIGNING_SEEK, ExportState.FINALIZING},
    ExportState.ALIGNING_SEEK: {ExportState.BUFFER_READY, ExportState.FINALIZING},
    ExportState.BUFFER_READY: {ExportState.CAPTURING, ExportState.FINALIZING},
    ExportState.CAPTURING: {ExportState.ALIGNING_SEEK, ExportState.FINALIZING},
    ExportState.FINALIZING: {ExportState.IDLE},
}


class VideoStreamReader:
    """Seekable frame source backed by cv2.VideoCapture."""

    def __init__(self, path: str):
        self.path = path
        self.cap = cv2.VideoCapture(path)
        if not self.cap.isOpened():
            raise IOError(f"Cannot open video: {path}")
        self.fps = self.cap.get(cv2.CAP_PROP_FPS) or FPS
        self.frame_count = int(self.cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)

    @property
    def duration(self) -> float:
        return self.frame_count / self.fps if self.fps else 0.0

    def seek(self, position: float) -> None:
        self.cap.set(cv2.CAP_PROP_POS_MSEC, position * 1000)

    def read(self) -> Optional[np.ndarray]:
        ok, frame = self.cap.read()
        return frame if ok else None

    def release(self) -> None:
        self.cap.release()


def hex_to_bgr(color: str) -> Tuple[int, int, int]:
    color = color.lstrip('#')
    r, g, b = (int(color[i:i + 2], 16) for i in (0, 2, 4))
    return (b, g, r)


def get_export_layout(count: int) -> Tuple[int, int]:
    """Grid (columns, rows) for count tiles: one row up to 3, then two rows."""
    if count <= 0:
        return (0, 0)
    if count <= 3:
        return (count, 1)
    return (math.ceil(count / 2), 2)


def compose_frames(frames: Sequence[Optional[np.ndarray]],
                   labels: Optional[Sequence[str]] = None,
                   colors: Optional[Sequence[Tuple[int, int, int]]] = None,
                   tile_size: Tuple[int, int] = DEFAULT_TILE_SIZE) -> np.ndarray:
    """Tile frames into a single BGR image. Missing frames render black."""
    tile_w, tile_h = tile_size
    cols, rows = get_export_layout(len(frames))
    canvas = np.zeros((rows * tile_h, cols * tile_w, 3), dtype=np.uint8)

    for i, frame in enumerate(frames):
        col, row = i % cols, i // cols
        x, y = col * tile_w, row * tile_h
        if frame is not None:
            if frame.shape[1] != tile_w or frame.shape[0] != tile_h:
                frame = cv2.resize(frame, (tile_w, tile_h), interpolation=cv2.INTER_AREA)
            canvas[y:y + tile_h, x:x + tile_w] = frame
        if labels:
            color = colors[i] if colors else (255, 255, 255)
            cv2.putText(canvas, labels[i], (x + 12, y + 32), cv2.FONT_HERSHEY_SIMPLEX,
                        0.9, (0, 0, 0), 4, cv2.LINE_AA)
            cv2.putText(canvas, labels[i], (x + 12, y + 32), cv2.FONT_HERSHEY_SIMPLEX,
                        0.9, color, 2, cv2.LINE_AA)

    return canvas


class ExportSession:
    """
    Drives one side-by-side export.

    Args:
        readers: One frame source per stream with seek(position), read()
            and release(); a duration attribute is used for the fallback.
        clips: Offset-adjusted clip ranges, index-aligned with readers.
        writer: Frame sink with write(frame) and close() -> path or None.
        labels: Racer names drawn on each tile.
        order: Tile order as stream indices (winner first).
        fps: Output frame rate.
    """

    def __init__(self, readers: Sequence, clips: Sequence[Optional[ClipRange]], writer,
                 labels: Optional[Sequence[str]] = None, order: Optional[Sequence[int]] = None,
                 fps: float = FPS, tile_size: Tuple[int, int] = DEFAULT_TILE_SIZE):
        self.readers = list(readers)
        self.writer = writer
        self.labels = list(labels) if labels else None
        self.order = list(order) if order else list(range(len(self.readers)))
        self.fps = fps
        self.tile_size = tile_size
        self.colors = [hex_to_bgr(RACER_COLORS[i % len(RACER_COLORS)])
                       for i in range(len(self.readers))]

        self.state = ExportState.IDLE
        self.history: List[ExportState] = [ExportState.IDLE]
        self.frames_captured = 0
        self.error: Optional[str] = None

        clips = list(clips)[:len(self.readers)]
        clips.extend([None] * (len(self.readers) - len(clips)))
        self.synchronized = compute_aligned_clip(clips) is not None
        if not self.synchronized:
            clips = self._full_length_clips()
        self.clips = clips
        aligned = compute_aligned_clip(self.clips)
        self.duration = aligned.duration if aligned is not None else 0.0
        self.total_frames = int(math.floor(self.duration * fps + 1e-9)) + 1 if aligned else 0

        self._last_frames: List[Optional[np.ndarray]] = [None] * len(self.readers)
        self._released = False

    def _full_length_clips(self) -> List[Optional[ClipRange]]:
        logger.warning("No usable clip ranges, exporting full recordings unsynchronized")
        clips = []
        for reader in self.readers:
            duration = getattr(reader, 'duration', 0.0) or 0.0
            clips.append(ClipRange(0.0, duration) if duration > 0 else None)
        return clips

    def _transition(self, new_state: ExportState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal export transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def elapsed_for_frame(self, frame_num: int) -> float:
        return min(self.duration, frame_num / self.fps)

    def _seek_all(self, elapsed: float) -> None:
        positions = map_elapsed(self.clips, elapsed)
        for i, position in positions.items():
            self.readers[i].seek(position)

    def _read_back(self, elapsed: float) -> List[Optional[np.ndarray]]:
        positions = map_elapsed(self.clips, elapsed)
        for i in positions:
            frame = self.readers[i].read()
            # Past the end of the file: hold the last good frame
            if frame is not None:
                self._last_frames[i] = frame
        return [self._last_frames[i] for i in self.order]

    def _capture(self, frames: List[Optional[np.ndarray]]) -> None:
        labels = [self.labels[i] for i in self.order] if self.labels else None
        colors = [self.colors[i] for i in self.order]
        self.writer.write(compose_frames(frames, labels, colors, self.tile_size))
        self.frames_captured += 1

    def _finalize(self, keep_output: bool) -> Optional[str]:
        self._transition(ExportState.FINALIZING)
        output = None
        try:
            if keep_output:
                output = self.writer.close()
            elif hasattr(self.writer, 'abort'):
                self.writer.abort()
        finally:
            for reader in self.readers:
                reader.release()
            self._released = True
            self._transition(ExportState.IDLE)
        return output

    def run(self, progress_callback: Optional[Callable[[int, int], None]] = None,
            should_stop: Optional[Callable[[], bool]] = None) -> Optional[str]:
        """
        Export every frame of the aligned window.

        Returns the writer's output path, or None when there was nothing to
        export, the export was stopped, or the writer failed.
        """
        if self.state != ExportState.IDLE:
            raise RuntimeError(f"Export already running ({self.state.value})")

        if self.total_frames == 0:
            logger.warning("Nothing to export: no stream has a usable range")
            self.error = 'No usable clip ranges or recordings'
            return self._finalize(keep_output=False)

        logger.info(f"Exporting {self.total_frames} frames ({self.duration:.2f}s @ {self.fps}fps, "
                    f"{'synchronized' if self.synchronized else 'unsynchronized'})")

        try:
            for frame_num in range(self.total_frames):
                if should_stop and should_stop():
                    logger.info(f"Export stopped at frame {frame_num}/{self.total_frames}")
                    self.error = 'stopped'
                    return self._finalize(keep_output=False)

                elapsed = self.elapsed_for_frame(frame_num)

                self._transition(ExportState.ALIGNING_SEEK)
                self._seek_all(elapsed)

                self._transition(ExportState.BUFFER_READY)
                frames = self._read_back(elapsed)

                self._transition(ExportState.CAPTURING)
                self._capture(frames)

                if progress_callback:
                    progress_callback(frame_num + 1, self.total_frames)
        except Exception as e:
            self.error = str(e)
            logger.error(f"Export failed at frame {self.frames_captured}: {e}")
            if not self._released:
                self._finalize(keep_output=False)
            raise

        output = self._finalize(keep_output=True)
        if output is None:
            self.error = 'Encoder failed'
        return output
