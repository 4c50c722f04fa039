#!/usr/bin/env python3
"""
Frame Encoder - Streams composited BGR frames into an MP4 via ffmpeg.

Pipes raw frames to ffmpeg over stdin to encode H.264.
Uses platform-specific hardware encoders when available:
- h264_nvenc (NVIDIA GPU)
- h264_videotoolbox (macOS)
- libx264 (CPU fallback)

Output is web-optimized with -movflags +faststart for streaming.
"""

import logging
import os
import platform
import subprocess
from typing import List, Optional

import numpy as np

logger = logging.getLogger(__name__)


def _detect_encoder() -> str:
    """Detect the best available H.264 encoder for this platform."""
    try:
        result = subprocess.run(
            ['ffmpeg', '-hide_banner', '-encoders'],
            capture_output=True, text=True, timeout=5
        )
    except (subprocess.TimeoutExpired, FileNotFoundError):
        logger.info("ffmpeg encoder probe failed, using libx264")
        return 'libx264'

    if 'h264_nvenc' in result.stdout:
        # Listed is not the same as usable
        try:
            test = subprocess.run(
                ['ffmpeg', '-hide_banner', '-f', 'lavfi', '-i', 'nullsrc=s=64x64:d=0.1',
                 '-c:v', 'h264_nvenc', '-f', 'null', '-'],
                capture_output=True, timeout=10
            )
            if test.returncode == 0:
                logger.info("Using h264_nvenc encoder")
                return 'h264_nvenc'
        except subprocess.TimeoutExpired:
            pass

    if platform.system() == 'Darwin' and 'h264_videotoolbox' in result.stdout:
        logger.info("Using h264_videotoolbox encoder")
        return 'h264_videotoolbox'

    logger.info("Using libx264 encoder (CPU)")
    return 'libx264'


_encoder = None


def get_encoder() -> str:
    """Cached encoder choice."""
    global _encoder
    if _encoder is None:
        _encoder = _detect_encoder()
    return _encoder


def build_ffmpeg_command(output_path: str, width: int, height: int, fps: float,
                         encoder: str) -> List[str]:
    cmd = [
        'ffmpeg', '-y',
        '-hide_banner', '-loglevel', 'error',
        '-f', 'rawvideo',
        '-vcodec', 'rawvideo',
        '-s', f'{width}x{height}',
        '-pix_fmt', 'bgr24',
        '-r', str(fps),
        '-i', '-',
        '-c:v', encoder,
    ]

    if encoder == 'libx264':
        cmd.extend(['-crf', '23', '-preset', 'fast'])
    elif encoder == 'h264_nvenc':
        cmd.extend(['-rc', 'vbr', '-cq', '23', '-preset', 'medium'])
    elif encoder == 'h264_videotoolbox':
        cmd.extend(['-q:v', '65'])

    cmd.extend([
        '-pix_fmt', 'yuv420p',
        '-movflags', '+faststart',
        output_path,
    ])
    return cmd


class FfmpegFrameWriter:
    """
    Frame sink for the export pipeline.

    ffmpeg is started on the first frame, once the output size is known.
    Frames are cropped to even dimensions (H.264 requirement).
    """

    def __init__(self, output_path: str, fps: float, encoder: Optional[str] = None):
        self.output_path = output_path
        self.fps = fps
        self.encoder = encoder
        self.process: Optional[subprocess.Popen] = None
        self.frames_written = 0
        self._size = None

    def _open(self, frame: np.ndarray) -> None:
        h, w = frame.shape[:2]
        out_w = w if w % 2 == 0 else w - 1
        out_h = h if h % 2 == 0 else h - 1
        if out_w < 2 or out_h < 2:
            raise ValueError(f"Frame dimensions too small: {out_w}x{out_h}")
        self._size = (out_w, out_h)

        out_dir = os.path.dirname(self.output_path)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)

        cmd = build_ffmpeg_command(self.output_path, out_w, out_h, self.fps,
                                   self.encoder or get_encoder())
        self.process = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )

    def write(self, frame: np.ndarray) -> None:
        if self.process is None:
            self._open(frame)
        out_w, out_h = self._size
        self.process.stdin.write(np.ascontiguousarray(frame[:out_h, :out_w]).tobytes())
        self.frames_written += 1

    def close(self) -> Optional[str]:
        """Finish encoding. Returns the output path, or None on failure."""
        if self.process is None:
            logger.warning("No frames written, nothing to encode")
            return None

        try:
            self.process.stdin.close()
            self.process.wait(timeout=120)
        except subprocess.TimeoutExpired:
            logger.error("ffmpeg timed out")
            self.process.kill()
            return None

        if self.process.returncode != 0:
            stderr = self.process.stderr.read().decode('utf-8', errors='replace')
            logger.error(f"ffmpeg failed (exit {self.process.returncode}): {stderr[-500:]}")
            return None

        if os.path.exists(self.output_path) and os.path.getsize(self.output_path) > 0:
            size_kb = os.path.getsize(self.output_path) / 1024
            logger.info(f"Export written: {self.output_path} ({size_kb:.0f} KB, "
                        f"{self.frames_written} frames)")
            return self.output_path

        logger.error(f"Output file missing or empty: {self.output_path}")
        return None

    def abort(self) -> None:
        if self.process is not None and self.process.poll() is None:
            self.process.kill()
