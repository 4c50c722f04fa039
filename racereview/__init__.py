"""Comparison, settle detection and synchronized review for browser races."""

from .alignment import (
    FRAME_STEP,
    AlignedClip,
    CalibrationOffsets,
    ClipRange,
    apply_offsets,
    compute_aligned_clip,
    map_elapsed,
    stream_elapsed,
)
from .comparison import Comparison, ProfileComparisonResult, build_profile_comparison, compare
from .metrics import PROFILE_METRICS, MetricDefinition, MetricRegistry
from .stability import StabilityConfig, StabilityResult, wait_for_stability

__version__ = '0.1.0'
