"""Per-rendition encoding parameters.

Four independent pure functions (resolution, bitrate, quality factor and
keyframe interval) plus :func:`compute_parameters`, which bundles them into an
:class:`EncodingParameters` value. Bitrates are in kbps throughout.
"""

from __future__ import annotations

import math
from typing import Dict, Optional, Sequence, Tuple

from abr.domain.errors import InputError
from abr.domain.models import EncodingParameters, RenditionSpec, SourceDescriptor
from abr.pipeline.source import bit_depth_from_pixel_format

MIN_ASPECT_RATIO = 0.5
MAX_ASPECT_RATIO = 3.0
MIN_DIMENSION = 16

MIN_QUALITY = 10
MAX_QUALITY = 40

MIN_KEYFRAME_INTERVAL = 24
MAX_KEYFRAME_INTERVAL = 480

MIN_BITRATE_KBPS = 50

# (height ratio lower bound, multiplier); ratio must be strictly above the bound.
DOWNSCALE_MULTIPLIERS: Sequence[Tuple[float, float]] = (
    (0.9, 1.0),
    (0.7, 0.85),
    (0.5, 0.7),
    (0.3, 0.55),
)
DEEP_DOWNSCALE_MULTIPLIER = 0.4

# (min target height, value) tables, tallest first.
ESTIMATED_BITRATE_CAPS: Sequence[Tuple[int, int]] = (
    (4320, 120000),
    (2160, 60000),
    (1440, 30000),
    (1080, 20000),
    (0, 10000),
)
FLOOR_FRACTIONS: Sequence[Tuple[int, float]] = (
    (2160, 1.0),
    (1080, 0.75),
    (720, 0.5),
    (0, 0.25),
)
SOURCE_CAP_MULTIPLES: Sequence[Tuple[int, float]] = (
    (2160, 1.0),
    (1080, 0.9),
    (720, 0.8),
    (0, 0.7),
)
BASE_QUALITY: Sequence[Tuple[int, int]] = (
    (1080, 19),
    (720, 21),
    (480, 23),
    (0, 26),
)

# Bitrate a codec needs relative to H.264 for similar quality.
CODEC_EFFICIENCY: Dict[str, float] = {
    "h264": 1.0,
    "hevc": 0.6,
    "h265": 0.6,
    "vp9": 0.6,
    "av1": 0.5,
    "vp8": 1.1,
    "mpeg4": 1.4,
    "mpeg2video": 2.0,
    "mjpeg": 5.0,
    "prores": 8.0,
    "dnxhd": 8.0,
}

BIT_DEPTH_ADJUSTMENTS: Sequence[Tuple[int, int]] = (
    (16, -3),
    (12, -2),
    (10, -1),
)

STANDARD_KEYFRAME_INTERVALS: Sequence[Tuple[float, int]] = (
    (23.976, 48),
    (24.0, 48),
    (25.0, 50),
    (29.97, 60),
    (30.0, 60),
    (48.0, 96),
    (50.0, 100),
    (59.94, 120),
    (60.0, 120),
    (120.0, 240),
)
FRAME_RATE_TOLERANCE = 0.05


def _tiered(height: int, table: Sequence[Tuple[int, float]]) -> float:
    for min_height, value in table:
        if height >= min_height:
            return value
    return table[-1][1]


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def _even_ceil(value: int) -> int:
    return value + (value % 2)


def _check_height(height: int) -> None:
    if height <= 0:
        raise InputError(f"Target height must be positive (got {height})", phase="parameters", height=height)


def compute_resolution(target_height: int, aspect_ratio: float) -> Tuple[int, int]:
    """Aspect-preserving (width, height), both even and at least 16."""
    _check_height(target_height)
    if not math.isfinite(aspect_ratio) or aspect_ratio <= 0:
        raise InputError(f"Aspect ratio must be a positive finite number (got {aspect_ratio})", phase="parameters", height=target_height)

    aspect = _clamp(aspect_ratio, MIN_ASPECT_RATIO, MAX_ASPECT_RATIO)
    width = int(round(target_height * aspect))
    width = max(MIN_DIMENSION, _even_ceil(width))
    height = max(MIN_DIMENSION, _even_ceil(target_height))
    return width, height


def downscale_multiplier(height_ratio: float) -> float:
    for lower_bound, multiplier in DOWNSCALE_MULTIPLIERS:
        if height_ratio > lower_bound:
            return multiplier
    return DEEP_DOWNSCALE_MULTIPLIER


def estimate_bitrate(target_height: int, bandwidth_ratio: float = 1.0) -> int:
    """Empirical bitrate for a height when nothing is known about the source."""
    raw = (0.0032 * target_height * target_height + 1.16 * target_height) * bandwidth_ratio
    lower = max(MIN_BITRATE_KBPS, target_height * 0.2)
    upper = _tiered(target_height, ESTIMATED_BITRATE_CAPS)
    return int(round(_clamp(raw, lower, upper)))


def compute_bitrate(
    target_height: int,
    source_bitrate_kbps: Optional[float],
    source_height: Optional[int],
    bandwidth_ratio: float = 1.0,
) -> int:
    """Target video bitrate in kbps.

    With a known source bitrate the source is scaled by area (square of the
    height ratio), then by a downscale multiplier, since deep downscales need
    proportionally less than area alone implies. The result is kept above a
    per-height floor and below a multiple of the source bitrate.
    """
    _check_height(target_height)
    if not math.isfinite(bandwidth_ratio) or bandwidth_ratio <= 0:
        raise InputError(f"Bandwidth ratio must be positive (got {bandwidth_ratio})", phase="parameters", height=target_height)

    if not source_bitrate_kbps or not source_height or source_bitrate_kbps <= 0 or source_height <= 0:
        return estimate_bitrate(target_height, bandwidth_ratio)

    height_ratio = target_height / source_height
    scaled = source_bitrate_kbps * height_ratio ** 2 * downscale_multiplier(height_ratio)
    scaled *= bandwidth_ratio

    floor = max(MIN_BITRATE_KBPS, _tiered(target_height, FLOOR_FRACTIONS) * target_height)
    cap = _tiered(target_height, SOURCE_CAP_MULTIPLES) * source_bitrate_kbps
    return int(round(max(floor, min(scaled, cap))))


def source_richness_adjustment(source: SourceDescriptor) -> int:
    """Quality-factor delta from how rich the source is for its tier and codec."""
    if not source.bitrate_kbps:
        return 0
    efficiency = CODEC_EFFICIENCY.get(source.codec_name.lower(), 1.0)
    expected = source.quality_tier.expected_bitrate_kbps * efficiency
    if expected <= 0:
        return 0
    ratio = source.bitrate_kbps / expected
    if ratio >= 2.0:
        return -3
    if ratio >= 1.5:
        return -2
    if ratio >= 1.15:
        return -1
    if ratio <= 0.35:
        return 3
    if ratio <= 0.5:
        return 2
    if ratio <= 0.75:
        return 1
    return 0


def bit_depth_adjustment(pixel_format: Optional[str]) -> int:
    depth = bit_depth_from_pixel_format(pixel_format)
    for min_depth, delta in BIT_DEPTH_ADJUSTMENTS:
        if depth >= min_depth:
            return delta
    return 0


def compute_quality(target_height: int, source: SourceDescriptor, quality_offset: int = 0) -> int:
    """Compression-quality factor (CRF-like, lower = finer), clamped to 10..40."""
    _check_height(target_height)
    value = int(_tiered(target_height, BASE_QUALITY))
    value += source_richness_adjustment(source)
    value += bit_depth_adjustment(source.pixel_format)
    value += quality_offset
    return int(_clamp(value, MIN_QUALITY, MAX_QUALITY))


def compute_keyframe_interval(frame_rate: float) -> int:
    if not math.isfinite(frame_rate) or frame_rate <= 0:
        raise InputError(f"Frame rate must be a positive finite number (got {frame_rate})", phase="parameters")
    interval = next(
        (gop for rate, gop in STANDARD_KEYFRAME_INTERVALS if abs(rate - frame_rate) <= FRAME_RATE_TOLERANCE),
        None,
    )
    if interval is None:
        interval = int(round(frame_rate * 2))
    return int(_clamp(interval, MIN_KEYFRAME_INTERVAL, MAX_KEYFRAME_INTERVAL))


def compute_parameters(
    rendition: RenditionSpec,
    source: SourceDescriptor,
    bandwidth_ratio: float = 1.0,
    quality_offset: int = 0,
) -> EncodingParameters:
    width, height = compute_resolution(rendition.target_height, source.aspect_ratio)
    return EncodingParameters(
        width=width,
        height=height,
        bitrate_kbps=compute_bitrate(
            rendition.target_height,
            source.bitrate_kbps,
            source.height,
            bandwidth_ratio,
        ),
        quality=compute_quality(rendition.target_height, source, quality_offset),
        keyframe_interval=compute_keyframe_interval(source.frame_rate),
    )
