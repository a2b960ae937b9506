"""Source descriptor builder.

Normalizes raw ffprobe output (``-show_streams -show_format`` JSON) into the
immutable :class:`SourceDescriptor` the rest of the pipeline reads. This is
the only place that interprets probe output.
"""

import re
from typing import Any, Dict, List, Optional

from abr.domain.errors import AnalysisError
from abr.domain.models import SourceDescriptor, SourceQualityTier

DEFAULT_FRAME_RATE = 30.0
MAX_FRAME_RATE = 240.0

# Checked top to bottom; first tier whose height band contains the source wins.
QUALITY_TIERS: List[SourceQualityTier] = [
    SourceQualityTier(name="8K", min_height=4300, max_height=8640, min_bitrate_kbps=40000, max_bitrate_kbps=120000),
    SourceQualityTier(name="4K", min_height=2100, max_height=4300, min_bitrate_kbps=15000, max_bitrate_kbps=50000),
    SourceQualityTier(name="1440p", min_height=1400, max_height=2100, min_bitrate_kbps=8000, max_bitrate_kbps=20000),
    SourceQualityTier(name="1080p", min_height=1000, max_height=1400, min_bitrate_kbps=4000, max_bitrate_kbps=12000),
    SourceQualityTier(name="720p", min_height=650, max_height=1000, min_bitrate_kbps=2000, max_bitrate_kbps=6000),
    SourceQualityTier(name="480p", min_height=400, max_height=650, min_bitrate_kbps=1000, max_bitrate_kbps=3000),
    SourceQualityTier(name="360p", min_height=300, max_height=400, min_bitrate_kbps=500, max_bitrate_kbps=1500),
    SourceQualityTier(name="240p", min_height=200, max_height=300, min_bitrate_kbps=300, max_bitrate_kbps=800),
    SourceQualityTier(name="144p", min_height=0, max_height=200, min_bitrate_kbps=100, max_bitrate_kbps=400),
]

_BIT_DEPTH_RE = re.compile(r"(\d{2})(?:le|be)$")


def classify_source_quality(height: int, bitrate_kbps: Optional[float]) -> SourceQualityTier:
    for tier in QUALITY_TIERS:
        if tier.min_height <= height <= tier.max_height:
            return tier
    # Taller than any known tier: derive the band from the source itself
    return SourceQualityTier(
        name="Custom",
        min_height=0,
        max_height=height,
        min_bitrate_kbps=max(100.0, bitrate_kbps * 0.3) if bitrate_kbps else 500.0,
        max_bitrate_kbps=float(bitrate_kbps) if bitrate_kbps else 5000.0,
    )


def bit_depth_from_pixel_format(pixel_format: Optional[str]) -> int:
    """Bits per component encoded in an ffmpeg pix_fmt name.

    ``yuv420p`` → 8, ``yuv420p10le`` / ``p010le`` → 10, ``yuv444p12le`` → 12,
    ``gray16le`` / ``rgb48le`` → 16 (packed formats are capped at 16).
    """
    if not pixel_format:
        return 8
    match = _BIT_DEPTH_RE.search(pixel_format.strip().lower())
    if not match:
        return 8
    depth = int(match.group(1))
    if depth < 8:
        return 8
    return min(depth, 16)


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _parse_rate(value: Any) -> float:
    """'30000/1001' → 29.97; '0/0', garbage or out-of-range → 0.0."""
    if value is None:
        return 0.0
    text = str(value).strip()
    if "/" in text:
        num_text, den_text = text.split("/", 1)
        den = _to_float(den_text)
        if den == 0:
            return 0.0
        rate = _to_float(num_text) / den
    else:
        rate = _to_float(text)
    if rate <= 0 or rate > MAX_FRAME_RATE:
        return 0.0
    return rate


def _parse_duration_tag(value: Any) -> float:
    if value is None:
        return 0.0
    text = str(value).strip()
    if not text:
        return 0.0
    try:
        return float(text)
    except ValueError:
        pass
    if ":" in text:
        parts = text.split(":")
        if len(parts) in (2, 3):
            try:
                parts_f = [float(p) for p in parts]
            except ValueError:
                return 0.0
            if len(parts_f) == 2:
                minutes, seconds = parts_f
                return minutes * 60 + seconds
            hours, minutes, seconds = parts_f
            return hours * 3600 + minutes * 60 + seconds
    return 0.0


def _parse_time_base_duration(duration_ts: Any, time_base: Any) -> float:
    if duration_ts is None or time_base is None:
        return 0.0
    time_base_text = str(time_base)
    if "/" not in time_base_text:
        return 0.0
    num_text, den_text = time_base_text.split("/", 1)
    num = _to_float(num_text)
    den = _to_float(den_text)
    if den == 0:
        return 0.0
    ticks = _to_float(duration_ts)
    if ticks <= 0:
        return 0.0
    return ticks * (num / den)


def _duration(fmt: Dict[str, Any], video_stream: Dict[str, Any]) -> float:
    # format.duration, format tags, stream.duration, stream tags, duration_ts/time_base, size/bitrate
    duration = _to_float(fmt.get("duration"))
    if duration <= 0:
        tags = fmt.get("tags", {}) or {}
        duration = _parse_duration_tag(tags.get("DURATION") or tags.get("duration"))
    if duration <= 0:
        duration = _to_float(video_stream.get("duration"))
    if duration <= 0:
        tags = video_stream.get("tags", {}) or {}
        duration = _parse_duration_tag(tags.get("DURATION") or tags.get("duration"))
    if duration <= 0:
        duration = _parse_time_base_duration(video_stream.get("duration_ts"), video_stream.get("time_base"))
    if duration <= 0:
        bit_rate = _to_float(fmt.get("bit_rate") or video_stream.get("bit_rate"))
        size = _to_float(fmt.get("size"))
        if bit_rate > 0 and size > 0:
            duration = (size * 8) / bit_rate
    return max(0.0, duration)


def _rotation(video_stream: Dict[str, Any]) -> int:
    tags = video_stream.get("tags", {}) or {}
    raw = tags.get("rotate")
    if raw is None:
        for side_data in video_stream.get("side_data_list", []) or []:
            if "rotation" in side_data:
                raw = side_data["rotation"]
                break
    if raw is None:
        return 0
    try:
        angle = int(round(float(raw)))
    except (TypeError, ValueError):
        return 0
    angle %= 360
    # Display matrices can carry odd angles; snap to the nearest quarter turn
    return int(round(angle / 90.0) * 90) % 360


def _bitrate_kbps(fmt: Dict[str, Any], video_stream: Dict[str, Any]) -> Optional[int]:
    for raw in (video_stream.get("bit_rate"), fmt.get("bit_rate")):
        bps = _to_float(raw)
        if bps > 0:
            return max(1, int(round(bps / 1000.0)))
    return None


def build_source_descriptor(raw: Dict[str, Any]) -> SourceDescriptor:
    """Builds the canonical descriptor from raw probe output.

    Raises:
        AnalysisError: no video stream, or a stream without usable dimensions.
    """
    streams = raw.get("streams") or []
    video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
    if not video_stream:
        raise AnalysisError("No video stream found in source file")

    try:
        width = int(video_stream.get("width") or 0)
        height = int(video_stream.get("height") or 0)
    except (TypeError, ValueError):
        width = height = 0
    if width <= 0 or height <= 0:
        raise AnalysisError(f"Video stream has no usable dimensions ({video_stream.get('width')}x{video_stream.get('height')})")

    rotation = _rotation(video_stream)
    if rotation in (90, 270):
        width, height = height, width

    fmt = raw.get("format", {}) or {}
    frame_rate = _parse_rate(video_stream.get("avg_frame_rate")) or _parse_rate(video_stream.get("r_frame_rate"))
    bitrate_kbps = _bitrate_kbps(fmt, video_stream)

    return SourceDescriptor(
        width=width,
        height=height,
        aspect_ratio=width / height,
        duration_seconds=_duration(fmt, video_stream),
        frame_rate=frame_rate or DEFAULT_FRAME_RATE,
        bitrate_kbps=bitrate_kbps,
        pixel_format=video_stream.get("pix_fmt") or "yuv420p",
        codec_name=video_stream.get("codec_name") or "unknown",
        quality_tier=classify_source_quality(height, bitrate_kbps),
        rotation=rotation,
    )


def default_source_descriptor() -> SourceDescriptor:
    """Conservative 1080p30 descriptor used when analysis is skipped."""
    return SourceDescriptor(
        width=1920,
        height=1080,
        aspect_ratio=16 / 9,
        duration_seconds=0.0,
        frame_rate=DEFAULT_FRAME_RATE,
        bitrate_kbps=None,
        pixel_format="yuv420p",
        codec_name="h264",
        quality_tier=classify_source_quality(1080, None),
    )
