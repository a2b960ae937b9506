from enum import Enum
from pathlib import Path
from typing import Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field

class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    INTERRUPTED = "INTERRUPTED"  # Ctrl+C during encoding

TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.INTERRUPTED})

class SourceQualityTier(BaseModel):
    """Bitrate band a source of a given height is expected to fall into."""
    model_config = ConfigDict(frozen=True)

    name: str
    min_height: int
    max_height: int
    min_bitrate_kbps: float
    max_bitrate_kbps: float

    @property
    def expected_bitrate_kbps(self) -> float:
        return (self.min_bitrate_kbps + self.max_bitrate_kbps) / 2.0

class SourceDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = Field(gt=0)
    height: int = Field(gt=0)
    aspect_ratio: float
    duration_seconds: float = 0.0
    frame_rate: float = 30.0
    bitrate_kbps: Optional[int] = None
    pixel_format: str = "yuv420p"
    codec_name: str = "unknown"
    quality_tier: SourceQualityTier
    rotation: int = 0

class RenditionSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_height: int = Field(gt=0)
    label: str

class EncodingParameters(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = Field(ge=16)
    height: int = Field(ge=16)
    bitrate_kbps: int = Field(gt=0)
    quality: int = Field(ge=10, le=40)
    keyframe_interval: int = Field(ge=24, le=480)

class ManifestFragment(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_height: int
    label: str
    width: int
    height: int
    bandwidth: int  # bits/sec
    playlist: str  # relative to the output directory

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

class MasterManifest(BaseModel):
    model_config = ConfigDict(frozen=True)

    fragments: Tuple[ManifestFragment, ...] = ()

    def render(self) -> str:
        lines = [
            "#EXTM3U",
            "#EXT-X-VERSION:3",
            "#EXT-X-INDEPENDENT-SEGMENTS",
            "",
        ]
        for fragment in self.fragments:
            lines.append(
                f"#EXT-X-STREAM-INF:BANDWIDTH={fragment.bandwidth},"
                f"RESOLUTION={fragment.resolution},NAME=\"{fragment.label}\""
            )
            lines.append(fragment.playlist)
            lines.append("")
        return "\n".join(lines) + "\n"

class EncodeJob(BaseModel):
    rendition: RenditionSpec
    params: EncodingParameters
    output_dir: Path
    status: JobStatus = JobStatus.PENDING
    error_message: Optional[str] = None
    progress_percent: float = 0.0
    elapsed_seconds: Optional[float] = None

    @property
    def height(self) -> int:
        return self.rendition.target_height

    @property
    def playlist_name(self) -> str:
        return f"playlist_{self.height}.m3u8"

    @property
    def playlist_path(self) -> Path:
        return self.output_dir / self.playlist_name

    @property
    def segment_pattern(self) -> Path:
        return self.output_dir / f"segment_{self.height}_%03d.ts"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_fragment(self) -> ManifestFragment:
        return ManifestFragment(
            target_height=self.height,
            label=self.rendition.label,
            width=self.params.width,
            height=self.params.height,
            bandwidth=self.params.bitrate_kbps * 1000,
            playlist=self.playlist_name,
        )
