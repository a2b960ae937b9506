from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator

# Canonical rendition heights, lowest first.
LADDER_HEIGHTS = (
    144, 240, 360, 480, 540, 720, 1080, 1440, 2160,
    2880, 3600, 4320, 5040, 5760, 6480, 7200, 7920, 8640,
)

X264_PRESETS = (
    "ultrafast", "superfast", "veryfast", "faster", "fast",
    "medium", "slow", "slower", "veryslow",
)

GPU_TYPES = ("auto", "nvidia", "intel", "amd", "apple")

DEFAULT_SEGMENT_DURATION = 6


class ConcurrencyPolicy(str, Enum):
    PARALLEL = "parallel"      # every rendition at once
    CAPPED = "capped"          # batches of max_concurrent
    SEQUENTIAL = "sequential"  # one rendition at a time


class GeneralConfig(BaseModel):
    bandwidth_ratio: float = Field(default=1.0, ge=0.1, le=2.0)
    segment_duration: Optional[int] = Field(default=None, gt=0)
    segment_size_mb: Optional[float] = Field(default=None, gt=0)
    preset: str = "medium"
    quality_offset: int = Field(default=0, ge=-5, le=5)
    min_quality: int = 360
    concurrency: ConcurrencyPolicy = ConcurrencyPolicy.PARALLEL
    max_concurrent: Optional[int] = Field(default=None, gt=0)
    skip_analysis: bool = False
    audio_bitrate_kbps: int = Field(default=128, gt=0)
    debug: bool = False
    log_path: Optional[str] = None

    @field_validator("preset")
    @classmethod
    def validate_preset(cls, v: str) -> str:
        value = str(v).strip().lower()
        if value not in X264_PRESETS:
            raise ValueError(f"Unsupported preset '{v}'. Use one of: {', '.join(X264_PRESETS)}.")
        return value

    @field_validator("min_quality")
    @classmethod
    def validate_min_quality(cls, v: int) -> int:
        if v not in LADDER_HEIGHTS:
            raise ValueError(
                f"Min quality {v} is not a supported resolution. "
                f"Use one of: {', '.join(str(h) for h in LADDER_HEIGHTS)}."
            )
        return v

    @model_validator(mode="after")
    def validate_segment_and_concurrency(self):
        if self.segment_duration is not None and self.segment_size_mb is not None:
            raise ValueError("segment_duration and segment_size_mb are mutually exclusive.")
        if self.segment_duration is None and self.segment_size_mb is None:
            self.segment_duration = DEFAULT_SEGMENT_DURATION
        if self.max_concurrent is not None and self.concurrency == ConcurrencyPolicy.PARALLEL:
            # A cap without an explicit policy means capped
            if "concurrency" in self.model_fields_set:
                raise ValueError("max_concurrent cannot be combined with concurrency=parallel; use capped.")
            self.concurrency = ConcurrencyPolicy.CAPPED
        if self.concurrency == ConcurrencyPolicy.CAPPED and self.max_concurrent is None:
            raise ValueError("concurrency=capped requires max_concurrent.")
        return self

    @property
    def segment_size_bytes(self) -> Optional[int]:
        if self.segment_size_mb is None:
            return None
        return int(round(self.segment_size_mb * 1024 * 1024))


class GpuConfig(BaseModel):
    """Hardware encoding and GPU usage sampling."""
    enabled: bool = False
    type: str = "auto"
    show_usage: bool = False
    sample_interval_s: float = Field(default=0.5, ge=0.1)

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        value = str(v).strip().lower()
        if value not in GPU_TYPES:
            raise ValueError(f"Unsupported GPU type '{v}'. Use one of: {', '.join(GPU_TYPES)}.")
        return value


class UiConfig(BaseModel):
    """Console dashboard configuration."""
    enabled: bool = True
    refresh_per_second: int = Field(default=4, ge=1, le=20)


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    gpu: GpuConfig = Field(default_factory=GpuConfig)
    ui: UiConfig = Field(default_factory=UiConfig)
