"""GPU detection and hardware encoder profiles."""

from __future__ import annotations

import logging
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple, Union

NVIDIA_SMI_NAME_CMD = ["nvidia-smi", "--query-gpu=name", "--format=csv,noheader,nounits"]


@dataclass(frozen=True)
class GpuInfo:
    type: str
    name: str


@dataclass(frozen=True)
class GpuProfile:
    type: str
    encoder: str
    preset: str
    decoder_args: Tuple[str, ...] = ()
    extra_args: Tuple[str, ...] = ()
    quality_args: Tuple[str, ...] = field(default=("-cq",))

    def quality_flags(self, quality: int) -> List[str]:
        flags: List[str] = []
        for flag in self.quality_args:
            flags.extend([flag, str(quality)])
        return flags


GPU_PROFILES = {
    "nvidia": GpuProfile(
        type="nvidia",
        encoder="h264_nvenc",
        preset="p4",
        decoder_args=("-hwaccel", "cuda"),
        extra_args=("-b_ref_mode", "disabled"),
        quality_args=("-cq",),
    ),
    "intel": GpuProfile(
        type="intel",
        encoder="h264_qsv",
        preset="medium",
        decoder_args=("-hwaccel", "qsv"),
        quality_args=("-global_quality",),
    ),
    "amd": GpuProfile(
        type="amd",
        encoder="h264_amf",
        preset="balanced",
        quality_args=("-qp_i", "-qp_p"),
    ),
    "apple": GpuProfile(
        type="apple",
        encoder="h264_videotoolbox",
        preset="medium",
        quality_args=("-q:v",),
    ),
}


def gpu_profile(gpu_type: str) -> GpuProfile:
    """Encoder profile for a GPU type; unknown types fall back to NVENC."""
    return GPU_PROFILES.get(gpu_type, GPU_PROFILES["nvidia"])


def _vendor_from_name(name: str) -> str:
    lowered = name.lower()
    if "nvidia" in lowered:
        return "nvidia"
    if "intel" in lowered:
        return "intel"
    if "amd" in lowered or "radeon" in lowered or "ati " in lowered:
        return "amd"
    return "unknown"


def _query(run: Callable[..., subprocess.CompletedProcess], cmd: Union[List[str], str], shell: bool = False) -> Optional[str]:
    try:
        result = run(cmd, capture_output=True, text=True, timeout=10, shell=shell)
    except (OSError, subprocess.SubprocessError):
        return None
    if result.returncode != 0:
        return None
    output = (result.stdout or "").strip()
    return output or None


def detect_gpu(
    run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    platform: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> GpuInfo:
    """Best-effort GPU vendor detection.

    Tries nvidia-smi everywhere, then lspci (Linux) or wmic (Windows); macOS
    is assumed to be VideoToolbox. Falls back to NVIDIA when nothing answers.
    """
    platform = platform or sys.platform
    logger = logger or logging.getLogger(__name__)

    if platform == "darwin":
        return GpuInfo(type="apple", name="Apple GPU (VideoToolbox)")

    nvidia = _query(run, NVIDIA_SMI_NAME_CMD)
    if nvidia:
        return GpuInfo(type="nvidia", name=nvidia.splitlines()[0].strip())

    if platform.startswith("win"):
        output = _query(run, ["wmic", "path", "win32_VideoController", "get", "name"])
        names = [line.strip() for line in (output or "").splitlines() if line.strip() and line.strip() != "Name"]
    else:
        output = _query(run, "lspci | grep -i vga", shell=True)
        names = [line.split(": ", 1)[-1].strip() for line in (output or "").splitlines() if line.strip()]

    if names:
        vendor = _vendor_from_name(names[0])
        if vendor != "unknown":
            return GpuInfo(type=vendor, name=names[0])

    logger.info("GPU detection inconclusive, assuming NVIDIA")
    return GpuInfo(type="nvidia", name="NVIDIA GPU (assumed)")
