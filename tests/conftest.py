import pytest
import shutil
import yaml
from pathlib import Path
from abr.config.models import AppConfig
from abr.domain.models import EncodeJob, EncodingParameters, RenditionSpec
from abr.infrastructure.event_bus import EventBus
from abr.pipeline.source import build_source_descriptor

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """Returns a sample AppConfig object for testing."""
    return AppConfig(
        general={
            "bandwidth_ratio": 1.0,
            "segment_duration": 6,
            "preset": "medium",
            "quality_offset": 0,
            "min_quality": 360,
            "concurrency": "parallel",
            "skip_analysis": False,
            "debug": False,
        },
        ui={"enabled": False},
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "abr.yaml"

    content = {
        'general': {
            'bandwidth_ratio': 0.8,
            'segment_size_mb': 2.0,
            'preset': 'fast',
            'quality_offset': -1,
            'min_quality': 240,
            'concurrency': 'capped',
            'max_concurrent': 2,
        },
        'gpu': {
            'enabled': False,
            'type': 'nvidia',
        },
        'ui': {
            'enabled': False,
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

# ============================================================================
# Source / Job Fixtures
# ============================================================================

@pytest.fixture
def probe_1080p():
    """Raw ffprobe output of a 1080p30 h264 clip at 8 Mbps."""
    return {
        "streams": [
            {
                "index": 0,
                "codec_type": "video",
                "codec_name": "h264",
                "width": 1920,
                "height": 1080,
                "pix_fmt": "yuv420p",
                "avg_frame_rate": "30/1",
                "r_frame_rate": "30/1",
                "bit_rate": "8000000",
                "duration": "12.0",
            },
            {
                "index": 1,
                "codec_type": "audio",
                "codec_name": "aac",
                "bit_rate": "128000",
            },
        ],
        "format": {
            "duration": "12.000000",
            "bit_rate": "8200000",
        },
    }

@pytest.fixture
def source_1080p(probe_1080p):
    return build_source_descriptor(probe_1080p)

@pytest.fixture
def output_dir(tmp_path):
    """Creates a test output directory."""
    out = tmp_path / "hls_out"
    out.mkdir()
    return out

@pytest.fixture
def input_file(tmp_path):
    """Creates a dummy input video file."""
    f = tmp_path / "input.mp4"
    f.write_bytes(b"dummy video content " * 100)
    return f

@pytest.fixture
def make_job(tmp_path):
    """Factory for EncodeJob objects with plausible parameters."""
    def _make(height: int, output_dir: Path = None, width: int = None, bitrate_kbps: int = 1000):
        params = EncodingParameters(
            width=width or (height * 16 // 9 + 1) // 2 * 2,
            height=height,
            bitrate_kbps=bitrate_kbps,
            quality=23,
            keyframe_interval=60,
        )
        return EncodeJob(
            rendition=RenditionSpec(target_height=height, label=f"{height}p"),
            params=params,
            output_dir=output_dir or tmp_path,
        )
    return _make

# ============================================================================
# Real ffmpeg (integration tests)
# ============================================================================

@pytest.fixture
def ffmpeg_tools():
    """Skips the test unless both ffmpeg and ffprobe are on PATH."""
    ffmpeg = shutil.which("ffmpeg")
    ffprobe = shutil.which("ffprobe")
    if not ffmpeg or not ffprobe:
        pytest.skip("ffmpeg/ffprobe not available on PATH")
    return ffmpeg, ffprobe

# ============================================================================
# Marker for slow tests (integration tests with real ffmpeg)
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (integration tests running real ffmpeg)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
