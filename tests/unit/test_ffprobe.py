import json
import subprocess
import pytest
from unittest.mock import patch, MagicMock
from abr.domain.errors import AnalysisError
from abr.infrastructure.ffprobe import FFprobeAdapter


def test_ffprobe_parsing(probe_1080p):
    with patch("subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(returncode=0, stdout=json.dumps(probe_1080p), stderr="")

        adapter = FFprobeAdapter()
        raw = adapter.probe("test.mp4")

        assert raw == probe_1080p
        cmd = mock_run.call_args[0][0]
        assert cmd[0] == "ffprobe"
        assert "-show_streams" in cmd
        assert "-show_format" in cmd
        assert cmd[-1] == "test.mp4"


def test_ffprobe_accepts_url():
    with patch("subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(returncode=0, stdout="{}", stderr="")
        FFprobeAdapter().probe("https://example.com/video.mp4")
        assert mock_run.call_args[0][0][-1] == "https://example.com/video.mp4"


def test_ffprobe_nonzero_exit():
    with patch("subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="moov atom not found")
        with pytest.raises(AnalysisError, match="moov atom not found"):
            FFprobeAdapter().probe("broken.mp4")


def test_ffprobe_missing_binary():
    with patch("subprocess.run", side_effect=FileNotFoundError("ffprobe")):
        with pytest.raises(AnalysisError, match="not found"):
            FFprobeAdapter().probe("test.mp4")


def test_ffprobe_timeout():
    with patch("subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="ffprobe", timeout=1)):
        with pytest.raises(AnalysisError, match="timed out"):
            FFprobeAdapter(timeout=1).probe("test.mp4")


@pytest.mark.parametrize("stdout", ["not json", "[1, 2, 3]", ""])
def test_ffprobe_unparsable_output(stdout):
    with patch("subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(returncode=0, stdout=stdout, stderr="")
        with pytest.raises(AnalysisError):
            FFprobeAdapter().probe("test.mp4")


def test_ffprobe_custom_binary():
    with patch("subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(returncode=0, stdout="{}", stderr="")
        FFprobeAdapter(binary="/opt/ffmpeg/bin/ffprobe").probe("a.mp4")
        assert mock_run.call_args[0][0][0] == "/opt/ffmpeg/bin/ffprobe"
