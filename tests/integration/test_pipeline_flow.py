"""End-to-end runs of the Orchestrator with the real adapters and a fake ffmpeg/ffprobe process."""

import json
import subprocess
import threading
import time
import httpx
import pytest
from unittest.mock import MagicMock, patch
from abr.config.models import AppConfig
from abr.domain.errors import EncodeRunError
from abr.domain.events import BatchStarted, JobProgressUpdated
from abr.infrastructure.downloader import Downloader
from abr.infrastructure.ffmpeg import FFmpegAdapter
from abr.infrastructure.ffprobe import FFprobeAdapter
from abr.pipeline.manifest import MASTER_MANIFEST_NAME
from abr.pipeline.orchestrator import Orchestrator


class FakeFFmpeg:
    """Stands in for subprocess.Popen: writes the playlist and records start/end order."""

    def __init__(self, fail_heights=(), delay=0.05):
        self.fail_heights = set(fail_heights)
        self.delay = delay
        self.timeline = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, cmd, **kwargs):
        height = int(cmd[cmd.index("-s") + 1].split("x")[1])
        with self._lock:
            self.timeline.append(("start", height))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(self.delay)

        failed = height in self.fail_heights
        process = MagicMock()
        process.returncode = 1 if failed else 0
        process.poll.return_value = process.returncode
        if failed:
            process.stdout = ["Conversion failed!\n"]
        else:
            process.stdout = ["frame=  90 fps=30 time=00:00:06.00 bitrate=1000kbits/s\n"]
            with open(cmd[-1], "w") as f:
                f.write("#EXTM3U\n#EXT-X-ENDLIST\n")

        def _wait(timeout=None):
            with self._lock:
                self.timeline.append(("end", height))
                self.active -= 1
            return process.returncode

        process.wait.side_effect = _wait
        return process


def _probe_result(probe_data):
    return subprocess.CompletedProcess(args=[], returncode=0, stdout=json.dumps(probe_data), stderr="")


def _orchestrator(config, event_bus, downloader=None):
    return Orchestrator(
        config=config,
        event_bus=event_bus,
        ffprobe_adapter=FFprobeAdapter(),
        ffmpeg_adapter=FFmpegAdapter(config=config.general, event_bus=event_bus),
        downloader=downloader or Downloader(),
    )


@pytest.mark.integration
def test_full_run_writes_ladder_and_manifest(sample_config, event_bus, probe_1080p, input_file, output_dir):
    fake = FakeFFmpeg()
    progress = []
    event_bus.subscribe(JobProgressUpdated, lambda e: progress.append((e.job.height, e.progress_percent)))

    with patch("subprocess.run", return_value=_probe_result(probe_1080p)), \
         patch("subprocess.Popen", side_effect=fake):
        manifest = _orchestrator(sample_config, event_bus).run(input_file, output_dir)

    heights = [1080, 720, 540, 480, 360]
    assert [f.target_height for f in manifest.fragments] == heights
    for height in heights:
        assert (output_dir / f"playlist_{height}.m3u8").exists()
    master = (output_dir / MASTER_MANIFEST_NAME).read_text()
    assert master.startswith("#EXTM3U\n")
    assert master.index("playlist_1080.m3u8") < master.index("playlist_360.m3u8")
    # 6s of a 12s source
    assert sorted(progress) == [(h, 50.0) for h in sorted(heights)]


@pytest.mark.integration
def test_capped_concurrency_runs_three_batches(event_bus, probe_1080p, input_file, output_dir):
    config = AppConfig(general={"concurrency": "capped", "max_concurrent": 2}, ui={"enabled": False})
    fake = FakeFFmpeg()
    batches = []
    event_bus.subscribe(BatchStarted, lambda e: batches.append(e.heights))

    with patch("subprocess.run", return_value=_probe_result(probe_1080p)), \
         patch("subprocess.Popen", side_effect=fake):
        _orchestrator(config, event_bus).run(input_file, output_dir)

    assert batches == [[1080, 720], [540, 480], [360]]
    assert fake.max_active <= 2

    # Every job of a batch ends before any job of the next batch starts
    position = {event: index for index, event in enumerate(fake.timeline)}
    for earlier, later in zip(batches, batches[1:]):
        last_end = max(position[("end", h)] for h in earlier)
        first_start = min(position[("start", h)] for h in later)
        assert last_end < first_start


@pytest.mark.integration
def test_sequential_runs_one_at_a_time(event_bus, probe_1080p, input_file, output_dir):
    config = AppConfig(general={"concurrency": "sequential"}, ui={"enabled": False})
    fake = FakeFFmpeg(delay=0.0)

    with patch("subprocess.run", return_value=_probe_result(probe_1080p)), \
         patch("subprocess.Popen", side_effect=fake):
        _orchestrator(config, event_bus).run(input_file, output_dir)

    assert fake.max_active == 1
    assert [h for kind, h in fake.timeline if kind == "start"] == [1080, 720, 540, 480, 360]


@pytest.mark.integration
def test_failure_under_parallel_policy_skips_manifest(sample_config, event_bus, probe_1080p, input_file, output_dir):
    fake = FakeFFmpeg(fail_heights={540})

    with patch("subprocess.run", return_value=_probe_result(probe_1080p)), \
         patch("subprocess.Popen", side_effect=fake):
        with pytest.raises(EncodeRunError) as exc:
            _orchestrator(sample_config, event_bus).run(input_file, output_dir)

    assert exc.value.failed_heights == [540]
    assert "Conversion failed!" in str(exc.value)
    assert not (output_dir / MASTER_MANIFEST_NAME).exists()
    assert not (output_dir / f"{MASTER_MANIFEST_NAME}.tmp").exists()
    # Siblings in the same batch still finish
    for height in (1080, 720, 480, 360):
        assert (output_dir / f"playlist_{height}.m3u8").exists()


@pytest.mark.integration
def test_url_source_is_downloaded_and_removed(sample_config, event_bus, probe_1080p, output_dir):
    def handler(request):
        return httpx.Response(200, content=b"fake mp4 payload")

    downloader = Downloader(client=httpx.Client(transport=httpx.MockTransport(handler)))
    fake = FakeFFmpeg(delay=0.0)
    probed = []

    def fake_run(cmd, **kwargs):
        probed.append(cmd[-1])
        return _probe_result(probe_1080p)

    with patch("subprocess.run", side_effect=fake_run), \
         patch("subprocess.Popen", side_effect=fake):
        manifest = _orchestrator(sample_config, event_bus, downloader=downloader).run(
            "https://cdn.example.com/media/clip.MOV", output_dir
        )

    assert probed == [str(output_dir / "temp_source.mov")]
    assert len(manifest.fragments) == 5
    assert not (output_dir / "temp_source.mov").exists()


@pytest.mark.integration
def test_url_download_interrupted_leaves_no_temp_source(sample_config, event_bus, output_dir):
    def stream():
        yield b"\x00" * 1024
        raise KeyboardInterrupt

    def handler(request):
        return httpx.Response(200, content=stream())

    downloader = Downloader(client=httpx.Client(transport=httpx.MockTransport(handler)))

    with patch("subprocess.run") as run, patch("subprocess.Popen") as popen:
        with pytest.raises(KeyboardInterrupt):
            _orchestrator(sample_config, event_bus, downloader=downloader).run("http://example.com/v.mp4", output_dir)

    assert list(output_dir.iterdir()) == []
    run.assert_not_called()
    popen.assert_not_called()
