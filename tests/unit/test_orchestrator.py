import pytest
from unittest.mock import MagicMock
from abr.config.models import AppConfig
from abr.domain.errors import AnalysisError, EncodeRunError, InputError, JobError, ResourceError
from abr.domain.events import LadderPlanned, ManifestWritten, SourceAnalyzed
from abr.pipeline.manifest import MASTER_MANIFEST_NAME
from abr.pipeline.orchestrator import Orchestrator, temp_source_name


def _fake_encode(fail_heights=()):
    def encode(job, input_path, duration_seconds=0.0, shutdown_event=None):
        if job.height in fail_heights:
            raise JobError("ffmpeg exited with code 1", height=job.height)
        job.playlist_path.write_text("#EXTM3U\n")
        return job.to_fragment()
    return encode


def _orchestrator(config, event_bus, probe_result=None, probe_error=None, encode=None, downloader=None):
    ffprobe = MagicMock()
    if probe_error is not None:
        ffprobe.probe.side_effect = probe_error
    else:
        ffprobe.probe.return_value = probe_result
    ffmpeg = MagicMock()
    ffmpeg.encode.side_effect = encode or _fake_encode()
    return Orchestrator(
        config=config,
        event_bus=event_bus,
        ffprobe_adapter=ffprobe,
        ffmpeg_adapter=ffmpeg,
        downloader=downloader or MagicMock(),
    )


def test_run_writes_master_manifest(sample_config, event_bus, probe_1080p, input_file, output_dir):
    orchestrator = _orchestrator(sample_config, event_bus, probe_result=probe_1080p)

    manifest = orchestrator.run(input_file, output_dir)

    assert [f.target_height for f in manifest.fragments] == [1080, 720, 540, 480, 360]
    text = (output_dir / MASTER_MANIFEST_NAME).read_text()
    assert text == manifest.render()
    assert orchestrator.ffmpeg.encode.call_count == 5


def test_run_publishes_lifecycle_events(sample_config, event_bus, probe_1080p, input_file, output_dir):
    received = []
    event_bus.subscribe(SourceAnalyzed, lambda e: received.append("source"))
    event_bus.subscribe(LadderPlanned, lambda e: received.append(("ladder", len(e.jobs), e.batch_size)))
    event_bus.subscribe(ManifestWritten, lambda e: received.append(("manifest", e.renditions)))

    _orchestrator(sample_config, event_bus, probe_result=probe_1080p).run(input_file, output_dir)

    assert received == ["source", ("ladder", 5, 5), ("manifest", 5)]


def test_failed_rendition_prevents_manifest(sample_config, event_bus, probe_1080p, input_file, output_dir):
    orchestrator = _orchestrator(
        sample_config, event_bus, probe_result=probe_1080p, encode=_fake_encode(fail_heights={540})
    )

    with pytest.raises(EncodeRunError) as exc:
        orchestrator.run(input_file, output_dir)

    assert exc.value.failed_heights == [540]
    assert not (output_dir / MASTER_MANIFEST_NAME).exists()


def test_missing_input_raises_input_error(sample_config, event_bus, output_dir, tmp_path):
    orchestrator = _orchestrator(sample_config, event_bus, probe_result={})
    with pytest.raises(InputError):
        orchestrator.run(tmp_path / "missing.mp4", output_dir)
    orchestrator.ffprobe.probe.assert_not_called()


def test_unwritable_output_raises_before_analysis(sample_config, event_bus, input_file, tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("file")
    orchestrator = _orchestrator(sample_config, event_bus, probe_result={})

    with pytest.raises(ResourceError):
        orchestrator.run(input_file, blocker / "out")
    orchestrator.ffprobe.probe.assert_not_called()


def test_analysis_failure_aborts(sample_config, event_bus, input_file, output_dir):
    orchestrator = _orchestrator(sample_config, event_bus, probe_error=AnalysisError("no video stream"))
    with pytest.raises(AnalysisError):
        orchestrator.run(input_file, output_dir)
    orchestrator.ffmpeg.encode.assert_not_called()


def test_skip_analysis_uses_default_descriptor(event_bus, input_file, output_dir):
    config = AppConfig(general={"skip_analysis": True, "min_quality": 720})
    orchestrator = _orchestrator(config, event_bus, probe_error=AnalysisError("should not be called"))

    manifest = orchestrator.run(input_file, output_dir)

    orchestrator.ffprobe.probe.assert_not_called()
    assert [f.target_height for f in manifest.fragments] == [1080, 720]


def test_stale_tmp_files_removed(sample_config, event_bus, probe_1080p, input_file, output_dir):
    stale = output_dir / "master.m3u8.tmp"
    stale.write_text("partial")
    _orchestrator(sample_config, event_bus, probe_result=probe_1080p).run(input_file, output_dir)
    assert not stale.exists()


def test_url_input_downloaded_and_removed(sample_config, event_bus, probe_1080p, output_dir):
    downloader = MagicMock()
    downloader.download.side_effect = lambda url, dest: dest.write_bytes(b"video") or dest
    orchestrator = _orchestrator(sample_config, event_bus, probe_result=probe_1080p, downloader=downloader)

    orchestrator.run("https://cdn.example.com/clips/source.MOV?token=1", output_dir)

    url, dest = downloader.download.call_args[0]
    assert url == "https://cdn.example.com/clips/source.MOV?token=1"
    assert dest == output_dir / "temp_source.mov"
    orchestrator.ffprobe.probe.assert_called_once_with(dest)
    assert not dest.exists()


def test_url_temp_source_removed_on_failure(sample_config, event_bus, probe_1080p, output_dir):
    downloader = MagicMock()
    downloader.download.side_effect = lambda url, dest: dest.write_bytes(b"video") or dest
    orchestrator = _orchestrator(
        sample_config, event_bus, probe_result=probe_1080p,
        encode=_fake_encode(fail_heights={1080}), downloader=downloader,
    )

    with pytest.raises(EncodeRunError):
        orchestrator.run("https://example.com/video.mp4", output_dir)
    assert not (output_dir / "temp_source.mp4").exists()


def test_url_temp_source_removed_when_download_interrupted(sample_config, event_bus, output_dir):
    def interrupted_download(url, dest):
        dest.write_bytes(b"partial")
        raise KeyboardInterrupt

    downloader = MagicMock()
    downloader.download.side_effect = interrupted_download
    orchestrator = _orchestrator(sample_config, event_bus, downloader=downloader)

    with pytest.raises(KeyboardInterrupt):
        orchestrator.run("http://example.com/v.mp4", output_dir)
    assert list(output_dir.iterdir()) == []
    orchestrator.ffprobe.probe.assert_not_called()


def test_capped_config_batches(event_bus, probe_1080p, input_file, output_dir):
    config = AppConfig(general={"concurrency": "capped", "max_concurrent": 2})
    planned = []
    event_bus.subscribe(LadderPlanned, lambda e: planned.append(e.batch_size))
    _orchestrator(config, event_bus, probe_result=probe_1080p).run(input_file, output_dir)
    assert planned == [2]


def test_plan_does_not_encode(sample_config, event_bus, source_1080p, output_dir):
    orchestrator = _orchestrator(sample_config, event_bus, probe_result={})
    jobs = orchestrator.plan(source_1080p, output_dir)
    assert [j.height for j in jobs] == [1080, 720, 540, 480, 360]
    assert len({j.playlist_name for j in jobs}) == 5
    assert jobs[1].params.bitrate_kbps == 2489
    orchestrator.ffmpeg.encode.assert_not_called()


def test_preview_probes_without_writing(sample_config, event_bus, probe_1080p, input_file, output_dir):
    orchestrator = _orchestrator(sample_config, event_bus, probe_result=probe_1080p)
    source, jobs = orchestrator.preview(input_file, output_dir)
    assert source.height == 1080
    assert len(jobs) == 5
    assert list(output_dir.iterdir()) == []


def test_preview_missing_input(sample_config, event_bus, tmp_path):
    orchestrator = _orchestrator(sample_config, event_bus, probe_result={})
    with pytest.raises(InputError):
        orchestrator.preview(tmp_path / "nope.mp4", tmp_path)


@pytest.mark.parametrize("url,expected", [
    ("https://example.com/a/video.mp4", "temp_source.mp4"),
    ("https://example.com/a/VIDEO.MKV?x=1", "temp_source.mkv"),
    ("https://example.com/stream", "temp_source.mp4"),
    ("https://example.com/file.verylongext", "temp_source.mp4"),
])
def test_temp_source_name(url, expected):
    assert temp_source_name(url) == expected
