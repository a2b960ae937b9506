"""Run lifecycle for one source video.

Coordinates the output directory check, the optional download, source analysis,
ladder planning, the batched encode and the master manifest write. Progress is
reported through EventBus events only; the pipeline never touches the UI.

Steps of :meth:`Orchestrator.run`:
- prepare the output directory (ResourceError) and drop stale ``*.tmp`` files
- resolve the input: local file (InputError if missing) or URL download
- probe and build the SourceDescriptor (or the default one with skip_analysis)
- select the ladder and compute per-rendition EncodingParameters
- run the encode jobs in batches
- assemble and atomically write master.m3u8
"""

import logging
import threading
from pathlib import Path, PurePosixPath
from typing import List, Optional, Tuple, Union
from urllib.parse import urlparse
from abr.config.models import AppConfig
from abr.domain.errors import InputError
from abr.domain.events import LadderPlanned, ManifestWritten, SourceAnalyzed
from abr.domain.models import EncodeJob, MasterManifest, SourceDescriptor
from abr.infrastructure.downloader import Downloader, is_url
from abr.infrastructure.event_bus import EventBus
from abr.infrastructure.ffmpeg import FFmpegAdapter
from abr.infrastructure.ffprobe import FFprobeAdapter
from abr.infrastructure.housekeeping import HousekeepingService
from abr.pipeline.ladder import select_ladder
from abr.pipeline.manifest import assemble, write_master_manifest
from abr.pipeline.parameters import compute_parameters
from abr.pipeline.scheduler import JobScheduler, resolve_batch_size
from abr.pipeline.source import build_source_descriptor, default_source_descriptor

TEMP_SOURCE_STEM = "temp_source"
DEFAULT_DOWNLOAD_SUFFIX = ".mp4"


def temp_source_name(url: str) -> str:
    suffix = PurePosixPath(urlparse(url).path).suffix
    if not suffix or len(suffix) > 6:
        suffix = DEFAULT_DOWNLOAD_SUFFIX
    return f"{TEMP_SOURCE_STEM}{suffix.lower()}"


class Orchestrator:
    """Transcodes one source into an HLS ladder.

    Args:
        config: Validated AppConfig (general settings drive the ladder and batching).
        event_bus: EventBus for lifecycle events.
        ffprobe_adapter: Source probe.
        ffmpeg_adapter: Encoder, one call per rendition.
        housekeeping: Output directory checks and temp file cleanup.
        downloader: Used when the source is an http(s) URL.
        logger: Defaults to this module's logger.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        ffprobe_adapter: FFprobeAdapter,
        ffmpeg_adapter: FFmpegAdapter,
        housekeeping: Optional[HousekeepingService] = None,
        downloader: Optional[Downloader] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.ffprobe = ffprobe_adapter
        self.ffmpeg = ffmpeg_adapter
        self.logger = logger or logging.getLogger(__name__)
        self.housekeeping = housekeeping or HousekeepingService(logger=self.logger)
        self.downloader = downloader or Downloader(logger=self.logger)
        self.shutdown_event = threading.Event()
        self.scheduler = JobScheduler(
            self.ffmpeg.encode,
            self.event_bus,
            logger=self.logger,
            shutdown_event=self.shutdown_event,
        )

    def analyze(self, input_path: Union[str, Path]) -> SourceDescriptor:
        """Probes the source; with skip_analysis the default descriptor is used instead."""
        if self.config.general.skip_analysis:
            source = default_source_descriptor()
            self.logger.info("ANALYSIS_SKIPPED: using default 1920x1080 30fps descriptor")
            self.event_bus.publish(SourceAnalyzed(source=source, probed=False))
            return source

        source = build_source_descriptor(self.ffprobe.probe(input_path))
        self.logger.info(
            f"SOURCE: {source.width}x{source.height} fps={source.frame_rate:.3f} "
            f"bitrate={source.bitrate_kbps or 'unknown'}k codec={source.codec_name} "
            f"pix_fmt={source.pixel_format} tier={source.quality_tier.name} "
            f"duration={source.duration_seconds:.2f}s"
        )
        self.event_bus.publish(SourceAnalyzed(source=source))
        return source

    def plan(self, source: SourceDescriptor, output_dir: Path) -> List[EncodeJob]:
        """Returns the encode jobs for ``source`` in ladder order without running them."""
        general = self.config.general
        ladder = select_ladder(source.height, general.min_quality)
        self.logger.info(
            f"LADDER: {', '.join(r.label for r in ladder)} "
            f"(source={source.height}p min_quality={general.min_quality}p)"
        )
        jobs = []
        for rendition in ladder:
            params = compute_parameters(
                rendition,
                source,
                bandwidth_ratio=general.bandwidth_ratio,
                quality_offset=general.quality_offset,
            )
            self.logger.info(
                f"PARAMS: {rendition.label} {params.width}x{params.height} "
                f"bitrate={params.bitrate_kbps}k q={params.quality} gop={params.keyframe_interval}"
            )
            jobs.append(EncodeJob(rendition=rendition, params=params, output_dir=output_dir))
        return jobs

    def batch_size(self, job_count: int) -> int:
        general = self.config.general
        return resolve_batch_size(general.concurrency, general.max_concurrent, job_count)

    def preview(self, source: Union[str, Path], output_dir: Path) -> Tuple[SourceDescriptor, List[EncodeJob]]:
        """Analyzes and plans without downloading, encoding or writing anything.

        URLs are analyzed in place; local inputs must exist.
        """
        if not is_url(str(source)) and not Path(source).is_file():
            raise InputError(f"Input file not found: {source}")
        descriptor = self.analyze(source)
        return descriptor, self.plan(descriptor, Path(output_dir))

    def _temp_source_path(self, source: Union[str, Path], output_dir: Path) -> Optional[Path]:
        """Where a URL source is downloaded to; None for local inputs."""
        if is_url(str(source)):
            return output_dir / temp_source_name(str(source))
        return None

    def _resolve_input(self, source: Union[str, Path], temp_source: Optional[Path]) -> Path:
        if temp_source is not None:
            self.downloader.download(str(source), temp_source)
            return temp_source

        input_path = Path(source)
        if not input_path.is_file():
            raise InputError(f"Input file not found: {input_path}")
        return input_path

    def run(self, source: Union[str, Path], output_dir: Path) -> MasterManifest:
        """Transcodes ``source`` into ``output_dir`` and returns the written manifest.

        Raises:
            ResourceError: output directory cannot be created or written.
            InputError: missing local input or failed download.
            AnalysisError: probe failed and skip_analysis is off.
            EncodeRunError: one or more renditions failed; master.m3u8 is not written.
        """
        output_dir = Path(output_dir)
        self.logger.info(f"PROCESS_START: {source} -> {output_dir}")
        self.housekeeping.prepare_output_dir(output_dir)
        removed = self.housekeeping.cleanup_temp_files(output_dir)
        if removed:
            self.logger.info(f"Removed {removed} stale temp file(s) from {output_dir}")

        # Known before the download starts so an interrupted download is cleaned up too
        temp_source = self._temp_source_path(source, output_dir)
        try:
            input_path = self._resolve_input(source, temp_source)
            descriptor = self.analyze(input_path)
            jobs = self.plan(descriptor, output_dir)
            batch_size = self.batch_size(len(jobs))
            self.event_bus.publish(LadderPlanned(jobs=jobs, batch_size=batch_size))

            fragments = self.scheduler.run(
                jobs,
                batch_size,
                input_path,
                duration_seconds=descriptor.duration_seconds,
            )

            manifest = assemble(fragments)
            manifest_path = write_master_manifest(manifest, output_dir, logger=self.logger)
            self.event_bus.publish(ManifestWritten(path=manifest_path, renditions=len(manifest.fragments)))
            self.logger.info(f"PROCESS_END: {len(manifest.fragments)} rendition(s) in {output_dir}")
            return manifest
        finally:
            self.housekeeping.remove_temp_source(temp_source)
