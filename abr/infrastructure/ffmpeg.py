import subprocess
import re
import logging
import time
import threading
import queue
from collections import deque
from pathlib import Path
from typing import List, Optional
from abr.config.models import GeneralConfig
from abr.domain.errors import JobError
from abr.domain.models import EncodeJob, JobStatus, ManifestFragment
from abr.domain.events import JobProgressUpdated
from abr.infrastructure.event_bus import EventBus
from abr.infrastructure.gpu import GpuProfile

# Regex to parse 'time=00:00:00.00' from ffmpeg output
TIME_RE = re.compile(r"time=(\d+):(\d+):(\d+(?:\.\d+)?)")

OUTPUT_TAIL_LINES = 20

class FFmpegAdapter:
    """Runs one HLS rendition encode per call.

    A call blocks its worker thread until ffmpeg exits, then either returns the
    rendition's ManifestFragment or raises JobError.
    """

    def __init__(
        self,
        config: GeneralConfig,
        event_bus: EventBus,
        gpu: Optional[GpuProfile] = None,
        binary: str = "ffmpeg",
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.gpu = gpu
        self.binary = binary
        self.logger = logger or logging.getLogger(__name__)

    def build_command(self, job: EncodeJob, input_path: Path) -> List[str]:
        """Constructs the ffmpeg command line arguments for one rendition."""
        params = job.params
        cmd = [self.binary, "-y", "-hide_banner"]
        if self.gpu:
            cmd.extend(self.gpu.decoder_args)
        cmd.extend(["-i", str(input_path)])

        # Video encoding settings
        if self.gpu:
            cmd.extend(["-c:v", self.gpu.encoder])
            cmd.extend(self.gpu.extra_args)
            cmd.extend(self.gpu.quality_flags(params.quality))
            preset = self.gpu.preset
        else:
            cmd.extend(["-c:v", "libx264", "-crf", str(params.quality)])
            preset = self.config.preset

        cmd.extend([
            "-s", f"{params.width}x{params.height}",
            "-pix_fmt", "yuv420p",
            "-b:v", f"{params.bitrate_kbps}k",
            "-preset", preset,
            "-g", str(params.keyframe_interval),
            "-keyint_min", str(params.keyframe_interval),
            "-sc_threshold", "0",
            "-bf", "3",
            "-refs", "3",
        ])

        # Audio settings
        cmd.extend(["-c:a", "aac", "-b:a", f"{self.config.audio_bitrate_kbps}k"])

        # Segmenting: by size (small hls_time so size decides the split) or by duration
        cmd.extend(["-f", "hls"])
        segment_size = self.config.segment_size_bytes
        if segment_size:
            cmd.extend(["-hls_time", "1", "-hls_segment_size", str(segment_size)])
        else:
            cmd.extend(["-hls_time", str(self.config.segment_duration)])
        cmd.extend([
            "-hls_list_size", "0",
            "-hls_playlist_type", "vod",
            "-hls_segment_filename", str(job.segment_pattern),
            str(job.playlist_path),
        ])
        return cmd

    def _terminate(self, process: subprocess.Popen):
        process.terminate()
        try:
            process.wait(timeout=3)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def encode(
        self,
        job: EncodeJob,
        input_path: Path,
        duration_seconds: float = 0.0,
        shutdown_event: Optional[threading.Event] = None,
    ) -> ManifestFragment:
        """Executes the encode and returns the fragment for the master manifest."""
        label = job.rendition.label
        start_time = time.monotonic()
        cmd = self.build_command(job, input_path)
        self.logger.info(
            f"FFMPEG_START: {label} {job.params.width}x{job.params.height} "
            f"bitrate={job.params.bitrate_kbps}k q={job.params.quality} gop={job.params.keyframe_interval} "
            f"encoder={self.gpu.encoder if self.gpu else 'libx264'}"
        )
        self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                universal_newlines=True,
                bufsize=1
            )
        except OSError as e:
            raise JobError(f"Cannot start {self.binary}: {e}", height=job.height)

        tail: "deque[str]" = deque(maxlen=OUTPUT_TAIL_LINES)
        output_queue: "queue.Queue[Optional[str]]" = queue.Queue()

        def _reader():
            if not process.stdout:
                output_queue.put(None)
                return
            for line in process.stdout:
                output_queue.put(line)
            output_queue.put(None)

        reader_thread = threading.Thread(target=_reader, daemon=True)
        reader_thread.start()

        try:
            while True:
                if shutdown_event is not None and shutdown_event.is_set():
                    self.logger.info(f"FFMPEG_INTERRUPTED: {label} (shutdown signal)")
                    self._terminate(process)
                    job.status = JobStatus.INTERRUPTED
                    job.error_message = "Interrupted by user (Ctrl+C)"
                    raise JobError(job.error_message, height=job.height)

                try:
                    line = output_queue.get(timeout=0.1)
                except queue.Empty:
                    if process.poll() is not None and not reader_thread.is_alive():
                        break
                    continue

                if line is None:
                    break
                if line.strip():
                    tail.append(line.rstrip())

                match = TIME_RE.search(line)
                if match and duration_seconds > 0:
                    h, m, s = map(float, match.groups())
                    current_seconds = h * 3600 + m * 60 + s
                    job.progress_percent = min(100.0, (current_seconds / duration_seconds) * 100.0)
                    self.event_bus.publish(JobProgressUpdated(job=job, progress_percent=job.progress_percent))

            process.wait()
        except KeyboardInterrupt:
            self.logger.info(f"FFMPEG_INTERRUPTED: {label} (KeyboardInterrupt)")
            self._terminate(process)
            job.status = JobStatus.INTERRUPTED
            job.error_message = "Interrupted by user (Ctrl+C)"
            raise

        elapsed = time.monotonic() - start_time
        job.elapsed_seconds = elapsed

        if process.returncode != 0:
            detail = " | ".join(list(tail)[-3:])
            message = f"ffmpeg exited with code {process.returncode}"
            if detail:
                message = f"{message}: {detail}"
            self.logger.info(f"FFMPEG_END: {label} status=failed code={process.returncode} elapsed={elapsed:.2f}s")
            raise JobError(message, height=job.height)

        if not job.playlist_path.exists():
            self.logger.info(f"FFMPEG_END: {label} status=failed reason=missing_playlist elapsed={elapsed:.2f}s")
            raise JobError(f"ffmpeg finished but {job.playlist_name} was not written", height=job.height)

        job.progress_percent = 100.0
        self.logger.info(f"FFMPEG_END: {label} status=completed elapsed={elapsed:.2f}s")
        return job.to_fragment()
