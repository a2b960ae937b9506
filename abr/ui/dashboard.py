import logging
import threading
import time
from datetime import datetime
from typing import Optional
from rich.live import Live
from rich.console import Console, Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.progress_bar import ProgressBar
from rich.text import Text
from rich.box import SIMPLE
from abr.ui.state import UIState
from abr.domain.models import EncodeJob, JobStatus

logger = logging.getLogger(__name__)

STATUS_STYLES = {
    JobStatus.PENDING: ("·", "dim"),
    JobStatus.RUNNING: ("▶", "cyan"),
    JobStatus.COMPLETED: ("✓", "green"),
    JobStatus.FAILED: ("✗", "red"),
    JobStatus.INTERRUPTED: ("■", "yellow"),
}


class Dashboard:
    """Live console view of one transcode run."""

    def __init__(self, state: UIState, refresh_per_second: int = 4, console: Optional[Console] = None):
        self.state = state
        self.refresh_per_second = refresh_per_second
        self.console = console or Console()
        self._live: Optional[Live] = None
        self._refresh_thread: Optional[threading.Thread] = None
        self._stop_refresh = threading.Event()
        self._ui_lock = threading.Lock()

    # --- Formatters ---

    def format_time(self, seconds: Optional[float]) -> str:
        """Format time: 59s, 01m 01s, 1h 01m."""
        if seconds is None:
            return "--:--"
        if seconds < 60:
            return f"{int(seconds)}s"
        if seconds < 3600:
            return f"{int(seconds // 60):02d}m {int(seconds % 60):02d}s"
        return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60):02d}m"

    def format_bitrate(self, kbps: Optional[int]) -> str:
        if not kbps:
            return "?"
        if kbps >= 1000:
            return f"{kbps / 1000:.1f}Mbps"
        return f"{kbps}kbps"

    # --- Panels ---

    def _generate_header(self) -> Panel:
        with self.state._lock:
            source = self.state.source
            if source is None:
                line = Text("Analyzing source...", style="dim")
            else:
                origin = "probed" if self.state.source_probed else "defaults"
                line = Text.assemble(
                    (f"{source.width}x{source.height}", "bold"),
                    f"  {source.frame_rate:.2f}fps",
                    f"  {self.format_bitrate(source.bitrate_kbps)}",
                    f"  {source.codec_name}/{source.pixel_format}",
                    (f"  tier {source.quality_tier.name}", "magenta"),
                    (f"  ({origin})", "dim"),
                )
        return Panel(line, title="SOURCE", border_style="blue")

    def _render_job_row(self, table: Table, job: EncodeJob):
        icon, style = STATUS_STYLES.get(job.status, ("?", "white"))
        percent = self.state.progress_for(job)
        bar = ProgressBar(total=100, completed=percent, width=24)
        table.add_row(
            Text(icon, style=style),
            Text(job.rendition.label, style="bold"),
            f"{job.params.width}x{job.params.height}",
            self.format_bitrate(job.params.bitrate_kbps),
            str(job.params.quality),
            bar,
            f"{percent:5.1f}%",
            self.format_time(self.state.elapsed_seconds(job)),
        )

    def _generate_renditions(self) -> Panel:
        with self.state._lock:
            table = Table(box=SIMPLE, expand=True, pad_edge=False)
            table.add_column("", width=1)
            table.add_column("Rendition")
            table.add_column("Size")
            table.add_column("Bitrate", justify="right")
            table.add_column("Q", justify="right")
            table.add_column("Progress", ratio=1)
            table.add_column("%", justify="right")
            table.add_column("Time", justify="right")
            for job in self.state.jobs:
                self._render_job_row(table, job)

            if self.state.total_batches:
                title = f"RENDITIONS • batch {self.state.current_batch}/{self.state.total_batches}"
            else:
                title = "RENDITIONS"
        return Panel(table, title=title, border_style="cyan")

    def _generate_footer(self) -> RenderableType:
        with self.state._lock:
            elapsed = None
            if self.state.processing_start_time:
                elapsed = (datetime.now() - self.state.processing_start_time).total_seconds()
            parts = [
                (f"done {self.state.completed_count}/{len(self.state.jobs)}", "green"),
                "  ",
                (f"failed {self.state.failed_count}", "red" if self.state.failed_count else "dim"),
                "  ",
                (f"elapsed {self.format_time(elapsed)}", "white"),
            ]
            gpu_average = self.state.gpu_average
            if gpu_average is not None:
                parts.extend(["  ", (f"GPU {self.state.gpu_history[-1]:.0f}% (avg {gpu_average:.1f}%)", "yellow")])
            lines = [Text.assemble(*parts)]
            if self.state.last_action:
                lines.append(Text(self.state.last_action, style="dim"))
            for height, message in sorted(self.state.errors.items(), reverse=True):
                lines.append(Text(f"{height}p: {message}", style="red"))
        return Group(*lines)

    def create_display(self) -> RenderableType:
        return Group(self._generate_header(), self._generate_renditions(), self._generate_footer())

    # --- Lifecycle ---

    def _refresh_loop(self):
        interval = 1.0 / max(1, self.refresh_per_second)
        while not self._stop_refresh.is_set():
            if self._live:
                try:
                    display = self.create_display()
                    with self._ui_lock:
                        self._live.update(display)
                except Exception as e:
                    logger.debug(f"Dashboard refresh failed: {e}")
            time.sleep(interval)

    def start(self):
        self._live = Live(self.create_display(), console=self.console, refresh_per_second=self.refresh_per_second)
        self._live.start()
        self._stop_refresh.clear()
        self._refresh_thread = threading.Thread(target=self._refresh_loop, daemon=True)
        self._refresh_thread.start()
        return self

    def stop(self):
        self._stop_refresh.set()
        if self._refresh_thread:
            self._refresh_thread.join(timeout=1.0)
        if self._live:
            # Final frame shows the terminal state of every rendition
            with self._ui_lock:
                self._live.update(self.create_display())
            self._live.stop()
            self._live = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
