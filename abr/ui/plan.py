from typing import List
from rich.console import Console
from rich.table import Table
from abr.domain.models import EncodeJob, SourceDescriptor
from abr.pipeline.scheduler import partition_batches


def render_plan(source: SourceDescriptor, jobs: List[EncodeJob], batch_size: int) -> Table:
    """Table of the renditions a run would encode, used by --dry-run."""
    batches = partition_batches(jobs, batch_size)
    batch_of = {job.height: index for index, batch in enumerate(batches, start=1) for job in batch}

    table = Table(
        title=f"Source {source.width}x{source.height} @ {source.frame_rate:.2f}fps "
              f"({source.quality_tier.name}) • {len(batches)} batch(es)",
    )
    table.add_column("Rendition", style="bold")
    table.add_column("Resolution")
    table.add_column("Bitrate", justify="right")
    table.add_column("Quality", justify="right")
    table.add_column("GOP", justify="right")
    table.add_column("Batch", justify="right")
    table.add_column("Playlist", style="dim")
    for job in jobs:
        params = job.params
        table.add_row(
            job.rendition.label,
            f"{params.width}x{params.height}",
            f"{params.bitrate_kbps}k",
            str(params.quality),
            str(params.keyframe_interval),
            str(batch_of[job.height]),
            job.playlist_name,
        )
    return table


def print_plan(source: SourceDescriptor, jobs: List[EncodeJob], batch_size: int, console: Console = None):
    (console or Console()).print(render_plan(source, jobs, batch_size))
