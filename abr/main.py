import logging
import typer
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic import ValidationError
from abr.config.loader import load_config
from abr.config.models import AppConfig, ConcurrencyPolicy
from abr.domain.errors import ResourceError, TranscodeError
from abr.domain.events import JobCompleted, JobFailed, ManifestWritten
from abr.infrastructure.logging import LOGGER_NAME, setup_logging
from abr.infrastructure.event_bus import EventBus
from abr.infrastructure.ffprobe import FFprobeAdapter
from abr.infrastructure.ffmpeg import FFmpegAdapter
from abr.infrastructure.downloader import Downloader
from abr.infrastructure.gpu import detect_gpu, gpu_profile
from abr.infrastructure.gpu_monitor import GpuMonitor
from abr.infrastructure.housekeeping import HousekeepingService
from abr.pipeline.orchestrator import Orchestrator
from abr.ui.state import UIState
from abr.ui.manager import UIManager
from abr.ui.dashboard import Dashboard
from abr.ui.plan import print_plan

app = typer.Typer(help="ABR ladder transcoder - source-aware HLS packaging with ffmpeg")


def format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def apply_cli_overrides(config: AppConfig, general: Dict[str, Any], gpu: Dict[str, Any]) -> AppConfig:
    """Merges CLI values (None = not given) into the config and re-validates it."""
    data = config.model_dump()
    for key, value in general.items():
        if value is not None:
            data["general"][key] = value
    for key, value in gpu.items():
        if value is not None:
            data["gpu"][key] = value

    # One segment mode replaces the other (the model fills a default duration)
    if general.get("segment_size_mb") is not None and general.get("segment_duration") is None:
        data["general"]["segment_duration"] = None
    elif general.get("segment_duration") is not None and general.get("segment_size_mb") is None:
        data["general"]["segment_size_mb"] = None

    if general.get("max_concurrent") is not None:
        data["general"]["concurrency"] = ConcurrencyPolicy.CAPPED.value
    return AppConfig.model_validate(data)


@app.command()
def transcode(
    input_source: str = typer.Option(..., "--input", "-i", help="Input video file path or http(s) URL"),
    output_dir: Path = typer.Option(..., "--output", "-o", help="Output directory for the HLS package"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    bandwidth_ratio: Optional[float] = typer.Option(
        None, "--bandwidth-ratio", "-b", help="Bitrate multiplier (0.1-2.0)"
    ),
    segment_duration: Optional[int] = typer.Option(
        None, "--segment-duration", help="HLS segment duration in seconds (default 6)"
    ),
    segment_size: Optional[float] = typer.Option(
        None, "--segment-size", help="Target HLS segment size in MB (instead of duration)"
    ),
    preset: Optional[str] = typer.Option(None, "--preset", help="x264 preset (ultrafast ... veryslow)"),
    quality_offset: Optional[int] = typer.Option(
        None, "--quality-offset", "--crf-offset", help="Adjust the computed quality value (-5..5)"
    ),
    min_quality: Optional[int] = typer.Option(None, "--min-quality", help="Lowest rendition height to produce"),
    sequential: bool = typer.Option(False, "--sequential", help="Encode one rendition at a time"),
    max_concurrent: Optional[int] = typer.Option(
        None, "--max-concurrent", help="Encode at most N renditions at once"
    ),
    gpu: Optional[bool] = typer.Option(None, "--gpu/--cpu", help="Enable/disable GPU encoding"),
    gpu_type: Optional[str] = typer.Option(None, "--gpu-type", help="auto, nvidia, intel, amd or apple"),
    show_gpu_usage: bool = typer.Option(False, "--show-gpu-usage", help="Sample GPU utilization while encoding"),
    skip_analysis: bool = typer.Option(False, "--skip-analysis", help="Skip source probing and use 1080p30 defaults"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the planned ladder without encoding"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (default <output>/transcode.log)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
    no_ui: bool = typer.Option(False, "--no-ui", help="Disable the live dashboard"),
):
    """Transcode one video into an adaptive-bitrate HLS ladder with a master playlist."""
    if sequential and max_concurrent is not None:
        typer.secho("Error: --sequential and --max-concurrent are mutually exclusive.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)
    if segment_duration is not None and segment_size is not None:
        typer.secho("Error: --segment-duration and --segment-size are mutually exclusive.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)

    try:
        config = load_config(config_path) if config_path else AppConfig()
        config = apply_cli_overrides(
            config,
            general={
                "bandwidth_ratio": bandwidth_ratio,
                "segment_duration": segment_duration,
                "segment_size_mb": segment_size,
                "preset": preset,
                "quality_offset": quality_offset,
                "min_quality": min_quality,
                "concurrency": ConcurrencyPolicy.SEQUENTIAL.value if sequential else None,
                "max_concurrent": max_concurrent,
                "skip_analysis": True if skip_analysis else None,
                "log_path": str(log_path) if log_path is not None else None,
                "debug": True if debug else None,
            },
            gpu={
                "enabled": gpu,
                "type": gpu_type,
                "show_usage": True if show_gpu_usage else None,
            },
        )
    except ValidationError as e:
        typer.secho(f"Error: invalid configuration: {format_validation_error(e)}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)
    except (FileNotFoundError, ValueError) as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)

    general = config.general
    if dry_run:
        # Nothing is written for a dry run, the log file included
        logger = logging.getLogger(LOGGER_NAME)
    else:
        try:
            logger = setup_logging(
                output_dir,
                debug=general.debug,
                log_path=Path(general.log_path) if general.log_path else None,
            )
        except OSError as e:
            typer.secho(f"Error: {ResourceError(f'Cannot prepare output directory {output_dir}: {e}')}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

    logger.info(f"ABR started: input={input_source} output={output_dir}")
    if general.segment_size_mb is not None:
        segment_info = f"{general.segment_size_mb}MB"
    else:
        segment_info = f"{general.segment_duration}s"
    logger.info(
        f"Config: bandwidth_ratio={general.bandwidth_ratio}, preset={general.preset}, "
        f"quality_offset={general.quality_offset}, min_quality={general.min_quality}, "
        f"concurrency={general.concurrency.value}, max_concurrent={general.max_concurrent}, "
        f"segment={segment_info}, "
        f"gpu={config.gpu.enabled}, debug={general.debug}"
    )

    bus = EventBus()
    profile = None
    gpu_monitor = None
    downloader = Downloader(logger=logger)
    try:
        if config.gpu.enabled:
            resolved_type = config.gpu.type
            if resolved_type == "auto":
                info = detect_gpu(logger=logger)
                resolved_type = info.type
                logger.info(f"GPU detected: {info.name} ({info.type})")
            profile = gpu_profile(resolved_type)
            logger.info(f"Encoder: {profile.encoder} (GPU {resolved_type})")
        else:
            logger.info("Encoder: libx264 (CPU)")

        ffprobe = FFprobeAdapter(logger=logger)
        ffmpeg = FFmpegAdapter(config=general, event_bus=bus, gpu=profile, logger=logger)
        orchestrator = Orchestrator(
            config=config,
            event_bus=bus,
            ffprobe_adapter=ffprobe,
            ffmpeg_adapter=ffmpeg,
            housekeeping=HousekeepingService(logger=logger),
            downloader=downloader,
            logger=logger,
        )

        if dry_run:
            source, jobs = orchestrator.preview(input_source, output_dir)
            print_plan(source, jobs, orchestrator.batch_size(len(jobs)))
            return

        ui_state = UIState()
        UIManager(bus, ui_state)

        if config.gpu.enabled and config.gpu.show_usage:
            gpu_monitor = GpuMonitor(
                bus,
                gpu_type=profile.type if profile else "nvidia",
                interval_s=config.gpu.sample_interval_s,
                logger=logger,
            )
            gpu_monitor.start()

        if config.ui.enabled and not no_ui:
            with Dashboard(ui_state, refresh_per_second=config.ui.refresh_per_second):
                manifest = orchestrator.run(input_source, output_dir)
        else:
            @bus.subscribe(JobCompleted)
            def _echo_completed(event: JobCompleted):
                typer.echo(f"  ✓ {event.job.rendition.label} ({event.job.params.width}x{event.job.params.height})")

            @bus.subscribe(JobFailed)
            def _echo_failed(event: JobFailed):
                typer.secho(f"  ✗ {event.job.rendition.label}: {event.error_message}", fg=typer.colors.RED, err=True)

            @bus.subscribe(ManifestWritten)
            def _echo_manifest(event: ManifestWritten):
                typer.echo(f"  master playlist: {event.path}")

            manifest = orchestrator.run(input_source, output_dir)

        typer.secho(
            f"✓ {len(manifest.fragments)} rendition(s) written to {output_dir}: "
            f"{', '.join(f.label for f in manifest.fragments)}",
            fg=typer.colors.GREEN,
        )

    except KeyboardInterrupt:
        logger.info("Transcode interrupted by user (Ctrl+C)")
        typer.secho("\n✓ Transcode stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)

    except TranscodeError as e:
        logger.error(f"PROCESS_FAILED: {e}")
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    except typer.Exit:
        raise

    except Exception as e:
        logger.exception("Fatal error")
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    finally:
        if gpu_monitor:
            gpu_monitor.stop()
            if gpu_monitor.average is not None:
                typer.echo(f"Average GPU usage: {gpu_monitor.average:.1f}%")
        downloader.close()

if __name__ == "__main__":
    app()
