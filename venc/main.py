import typer
import threading
from pathlib import Path
from typing import Optional, List
from rich.console import Console
from rich.table import Table

from venc.config.loader import load_config
from venc.config.models import AppConfig
from venc.domain.models import QueueStats
from venc.infrastructure.logging import setup_logging
from venc.infrastructure.housekeeping import HousekeepingService
from venc.infrastructure.ffmpeg import FFmpegEncoder
from venc.infrastructure.storage import LocalObjectStorage
from venc.pipeline.service import EncodingPipeline

app = typer.Typer(help="venc - background video encoding queue and worker")
console = Console()

IDLE_CHECK_INTERVAL_S = 0.5


def _load(config_path: Optional[Path]) -> AppConfig:
    if config_path is None:
        return AppConfig()
    return load_config(config_path)


def _stats_table(stats: QueueStats) -> Table:
    table = Table(title="Encoding queue")
    table.add_column("Status")
    table.add_column("Jobs", justify="right")
    table.add_row("Queued", str(stats.queued))
    table.add_row("In progress", str(stats.in_progress))
    table.add_row("Completed", str(stats.completed), style="green")
    table.add_row("Failed", str(stats.failed), style="red" if stats.failed else None)
    table.add_row("Total", str(stats.total), style="bold")
    return table


def _is_idle(pipeline: EncodingPipeline) -> bool:
    stats = pipeline.stats()
    return stats.queued == 0 and stats.in_progress == 0 and pipeline.worker.in_flight_count == 0


@app.command()
def run(
    locators: Optional[List[str]] = typer.Argument(
        None,
        help="Raw upload locators (paths relative to the raw dir) to enqueue at startup"
    ),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    raw_dir: Optional[Path] = typer.Option(None, "--raw-dir", help="Override raw upload directory"),
    serving_dir: Optional[Path] = typer.Option(None, "--serving-dir", help="Override serving directory"),
    poll_interval: Optional[float] = typer.Option(None, "--poll-interval", help="Override worker poll interval (seconds)"),
    shutdown_timeout: Optional[float] = typer.Option(None, "--shutdown-timeout", help="Override shutdown wait (seconds)"),
    once: bool = typer.Option(False, "--once", help="Exit once the queue is idle"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Run the encoding worker until Ctrl+C (or until idle with --once)."""
    try:
        config = _load(config_path)
        # Apply CLI overrides
        if raw_dir is not None: config.storage.raw_dir = raw_dir
        if serving_dir is not None: config.storage.serving_dir = serving_dir
        if poll_interval is not None: config.worker.poll_interval_s = poll_interval
        if shutdown_timeout is not None: config.worker.shutdown_timeout_s = shutdown_timeout
        if log_path is not None: config.general.log_path = log_path
        if debug: config.general.debug = True
        # Overrides bypass field validation on assignment
        config = AppConfig.model_validate(config.model_dump())
    except FileNotFoundError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    except ValueError as exc:
        typer.secho(f"Invalid configuration: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    logger = setup_logging(config.general.log_path, debug=config.general.debug)

    if config.encoder.work_dir is not None:
        HousekeepingService().cleanup_stale_work_dirs(config.encoder.work_dir)

    pipeline = EncodingPipeline.from_config(config)
    pipeline.start()
    try:
        for locator in locators or []:
            video_id = Path(locator).stem
            job_id = pipeline.submit(video_id, locator)
            if job_id:
                logger.info(f"CLI_SUBMIT: video_id={video_id} job_id={job_id}")

        waiter = threading.Event()
        while True:
            if once and _is_idle(pipeline):
                break
            waiter.wait(IDLE_CHECK_INTERVAL_S)
    except KeyboardInterrupt:
        typer.secho("\nStopping encoding worker (Ctrl+C)...", fg=typer.colors.YELLOW)
    finally:
        clean = pipeline.stop()

    console.print(_stats_table(pipeline.stats()))
    if not clean:
        raise typer.Exit(code=130)


@app.command()
def probe(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
):
    """Check whether the configured ffmpeg binary can be used."""
    try:
        config = _load(config_path)
    except FileNotFoundError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    encoder = FFmpegEncoder(config.encoder, LocalObjectStorage(config.storage))
    if encoder.is_available():
        console.print(f"[green]ffmpeg available[/green] ({config.encoder.ffmpeg_path})")
    else:
        console.print(f"[red]ffmpeg not available[/red] ({config.encoder.ffmpeg_path}) - uploads will be served untranscoded")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
