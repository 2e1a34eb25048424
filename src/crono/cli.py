"""
Command-line interface.

    crono run FILE                 start the scheduler and execute jobs
    crono validate FILE            check syntax and schedules
    crono next FILE -n 5           display upcoming occurrences
    crono explain FILE             describe each job's schedule
"""

import asyncio
import logging
import signal
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer

from crono.config import get_settings
from crono.domain.job import Program
from crono.dsl import parse_file
from crono.engine import Engine
from crono.errors import CronoError, ParseError, PlanningError
from crono.schedule import explain as explain_job
from crono.schedule import upcoming

app = typer.Typer(
    name="crono",
    help="crono - run jobs declared in a .crn schedule file",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None, verbose: bool = False):
    """Setup logging configuration."""
    level_no = logging.DEBUG if verbose else getattr(logging, level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level_no)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level_no)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s.%(msecs)03d [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level_no)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        ))
        root_logger.addHandler(file_handler)


def _load(path: Path) -> Program:
    try:
        return parse_file(path)
    except (OSError, ParseError) as e:
        typer.echo(f"Parse: {e}", err=True)
        raise typer.Exit(1)


async def _serve(engine: Engine) -> None:
    task = asyncio.current_task()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, task.cancel)
        except NotImplementedError:
            # Windows: Ctrl+C arrives as KeyboardInterrupt instead
            pass
    try:
        await engine.run()
    except asyncio.CancelledError:
        logger.info("Shutdown requested, scheduler stopped")


@app.command()
def run(
    path: Path = typer.Argument(..., help=".crn schedule file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Start the scheduler and execute jobs until interrupted."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_file, verbose)

    program = _load(path)
    engine = Engine(program, settings=settings)
    logger.info(f"Starting scheduler ({len(program)} job(s))")
    try:
        asyncio.run(_serve(engine))
    except PlanningError as e:
        logger.error(f"Scheduler: {e}")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, scheduler stopped")


@app.command()
def validate(path: Path = typer.Argument(..., help=".crn schedule file")):
    """Check the file's syntax and that every schedule can be planned."""
    program = _load(path)
    try:
        Engine(program).plan()
    except PlanningError as e:
        typer.echo(f"Invalid: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"OK: {len(program)} job(s)")


@app.command("next")
def next_(
    path: Path = typer.Argument(..., help=".crn schedule file"),
    count: int = typer.Option(5, "-n", "--count", min=1, help="Number of occurrences"),
    start: Optional[str] = typer.Option(None, "--from", help="Start time (ISO 8601, default: now)"),
):
    """Display the next occurrences of each job."""
    program = _load(path)
    if start:
        try:
            origin = datetime.fromisoformat(start)
        except ValueError as e:
            typer.echo(f"invalid --from: {e}", err=True)
            raise typer.Exit(1)
    else:
        origin = datetime.now().astimezone()

    for job in program.jobs:
        typer.echo(f'Job "{job.name}":')
        try:
            for occurrence in upcoming(job.schedule, origin, count):
                typer.echo(f"  {occurrence.isoformat()}")
        except CronoError as e:
            typer.echo(f"  error: {e}")


@app.command()
def explain(path: Path = typer.Argument(..., help=".crn schedule file")):
    """Describe each job's schedule in words."""
    program = _load(path)
    for job in program.jobs:
        typer.echo(f'Job "{job.name}": {explain_job(job)}')


def main():
    app()


if __name__ == "__main__":
    main()
