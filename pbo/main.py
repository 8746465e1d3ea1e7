import logging
from contextlib import ExitStack
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import ValidationError

from pbo.config.loader import load_config
from pbo.config.models import GeneralConfig
from pbo.infrastructure.logging import setup_logging
from pbo.infrastructure.event_bus import EventBus
from pbo.infrastructure.file_scanner import InputNotFoundError
from pbo.infrastructure.lock import InstanceLock, LockHeldError
from pbo.infrastructure.progress import ProgressChannel, ProgressSink
from pbo.infrastructure.tools import MissingToolError, Toolchain, check_tools
from pbo.pipeline.orchestrator import Orchestrator, RunSummary
from pbo.pipeline.runner import DuplicateResolutionError
from pbo.ui.state import RunState
from pbo.ui.manager import ReportManager
from pbo.ui.progress_bar import ProgressBarReporter
from pbo.domain.events import RunFinished

app = typer.Typer(help="PBO (PDF Batch OCR) - rasterize, OCR and optionally compress PDFs in parallel")


def _fail(message: str, code: int = 1):
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


@app.command()
def run(
    ctx: typer.Context,
    patterns: Optional[List[str]] = typer.Argument(
        None,
        help="PDFs to convert. Globs are fine; quote them so the shell leaves them alone."
    ),
    pdfs: Optional[List[str]] = typer.Option(None, "--pdfs", "-p", help="Additional PDF path or glob (repeatable)"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to YAML config"),
    out: Optional[str] = typer.Option(None, "--out", "-o", help="Where to place the final products"),
    temp: Optional[str] = typer.Option(None, "--temp", "-t", help="Location for temp files"),
    max_workers: Optional[int] = typer.Option(None, "--max", "-m", help="Maximum number of simultaneous processors"),
    clean: Optional[bool] = typer.Option(None, "--clean/--no-clean", help="Remove temp folders/files when complete"),
    compress: Optional[str] = typer.Option(
        None,
        "--compress",
        "-c",
        help="Compression target: 'none' (300DPI), 'ebook' (150DPI) or 'screen' (72DPI)"
    ),
    skip: Optional[bool] = typer.Option(
        None,
        "--skip/--no-skip",
        help="If a suffixed file exists, assume it is correct and don't redo that part of the process"
    ),
    reprocess: bool = typer.Option(
        False,
        "--reprocess",
        help="ONLY reprocess PDFs that have existing suffixed products. Disables --skip. Use with care."
    ),
    dupes: bool = typer.Option(
        False,
        "--dupes",
        help="Hash every input; identical documents are processed once and the result copied"
    ),
    lock_file: Optional[str] = typer.Option(None, "--lock-file", help="Lock file ensuring a single running instance"),
    ignore_lock: bool = typer.Option(False, "--ignore-lock", hidden=True, help="DANGER: skip the instance lock"),
    bar: bool = typer.Option(False, "--bar", "-b", help="Show a progress bar; suppresses non-error console logging"),
    log_path: Optional[Path] = typer.Option(None, "--log", "-l", help="Send normal logging to this file (also with --bar)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable debug logging. Disables --bar."),
):
    """Batch OCR PDFs into searchable '<name>_fixed.pdf' documents."""
    all_patterns = list(patterns or []) + list(pdfs or [])
    if not all_patterns:
        typer.echo(ctx.get_help())
        raise typer.Exit(code=0)

    try:
        config = load_config(config_path)
    except FileNotFoundError as exc:
        _fail(str(exc))
    except (ValidationError, ValueError) as exc:
        _fail(f"Invalid config: {exc}")

    # Apply CLI overrides
    overrides = {
        "output_dir": out,
        "temp_dir": temp,
        "threads": max(1, max_workers) if max_workers is not None else None,
        "clean": clean,
        "compress": compress,
        "skip_existing": skip,
        "lock_file": lock_file,
        "log_path": str(log_path) if log_path is not None else None,
    }
    flags = {"reprocess": reprocess, "dedupe": dupes, "ignore_lock": ignore_lock, "bar": bar, "debug": debug}
    overrides.update({k: True for k, v in flags.items() if v})
    try:
        config.general = GeneralConfig.model_validate({
            **config.general.model_dump(),
            **{k: v for k, v in overrides.items() if v is not None},
        })
    except ValidationError as exc:
        _fail(f"Invalid option: {exc.errors()[0].get('msg', exc)}")

    general = config.general
    setup_logging(
        Path(general.log_path) if general.log_path else None,
        debug=general.debug,
        quiet_console=general.bar,
    )
    logger = logging.getLogger(__name__)
    logger.info(
        f"PBO started: patterns={len(all_patterns)}, threads={general.threads}, compress={general.compress}, "
        f"skip={general.skip_existing}, reprocess={general.reprocess}, dedupe={general.dedupe}, clean={general.clean}"
    )

    try:
        check_tools(config.tools, general.compress)
    except MissingToolError as exc:
        _fail(str(exc))

    bus = EventBus()
    state = RunState()
    ReportManager(bus, state)
    progress = ProgressChannel()
    summary: Optional[RunSummary] = None
    aborted = False

    try:
        with ExitStack() as stack:
            if not general.ignore_lock:
                try:
                    stack.enter_context(InstanceLock(Path(general.lock_file)))
                except LockHeldError:
                    _fail("Only one instance of pbo should be running at a time.")
            if general.bar:
                stack.enter_context(ProgressBarReporter(bus, initial_total=len(all_patterns)))
            stack.enter_context(ProgressSink(progress, bus))

            orchestrator = Orchestrator(config, Toolchain.from_config(config), progress)
            summary = orchestrator.run(all_patterns)

    except KeyboardInterrupt:
        aborted = True
        logger.warning("Interrupted by user")
        typer.secho("\nStopped by user (Ctrl+C)", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=130)
    except typer.Exit:
        raise
    except (InputNotFoundError, FileNotFoundError, NotADirectoryError) as exc:
        _fail(str(exc))
    except DuplicateResolutionError as exc:
        aborted = True
        logger.error(f"Run aborted during duplicate resolution: {exc}")
        typer.secho(f"Fatal Error: {exc}", fg=typer.colors.RED, err=True)
    except Exception as exc:
        aborted = True
        logger.exception("Fatal error")
        typer.secho(f"Fatal Error: {exc}", fg=typer.colors.RED, err=True)
    finally:
        bus.publish(RunFinished(
            completed=summary.completed if summary else 0,
            failed=summary.failed if summary else 0,
            aborted=aborted or summary is None,
        ))

    if aborted or summary is None or not summary.ok:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
