from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import requests
import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress
from rich.table import Table

from mot_bootstrap.adapters.archive import ZipExtractor
from mot_bootstrap.adapters.conda.installer import CondaInstaller
from mot_bootstrap.adapters.http.fetchers import build_fetchers
from mot_bootstrap.common.logging_config import configure_logging
from mot_bootstrap.errors import StepFailedError, ValidationError
from mot_bootstrap.pipeline.checkpointing import StepLedger
from mot_bootstrap.pipeline.config import CONFIG_FILENAME, BootstrapConfig, ResolvedPaths
from mot_bootstrap.pipeline.orchestrator import Orchestrator, RunReport, StepStatus
from mot_bootstrap.pipeline.progress_ui import progress_ui
from mot_bootstrap.pipeline.steps import SetupContext, build_setup_steps
from mot_bootstrap.provisioning.manifest import SourceKind
from mot_bootstrap.provisioning.markers import ExecutableMarker
from mot_bootstrap.training.launcher import launch_training
from mot_bootstrap.training.modes import DEFAULT_MODE, TrainingParameters

DEFAULT_DATA_PATH = "/workspace/data"
EXAMPLE_CONFIG = Path(__file__).resolve().parent / "pipeline" / "bootstrap_config.example.toml"

app = typer.Typer(add_completion=False, help="Provision a machine for MOT20 training.")
setup_app = typer.Typer(add_completion=False)
train_app = typer.Typer(add_completion=False)


def build_context(
    cfg: BootstrapConfig,
    paths: ResolvedPaths,
    session: requests.Session,
    progress: Progress | None = None,
) -> SetupContext:
    fetchers = build_fetchers(session, cfg.network, cfg.retry, progress=progress)
    installer = CondaInstaller(
        install_dir=paths.conda_install_dir,
        installer_url=cfg.network.miniconda_url,
        fetcher=fetchers[SourceKind.DIRECT_URL],
        download_dir=paths.archive_path.parent,
    )
    return SetupContext(
        config=cfg,
        paths=paths,
        fetchers=fetchers,
        installer=installer,
        extractor=ZipExtractor(),
    )


def _print_summary(console: Console, cfg: BootstrapConfig, paths: ResolvedPaths, report: RunReport) -> None:
    console.print()
    console.print("[bold green]Setup complete.[/bold green]")
    ran = len(report.names(StepStatus.COMPLETED))
    skipped = len(report.names(StepStatus.SKIPPED))
    console.print(f"  Steps         : {ran} run, {skipped} already done")
    console.print(f"  Conda env     : {cfg.conda.env_name}  (activate with: conda activate {cfg.conda.env_name})")
    console.print(f"  Dataset       : {paths.mot20_dir}")
    console.print(f"  ReID weights  : {paths.reid_weights_dir}")
    console.print(f"  Pretrained    : {paths.pretrained_models_dir}")
    console.print("  To train (private dets / ByteTrack):")
    console.print(f"    mot-train private {paths.data_path}")
    console.print("  To train (public dets / APLift):")
    console.print(f"    mot-train public {paths.data_path}")


def setup(
    data_path: Optional[str] = typer.Argument(
        None,
        help=f"Dataset root; MOT20 is placed under it [default: {DEFAULT_DATA_PATH}]",
        show_default=False,
    ),
) -> None:
    """Install dependencies and fetch everything training needs. Safe to re-run."""
    cfg = BootstrapConfig.discover(Path.cwd(), data_path)
    paths = cfg.resolve()
    paths.ensure_dirs()
    configure_logging(logging.INFO, log_dir=str(paths.logs_dir))
    ledger = StepLedger.load(paths.ledger_path)

    with progress_ui() as ui, requests.Session() as session:
        ctx = build_context(cfg, paths, session, progress=ui.progress)
        orchestrator = Orchestrator(ui=ui, ledger=ledger)
        try:
            report = orchestrator.run(build_setup_steps(ctx))
        except StepFailedError as exc:
            if exc.completed:
                ui.log(f"Completed before the failure: {', '.join(exc.completed)}")
            ui.log(f"[red]ERROR: {escape(str(exc))}[/red]")
            raise typer.Exit(code=1)
        _print_summary(ui.console, cfg, paths, report)


def _trainer_python(cfg: BootstrapConfig, paths: ResolvedPaths) -> str | None:
    python = paths.env_bin(cfg.conda.env_name, "python")
    return str(python) if ExecutableMarker(python).exists() else None


def train(
    mode: str = typer.Argument(DEFAULT_MODE, help="Detections to train on: public (aplift) | private (byte065)"),
    data_path: Optional[str] = typer.Argument(
        None,
        help=f"Dataset root containing MOT20/ [default: {DEFAULT_DATA_PATH}]",
        show_default=False,
    ),
) -> None:
    """Launch MOT20 training with the detections selected by MODE."""
    cfg = BootstrapConfig.discover(Path.cwd(), data_path)
    paths = cfg.resolve()
    try:
        params = TrainingParameters.for_mode(mode, paths.data_path)
    except ValidationError as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(code=1)

    configure_logging(logging.INFO)
    python = _trainer_python(cfg, paths)
    typer.echo("========================================")
    typer.echo("SUSHI MOT20 Training")
    typer.echo(f"  Mode      : {params.mode} (det_file={params.det_file})")
    typer.echo(f"  Run ID    : {params.run_id}")
    typer.echo(f"  Data path : {params.data_path}")
    typer.echo(f"  ReID arch : {params.reid_arch}")
    typer.echo(f"  Python    : {python or 'python (from PATH)'}")
    typer.echo("========================================")

    code = launch_training(params, project_dir=paths.project_dir, python=python)
    if code == 0:
        typer.echo(f"\nTraining complete. Checkpoints saved under experiments/{params.run_id}/")
    else:
        typer.echo(f"Training exited with status {code}", err=True)
    raise typer.Exit(code=code)


def status(
    data_path: Optional[str] = typer.Argument(None, help="Dataset root", show_default=False),
) -> None:
    """Show which setup steps are already complete, without running anything."""
    cfg = BootstrapConfig.discover(Path.cwd(), data_path)
    paths = cfg.resolve()
    ledger = StepLedger.load(paths.ledger_path)

    with requests.Session() as session:
        steps = build_setup_steps(build_context(cfg, paths, session))
        probed = Orchestrator().status(steps)

    table = Table(title=f"Setup status ({paths.data_path})")
    table.add_column("#", justify="right")
    table.add_column("Step")
    table.add_column("On disk")
    table.add_column("Last run")
    for i, (step, done) in enumerate(probed, start=1):
        last = ledger.last_status(step.name) or "-"
        on_disk = "[green]done[/green]" if done else "[yellow]pending[/yellow]"
        table.add_row(str(i), step.description or step.name, on_disk, last)
    Console().print(table)


def init_config(
    path: str = typer.Argument(CONFIG_FILENAME, help="Where to write the bootstrap configuration TOML"),
) -> None:
    """Write an example bootstrap_config.toml."""
    if not EXAMPLE_CONFIG.exists():
        raise RuntimeError(f"Missing template file: {EXAMPLE_CONFIG}")

    out = Path(path).expanduser()
    if out.exists():
        raise typer.BadParameter(f"Refusing to overwrite existing file: {out}")

    out.write_text(EXAMPLE_CONFIG.read_text())
    typer.echo(f"Wrote {out} (edit it, then run: mot-setup)")


app.command("setup")(setup)
app.command("train")(train)
app.command("status")(status)
app.command("init-config")(init_config)
setup_app.command()(setup)
train_app.command()(train)
