"""
Command-line interface for Calendar Mirror.
"""

import logging
import signal
from configparser import ConfigParser
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from calendar_mirror.audit import AuditLog
from calendar_mirror.audit import format_timestamp
from calendar_mirror.audit import parse_line
from calendar_mirror.auth import AuthorizationGate
from calendar_mirror.models import DEFAULT_AUDIT_LOG
from calendar_mirror.models import DEFAULT_CONFIG
from calendar_mirror.models import DEFAULT_INTERVAL_SECONDS
from calendar_mirror.models import WINDOW_DAYS
from calendar_mirror.models import CalendarSyncError
from calendar_mirror.models import InvariantViolation
from calendar_mirror.models import SyncConfig
from calendar_mirror.models import SyncStatus

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="One-way calendar mirroring between two EDS calendars.",
)

console = Console()

_CONFIG_SECTION = "calendar-mirror"


# ---------------------------------------------------------------------------
# Global state shared across subcommands
# ---------------------------------------------------------------------------


@dataclass
class _State:
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG)
    audit_log: Path | None = None
    verbose: bool = False


state = _State()


@app.callback()
def _global(
    config: Annotated[
        Path,
        typer.Option("--config", "-c", help=f"Config file path (default: {DEFAULT_CONFIG})"),
    ] = DEFAULT_CONFIG,
    audit_log: Annotated[
        Path | None,
        typer.Option("--audit-log", help=f"Audit log path (default: {DEFAULT_AUDIT_LOG})"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug output"),
    ] = False,
) -> None:
    state.config_path = config
    state.audit_log = audit_log
    state.verbose = verbose
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False, console=console)],
    )


def _load_config_file(config_path: Path) -> dict[str, str]:
    if not config_path.exists():
        return {}
    parser = ConfigParser()
    parser.read(config_path)
    if _CONFIG_SECTION not in parser:
        return {}
    return dict(parser[_CONFIG_SECTION])


def _audit_log_path(config_file: dict[str, str]) -> Path:
    if state.audit_log is not None:
        return state.audit_log
    if config_file.get("audit_log"):
        return Path(config_file["audit_log"]).expanduser()
    return DEFAULT_AUDIT_LOG


def _build_config(
    source_calendar: str | None,
    destination_calendar: str | None,
    dry_run: bool = False,
    yes: bool = False,
    interval: int | None = None,
    require_source: bool = True,
) -> SyncConfig:
    config_file = _load_config_file(state.config_path)
    source_id = source_calendar or config_file.get("source_calendar_id")
    dest_id = destination_calendar or config_file.get("destination_calendar_id")

    if not require_source:
        source_id = None
    elif not source_id or not dest_id:
        console.print(
            "[bold red]Error:[/] Source and destination calendar IDs must be provided via "
            "[cyan]--source[/]/[cyan]--destination[/] or in the config file."
        )
        raise typer.Exit(1)
    if not dest_id:
        console.print(
            "[bold red]Error:[/] Destination calendar ID must be provided via "
            "[cyan]--destination[/] or in the config file."
        )
        raise typer.Exit(1)
    if source_id == dest_id:
        raise typer.BadParameter("source and destination must be different calendars")

    if interval is None:
        try:
            interval = int(config_file.get("interval_seconds", DEFAULT_INTERVAL_SECONDS))
        except ValueError:
            raise typer.BadParameter(
                "interval_seconds in the config file must be an integer"
            ) from None

    return SyncConfig(
        source_calendar_id=source_id,
        destination_calendar_id=dest_id,
        audit_log_path=_audit_log_path(config_file),
        interval_seconds=max(30, interval),
        dry_run=dry_run,
        verbose=state.verbose,
        yes=yes,
    )


def _build_runner(cfg: SyncConfig):
    """Wire the EDS store, authorization gate and audit log into a runner."""
    from calendar_mirror.eds_client import EDSCalendarStore
    from calendar_mirror.eds_client import probe_access
    from calendar_mirror.sync import SyncRunner

    gate = AuthorizationGate()
    gate.request(probe_access)
    return SyncRunner(
        EDSCalendarStore(),
        gate,
        AuditLog(cfg.audit_log_path),
        dry_run=cfg.dry_run,
    )


def _calendar_label(calendar_id: str) -> tuple[str, str]:
    from calendar_mirror.eds_client import get_calendar_display_info

    name, account, uid = get_calendar_display_info(calendar_id)
    return name + (f" ({account})" if account else ""), uid


def _print_info_panel(cfg: SyncConfig, operation: Text) -> None:
    dest_display, dest_uid = _calendar_label(cfg.destination_calendar_id)

    info = Text()
    if cfg.source_calendar_id is not None:
        source_display, source_uid = _calendar_label(cfg.source_calendar_id)
        info.append("  Source:      ", style="bold")
        info.append(f"{source_display}\n")
        info.append(f"               {source_uid}\n", style="dim")
    info.append("  Destination: ", style="bold")
    info.append(f"{dest_display}\n")
    info.append(f"               {dest_uid}\n", style="dim")
    info.append("  Window:      ", style="bold")
    info.append(f"next {WINDOW_DAYS} days\n")
    info.append("  Operation:   ")
    info.append_text(operation)
    if cfg.dry_run:
        info.append("\n  Mode:        ")
        info.append("DRY RUN", style="bold magenta")

    console.print(Panel(info, title="[bold]Calendar Mirror[/bold]"))


def _print_status(status: SyncStatus) -> None:
    results = Table.grid(padding=(0, 2))
    results.add_column(style="bold")
    results.add_column(justify="right")
    results.add_row("Started", format_timestamp(status.timestamp))
    if status.stats is not None:
        results.add_row("Created", str(status.stats.added))
        results.add_row("Updated", str(status.stats.modified))
        results.add_row("Deleted", str(status.stats.deleted))
    if status.ok:
        results.add_row("Result", Text("ok ✓", style="green"))
    else:
        results.add_row("Result", Text("failed ✗", style="bold red"))
        results.add_row("Error", Text(status.error or "", style="red"))

    console.print(Panel(results, title="[bold]Results[/bold]", expand=False))


def _preflight_or_exit(cfg: SyncConfig) -> None:
    from calendar_mirror.preflight import run_preflight_checks

    if not run_preflight_checks(cfg, console):
        raise typer.Exit(1)


def _run_once(cfg: SyncConfig, cause: str, clear: bool = False) -> None:
    """Run one sync (or clear) through the worker and print its outcome."""
    from calendar_mirror.worker import SyncWorker

    worker = SyncWorker(_build_runner(cfg), cfg.source_calendar_id, cfg.destination_calendar_id)
    worker.start()
    try:
        status = worker.trigger(cause, wait=True, clear=clear)
    except InvariantViolation:
        raise
    except CalendarSyncError as e:
        console.print(f"[bold red]Sync failed:[/] {e}")
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted by user[/]")
        raise typer.Exit(130) from None
    except Exception as e:
        console.print_exception()
        console.print(f"[bold red]Unexpected error:[/] {e}")
        raise typer.Exit(1) from e
    finally:
        worker.stop()

    if status is None:
        console.print("[bold red]Sync failed:[/] the run reported no result")
        raise typer.Exit(1)
    _print_status(status)
    if not status.ok:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------

_SOURCE_OPT = Annotated[
    str | None,
    typer.Option("--source", "-s", help="Source calendar EDS UID (overrides config)"),
]
_DEST_OPT = Annotated[
    str | None,
    typer.Option("--destination", "-d", help="Destination calendar EDS UID (overrides config)"),
]
_DRY_RUN = Annotated[bool, typer.Option("--dry-run", "-n", help="Preview changes without applying")]
_YES = Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")]


@app.command()
def sync(
    source: _SOURCE_OPT = None,
    destination: _DEST_OPT = None,
    dry_run: _DRY_RUN = False,
    yes: _YES = False,
) -> None:
    """Mirror the source calendar into the destination calendar once."""
    cfg = _build_config(source, destination, dry_run=dry_run, yes=yes)
    _preflight_or_exit(cfg)
    _print_info_panel(cfg, Text("SYNC", style="bold green"))

    if not cfg.yes and not cfg.dry_run:
        typer.confirm("Proceed?", abort=True)

    _run_once(cfg, "manual")


@app.command()
def clear(
    destination: _DEST_OPT = None,
    dry_run: _DRY_RUN = False,
    yes: _YES = False,
) -> None:
    """Remove every mirrored event from the destination calendar.

    Events you created yourself in the destination are never touched.
    """
    cfg = _build_config(None, destination, dry_run=dry_run, yes=yes, require_source=False)
    _preflight_or_exit(cfg)
    _print_info_panel(cfg, Text("CLEAR (remove all mirrored events)", style="bold red"))

    if not cfg.yes and not cfg.dry_run:
        typer.confirm("Proceed?", abort=True)

    _run_once(cfg, "clear", clear=True)


@app.command()
def watch(
    source: _SOURCE_OPT = None,
    destination: _DEST_OPT = None,
    interval: Annotated[
        int | None,
        typer.Option(
            "--interval",
            "-i",
            help=f"Seconds between background syncs (default: {DEFAULT_INTERVAL_SECONDS})",
        ),
    ] = None,
) -> None:
    """Keep mirroring: sync now, on a timer, and whenever the source changes."""
    import gi

    gi.require_version("GLib", "2.0")
    from gi.repository import GLib

    from calendar_mirror.eds_client import EDSCalendarStore
    from calendar_mirror.worker import SyncWorker

    cfg = _build_config(source, destination, yes=True, interval=interval)
    _preflight_or_exit(cfg)
    _print_info_panel(
        cfg, Text(f"WATCH (every {cfg.interval_seconds}s + on change)", style="bold cyan")
    )

    worker = SyncWorker(_build_runner(cfg), cfg.source_calendar_id, cfg.destination_calendar_id)

    loop = GLib.MainLoop()

    def fire(cause: str) -> None:
        if worker.fatal_error is not None:
            loop.quit()
            return
        worker.trigger(cause)

    def on_tick() -> bool:
        fire("background")
        return True  # keep the timer

    GLib.timeout_add_seconds(cfg.interval_seconds, on_tick)
    GLib.unix_signal_add(GLib.PRIORITY_DEFAULT, signal.SIGINT, lambda: loop.quit() or False)
    GLib.unix_signal_add(GLib.PRIORITY_DEFAULT, signal.SIGTERM, lambda: loop.quit() or False)

    # Only the source is watched: our own writes land in the destination and
    # must not re-trigger a run.  The view gets its own connection so the
    # worker's store stays owned by the worker thread.
    view = None
    try:
        source_client = EDSCalendarStore().resolve_calendar(cfg.source_calendar_id)
        if source_client is not None:
            view = source_client.watch(lambda: fire("notification"))
    except CalendarSyncError as e:
        logging.getLogger(__name__).warning(f"Change notifications disabled: {e}")

    worker.start()
    worker.trigger("startup")

    console.print("[dim]Watching for changes. Press Ctrl+C to stop.[/dim]")
    try:
        loop.run()
    finally:
        if view is not None:
            view.stop()
        worker.stop()

    if worker.fatal_error is not None:
        raise worker.fatal_error
    status = worker.last_status
    if status is not None:
        _print_status(status)


@app.command()
def status() -> None:
    """Show configuration and the most recent sync result."""
    config_file = _load_config_file(state.config_path)
    log_path = _audit_log_path(config_file)
    config_exists = state.config_path.exists()

    cfg_info = Text()
    cfg_info.append("  Config:      ", style="bold")
    cfg_info.append(str(state.config_path) + " ")
    cfg_info.append(
        "✓" if config_exists else "(not found)", style="green" if config_exists else "red"
    )
    cfg_info.append("\n  Audit log:   ", style="bold")
    cfg_info.append(str(log_path))

    for key, label in (
        ("source_calendar_id", "Source:      "),
        ("destination_calendar_id", "Destination: "),
    ):
        calendar_id = config_file.get(key)
        if not calendar_id:
            continue
        try:
            display, _ = _calendar_label(calendar_id)
        except Exception:
            display = calendar_id
        cfg_info.append(f"\n  {label}", style="bold")
        cfg_info.append(display + "\n")
        cfg_info.append(f"               {calendar_id}", style="dim")

    console.print(Panel(cfg_info, title="[bold]Calendar Mirror Status[/bold]"))

    entries = [e for e in (parse_line(line) for line in AuditLog(log_path).read_lines()) if e]
    if not entries:
        console.print(
            "[yellow]No syncs recorded yet. Run[/] [cyan]calendar-mirror sync[/] [yellow]first.[/]"
        )
        return

    last = entries[-1]
    result = Text("ok ✅", style="green") if last.ok else Text("failed ❌", style="bold red")
    summary = Text()
    summary.append(f"{last.timestamp}  ({last.cause})  ")
    summary.append_text(result)
    if last.error:
        summary.append(f"\n{last.error}", style="red")
    console.print(Panel(summary, title="[bold]Last sync[/bold]", expand=False))


@app.command("log")
def show_log(
    tail: Annotated[int, typer.Option("--tail", "-t", help="Show only the last N lines")] = 0,
) -> None:
    """Print the audit log of past sync runs."""
    config_file = _load_config_file(state.config_path)
    lines = AuditLog(_audit_log_path(config_file)).read_lines()
    if tail > 0:
        lines = lines[-tail:]
    for line in lines:
        entry = parse_line(line)
        style = None if entry is None else ("green" if entry.ok else "red")
        console.print(Text(line, style=style))


@app.command()
def calendars() -> None:
    """List all configured EDS calendars."""
    from calendar_mirror.eds_client import list_calendar_sources
    from calendar_mirror.eds_client import open_registry

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Display Name", style="bold")
    table.add_column("Account")
    table.add_column("Mode")
    table.add_column("UID", style="dim")
    for name, account, mode, mode_style, uid in list_calendar_sources(open_registry()):
        table.add_row(name, account, Text(mode, style=mode_style), uid)
    console.print(table)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()
