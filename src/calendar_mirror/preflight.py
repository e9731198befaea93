"""
Preflight checks run before sync to catch common misconfigurations early.
"""

import logging
import os

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from calendar_mirror.models import SyncConfig

logger = logging.getLogger(__name__)

_OFFLINE_KEYWORDS = frozenset(
    {
        "offline",
        "network",
        "transport",
        "unreachable",
        "not connected",
        "no route",
        "authentication failed",
        "connection refused",
        "temporary failure",
    }
)


def run_preflight_checks(cfg: SyncConfig, console: Console) -> bool:
    """Return True if sync may proceed; print issues and return False otherwise."""
    import gi

    gi.require_version("ECal", "2.0")
    gi.require_version("EDataServer", "1.2")
    from gi.repository import ECal
    from gi.repository import EDataServer
    from gi.repository import GLib

    issues: list[tuple[str, str, str]] = []  # (label, detail, hint)

    # 1. EDS registry reachable
    try:
        registry = EDataServer.SourceRegistry.new_sync(None)
    except Exception as e:
        logger.error("EDS registry unreachable: %s", e)
        issues.append(("EDS registry", str(e), "Is evolution-data-server running?"))
        _print_issues(issues, console)
        return False

    # 2. Calendars exist and are connectable (clear has no source)
    for uid, label in (
        (cfg.source_calendar_id, "Source calendar"),
        (cfg.destination_calendar_id, "Destination calendar"),
    ):
        if uid is None:
            continue
        source = registry.ref_source(uid)
        if source is None:
            logger.error("Calendar UID not found in EDS: %s", uid)
            issues.append((label, f"UID not found: {uid}", "Run: calendar-mirror calendars"))
            continue

        try:
            client = ECal.Client.connect_sync(source, ECal.ClientSourceType.EVENTS, 5, None)
        except GLib.Error as e:
            msg = e.message or str(e)
            logger.error("Cannot connect to %s (%s): %s", label, uid, msg)
            if any(kw in msg.lower() for kw in _OFFLINE_KEYWORDS):
                hint = "Calendar appears offline. Check GNOME Online Accounts"
            else:
                hint = msg
            issues.append((label, f"Connection failed: {msg}", hint))
            continue

        if label == "Destination calendar" and client.is_readonly():
            issues.append((label, f"{uid} is read-only", "Pick a writable destination calendar"))

    # 3. Audit log directory writable
    log_dir = cfg.audit_log_path.parent
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error("Cannot create audit log directory %s: %s", log_dir, e)
        issues.append(("Audit log", f"{log_dir}: {e}", f"Check permissions on {log_dir}"))
    else:
        if not os.access(log_dir, os.W_OK):
            issues.append(("Audit log", f"{log_dir} is not writable", f"Check permissions on {log_dir}"))

    if issues:
        _print_issues(issues, console)
        return False

    return True


def _print_issues(issues: list[tuple[str, str, str]], console: Console) -> None:
    body = Text()
    for i, (label, detail, hint) in enumerate(issues):
        if i:
            body.append("\n")
        body.append(f"  ✗  {label}: ", style="bold red")
        body.append(detail, style="bold red")
        body.append(f"\n       → {hint}", style="yellow")

    console.print(Panel(body, title="[bold red]Preflight checks failed[/bold red]"))
