"""
Append-only audit log: one line per sync run.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path


def format_timestamp(ts: datetime) -> str:
    return ts.isoformat(sep=" ", timespec="seconds")


@dataclass(frozen=True)
class AuditEntry:
    cause: str
    timestamp: str
    ok: bool
    error: str | None = None


def parse_line(line: str) -> AuditEntry | None:
    """Split a line written by ``AuditLog.record``; None if it is not one."""
    parts = line.rstrip("\n").split(" ", 3)
    if len(parts) != 4:
        return None
    cause, date_part, time_part, rest = parts
    if time_part.endswith(":"):
        return AuditEntry(cause, f"{date_part} {time_part[:-1]}", ok=False, error=rest)
    if rest == "ok":
        return AuditEntry(cause, f"{date_part} {time_part}", ok=True)
    return None


class AuditLog:
    """Plain-text log that is only ever appended to."""

    def __init__(self, path: Path):
        self.path = path

    def append(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not line.endswith("\n"):
            line += "\n"
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line)

    def record(self, cause: str, timestamp: datetime, error: str | None = None) -> None:
        """Write ``"<cause> <timestamp> ok"`` or ``"<cause> <timestamp>: <error>"``."""
        header = f"{cause} {format_timestamp(timestamp)}"
        if error is None:
            self.append(f"{header} ok")
        else:
            # Keep the log one line per run.
            self.append(f"{header}: {' '.join(error.splitlines())}")

    def read_lines(self) -> list[str]:
        if not self.path.exists():
            return []
        return self.path.read_text(encoding="utf-8").splitlines()
