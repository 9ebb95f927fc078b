"""Connected-clients table for admin views."""

from __future__ import annotations

import io
import time
from typing import Iterable, Optional

from rich.console import Console
from rich.table import Table

from ..core.session import SessionSummary


def _fmt_clock(ts: float) -> str:
    return time.strftime("%H:%M:%S", time.localtime(ts))


def render_clients_table(summaries: Iterable[SessionSummary], *, title: Optional[str] = "Clients") -> Table:
    table = Table(title=title, expand=False, show_lines=False)
    table.add_column("ID", justify="right", no_wrap=True)
    table.add_column("User", overflow="ellipsis")
    table.add_column("Permissions", no_wrap=True)
    table.add_column("Connected", no_wrap=True)
    table.add_column("Idle", justify="right", no_wrap=True)
    for summary in summaries:
        user = summary.identity + (" *" if summary.is_first_client else "")
        table.add_row(
            str(summary.id),
            user,
            summary.permission.label,
            _fmt_clock(summary.connected_at),
            f"{summary.idle_seconds}s",
        )
    return table


def clients_table_lines(summaries: Iterable[SessionSummary], width: int = 80) -> list[str]:
    """Render the table as plain text lines no wider than ``width``."""
    buffer = io.StringIO()
    console = Console(
        file=buffer,
        width=max(20, int(width)),
        color_system=None,
        force_terminal=False,
        legacy_windows=False,
    )
    console.print(render_clients_table(summaries))
    return [line.rstrip() for line in buffer.getvalue().splitlines()]
