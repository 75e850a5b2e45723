from __future__ import annotations

import os

from rich.console import Console
from rich.panel import Panel

# On Windows, disable legacy Windows rendering to avoid Unicode encoding issues
console = Console(legacy_windows=False)
err_console = Console(stderr=True, legacy_windows=False)

SUPPRESS_ENV = "REQPROF_SUPPRESS_OUTPUT"


def is_suppressed() -> bool:
    """Check if panel output is switched off through the environment."""
    return os.environ.get(SUPPRESS_ENV, "").lower() in ("1", "true", "yes")


def log_success_panel(content: str) -> None:
    if is_suppressed():
        return
    console.print(Panel(content, style="green", title="Info"))


def log_error_panel(content: str) -> None:
    if is_suppressed():
        return
    err_console.print(Panel(content, style="red", title="Error"))


def log_warning_panel(content: str) -> None:
    if is_suppressed():
        return
    console.print(Panel(content, style="yellow", title="Warning"))
