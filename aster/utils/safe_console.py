"""Rich Console wrapper that degrades to ASCII on non-UTF-8 terminals."""
from typing import Any, Iterable

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from aster.errors import Diagnostic
from aster.utils.logger import is_utf8_capable, sanitize_for_terminal


class SafeConsole(Console):
    """Console that replaces Unicode icons with ASCII equivalents where needed.

    All constructor arguments are passed through to Rich's Console.
    """

    def __init__(self, *args, **kwargs):
        self._needs_sanitization = not is_utf8_capable()
        if self._needs_sanitization:
            kwargs['legacy_windows'] = True
        super().__init__(*args, **kwargs)

    def print(self, *objects: Any, **kwargs) -> None:
        if self._needs_sanitization:
            objects = tuple(
                sanitize_for_terminal(obj, force=True) if isinstance(obj, str) else obj
                for obj in objects
            )
        super().print(*objects, **kwargs)

    def print_diagnostics(self, diagnostics: Iterable[Diagnostic], title: str = "Problems"):
        """Print per-file problems once, as a table. Prints nothing when there are none."""
        rows = sorted(diagnostics, key=lambda d: (d.path, d.line or 0, d.category, d.message))
        if not rows:
            return

        table = Table(title=f"{title} ({len(rows)})", show_header=True, header_style="bold yellow")
        table.add_column("Kind", style="yellow", no_wrap=True)
        table.add_column("File", style="cyan", no_wrap=False)
        table.add_column("Line", justify="right", style="green")
        table.add_column("Message", no_wrap=False)
        for diagnostic in rows:
            table.add_row(
                diagnostic.category,
                escape(diagnostic.path),
                str(diagnostic.line) if diagnostic.line else "",
                escape(diagnostic.message),
            )
        self.print(table)
