"""Progress reporting for dumps and loads.

``Status`` is both a dumper listener and a loader filter.  By default it
keeps a single progress line updated while objects stream by and prints a
per-type count table when complete.  ``verbose`` prints one line per object;
``quiet`` prints only the final total.

Usage:
    dumper.log_to(sys.stderr, verbose=True)
    loader.use(Status, "load", sys.stderr)
"""

import sys
from collections import Counter
from typing import Any, TextIO

from rich.console import Console
from rich.markup import escape
from rich.table import Table


class Status:
    """Rich-based progress reporter.

    Args:
        owner: The ``Dumper`` or ``Loader`` this reporter is attached to.
        prefix: Verb shown in output (``"dump"`` or ``"load"``).
        out: Text stream (default: stderr).
        verbose: Print every object.
        quiet: Print only the final total.
    """

    def __init__(
        self,
        owner: Any,
        prefix: str,
        out: TextIO | None = None,
        verbose: bool = False,
        quiet: bool = False,
    ) -> None:
        self.owner = owner
        self.prefix = prefix
        self.verbose = verbose
        self.quiet = quiet
        self.count = 0
        self.counts: Counter[str] = Counter()
        self._console = Console(file=out or sys.stderr, highlight=False, soft_wrap=True)

    def __call__(self, type_name: str, id: Any, attributes: dict, obj: Any) -> None:
        self.count += 1
        self.counts[type_name] += 1
        if self.verbose:
            marker = "" if obj is not None else " [red](failed)[/red]"
            self._console.print(f"{self.prefix} {escape(type_name)} {escape(str(id))}{marker}")
        elif not self.quiet:
            self._console.print(f"==> {self.prefix}ing: {self.count} objects", end="\r")

    def complete(self) -> None:
        if self.quiet:
            self._console.print(f"==> {self.prefix}ed {self.count} total objects")
            return

        self._console.print(f"==> {self.prefix}ed {self.count} total objects:")
        table = Table(show_header=True, header_style="bold")
        table.add_column("Type")
        table.add_column("Count", justify="right")
        for type_name, count in sorted(self.counts.items()):
            table.add_row(escape(type_name), str(count))
        self._console.print(table)
