"""Logging setup for the CLI.

library modules only ever call logging.getLogger(__name__). handlers are
installed here, once, by whoever owns the process. they write to stderr
so json output on stdout stays parseable.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)
        ],
        force=True,
    )
