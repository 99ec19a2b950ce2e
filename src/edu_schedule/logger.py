import logging
from rich.logging import RichHandler

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(show_path=False, rich_tracebacks=True)]
)

log = logging.getLogger("edu-schedule")


def set_verbose(verbose: bool) -> None:
    """Show the store's debug records (ids written, files saved)."""
    log.setLevel(logging.DEBUG if verbose else logging.INFO)
