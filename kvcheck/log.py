"""Console and logging setup shared by the validator."""

import logging

from rich.console import Console
from rich.logging import RichHandler

# Configure rich console for validator output
console = Console(stderr=True)


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """Send kvcheck log records to the shared rich console."""
    logger = logging.getLogger("kvcheck")
    logger.handlers = [RichHandler(console=console, show_path=False)]
    logger.setLevel(level)
    return logger
