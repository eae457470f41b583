"""Logging setup shared by the command line entry points."""

import logging
import sys

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def configure_logging(level='INFO', log_file=None):
    """Send log lines to stdout and, optionally, to a file."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True
    )
