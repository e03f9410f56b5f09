"""Lightweight logging setup for the command line."""

import logging
import sys


def configure_logging(level: int = logging.INFO) -> None:
    # Configure root logger once; stdout may carry key or stream bytes, so log to stderr.
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
