"""Logging configuration for the clipsession CLI."""
import logging


def configure_logging(verbose: bool) -> None:
    """Configure root logging once for the whole process.

    Args:
        verbose: If True, log DEBUG and above with the emitting module's
            name; otherwise only WARNING and above.

    Warnings and errors always reach stderr regardless of verbosity.
    """
    if verbose:
        level = logging.DEBUG
        fmt = "%(levelname)s %(name)s: %(message)s"
    else:
        level = logging.WARNING
        fmt = "%(levelname)s: %(message)s"
    logging.basicConfig(level=level, format=fmt, handlers=[logging.StreamHandler()])
