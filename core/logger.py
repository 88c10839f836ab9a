"""
Console logging for the strumtab command line.

Only the project's own loggers get the console handler. The root logger is
left untouched so an application embedding the editor core keeps its own
logging setup, and records still propagate to it.
"""
import logging
import sys
from typing import Optional, TextIO

# Top-level logger names of the project's modules (main runs as __main__ from a checkout)
PROJECT_LOGGERS = ("core", "audio", "main", "__main__")

_console_handler: Optional[logging.Handler] = None


def setup_logger(level=logging.INFO, stream: Optional[TextIO] = None) -> logging.Handler:
    """
    Attach one console handler to every project logger.

    Calling it again replaces the handler installed by the previous call.

    Args:
        level: Threshold for both the loggers and the handler
        stream: Destination (defaults to stdout)

    Returns:
        The installed handler
    """
    global _console_handler

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setLevel(level)
    if level <= logging.DEBUG:
        # Playback runs on worker threads, so debug lines name the thread
        handler.setFormatter(logging.Formatter(
            '%(relativeCreated)8.0fms %(threadName)s %(name)s %(levelname)s: %(message)s'))
    else:
        handler.setFormatter(logging.Formatter('%(levelname)s %(message)s'))

    for name in PROJECT_LOGGERS:
        logger = logging.getLogger(name)
        if _console_handler is not None:
            logger.removeHandler(_console_handler)
        logger.setLevel(level)
        logger.addHandler(handler)

    _console_handler = handler
    return handler
