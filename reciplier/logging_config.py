"""
Reciplier — Logging setup for the command line.

Records go to stderr; stdout carries only the solved template.
"""
import logging
import sys
from typing import Optional

PACKAGE_LOGGER = "reciplier"

# -v count → console level.  The solver's per-solve trace is DEBUG.
VERBOSITY_LEVELS = (logging.WARNING, logging.INFO, logging.DEBUG)

_FORMAT = "%(levelname)s %(name)s: %(message)s"
_HANDLER_NAMES = ("reciplier.console", "reciplier.file")


class _StderrHandler(logging.StreamHandler):
    """Writes to whatever ``sys.stderr`` is when the record is emitted."""

    def __init__(self):
        logging.Handler.__init__(self)

    @property
    def stream(self):
        return sys.stderr


def setup_logging(verbosity: int = 0, log_file: Optional[str] = None) -> logging.Logger:
    """
    Attach console (and optional file) handlers to the ``reciplier`` logger.

    *verbosity* 0 shows failed solves only, 1 adds one line per template and
    2 adds the propagation and refinement trace of every solve.  *log_file*
    always receives the full DEBUG trace, whatever the console shows.
    Calling again replaces the handlers of the previous call.
    """
    level = VERBOSITY_LEVELS[min(max(verbosity, 0), len(VERBOSITY_LEVELS) - 1)]
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in [h for h in logger.handlers if h.get_name() in _HANDLER_NAMES]:
        logger.removeHandler(handler)
        handler.close()

    console = _StderrHandler()
    console.set_name("reciplier.console")
    console.setLevel(level)
    handlers = [console]
    if log_file:
        file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        file_handler.set_name("reciplier.file")
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    formatter = logging.Formatter(_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(logging.DEBUG if log_file else level)
    return logger
