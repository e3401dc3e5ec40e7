"""File logging for the hook.

stderr is the block channel read by Claude Code, so diagnostics only ever go
to the log file.
"""

import logging

_LEVELS = {"debug": logging.DEBUG, "info": logging.INFO, "warning": logging.WARNING}


def setup_logging(settings):
    logger = logging.getLogger("safe_bash")
    if logger.handlers:
        return logger
    logger.propagate = False
    if settings.log_level == "off":
        logger.addHandler(logging.NullHandler())
        return logger
    try:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(settings.log_file)
    except OSError:
        logger.addHandler(logging.NullHandler())
        return logger
    handler.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(_LEVELS[settings.log_level])
    return logger
