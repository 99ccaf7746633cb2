from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

from seller_session.core.events.redaction import scrub_text

LOGGER_NAME = "seller_session"


class TokenScrubFilter(logging.Filter):
    """Masks bearer values and JWTs that end up in a formatted log message."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        scrubbed = scrub_text(msg)
        if scrubbed != msg:
            record.msg, record.args = scrubbed, None
        return True


def setup_logging(log_dir: str = "logs", *, level: str = "INFO", console: bool = True) -> logging.Logger:
    os.makedirs(log_dir, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    logger.propagate = False
    if not any(isinstance(f, TokenScrubFilter) for f in logger.filters):
        logger.addFilter(TokenScrubFilter())

    log_path = os.path.abspath(os.path.join(log_dir, "session.log"))
    for h in list(logger.handlers):
        # a new log_dir replaces the previous file handler
        if isinstance(h, RotatingFileHandler) and h.baseFilename != log_path:
            logger.removeHandler(h)
            h.close()
    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        fh = RotatingFileHandler(log_path, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
        fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(message)s"))
        logger.addHandler(fh)

    has_console = any(type(h) is logging.StreamHandler for h in logger.handlers)
    if console and not has_console:
        sh = logging.StreamHandler()
        sh.setLevel(logging.WARNING)
        sh.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        logger.addHandler(sh)

    return logger
