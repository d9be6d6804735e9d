"""
Process-wide logging initialisation.

Called once, before the listener starts. Modules log through
logging.getLogger(__name__) and never configure handlers themselves.
"""

import logging
import os

LOG_ENV_VAR = "RPORT_LOG"
DEFAULT_LEVEL = "info"
LOG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s: %(message)s"


def resolve_level(level: str | None = None) -> int:
    """Explicit level, else $RPORT_LOG, else info. Unknown names fall back to info."""
    name = (level or os.environ.get(LOG_ENV_VAR) or DEFAULT_LEVEL).strip().upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        return logging.INFO
    return resolved


def init_logging(level: str | None = None) -> int:
    """Configure the root handler and the rport logger. Returns the level used."""
    resolved = resolve_level(level)

    logging.basicConfig(format=LOG_FORMAT, level=logging.WARNING, force=True)
    logging.getLogger("rport").setLevel(resolved)
    # Forwarding must keep going if a log record cannot be written.
    logging.raiseExceptions = False
    return resolved
