"""
core/logging_config.py -- Process-wide logging setup.

Called once at startup (API lifespan or CLI entry point). Every module gets
its logger with logging.getLogger("sso.<area>") and never configures handlers
itself.

Environment levels:
  local -- DEBUG, includes module path and line number
  dev   -- DEBUG
  prod  -- INFO
"""

import logging

_FORMAT = "%(asctime)s %(levelname)-5s %(name)s %(message)s"
_LOCAL_FORMAT = "%(asctime)s %(levelname)-5s %(name)s [%(module)s:%(lineno)d] %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_LEVELS = {
    "local": logging.DEBUG,
    "dev": logging.DEBUG,
    "prod": logging.INFO,
}


def setup_logging(env: str) -> logging.Logger:
    """Configure the root logger for env and return the "sso" logger.

    force=True replaces handlers left by an earlier call, so the CLI and the
    API lifespan can both call this without duplicating output.
    """
    level = _LEVELS.get(env, logging.INFO)
    logging.basicConfig(
        level=level,
        format=_LOCAL_FORMAT if env == "local" else _FORMAT,
        datefmt=_DATEFMT,
        force=True,
    )
    log = logging.getLogger("sso")
    log.debug("logging configured (env=%s)", env)
    return log
