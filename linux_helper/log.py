"""Process-wide logging setup: console plus a rotating log file."""

import logging
import os
import stat
import sys
from logging.handlers import RotatingFileHandler

LOG_DIR = os.path.expanduser("~/.config/linux-helper")
DEFAULT_LOG_FILE = os.path.join(LOG_DIR, "daemon.log")

MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 1

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"

# Config uses the short names from daemon.json
LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def parse_level(name: str | None) -> int:
    """Map a config level name to a logging level. Unknown names mean info."""
    if not name:
        return logging.INFO
    return LEVELS.get(str(name).lower(), logging.INFO)


def setup_logging(level: str | None = "info", log_file: str | None = DEFAULT_LOG_FILE,
                  console: bool = True) -> logging.Logger:
    """Configure the ``linux_helper`` logger tree once per process.

    Calling it again replaces the handlers, so a level change from a config
    reload takes effect without duplicating output.
    """
    root = logging.getLogger("linux_helper")
    root.setLevel(parse_level(level))
    root.propagate = False

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    if console:
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(formatter)
        root.addHandler(stream)

    if log_file:
        log_dir = os.path.dirname(log_file)
        try:
            os.makedirs(log_dir, mode=0o700, exist_ok=True)
            try:
                os.chmod(log_dir, stat.S_IRWXU)  # 0o700
            except PermissionError:
                pass
            file_handler = RotatingFileHandler(
                log_file, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS,
                encoding="utf-8",
            )
        except OSError as e:
            # Console logging still works; a read-only home must not stop the daemon
            root.warning("File logging disabled (%s): %s", log_file, e)
        else:
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

    return root


def shutdown_logging() -> None:
    """Flush and close every handler on the ``linux_helper`` logger."""
    root = logging.getLogger("linux_helper")
    for handler in list(root.handlers):
        try:
            handler.flush()
        finally:
            handler.close()
