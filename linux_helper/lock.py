"""Single-instance lock file holding the owner's pid."""

import logging
import os

from linux_helper.errors import LockError

logger = logging.getLogger(__name__)


class LockFile:
    """Created atomically, so two starting daemons can never both win."""

    def __init__(self, path: str):
        self.path = path
        self.acquired = False

    def acquire(self) -> None:
        """Create the lock file or raise LockError naming the holder."""
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            raise LockError(
                f"Linux Helper daemon is already running (pid {self.holder_pid()}); "
                f"remove {self.path} if it is not"
            ) from None
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        self.acquired = True
        logger.debug("Acquired lock %s", self.path)

    def holder_pid(self):
        try:
            with open(self.path) as f:
                return int(f.read().strip())
        except (OSError, ValueError):
            return None

    def release(self) -> None:
        """Remove the lock if we hold it. Safe to call more than once."""
        if not self.acquired:
            return
        self.acquired = False
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        logger.debug("Released lock %s", self.path)
