"""Linux Helper: screen-capture triggered command assistant."""

import subprocess

__version__ = "0.3.0"


def kill_proc(proc: subprocess.Popen | None) -> bool:
    """Hard-kill a helper subprocess if running. Returns True if it was active."""
    if proc is not None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        return True
    return False
