"""Exception types shared across the daemon and popup processes."""


class HelperError(Exception):
    """Base class for linux-helper errors."""


class LockError(HelperError):
    """Another daemon instance holds the lock file."""


class ChannelError(HelperError):
    """A channel could not be established within its retry budget."""


class MessageError(HelperError):
    """An inbound record could not be decoded."""


class PopupError(HelperError):
    """The popup subsystem failed to initialize."""


class AnalysisError(HelperError):
    """The external analysis command failed or returned garbage."""
