"""Exception types raised by waitup."""


class WaitupError(Exception):
    """Base class for every error waitup raises on purpose."""


class InvalidTargetError(WaitupError, ValueError):
    """A target could not be built or parsed."""


class InvalidConfigError(WaitupError, ValueError):
    """A wait configuration or duration string is invalid."""


class WaitCancelledError(WaitupError):
    """The caller's cancellation handle was already cancelled when the wait began."""
