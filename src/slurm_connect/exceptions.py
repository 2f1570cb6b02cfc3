"""Error types raised while brokering a Slurm connection."""

from typing import Optional


class SlurmConnectError(Exception):
    """Base class for all slurm-connect errors."""
    pass


class DiscoveryError(SlurmConnectError):
    """Raised when no login host can be resolved."""
    pass


class RemoteQueryError(SlurmConnectError):
    """Raised when a remote command fails or times out."""
    pass


class InputValidationError(SlurmConnectError):
    """Raised when a numeric or time value is malformed.
    
    The offending field name is kept on ``field`` so callers can report it.
    """
    
    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class ConfigWriteError(SlurmConnectError):
    """Raised when the SSH config overlay cannot be written."""
    pass


class ConnectError(SlurmConnectError):
    """Raised when the editor connect action fails."""
    pass


class PromptCancelled(SlurmConnectError):
    """Raised when the user dismisses an interactive prompt."""
    pass


class ConnectionAborted(SlurmConnectError):
    """Raised when a hard-abort step of the connect flow fails."""
    
    def __init__(self, step: str, cause: Optional[BaseException] = None):
        message = str(cause) if cause is not None else f"Connect flow aborted at {step}"
        super().__init__(message)
        self.step = step
        self.cause = cause


class SettingsError(SlurmConnectError):
    """Raised when the editor settings or the restore slot cannot be read or written."""
    pass
