"""Custom exceptions for SSHDesk."""

from typing import Optional


class SSHDeskError(Exception):
    """Base exception for SSHDesk."""
    pass


class ConfigurationError(SSHDeskError):
    """Raised when the private configuration directory cannot be prepared."""
    pass


class NotFoundError(SSHDeskError):
    """Raised when a server or session id is unknown."""
    pass


class ServerNotFoundError(NotFoundError):
    """Raised when no server record has the requested id."""

    def __init__(self, server_id: str):
        super().__init__(f"Server with id {server_id} not found")
        self.server_id = server_id


class SessionNotFoundError(NotFoundError):
    """Raised when no live session has the requested id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class SessionNotConnectedError(SSHDeskError):
    """Raised when an operation needs a connected/ready session."""

    def __init__(self, session_id: str, status: str):
        super().__init__(f"Session {session_id} is not connected (status: {status})")
        self.session_id = session_id
        self.status = status


class AuthConfigError(SSHDeskError):
    """Raised when a required secret or key file is missing or unreadable."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ConnectionTimeoutError(SSHDeskError):
    """Raised when the connect phase does not finish in time."""
    pass


class TransportError(SSHDeskError):
    """Raised on authentication rejection, network failure or unexpected close."""
    pass


class EncryptionError(SSHDeskError):
    """Raised when the encryption key cannot be loaded or used."""
    pass


class DecryptionError(EncryptionError):
    """Raised when an envelope is malformed or was made with another key."""
    pass


class RemoteOperationError(SSHDeskError):
    """Raised when a remote listing, transfer or file operation fails."""
    pass


class LocalFileNotFoundError(SSHDeskError):
    """Raised when a local source file or directory does not exist."""

    def __init__(self, path: str):
        super().__init__(f"Local file not found: {path}")
        self.path = path
