"""
Errors for beamlink sessions

Every failure that can end a transfer session is a BeamError subclass with
an ErrorCode. User-facing text lives in ERROR_MESSAGES so the CLI can print
a clear message and a suggestion for each kind of failure.
"""
import errno
from enum import Enum
from dataclasses import dataclass
from typing import Optional


class ErrorCode(Enum):
    """Error codes for categorization"""
    # Security
    AUTH_FAILED = "auth_failed"

    # Handshake / token
    MALFORMED_HANDSHAKE = "malformed_handshake"
    MALFORMED_TOKEN = "malformed_token"

    # Framing
    PROTOCOL_ERROR = "protocol_error"
    TRUNCATED_STREAM = "truncated_stream"

    # Transport
    TRANSPORT_UNAVAILABLE = "transport_unavailable"
    TRANSPORT_ERROR = "transport_error"
    CONNECTION_TIMEOUT = "connection_timeout"
    CONNECTION_REFUSED = "connection_refused"

    # Session
    SESSION_ALREADY_ACTIVE = "session_already_active"
    TRANSFER_CANCELLED = "transfer_cancelled"

    # Resources
    FILE_NOT_FOUND = "file_not_found"
    PERMISSION_DENIED = "permission_denied"
    DISK_FULL = "disk_full"
    PORT_IN_USE = "port_in_use"

    # Configuration
    INVALID_CONFIG = "invalid_config"

    UNKNOWN = "unknown"


class BeamError(Exception):
    """Base class for every session-ending failure"""
    code = ErrorCode.UNKNOWN


class AuthFailure(BeamError):
    """Handshake seal could not be opened: wrong key, wrong session or tampering"""
    code = ErrorCode.AUTH_FAILED


class MalformedHandshake(BeamError):
    """Handshake plaintext decrypted but does not describe a transfer"""
    code = ErrorCode.MALFORMED_HANDSHAKE


class MalformedToken(BeamError):
    """Out-of-band session record could not be parsed"""
    code = ErrorCode.MALFORMED_TOKEN


class ProtocolError(BeamError):
    """A frame violated the wire format"""
    code = ErrorCode.PROTOCOL_ERROR


class TruncatedStream(BeamError):
    """The stream ended before a frame field was complete"""
    code = ErrorCode.TRUNCATED_STREAM

    def __init__(self, expected: int, received: int, what: str = "frame field"):
        super().__init__(f"Stream ended inside {what}: expected {expected} bytes, got {received}")
        self.expected = expected
        self.received = received
        self.what = what


class TransportUnavailable(BeamError):
    """No channel could be established"""
    code = ErrorCode.TRANSPORT_UNAVAILABLE


class TransportError(BeamError):
    """I/O failure on an established channel"""
    code = ErrorCode.TRANSPORT_ERROR


class FileAccessError(BeamError):
    """A local file could not be read or written during a session"""
    code = ErrorCode.UNKNOWN

    @classmethod
    def from_os_error(cls, exc: OSError) -> 'FileAccessError':
        error = cls(str(exc))
        if isinstance(exc, FileNotFoundError):
            error.code = ErrorCode.FILE_NOT_FOUND
        elif isinstance(exc, PermissionError):
            error.code = ErrorCode.PERMISSION_DENIED
        elif exc.errno == errno.ENOSPC:
            error.code = ErrorCode.DISK_FULL
        return error

    @staticmethod
    def is_file_error(exc: OSError) -> bool:
        return isinstance(exc, (FileNotFoundError, PermissionError, IsADirectoryError,
                                NotADirectoryError, FileExistsError)) or exc.errno == errno.ENOSPC


class TransferCancelled(BeamError):
    code = ErrorCode.TRANSFER_CANCELLED


class SessionAlreadyActive(BeamError):
    code = ErrorCode.SESSION_ALREADY_ACTIVE


@dataclass
class UserMessage:
    """User-friendly error with message and suggestion"""
    message: str
    suggestion: str
    code: str = ""

    def __str__(self) -> str:
        result = f"Error: {self.message}"
        if self.suggestion:
            result += f"\n  Suggestion: {self.suggestion}"
        return result

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "suggestion": self.suggestion
        }


ERROR_MESSAGES = {
    ErrorCode.AUTH_FAILED: UserMessage(
        code="auth_failed",
        message="The other device could not prove it holds this session's key",
        suggestion="Do not retry automatically. Tap the devices again to start a fresh session"
    ),

    ErrorCode.MALFORMED_HANDSHAKE: UserMessage(
        code="malformed_handshake",
        message="The transfer description from the other device is invalid",
        suggestion="Make sure both devices run a compatible version of beamlink"
    ),

    ErrorCode.MALFORMED_TOKEN: UserMessage(
        code="malformed_token",
        message="The session token could not be read",
        suggestion="Generate a new token with 'beamlink token' and share it again"
    ),

    ErrorCode.PROTOCOL_ERROR: UserMessage(
        code="protocol_error",
        message="Communication protocol error with peer",
        suggestion="Ensure both devices are running the same version of beamlink"
    ),

    ErrorCode.TRUNCATED_STREAM: UserMessage(
        code="truncated_stream",
        message="The connection ended before the transfer was complete",
        suggestion="Keep the devices close together and start the transfer again. Partially received files were kept"
    ),

    ErrorCode.TRANSPORT_UNAVAILABLE: UserMessage(
        code="transport_unavailable",
        message="Could not open a connection to the other device",
        suggestion="Check that Wi-Fi or Bluetooth is enabled on both devices and that they can see each other"
    ),

    ErrorCode.TRANSPORT_ERROR: UserMessage(
        code="transport_error",
        message="The connection to the other device failed during the transfer",
        suggestion="Start the transfer again"
    ),

    ErrorCode.CONNECTION_TIMEOUT: UserMessage(
        code="connection_timeout",
        message="Connection timed out while trying to reach peer",
        suggestion="Check your network connection and firewall settings (port 8988 must be open)"
    ),

    ErrorCode.CONNECTION_REFUSED: UserMessage(
        code="connection_refused",
        message="Connection was refused by the peer",
        suggestion="Start the receiving side first, then the sending side"
    ),

    ErrorCode.SESSION_ALREADY_ACTIVE: UserMessage(
        code="session_already_active",
        message="A transfer is already in progress",
        suggestion="Wait for the current transfer to finish or cancel it"
    ),

    ErrorCode.TRANSFER_CANCELLED: UserMessage(
        code="transfer_cancelled",
        message="File transfer was cancelled",
        suggestion="Start a new session to send the files again"
    ),

    ErrorCode.FILE_NOT_FOUND: UserMessage(
        code="file_not_found",
        message="A selected file was not found",
        suggestion="The file may have been moved or deleted. Select it again"
    ),

    ErrorCode.PERMISSION_DENIED: UserMessage(
        code="permission_denied",
        message="Permission denied when accessing file or directory",
        suggestion="Check file permissions on the selected files and the receive directory"
    ),

    ErrorCode.DISK_FULL: UserMessage(
        code="disk_full",
        message="Not enough disk space to receive the file",
        suggestion="Free up disk space and try again"
    ),

    ErrorCode.PORT_IN_USE: UserMessage(
        code="port_in_use",
        message="Port 8988 is already in use",
        suggestion="Another transfer may be running. Wait for it or change wifi_port in the config"
    ),

    ErrorCode.INVALID_CONFIG: UserMessage(
        code="invalid_config",
        message="Configuration file contains invalid values",
        suggestion="Run 'beamlink config --reset' to restore default settings"
    ),

    ErrorCode.UNKNOWN: UserMessage(
        code="unknown",
        message="An unexpected error occurred",
        suggestion="Check the log file for more details"
    ),
}


def get_error(code: ErrorCode) -> UserMessage:
    """Get user-friendly error for a given error code"""
    return ERROR_MESSAGES.get(code, ERROR_MESSAGES[ErrorCode.UNKNOWN])


def get_error_from_exception(exc: BaseException) -> UserMessage:
    """Map exceptions to user-friendly errors"""
    if isinstance(exc, BeamError):
        return get_error(exc.code)

    exc_str = str(exc).lower()
    exc_type = type(exc).__name__

    if isinstance(exc, FileNotFoundError) or "no such file" in exc_str:
        return get_error(ErrorCode.FILE_NOT_FOUND)
    if isinstance(exc, PermissionError) or "permission denied" in exc_str:
        return get_error(ErrorCode.PERMISSION_DENIED)
    if "no space left" in exc_str or "disk full" in exc_str:
        return get_error(ErrorCode.DISK_FULL)

    if isinstance(exc, ConnectionRefusedError) or "connection refused" in exc_str:
        return get_error(ErrorCode.CONNECTION_REFUSED)
    if isinstance(exc, TimeoutError) or "timed out" in exc_str:
        return get_error(ErrorCode.CONNECTION_TIMEOUT)
    if "address already in use" in exc_str:
        return get_error(ErrorCode.PORT_IN_USE)

    error = get_error(ErrorCode.UNKNOWN)
    return UserMessage(
        code=error.code,
        message=f"{error.message}: {exc_type}",
        suggestion=error.suggestion
    )


def format_error(code: ErrorCode, details: Optional[str] = None) -> str:
    """Format error message for display"""
    error = get_error(code)
    result = str(error)
    if details:
        result = f"{result}\n  Details: {details}"
    return result
