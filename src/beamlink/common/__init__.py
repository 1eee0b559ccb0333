"""Common modules for beamlink sessions"""
from .session import SessionToken, TransferKind
from .protocol import (
    FileInfo,
    TransferMetadata,
    FrameReader,
    FrameWriter,
    SocketStream
)
from .handshake import create_handshake_message, parse_handshake_message
from .errors import BeamError, ErrorCode, get_error, get_error_from_exception

__all__ = [
    'SessionToken',
    'TransferKind',
    'FileInfo',
    'TransferMetadata',
    'FrameReader',
    'FrameWriter',
    'SocketStream',
    'create_handshake_message',
    'parse_handshake_message',
    'BeamError',
    'ErrorCode',
    'get_error',
    'get_error_from_exception'
]
