"""
Wire protocol for beamlink sessions

All integers are big-endian, unsigned, fixed width, with no padding:

┌──────────────────┬─────────────────────────────────────────────┐
│ HandshakeFrame   │ u32 len │ sealed handshake (len bytes)      │
├──────────────────┼─────────────────────────────────────────────┤
│ FileCount        │ u32 count                                   │
├──────────────────┼─────────────────────────────────────────────┤
│ FileHeader       │ u32 nameLen │ UTF-8 name │ u64 size         │
├──────────────────┼─────────────────────────────────────────────┤
│ FilePayload      │ size raw bytes (unencrypted)                │
└──────────────────┴─────────────────────────────────────────────┘

Session := HandshakeFrame FileCount (FileHeader FilePayload){count}

Readers read every field to its exact length; a stream that ends early is
a TruncatedStream error, never end-of-file.
"""
import socket
import struct
import logging
from dataclasses import dataclass, asdict, field
from typing import BinaryIO, List, Optional

from beamlink import config
from beamlink.common.chunked_transfer import ProgressTracker
from beamlink.common.errors import ProtocolError, TruncatedStream

logger = logging.getLogger(__name__)

U32 = struct.Struct('>I')
U64 = struct.Struct('>Q')
MAX_U32 = 0xFFFFFFFF
MAX_U64 = 0xFFFFFFFFFFFFFFFF


@dataclass
class FileInfo:
    """Name and size of a single file, as carried in a FileHeader"""
    name: str
    size: int

    def to_dict(self):
        return asdict(self)


@dataclass
class TransferMetadata:
    """
    What a sender intends to transfer.

    The sender fills in `files` from its selection. A receiver only learns
    `display_name`, `total_size` and the advisory `file_count` from the
    handshake; per-file names and sizes arrive in the frame headers.
    """
    display_name: str
    total_size: int
    files: List[FileInfo] = field(default_factory=list)
    file_count: Optional[int] = None

    @property
    def count(self) -> int:
        if self.files:
            return len(self.files)
        return self.file_count or 0

    @classmethod
    def for_files(cls, file_access, handles, display_name: Optional[str] = None) -> 'TransferMetadata':
        """Resolve names and sizes of a local selection through the file-access collaborator"""
        files = [FileInfo(name=file_access.resolve_name(h), size=file_access.resolve_size(h))
                 for h in handles]
        if display_name is None:
            if len(files) == 1:
                display_name = files[0].name
            else:
                display_name = f"{len(files)} files"
        return cls(
            display_name=display_name,
            total_size=sum(f.size for f in files),
            files=files,
            file_count=len(files)
        )

    def to_dict(self):
        return {
            'display_name': self.display_name,
            'total_size': self.total_size,
            'files': [f.to_dict() for f in self.files],
            'file_count': self.count,
        }


def pack_u32(value: int) -> bytes:
    if not 0 <= value <= MAX_U32:
        raise ProtocolError(f"Value {value} does not fit in u32")
    return U32.pack(value)


def pack_u64(value: int) -> bytes:
    if not 0 <= value <= MAX_U64:
        raise ProtocolError(f"Value {value} does not fit in u64")
    return U64.pack(value)


def encode_handshake_frame(blob: bytes) -> bytes:
    if len(blob) > config.MAX_HANDSHAKE_SIZE:
        raise ProtocolError(f"Handshake of {len(blob)} bytes exceeds {config.MAX_HANDSHAKE_SIZE}")
    return pack_u32(len(blob)) + blob


def encode_file_count(count: int) -> bytes:
    return pack_u32(count)


def encode_file_header(name: str, size: int) -> bytes:
    name_bytes = name.encode('utf-8')
    if len(name_bytes) > config.MAX_NAME_LENGTH:
        raise ProtocolError(f"File name of {len(name_bytes)} bytes exceeds {config.MAX_NAME_LENGTH}")
    return pack_u32(len(name_bytes)) + name_bytes + pack_u64(size)


class SocketStream:
    """
    Adapts a connected stream socket (TCP or RFCOMM) to read/write/close.

    close() shuts the socket down before closing it, so a thread blocked in
    read() on the same socket wakes up with end-of-stream.
    """

    def __init__(self, sock: socket.socket):
        self._sock = sock
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def read(self, n: int) -> bytes:
        return self._sock.recv(n)

    def write(self, data: bytes):
        self._sock.sendall(data)

    def flush(self):
        pass

    def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Peer already gone or socket never connected
            pass
        self._sock.close()


class FrameWriter:
    """Write session frames to a byte stream"""

    def __init__(self, stream, chunk_size: int = config.CHUNK_SIZE):
        self.stream = stream
        self.chunk_size = chunk_size

    def write_handshake(self, blob: bytes):
        self.stream.write(encode_handshake_frame(blob))

    def write_file_count(self, count: int):
        self.stream.write(encode_file_count(count))

    def write_file_header(self, name: str, size: int):
        self.stream.write(encode_file_header(name, size))

    def write_payload(self, source: BinaryIO, size: int,
                      progress: Optional[ProgressTracker] = None) -> int:
        """
        Stream exactly `size` bytes from source in bounded chunks.

        The header already promised `size` bytes, so a source that runs dry
        early is a TruncatedStream. Bytes beyond `size` are never read.
        """
        remaining = size
        while remaining > 0:
            data = source.read(min(self.chunk_size, remaining))
            if not data:
                raise TruncatedStream(size, size - remaining, "file payload source")
            self.stream.write(data)
            remaining -= len(data)
            if progress:
                progress.update(len(data))
        return size

    def flush(self):
        self.stream.flush()


class FrameReader:
    """Read session frames from a byte stream with read-fully semantics"""

    def __init__(self, stream, chunk_size: int = config.CHUNK_SIZE):
        self.stream = stream
        self.chunk_size = chunk_size

    def read_exactly(self, n: int, what: str = "frame field") -> bytes:
        buffer = bytearray()
        while len(buffer) < n:
            data = self.stream.read(n - len(buffer))
            if not data:
                raise TruncatedStream(n, len(buffer), what)
            buffer.extend(data)
        return bytes(buffer)

    def read_u32(self, what: str = "u32 field") -> int:
        return U32.unpack(self.read_exactly(U32.size, what))[0]

    def read_u64(self, what: str = "u64 field") -> int:
        return U64.unpack(self.read_exactly(U64.size, what))[0]

    def read_handshake(self) -> bytes:
        length = self.read_u32("handshake length")
        if length > config.MAX_HANDSHAKE_SIZE:
            raise ProtocolError(f"Handshake of {length} bytes exceeds {config.MAX_HANDSHAKE_SIZE}")
        return self.read_exactly(length, "handshake frame")

    def read_file_count(self) -> int:
        return self.read_u32("file count")

    def read_file_header(self) -> FileInfo:
        name_len = self.read_u32("file name length")
        if name_len > config.MAX_NAME_LENGTH:
            raise ProtocolError(f"File name of {name_len} bytes exceeds {config.MAX_NAME_LENGTH}")
        raw_name = self.read_exactly(name_len, "file name")
        try:
            name = raw_name.decode('utf-8')
        except UnicodeDecodeError as e:
            raise ProtocolError(f"File name is not valid UTF-8: {e}") from None
        size = self.read_u64("file size")
        return FileInfo(name=name, size=size)

    def read_payload(self, sink: BinaryIO, size: int,
                     progress: Optional[ProgressTracker] = None) -> int:
        """Copy exactly `size` payload bytes into sink"""
        remaining = size
        while remaining > 0:
            data = self.stream.read(min(self.chunk_size, remaining))
            if not data:
                raise TruncatedStream(size, size - remaining, "file payload")
            sink.write(data)
            remaining -= len(data)
            if progress:
                progress.update(len(data))
        return size
