"""
Transport session - runs one transfer over an established byte stream.

Sender:   HandshakeFrame, FileCount, then FileHeader + FilePayload per file
Receiver: reads the same frames and writes each file into the receive
          directory, overwriting files with the same name

Whatever happens, the stream is closed when run() returns or raises.
Partially received files are left where they are, and an attempt that
fails after the handshake still gets a TransferRecord sized by the bytes
that actually moved.
"""
import logging
import threading
from pathlib import Path
from typing import Any, List, Optional, Sequence

from beamlink import config
from beamlink.common.chunked_transfer import ProgressTracker, ProgressCallback, format_bytes
from beamlink.common.errors import AuthFailure, FileAccessError, TransferCancelled, TransportError
from beamlink.common.files import FileAccess, safe_file_name
from beamlink.common.handshake import create_handshake_message, parse_handshake_message
from beamlink.common.history import Direction, HistorySink, TransferRecord
from beamlink.common.protocol import FrameReader, FrameWriter, TransferMetadata
from beamlink.common.session import SessionToken
from beamlink.transport.roles import Role

logger = logging.getLogger(__name__)


class TransportSession:
    """
    Protocol driver for one connected stream.

    Usage:
        session = TransportSession(SocketStream(sock), Role.RECEIVER, token,
                                   file_access, history, progress=on_progress)
        record = session.run()
    """

    def __init__(self,
                 stream,
                 role: Role,
                 token: SessionToken,
                 file_access: FileAccess,
                 history: HistorySink,
                 progress: Optional[ProgressCallback] = None,
                 chunk_size: int = config.CHUNK_SIZE,
                 receive_dir: Optional[Path] = None):
        """
        Args:
            stream: Connected byte stream with read/write/flush/close
            role: Whether this side sends or receives
            token: Session token shared out of band
            file_access: Collaborator used to read sources and create sinks
            history: Sink that gets a TransferRecord per attempt that passed the handshake
            progress: Called with (bytes_transferred, total_size) after every chunk
            chunk_size: Payload chunk size
            receive_dir: Overrides file_access.receive_directory() for receivers
        """
        self.stream = stream
        self.role = role
        self.token = token
        self.file_access = file_access
        self.history = history
        self.progress = progress
        self.chunk_size = chunk_size
        self.receive_dir = Path(receive_dir) if receive_dir else None

        self.metadata: Optional[TransferMetadata] = None
        self.received_files: List[Path] = []
        # Appended to history on success, or after a failure past the handshake
        self.record: Optional[TransferRecord] = None
        self._tracker: Optional[ProgressTracker] = None
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self):
        """Close the stream from any thread; the blocked transfer unwinds with TransferCancelled"""
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        logger.info(f"Cancelling session {self.token.id}")
        self.stream.close()

    def run(self, metadata: Optional[TransferMetadata] = None, files: Sequence[Any] = ()) -> TransferRecord:
        """
        Run the whole session.

        Args:
            metadata: Transfer description (sender only)
            files: Ordered file handles for the file-access collaborator (sender only)

        Returns:
            The TransferRecord appended to history
        """
        try:
            if self.role is Role.SENDER:
                return self._send(metadata, files)
            return self._receive()
        except Exception as e:
            self._record_partial()
            if self._cancelled.is_set():
                raise TransferCancelled(f"Session {self.token.id} cancelled") from e
            if isinstance(e, AuthFailure):
                logger.warning(f"Handshake authentication failed for session {self.token.id}")
            elif isinstance(e, OSError) and FileAccessError.is_file_error(e):
                logger.error(f"File access failed during session {self.token.id}: {e}")
                raise FileAccessError.from_os_error(e) from e
            elif isinstance(e, OSError):
                logger.error(f"Connection failed during session {self.token.id}: {e}")
                raise TransportError(str(e)) from e
            else:
                logger.error(f"Session {self.token.id} failed ({type(e).__name__}): {e}")
            raise
        finally:
            self.stream.close()

    def _send(self, metadata: Optional[TransferMetadata], files: Sequence[Any]) -> TransferRecord:
        if metadata is None:
            raise ValueError("Sender requires transfer metadata")

        writer = FrameWriter(self.stream, self.chunk_size)
        writer.write_handshake(create_handshake_message(self.token, metadata))
        self.metadata = metadata
        writer.write_file_count(len(files))
        if metadata.count != len(files):
            logger.warning(f"Handshake announces {metadata.count} files, sending {len(files)}")

        tracker = self._tracker = ProgressTracker(metadata.total_size, self.progress)
        tracker.start()

        sent = 0
        for handle in files:
            name = self.file_access.resolve_name(handle)
            size = self.file_access.resolve_size(handle)
            writer.write_file_header(name, size)
            with self.file_access.open_for_read(handle) as source:
                writer.write_payload(source, size, tracker)
            sent += size
            logger.debug(f"Sent {name} ({format_bytes(size)})")
        writer.flush()

        self._check_total(metadata.total_size, sent)
        logger.info(f"Sent {len(files)} file(s), {format_bytes(sent)} in session {self.token.id}")
        return self._record(metadata, Direction.SEND)

    def _receive(self) -> TransferRecord:
        reader = FrameReader(self.stream, self.chunk_size)
        metadata = parse_handshake_message(self.token, reader.read_handshake())
        self.metadata = metadata
        logger.info(f"Handshake ok: '{metadata.display_name}' ({format_bytes(metadata.total_size)})")

        count = reader.read_file_count()
        if metadata.file_count is not None and metadata.file_count != count:
            logger.warning(f"Handshake announced {metadata.file_count} files, stream carries {count}")

        dest_dir = self.receive_dir or self.file_access.receive_directory()
        dest_dir.mkdir(parents=True, exist_ok=True)

        tracker = self._tracker = ProgressTracker(metadata.total_size, self.progress)
        tracker.start()

        received = 0
        for _ in range(count):
            header = reader.read_file_header()
            dest = dest_dir / safe_file_name(header.name)
            self.received_files.append(dest)
            with self.file_access.open_for_write(dest) as sink:
                reader.read_payload(sink, header.size, tracker)
            received += header.size
            logger.debug(f"Received {dest.name} ({format_bytes(header.size)})")

        self._check_total(metadata.total_size, received)
        logger.info(f"Received {count} file(s) into {dest_dir}")
        return self._record(metadata, Direction.RECEIVE)

    def _check_total(self, declared: int, actual: int):
        # Declared aggregate and per-file sizes come from different sources; tolerate drift
        if declared != actual:
            logger.warning(f"Declared size {declared} differs from transferred size {actual} "
                           f"in session {self.token.id}")

    def _record(self, metadata: TransferMetadata, direction: Direction) -> TransferRecord:
        record = TransferRecord.now(metadata.display_name, metadata.total_size, direction)
        self.history.append(record)
        self.record = record
        return record

    def _record_partial(self):
        """Remember an attempt that failed after the handshake, sized by the bytes actually moved"""
        if self.metadata is None or self.record is not None:
            return
        transferred = self._tracker.bytes_transferred if self._tracker else 0
        direction = Direction.SEND if self.role is Role.SENDER else Direction.RECEIVE
        record = TransferRecord.now(self.metadata.display_name, transferred, direction)
        try:
            self.history.append(record)
        except OSError as e:
            logger.error(f"Could not record failed session {self.token.id}: {e}")
            return
        self.record = record
        logger.info(f"Recorded partial transfer of '{record.name}' ({format_bytes(transferred)})")
