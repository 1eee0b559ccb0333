"""
Unit tests for protocol.py - Session framing
"""
import pytest
import io
import struct

from beamlink import config
from beamlink.common.chunked_transfer import ProgressTracker
from beamlink.common.errors import ProtocolError, TruncatedStream
from beamlink.common.files import LocalFileAccess
from beamlink.common.protocol import (
    FrameReader, FrameWriter, TransferMetadata, FileInfo,
    encode_file_header, encode_handshake_frame, pack_u32, pack_u64
)


class BufferStream:
    """In-memory stream with the read/write/flush/close surface sessions use"""

    def __init__(self, data: bytes = b"", max_read: int = None):
        self.buffer = io.BytesIO(data)
        self.max_read = max_read
        self.closed = False

    def read(self, n):
        if self.max_read:
            n = min(n, self.max_read)
        return self.buffer.read(n)

    def write(self, data):
        self.buffer.write(data)

    def flush(self):
        pass

    def close(self):
        self.closed = True

    def getvalue(self):
        return self.buffer.getvalue()


def write_session(files, handshake=b"HS", chunk_size=4):
    out = BufferStream()
    writer = FrameWriter(out, chunk_size)
    writer.write_handshake(handshake)
    writer.write_file_count(len(files))
    for name, data in files:
        writer.write_file_header(name, len(data))
        writer.write_payload(io.BytesIO(data), len(data))
    writer.flush()
    return out.getvalue()


def read_session(data, chunk_size=4, max_read=None):
    reader = FrameReader(BufferStream(data, max_read), chunk_size)
    handshake = reader.read_handshake()
    files = []
    for _ in range(reader.read_file_count()):
        header = reader.read_file_header()
        sink = io.BytesIO()
        reader.read_payload(sink, header.size)
        files.append((header.name, sink.getvalue()))
    return handshake, files


class TestEncoding:
    """Tests for the byte layout of each frame"""

    def test_integers_are_big_endian(self):
        assert pack_u32(1) == b"\x00\x00\x00\x01"
        assert pack_u64(5) == b"\x00" * 7 + b"\x05"

    def test_out_of_range_rejected(self):
        with pytest.raises(ProtocolError):
            pack_u32(2 ** 32)
        with pytest.raises(ProtocolError):
            pack_u64(-1)

    def test_handshake_frame(self):
        assert encode_handshake_frame(b"abc") == b"\x00\x00\x00\x03abc"

    def test_file_header(self):
        header = encode_file_header("a.txt", 11)
        assert header == struct.pack(">I", 5) + b"a.txt" + struct.pack(">Q", 11)

    def test_file_header_counts_utf8_bytes(self):
        header = encode_file_header("é.txt", 0)
        assert struct.unpack(">I", header[:4])[0] == len("é.txt".encode("utf-8"))

    def test_full_session_layout(self):
        data = write_session([("a.txt", b"hello world")], handshake=b"\x01\x02")
        assert data == (b"\x00\x00\x00\x02\x01\x02"
                        b"\x00\x00\x00\x01"
                        b"\x00\x00\x00\x05a.txt" + b"\x00" * 7 + b"\x0b"
                        b"hello world")

    def test_oversized_handshake_rejected(self):
        with pytest.raises(ProtocolError):
            encode_handshake_frame(b"x" * (config.MAX_HANDSHAKE_SIZE + 1))


class TestFramingFidelity:
    """Reader returns exactly what the writer wrote"""

    def test_no_files(self):
        handshake, files = read_session(write_session([]))
        assert handshake == b"HS"
        assert files == []

    def test_single_file(self):
        _, files = read_session(write_session([("a.txt", b"hello world")]))
        assert files == [("a.txt", b"hello world")]

    def test_multiple_files_in_order(self):
        sent = [("x.bin", b""), ("y.bin", b"12345"), ("z.bin", bytes(range(256)) * 3)]
        _, files = read_session(write_session(sent))
        assert files == sent

    def test_short_reads_are_reassembled(self):
        sent = [("a.txt", b"hello world"), ("b.txt", b"second file")]
        _, files = read_session(write_session(sent), max_read=1)
        assert files == sent

    def test_non_ascii_name(self):
        _, files = read_session(write_session([("résumé ✓.pdf", b"%PDF")]))
        assert files[0][0] == "résumé ✓.pdf"


class TestTruncation:
    """A stream ending early is an error, never end-of-file"""

    @pytest.mark.parametrize("cut", [0, 2, 5, 9, 14, 20, 27])
    def test_truncated_anywhere(self, cut):
        data = write_session([("a.txt", b"hello world")])
        with pytest.raises(TruncatedStream):
            read_session(data[:cut])

    def test_truncated_payload_reports_counts(self):
        data = write_session([("a.txt", b"hello world")])
        with pytest.raises(TruncatedStream) as exc_info:
            read_session(data[:-3])
        assert exc_info.value.expected == 11
        assert exc_info.value.received == 8

    def test_short_source_on_write(self):
        writer = FrameWriter(BufferStream())
        with pytest.raises(TruncatedStream):
            writer.write_payload(io.BytesIO(b"abc"), 10)

    def test_write_never_reads_past_size(self):
        out = BufferStream()
        FrameWriter(out).write_payload(io.BytesIO(b"abcdef"), 4)
        assert out.getvalue() == b"abcd"


class TestLimits:
    """Oversized or undecodable fields"""

    def test_oversized_handshake_length(self):
        data = pack_u32(config.MAX_HANDSHAKE_SIZE + 1)
        with pytest.raises(ProtocolError):
            FrameReader(BufferStream(data)).read_handshake()

    def test_oversized_name_length(self):
        data = pack_u32(config.MAX_NAME_LENGTH + 1)
        with pytest.raises(ProtocolError):
            FrameReader(BufferStream(data)).read_file_header()

    def test_invalid_utf8_name(self):
        data = pack_u32(2) + b"\xff\xfe" + pack_u64(0)
        with pytest.raises(ProtocolError):
            FrameReader(BufferStream(data)).read_file_header()

    def test_zero_length_handshake_is_readable(self):
        assert FrameReader(BufferStream(pack_u32(0))).read_handshake() == b""


class TestProgress:
    """Progress reporting while streaming payloads"""

    def test_progress_per_chunk(self):
        events = []
        tracker = ProgressTracker(10, lambda done, total: events.append((done, total)))
        FrameWriter(BufferStream(), chunk_size=4).write_payload(io.BytesIO(b"0123456789"), 10, tracker)

        assert events == [(4, 10), (8, 10), (10, 10)]

    def test_progress_accumulates_across_files(self):
        events = []
        tracker = ProgressTracker(7, lambda done, total: events.append(done))
        data = write_session([("a", b"abc"), ("b", b"defg")])

        reader = FrameReader(BufferStream(data), chunk_size=2)
        reader.read_handshake()
        for _ in range(reader.read_file_count()):
            header = reader.read_file_header()
            reader.read_payload(io.BytesIO(), header.size, tracker)

        assert events == sorted(events)
        assert events[-1] == 7


class TestTransferMetadata:
    """Tests for TransferMetadata"""

    def test_for_single_file(self, sample_file):
        metadata = TransferMetadata.for_files(LocalFileAccess(), [sample_file])
        assert metadata.display_name == "a.txt"
        assert metadata.total_size == 11
        assert metadata.count == 1

    def test_for_multiple_files(self, temp_dir):
        (temp_dir / "x.bin").write_bytes(b"")
        (temp_dir / "y.bin").write_bytes(b"12345")
        metadata = TransferMetadata.for_files(LocalFileAccess(), [temp_dir / "x.bin", temp_dir / "y.bin"])

        assert metadata.display_name == "2 files"
        assert metadata.total_size == 5
        assert metadata.files == [FileInfo("x.bin", 0), FileInfo("y.bin", 5)]

    def test_to_dict(self):
        metadata = TransferMetadata("a.txt", 11, files=[FileInfo("a.txt", 11)])
        data = metadata.to_dict()
        assert data["file_count"] == 1
        assert data["files"] == [{"name": "a.txt", "size": 11}]
