"""
Global test fixtures for beamlink tests
"""
import pytest
import tempfile
import shutil
from pathlib import Path
from typing import Generator

from beamlink.common.files import LocalFileAccess
from beamlink.common.history import MemoryHistory
from beamlink.common.session import SessionToken, TransferKind


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files"""
    path = Path(tempfile.mkdtemp(prefix="beamlink_test_"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def sample_file(temp_dir: Path) -> Path:
    """The a.txt file from the single-file scenario"""
    file_path = temp_dir / "outbox" / "a.txt"
    file_path.parent.mkdir()
    file_path.write_bytes(b"hello world")
    return file_path


@pytest.fixture
def large_sample_file(temp_dir: Path) -> Path:
    """Create a larger file for chunked transfer testing"""
    file_path = temp_dir / "large_sample.bin"
    # 2MB, not a multiple of the chunk size
    data = b"X" * (2 * 1024 * 1024 + 123)
    file_path.write_bytes(data)
    return file_path


@pytest.fixture
def encryption_key() -> bytes:
    """Sample 32-byte encryption key"""
    return b"0123456789abcdef0123456789abcdef"


@pytest.fixture
def token() -> SessionToken:
    """A fresh Wi-Fi session token"""
    return SessionToken.generate(TransferKind.SINGLE_FILE)


@pytest.fixture
def receive_dir(temp_dir: Path) -> Path:
    return temp_dir / "inbox"


@pytest.fixture
def file_access(receive_dir: Path) -> LocalFileAccess:
    return LocalFileAccess(receive_dir)


@pytest.fixture
def history() -> MemoryHistory:
    return MemoryHistory()
