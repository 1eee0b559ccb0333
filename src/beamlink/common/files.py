"""
File access used by transfer sessions.

Sessions never touch the filesystem directly: senders resolve names and
sizes and open sources through a FileAccess, receivers open destination
sinks through it. Handles are opaque to the session.
"""
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, BinaryIO, Optional

from beamlink import config
from beamlink.common.errors import ProtocolError

logger = logging.getLogger(__name__)


class FileAccess(ABC):
    """Abstract file access collaborator"""

    @abstractmethod
    def resolve_name(self, handle: Any) -> str:
        """Display name of the file behind handle"""

    @abstractmethod
    def resolve_size(self, handle: Any) -> int:
        """Size in bytes of the file behind handle"""

    @abstractmethod
    def open_for_read(self, handle: Any) -> BinaryIO:
        """Open a binary source for the file behind handle"""

    @abstractmethod
    def open_for_write(self, path: Path) -> BinaryIO:
        """Create or truncate a file and open it for binary writing"""

    @abstractmethod
    def receive_directory(self) -> Path:
        """Directory where received files are written"""


def safe_file_name(name: str) -> str:
    """
    Reduce a peer-supplied name to a bare file name.

    Directory components are dropped so a received file can only land in
    the receive directory.

    Raises:
        ProtocolError: If nothing usable is left
    """
    candidate = name.replace('\\', '/').split('/')[-1].strip()
    if candidate in ('', '.', '..') or '\x00' in candidate:
        raise ProtocolError(f"Unusable file name from peer: {name!r}")
    return candidate


class LocalFileAccess(FileAccess):
    """FileAccess over local paths (handles are str or Path)"""

    def __init__(self, receive_dir: Optional[Path] = None):
        self._receive_dir = Path(receive_dir) if receive_dir else config.get_receive_dir()

    def resolve_name(self, handle) -> str:
        return Path(handle).name

    def resolve_size(self, handle) -> int:
        return Path(handle).stat().st_size

    def open_for_read(self, handle) -> BinaryIO:
        return open(Path(handle), 'rb')

    def open_for_write(self, path: Path) -> BinaryIO:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return open(path, 'wb')

    def receive_directory(self) -> Path:
        self._receive_dir.mkdir(parents=True, exist_ok=True)
        return self._receive_dir
