"""
Transfer history

Sessions append one TransferRecord per completed transfer to a HistorySink
they are given. The protocol layer never reads history back; the CLI does.
"""
import json
import time
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


class Direction(Enum):
    SEND = "send"
    RECEIVE = "receive"


@dataclass
class TransferRecord:
    """One completed transfer, as seen from this device"""
    name: str
    size: int
    timestamp: int  # epoch milliseconds
    direction: Direction

    @classmethod
    def now(cls, name: str, size: int, direction: Direction) -> 'TransferRecord':
        return cls(name=name, size=size, timestamp=int(time.time() * 1000), direction=direction)

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'size': self.size,
            'timestamp': self.timestamp,
            'direction': self.direction.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'TransferRecord':
        return cls(
            name=data['name'],
            size=data['size'],
            timestamp=data['timestamp'],
            direction=Direction(data['direction'])
        )


class HistorySink(ABC):
    """Append-only consumer of transfer records"""

    @abstractmethod
    def append(self, record: TransferRecord) -> None:
        pass


class MemoryHistory(HistorySink):
    """Keeps records in memory"""

    def __init__(self):
        self._records: List[TransferRecord] = []
        self._lock = threading.Lock()

    def append(self, record: TransferRecord) -> None:
        with self._lock:
            self._records.append(record)

    @property
    def records(self) -> List[TransferRecord]:
        with self._lock:
            return list(self._records)


class JsonlHistory(HistorySink):
    """Appends records as JSON lines to a file"""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, record: TransferRecord) -> None:
        line = json.dumps(record.to_dict())
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'a', encoding='utf-8') as f:
                f.write(line + '\n')
        logger.debug(f"History: {record.direction.value} {record.name} ({record.size} bytes)")

    def entries(self, limit: Optional[int] = None) -> List[TransferRecord]:
        """Read records back, newest last. Unreadable lines are skipped."""
        if not self.path.exists():
            return []

        records = []
        with open(self.path, 'r', encoding='utf-8') as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(TransferRecord.from_dict(json.loads(line)))
                except (ValueError, KeyError) as e:
                    logger.warning(f"Skipping history line {line_no}: {e}")

        if limit is not None:
            records = records[-limit:] if limit > 0 else []
        return records
