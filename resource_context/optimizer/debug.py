"""
Debug report sink

Collects structured debug entries emitted by the optimizer wrappers. Each
wrapper is handed its own sink at construction time.
"""
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class DebugEntry:
    type: str
    resource_class: str
    resource_id: str
    data: Any
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "resource_class": self.resource_class,
            "resource_id": self.resource_id,
            "timestamp": self.timestamp,
            "data": self.data,
        }


class DebugReport:
    """
    Thread-safe list of debug entries.
    """

    def __init__(self):
        self._entries: List[DebugEntry] = []
        self._lock = threading.Lock()

    def add(self, entry_type: str, serializer, data: Any) -> DebugEntry:
        entry = DebugEntry(
            type=entry_type,
            resource_class=class_path(type(serializer)),
            resource_id=getattr(serializer, "resource_id", "unknown"),
            data=data,
        )
        with self._lock:
            self._entries.append(entry)
        return entry

    @property
    def entries(self) -> List[DebugEntry]:
        with self._lock:
            return list(self._entries)

    def of_type(self, entry_type: str) -> List[DebugEntry]:
        return [entry for entry in self.entries if entry.type == entry_type]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self.entries)


def class_path(klass: type) -> str:
    return f"{klass.__module__}.{klass.__qualname__}"
