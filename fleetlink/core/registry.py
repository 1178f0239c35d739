import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class DeviceEntry:
    device_id: str
    sink: Any                       # anything with send(text)
    device_type: Optional[str] = None
    mode: Optional[str] = None
    is_occupied: Optional[bool] = None
    connected_at: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)


class ConnectionRegistry:
    """Device id -> outbound sink, safe to share between connection threads.

    Every method only touches the mapping under one lock; none of them does
    I/O. Registering an id that is already present replaces its entry (last
    writer wins): a reconnect and a spoofed duplicate are indistinguishable.
    """

    def __init__(self):
        self._store: Dict[str, DeviceEntry] = {}
        self._lock = threading.Lock()

    def register(self, device_id: str, sink) -> DeviceEntry:
        entry = DeviceEntry(device_id=device_id, sink=sink)
        with self._lock:
            self._store[device_id] = entry
        return entry

    def lookup(self, device_id: str):
        with self._lock:
            entry = self._store.get(device_id)
        return entry.sink if entry else None

    def remove(self, device_id: str) -> bool:
        with self._lock:
            return self._store.pop(device_id, None) is not None

    def get(self, device_id: str) -> Optional[DeviceEntry]:
        with self._lock:
            return self._store.get(device_id)

    def update_status(self, device_id: str, device_type: str = None, mode: str = None,
                      is_occupied: bool = None) -> bool:
        """Record the last reported status. Mode is informational only.

        Returns False when the device is not registered."""
        with self._lock:
            entry = self._store.get(device_id)
            if entry is None:
                return False
            if device_type:
                entry.device_type = device_type
            if mode:
                entry.mode = mode
            if is_occupied is not None:
                entry.is_occupied = bool(is_occupied)
            entry.last_seen = time.time()
            return True

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._store.keys())

    def sinks(self) -> Dict[str, Any]:
        with self._lock:
            return {k: v.sink for k, v in self._store.items()}

    def snapshot(self) -> Dict[str, dict]:
        # return JSON-friendly snapshot
        with self._lock:
            return {
                k: {
                    "device_type": v.device_type,
                    "mode": v.mode,
                    "is_occupied": v.is_occupied,
                    "connected_at": v.connected_at,
                    "last_seen": v.last_seen,
                }
                for k, v in self._store.items()
            }

    def __contains__(self, device_id) -> bool:
        with self._lock:
            return device_id in self._store

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
