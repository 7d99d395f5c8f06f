# fmtbridge/core/environment.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import threading
from typing import Any, Generic, Optional, TypeVar

from .errors import UnboundMemoryError
from .memory import LinearMemory, check_range
from .plugin_api import ConfigKeyMap

T = TypeVar("T")


class Slot(Generic[T]):
    """Single value behind its own lock. Only take/replace/peek are exposed."""

    def __init__(self, value: Optional[T] = None):
        self._lock = threading.Lock()
        self._value = value

    def take(self) -> Optional[T]:
        with self._lock:
            value, self._value = self._value, None
            return value

    def replace(self, value: Optional[T]) -> Optional[T]:
        with self._lock:
            previous, self._value = self._value, value
            return previous

    def peek(self) -> Optional[T]:
        with self._lock:
            return self._value

    def clear(self):
        self.replace(None)


class TransferBuffer:
    """Staging area for the one value currently crossing the boundary."""

    def __init__(self):
        self._lock = threading.Lock()
        self._data = bytearray()
        self.capacity = 0

    def __len__(self):
        with self._lock:
            return len(self._data)

    def clear(self, capacity: int = 0):
        with self._lock:
            self._data = bytearray()
            self.capacity = max(0, int(capacity))

    def extend(self, data: bytes):
        with self._lock:
            self._data.extend(data)

    def read(self, offset: int, length: int) -> bytes:
        with self._lock:
            check_range(offset, length, len(self._data), "shared buffer")
            return bytes(self._data[offset:offset + length])

    def drain(self) -> bytes:
        with self._lock:
            data, self._data = bytes(self._data), bytearray()
            self.capacity = 0
            return data

    def replace(self, data: bytes) -> int:
        with self._lock:
            self._data = bytearray(data)
            self.capacity = len(self._data)
            return len(self._data)

    def snapshot(self) -> bytes:
        with self._lock:
            return bytes(self._data)


class HostEnvironment:
    """Mutable state behind one guest instance's host functions."""

    def __init__(self, plugin_name: str, pool: Any = None):
        self.plugin_name = plugin_name
        self.pool = pool
        self._memory: Slot[LinearMemory] = Slot()
        self.override_config: Slot[ConfigKeyMap] = Slot()
        self.file_path: Slot[str] = Slot()
        self.formatted_text: Slot[str] = Slot()
        self.error_text: Slot[str] = Slot()
        self.shared_bytes = TransferBuffer()

    def bind_memory(self, memory: LinearMemory):
        self._memory.replace(memory)

    @property
    def is_bound(self) -> bool:
        return self._memory.peek() is not None

    def memory(self) -> LinearMemory:
        memory = self._memory.peek()
        if memory is None:
            raise UnboundMemoryError(
                f"host function called for plugin '{self.plugin_name}' before its memory was bound"
            )
        return memory
