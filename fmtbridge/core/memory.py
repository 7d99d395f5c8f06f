# fmtbridge/core/memory.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
from typing import Any

from .errors import OutOfBoundsError


def check_range(start: int, length: int, limit: int, what: str):
    if start < 0 or length < 0 or start + length > limit:
        raise OutOfBoundsError(
            f"{what} range {start}..{start + length} is outside 0..{limit}"
        )


class LinearMemory:
    """Bounds-checked view over a guest's exported linear memory.

    ``memory`` is a ``wasmtime.Memory`` (or anything with the same
    ``data_len``/``read``/``write`` methods) and ``store`` the store that owns it.
    """

    def __init__(self, memory: Any, store: Any):
        self._memory = memory
        self._store = store

    @property
    def size(self) -> int:
        return int(self._memory.data_len(self._store))

    def read(self, pointer: int, length: int) -> bytes:
        check_range(pointer, length, self.size, "guest memory read")
        if length == 0:
            return b""
        return bytes(self._memory.read(self._store, pointer, pointer + length))

    def write(self, pointer: int, data: bytes):
        check_range(pointer, len(data), self.size, "guest memory write")
        if data:
            self._memory.write(self._store, data, pointer)
