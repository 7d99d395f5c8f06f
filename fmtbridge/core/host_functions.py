# fmtbridge/core/host_functions.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import logging
from typing import Any, Callable, List, Optional, Tuple

from wasmtime import FuncType, Linker, ValType

from .dispatch import dispatch_format
from .environment import HostEnvironment
from .errors import InvalidEncodingError, MissingPreconditionError
from .memory import LinearMemory
from .plugin_api import (
    HOST_CLEAR_BYTES,
    HOST_FORMAT,
    HOST_GET_ERROR_TEXT,
    HOST_GET_FORMATTED_TEXT,
    HOST_MODULE,
    HOST_READ_BUFFER,
    HOST_TAKE_FILE_PATH,
    HOST_TAKE_OVERRIDE_CONFIG,
    HOST_WRITE_BUFFER,
    ConfigKeyMap,
    FormatStatus,
    parse_config_key_map,
)

logger = logging.getLogger("fmtbridge.host")

U32_MASK = 0xFFFFFFFF


def _u32(value: int) -> int:
    # wasm i32 arrives signed; the protocol treats every argument as u32.
    return int(value) & U32_MASK


def _signature(params: int, returns_value: bool) -> FuncType:
    return FuncType([ValType.i32()] * params, [ValType.i32()] if returns_value else [])


# name, argument count, returns a value
PRIMITIVES: List[Tuple[str, int, bool]] = [
    (HOST_CLEAR_BYTES, 1, False),
    (HOST_READ_BUFFER, 2, False),
    (HOST_WRITE_BUFFER, 3, False),
    (HOST_TAKE_OVERRIDE_CONFIG, 0, False),
    (HOST_TAKE_FILE_PATH, 0, False),
    (HOST_FORMAT, 0, True),
    (HOST_GET_FORMATTED_TEXT, 0, True),
    (HOST_GET_ERROR_TEXT, 0, True),
]


def _decode_utf8(data: bytes, what: str) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidEncodingError(f"{what} is not valid UTF-8: {exc}") from exc


class _TableBase:
    def host_functions(self) -> List[Tuple[str, FuncType, Callable[..., Any]]]:
        out = []
        for name, params, returns_value in PRIMITIVES:
            fn = getattr(self, name)
            out.append((name, _signature(params, returns_value), self._wrap(fn, returns_value)))
        return out

    @staticmethod
    def _wrap(fn: Callable[..., Any], returns_value: bool) -> Callable[..., Any]:
        def _call(*args):
            result = fn(*(_u32(a) for a in args))
            if returns_value:
                return int(result)
            return None

        _call.__name__ = fn.__name__
        return _call

    def define(self, linker: Linker):
        for name, func_type, fn in self.host_functions():
            linker.define_func(HOST_MODULE, name, func_type, fn)


class IdentityHostFunctionTable(_TableBase):
    """For guests that never format through the pool: everything is a no-op."""

    def host_clear_bytes(self, length: int):
        pass

    def host_read_buffer(self, pointer: int, length: int):
        pass

    def host_write_buffer(self, pointer: int, offset: int, length: int):
        pass

    def host_take_override_config(self):
        pass

    def host_take_file_path(self):
        pass

    def host_format(self) -> int:
        return FormatStatus.NO_CHANGE

    def host_get_formatted_text(self) -> int:
        return 0

    def host_get_error_text(self) -> int:
        return 0

    def bind_memory(self, memory: LinearMemory):
        pass


class HostFunctionTable(_TableBase):
    """Host functions backed by one guest instance's ``HostEnvironment``.

    Every primitive requires the memory to be bound first. Locks are only held
    inside a single slot/buffer operation, never across ``dispatch_format``.
    """

    def __init__(self, env: HostEnvironment):
        self.env = env

    def bind_memory(self, memory: LinearMemory):
        self.env.bind_memory(memory)

    def host_clear_bytes(self, length: int):
        self.env.memory()
        self.env.shared_bytes.clear(length)

    def host_read_buffer(self, pointer: int, length: int):
        data = self.env.memory().read(pointer, length)
        self.env.shared_bytes.extend(data)

    def host_write_buffer(self, pointer: int, offset: int, length: int):
        memory = self.env.memory()
        data = self.env.shared_bytes.read(offset, length)
        memory.write(pointer, data)

    def host_take_override_config(self):
        self.env.memory()
        config = parse_config_key_map(self.env.shared_bytes.drain())
        self.env.override_config.replace(config)

    def host_take_file_path(self):
        self.env.memory()
        file_path = _decode_utf8(self.env.shared_bytes.drain(), "file path")
        self.env.file_path.replace(file_path)

    def host_format(self) -> int:
        env = self.env
        env.memory()
        override_config: ConfigKeyMap = env.override_config.take() or {}
        file_path: Optional[str] = env.file_path.take()
        if file_path is None:
            raise MissingPreconditionError(
                f"Plugin '{env.plugin_name}' called {HOST_FORMAT} without setting a file path first"
            )
        raw_text = env.shared_bytes.drain()
        env.formatted_text.clear()
        env.error_text.clear()

        try:
            file_text = _decode_utf8(raw_text, f"text for {file_path}")
        except InvalidEncodingError as exc:
            env.error_text.replace(str(exc))
            return FormatStatus.ERROR

        outcome = dispatch_format(env, file_path, file_text, override_config)
        if outcome.status == FormatStatus.CHANGE:
            env.formatted_text.replace(outcome.text)
        elif outcome.status == FormatStatus.ERROR:
            env.error_text.replace(outcome.error or "")
        return outcome.status

    def host_get_formatted_text(self) -> int:
        self.env.memory()
        text = self.env.formatted_text.take() or ""
        return self.env.shared_bytes.replace(text.encode("utf-8"))

    def host_get_error_text(self) -> int:
        self.env.memory()
        text = self.env.error_text.take() or ""
        return self.env.shared_bytes.replace(text.encode("utf-8"))


def create_identity_host_table() -> IdentityHostFunctionTable:
    return IdentityHostFunctionTable()


def create_pool_host_table(plugin_name: str, pool: Any) -> HostFunctionTable:
    return HostFunctionTable(HostEnvironment(plugin_name, pool))
