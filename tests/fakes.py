import json
from typing import Callable, Optional

from fmtbridge.core.environment import HostEnvironment
from fmtbridge.core.host_functions import HostFunctionTable
from fmtbridge.core.memory import LinearMemory


class FakeWasmMemory:
    """Stands in for wasmtime.Memory: same data_len/read/write signatures."""

    def __init__(self, size: int = 4096):
        self.data = bytearray(size)
        self.writes = 0

    def data_len(self, store):
        return len(self.data)

    def read(self, store, start, stop):
        return bytearray(self.data[start:stop])

    def write(self, store, value, start):
        self.writes += 1
        self.data[start:start + len(value)] = value
        return len(value)


class RecordingPool:
    """Pool collaborator returning a canned result (or raising) and recording calls."""

    def __init__(self, result: Optional[str] = None, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls = []

    def format_with_plugin_pool(self, caller_plugin_name, file_path, file_text, override_config):
        self.calls.append((caller_plugin_name, file_path, file_text, dict(override_config)))
        if self.error is not None:
            raise self.error
        return self.result


def bound_table(plugin_name="outer", pool=None, size=4096):
    backing = FakeWasmMemory(size)
    table = HostFunctionTable(HostEnvironment(plugin_name, pool))
    table.bind_memory(LinearMemory(backing, None))
    return table, backing


def stage(table, backing, data: bytes, pointer: int = 0, chunk: Optional[int] = None):
    """Do what a guest does to hand ``data`` to the host: copy in, declare, read in chunks."""
    backing.data[pointer:pointer + len(data)] = data
    table.host_clear_bytes(len(data))
    step = chunk or max(1, len(data))
    for start in range(0, len(data), step):
        length = min(step, len(data) - start)
        table.host_read_buffer(pointer + start, length)


def unstage(table, backing, length: int, pointer: int = 2048) -> bytes:
    table.host_write_buffer(pointer, 0, length)
    return bytes(backing.data[pointer:pointer + length])


def plugin_info(name: str, extensions, config_key: Optional[str] = None) -> dict:
    return {
        "name": name,
        "version": "1.0.0",
        "configKey": config_key or name,
        "fileExtensions": list(extensions),
        "fileNames": [],
        "helpUrl": f"https://example.com/{name}",
        "configSchemaUrl": "",
    }


class ScriptedGuest:
    """Python rendition of a compiled plugin's exports, driven by GuestInstance.

    ``formatter(guest, file_path, text, override_config)`` returns the new text,
    ``None`` for no change, or raises ``ValueError`` to report a formatting error.
    A tiny memory buffer forces values to be chunked.
    """

    BUFFER_POINTER = 512
    BUFFER_SIZE = 8

    def __init__(self, info: dict, formatter: Callable, plugin_name: str = "guest", pool=None, diagnostics=None):
        self.info = info
        self.formatter = formatter
        self.backing = FakeWasmMemory()
        self.memory = LinearMemory(self.backing, None)
        self.store = None
        self.shared = bytearray()
        self.file_path = None
        self.override_config = {}
        self.global_config = None
        self.plugin_config = None
        self.diagnostics = diagnostics or []
        self.formatted = ""
        self.error = ""
        self.format_calls = 0
        self.host = HostFunctionTable(HostEnvironment(plugin_name, pool))
        self.host.bind_memory(self.memory)

    def export(self, name):
        fn = getattr(self, f"x_{name}", None)
        if fn is None:
            raise KeyError(name)
        return fn

    def _take_shared(self) -> bytes:
        data, self.shared = bytes(self.shared), bytearray()
        return data

    def _set_shared(self, data: bytes) -> int:
        self.shared = bytearray(data)
        return len(data)

    def x_get_plugin_schema_version(self, store):
        return 3

    def x_get_wasm_memory_buffer(self, store):
        return self.BUFFER_POINTER

    def x_get_wasm_memory_buffer_size(self, store):
        return self.BUFFER_SIZE

    def x_clear_shared_bytes(self, store, size):
        self.shared = bytearray()

    def x_add_to_shared_bytes_from_buffer(self, store, length):
        self.shared.extend(self.memory.read(self.BUFFER_POINTER, length))

    def x_set_buffer_with_shared_bytes(self, store, offset, length):
        self.memory.write(self.BUFFER_POINTER, bytes(self.shared[offset:offset + length]))

    def x_get_plugin_info(self, store):
        return self._set_shared(json.dumps(self.info).encode("utf-8"))

    def x_get_license_text(self, store):
        return self._set_shared(b"MIT")

    def x_reset_config(self, store):
        self.global_config = None
        self.plugin_config = None

    def x_set_global_config(self, store):
        self.global_config = json.loads(self._take_shared())

    def x_set_plugin_config(self, store):
        self.plugin_config = json.loads(self._take_shared())

    def x_get_resolved_config(self, store):
        resolved = dict(self.global_config or {})
        resolved.update(self.plugin_config or {})
        return self._set_shared(json.dumps(resolved).encode("utf-8"))

    def x_get_config_diagnostics(self, store):
        return self._set_shared(json.dumps(self.diagnostics).encode("utf-8"))

    def x_set_file_path(self, store):
        self.file_path = self._take_shared().decode("utf-8")

    def x_set_override_config(self, store):
        self.override_config = json.loads(self._take_shared())

    def x_format(self, store):
        self.format_calls += 1
        text = self._take_shared().decode("utf-8")
        override, self.override_config = self.override_config, {}
        try:
            result = self.formatter(self, self.file_path, text, override)
        except ValueError as exc:
            self.error = str(exc)
            return 2
        if result is None:
            return 0
        self.formatted = result
        return 1

    def x_get_formatted_text(self, store):
        text, self.formatted = self.formatted, ""
        return self._set_shared(text.encode("utf-8"))

    def x_get_error_text(self, store):
        text, self.error = self.error, ""
        return self._set_shared(text.encode("utf-8"))

    def request_host_format(self, file_path: str, text: str, override_config=None):
        """Ask the host to format embedded text, the way a compiled plugin would."""
        scratch = 1024
        for payload, take in (
            (json.dumps(override_config).encode("utf-8") if override_config else None, self.host.host_take_override_config),
            (file_path.encode("utf-8"), self.host.host_take_file_path),
        ):
            if payload is None:
                continue
            stage(self.host, self.backing, payload, pointer=scratch, chunk=self.BUFFER_SIZE)
            take()
        stage(self.host, self.backing, text.encode("utf-8"), pointer=scratch, chunk=self.BUFFER_SIZE)
        status = self.host.host_format()
        if status == 0:
            return 0, None
        getter = self.host.host_get_formatted_text if status == 1 else self.host.host_get_error_text
        length = getter()
        return status, unstage(self.host, self.backing, length, pointer=scratch).decode("utf-8")
