# fmtbridge/core/guest.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import json
import logging
import threading
from typing import Any, List, Optional

from pydantic import TypeAdapter, ValidationError
from wasmtime import Engine, Trap, WasmtimeError

from .errors import FormatError, GuestError, HostError, LoadError
from .host_functions import create_identity_host_table, create_pool_host_table
from .loader import load_instance
from .plugin_api import (
    PLUGIN_SCHEMA_VERSION,
    ConfigDiagnostic,
    ConfigKeyMap,
    FormatStatus,
    PluginInfo,
    serialize_config_key_map,
)

logger = logging.getLogger("fmtbridge.guest")

_DIAGNOSTICS = TypeAdapter(List[ConfigDiagnostic])


class GuestInstance:
    """Drives one loaded plugin instance through its exported functions.

    An instance serves a single call at a time. Values move through the
    guest's own shared bytes, staged in chunks via its memory buffer.
    """

    def __init__(self, plugin_name: str, loaded: Any):
        self.plugin_name = plugin_name
        self._loaded = loaded
        self._lock = threading.Lock()
        self._buffer_pointer: Optional[int] = None
        self._buffer_size: Optional[int] = None
        self.poisoned = False

    def _call(self, export_name: str, *args) -> Any:
        try:
            fn = self._loaded.export(export_name)
        except KeyError as exc:
            self.poisoned = True
            raise GuestError(f"Plugin '{self.plugin_name}' does not export '{export_name}'") from exc
        try:
            return fn(self._loaded.store, *args)
        except (Trap, WasmtimeError, HostError) as exc:
            self.poisoned = True
            raise GuestError(f"Plugin '{self.plugin_name}' failed in {export_name}: {exc}") from exc

    def _ensure_buffer(self):
        if self._buffer_pointer is None:
            self._buffer_pointer = int(self._call("get_wasm_memory_buffer"))
            self._buffer_size = int(self._call("get_wasm_memory_buffer_size"))
            if self._buffer_size <= 0:
                self.poisoned = True
                raise GuestError(f"Plugin '{self.plugin_name}' reported an empty memory buffer")
        return self._buffer_pointer, self._buffer_size

    def send_bytes(self, data: bytes):
        pointer, size = self._ensure_buffer()
        self._call("clear_shared_bytes", len(data))
        for start in range(0, len(data), size):
            chunk = data[start:start + size]
            self._loaded.memory.write(pointer, chunk)
            self._call("add_to_shared_bytes_from_buffer", len(chunk))

    def receive_bytes(self, length: int) -> bytes:
        pointer, size = self._ensure_buffer()
        out = bytearray()
        offset = 0
        while offset < length:
            chunk_len = min(size, length - offset)
            self._call("set_buffer_with_shared_bytes", offset, chunk_len)
            out.extend(self._loaded.memory.read(pointer, chunk_len))
            offset += chunk_len
        return bytes(out)

    def _receive_text(self, length_export: str) -> str:
        length = int(self._call(length_export))
        data = self.receive_bytes(length)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            self.poisoned = True
            raise GuestError(f"Plugin '{self.plugin_name}' returned invalid UTF-8 from {length_export}") from exc

    def schema_version(self) -> int:
        return int(self._call("get_plugin_schema_version"))

    def plugin_info(self) -> PluginInfo:
        raw = self._receive_text("get_plugin_info")
        try:
            return PluginInfo.model_validate_json(raw)
        except ValidationError as exc:
            self.poisoned = True
            raise GuestError(f"Plugin '{self.plugin_name}' returned invalid plugin info: {exc}") from exc

    def license_text(self) -> str:
        return self._receive_text("get_license_text")

    def set_config(self, global_config: Optional[ConfigKeyMap], plugin_config: Optional[ConfigKeyMap]):
        with self._lock:
            self._call("reset_config")
            self.send_bytes(serialize_config_key_map(global_config))
            self._call("set_global_config")
            self.send_bytes(serialize_config_key_map(plugin_config))
            self._call("set_plugin_config")

    def resolved_config(self) -> dict:
        raw = self._receive_text("get_resolved_config")
        return json.loads(raw) if raw else {}

    def config_diagnostics(self) -> List[ConfigDiagnostic]:
        raw = self._receive_text("get_config_diagnostics")
        if not raw:
            return []
        try:
            return _DIAGNOSTICS.validate_json(raw)
        except ValidationError as exc:
            raise GuestError(f"Plugin '{self.plugin_name}' returned invalid config diagnostics: {exc}") from exc

    def format_text(self, file_path: str, file_text: str, override_config: Optional[ConfigKeyMap] = None) -> Optional[str]:
        """Format ``file_text``; ``None`` means the text is already formatted."""
        if not self._lock.acquire(blocking=False):
            raise GuestError(f"Plugin '{self.plugin_name}' instance is already handling a format call")
        try:
            self.send_bytes(str(file_path).encode("utf-8"))
            self._call("set_file_path")
            if override_config:
                self.send_bytes(serialize_config_key_map(override_config))
                self._call("set_override_config")
            self.send_bytes(file_text.encode("utf-8"))
            raw_status = int(self._call("format"))
            try:
                status = FormatStatus(raw_status)
            except ValueError as exc:
                self.poisoned = True
                raise GuestError(f"Plugin '{self.plugin_name}' returned unknown format status {raw_status}") from exc

            if status == FormatStatus.NO_CHANGE:
                return None
            if status == FormatStatus.CHANGE:
                return self._receive_text("get_formatted_text")
            raise FormatError(self._receive_text("get_error_text"))
        finally:
            self._lock.release()


def create_guest(
    plugin_name: str,
    module_bytes: bytes,
    pool: Any = None,
    engine: Optional[Engine] = None,
) -> GuestInstance:
    """Load a plugin instance; without a pool it gets the identity host table."""
    if pool is None:
        host_table = create_identity_host_table()
    else:
        host_table = create_pool_host_table(plugin_name, pool)
    loaded = load_instance(module_bytes, host_table, engine=engine)
    guest = GuestInstance(plugin_name, loaded)
    try:
        version = guest.schema_version()
    except GuestError as exc:
        raise LoadError(f"Plugin '{plugin_name}' did not report a schema version: {exc}") from exc
    if version != PLUGIN_SCHEMA_VERSION:
        raise LoadError(
            f"Plugin '{plugin_name}' uses schema version {version}, expected {PLUGIN_SCHEMA_VERSION}"
        )
    return guest
