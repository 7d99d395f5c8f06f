# fmtbridge/core/loader.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

from wasmtime import Engine, Instance, Linker, Memory, Module, Store, Trap, WasmtimeError

from .errors import DeserializationError, HostError, InstantiationError
from .memory import LinearMemory
from .plugin_api import PLUGIN_NAME_RE

COMPILED_SUFFIX = ".compiled"
MEMORY_EXPORT = "memory"

logger = logging.getLogger("fmtbridge.loader")

# Deserialized modules are tied to the engine configuration they were compiled with.
_default_engine: Optional[Engine] = None


def default_engine() -> Engine:
    global _default_engine
    if _default_engine is None:
        _default_engine = Engine()
    return _default_engine


@dataclass
class LoadedInstance:
    instance: Instance
    store: Store
    memory: LinearMemory

    def export(self, name: str) -> Any:
        return self.instance.exports(self.store)[name]


def load_instance(module_bytes: bytes, host_table: Any, engine: Optional[Engine] = None) -> LoadedInstance:
    """Deserialize a precompiled module and instantiate it against ``host_table``.

    The instance memory only exists after instantiation, so it is bound into the
    host table as a separate last step, before any guest code can call back in.
    """
    engine = engine or default_engine()
    store = Store(engine)

    try:
        module = Module.deserialize(engine, module_bytes)
    except (WasmtimeError, ValueError, TypeError) as exc:
        raise DeserializationError(f"Error deserializing compiled wasm module: {exc}") from exc

    linker = Linker(engine)
    host_table.define(linker)
    try:
        instance = linker.instantiate(store, module)
    except (Trap, WasmtimeError, HostError) as exc:
        raise InstantiationError(f"Error instantiating module: {exc}") from exc

    try:
        memory = instance.exports(store)[MEMORY_EXPORT]
    except KeyError as exc:
        raise InstantiationError(f"Module does not export '{MEMORY_EXPORT}'") from exc
    if not isinstance(memory, Memory):
        raise InstantiationError(f"Module export '{MEMORY_EXPORT}' is not a memory")

    view = LinearMemory(memory, store)
    host_table.bind_memory(view)
    logger.debug("Instantiated module with %d bytes of linear memory", view.size)
    return LoadedInstance(instance=instance, store=store, memory=view)


def discover_plugins(directory: Path) -> List[Path]:
    """Return compiled plugin files under ``directory`` with valid plugin names."""
    root = Path(directory)
    if not root.exists() or not root.is_dir():
        logger.warning("Plugin directory does not exist: %s", root)
        return []

    found = []
    for entry in sorted(root.iterdir(), key=lambda p: p.name):
        if not entry.is_file() or entry.suffix != COMPILED_SUFFIX:
            continue
        if not PLUGIN_NAME_RE.fullmatch(entry.stem):
            logger.warning("Skipped plugin with invalid name: %s", entry.name)
            continue
        found.append(entry)
    logger.debug("Discovered plugins: %s", [p.name for p in found])
    return found
