# fmtbridge/core/pool.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import asyncio
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Any, Dict, List, Optional

from wasmtime import Engine

from .dispatch import DEFAULT_MAX_NESTING_DEPTH, CallChain
from .errors import FormatError, GuestError, HostError, PluginUnavailableError
from .guest import GuestInstance, create_guest
from .loader import discover_plugins
from .plugin_api import PLUGIN_NAME_RE, ConfigKeyMap, PluginInfo

logger = logging.getLogger("fmtbridge.pool")

PLUGIN_STATE_LOADED = "loaded"
PLUGIN_STATE_DEGRADED = "degraded"
PLUGIN_STATE_DISABLED = "disabled"


@dataclass
class PluginRecord:
    name: str
    module_bytes: bytes = b""
    info: Optional[PluginInfo] = None
    status: str = PLUGIN_STATE_LOADED
    message: str = ""
    error: str = ""
    updated_at: float = field(default_factory=time.time)
    idle: List[GuestInstance] = field(default_factory=list)
    in_use: int = 0
    instances_created: int = 0
    consecutive_crashes: int = 0

    @property
    def total_instances(self) -> int:
        return len(self.idle) + self.in_use

    def as_public(self):
        info = self.info
        return {
            "name": self.name,
            "plugin_name": info.name if info else "",
            "version": info.version if info else "",
            "config_key": info.config_key if info else "",
            "file_extensions": list(info.file_extensions) if info else [],
            "file_names": list(info.file_names) if info else [],
            "status": self.status,
            "message": self.message,
            "error": self.error,
            "updated_at": self.updated_at,
            "idle_instances": len(self.idle),
            "busy_instances": self.in_use,
            "instances_created": self.instances_created,
            "consecutive_crashes": self.consecutive_crashes,
        }


class PluginPool:
    """Loads compiled plugins and lends out their instances for formatting.

    An instance is lent to one caller at a time and only returned to the idle
    list once that caller is done, so a nested format request can never be
    handed an instance that is busy further up the same call stack.
    """

    def __init__(self, config: Optional[dict] = None, engine: Optional[Engine] = None):
        self.config = config or {}
        self.engine = engine
        self.max_instances = max(1, int(self.config.get("max_instances_per_plugin", 4)))
        self.borrow_timeout_sec = max(0.0, float(self.config.get("borrow_timeout_sec", 10.0)))
        self.format_timeout_sec = max(0.1, float(self.config.get("format_timeout_sec", 30.0)))
        self.max_crashes = max(1, int(self.config.get("max_crashes", 3)))
        self.global_config: ConfigKeyMap = dict(self.config.get("global_config") or {})
        self.plugin_configs: Dict[str, ConfigKeyMap] = dict(self.config.get("plugin_configs") or {})
        self.call_chain = CallChain(int(self.config.get("max_nesting_depth", DEFAULT_MAX_NESTING_DEPTH)))

        self._cv = threading.Condition()
        self._plugins: Dict[str, PluginRecord] = {}

    def list_plugins(self) -> List[dict]:
        with self._cv:
            items = [rec.as_public() for rec in self._plugins.values()]
        return sorted(items, key=lambda x: x.get("name", ""))

    def get_record(self, name: str) -> Optional[PluginRecord]:
        with self._cv:
            return self._plugins.get(name)

    def load_directory(self, directory: Path) -> List[dict]:
        for path in discover_plugins(directory):
            try:
                module_bytes = path.read_bytes()
            except OSError as exc:
                logger.error("Failed to read plugin %s: %s", path, exc)
                continue
            self.register(path.stem, module_bytes)
        return self.list_plugins()

    def register(self, name: str, module_bytes: bytes) -> PluginRecord:
        """Load one plugin. A failure degrades that plugin only."""
        if not PLUGIN_NAME_RE.fullmatch(name):
            raise ValueError(f"Invalid plugin name: {name}")

        rec = PluginRecord(name=name, module_bytes=bytes(module_bytes))
        try:
            guest = self._create_instance(rec)
            rec.info = guest.plugin_info()
            self._configure(rec, guest)
            rec.idle.append(guest)
            rec.status = PLUGIN_STATE_LOADED
            rec.message = "loaded"
            logger.info("Plugin loaded: %s (%s %s)", name, rec.info.name, rec.info.version)
        except Exception as exc:
            rec.status = PLUGIN_STATE_DEGRADED
            rec.error = str(exc)
            rec.message = "load failed"
            logger.exception("Plugin %s failed to load", name)
        rec.updated_at = time.time()

        with self._cv:
            old = self._plugins.get(name)
            self._plugins[name] = rec
            self._cv.notify_all()
        if old is not None:
            logger.info("Replaced previously registered plugin %s", name)
        return rec

    def _create_instance(self, rec: PluginRecord) -> GuestInstance:
        guest = create_guest(rec.name, rec.module_bytes, pool=self, engine=self.engine)
        rec.instances_created += 1
        return guest

    def _configure(self, rec: PluginRecord, guest: GuestInstance):
        plugin_config = self.plugin_configs.get(rec.info.config_key) if rec.info else None
        guest.set_config(self.global_config, plugin_config or {})
        diagnostics = guest.config_diagnostics()
        if diagnostics:
            details = "; ".join(str(d) for d in diagnostics)
            raise FormatError(f"Plugin '{rec.name}' has configuration errors: {details}")

    def resolve(self, file_path: str) -> Optional[PluginRecord]:
        path = PurePath(str(file_path))
        with self._cv:
            for rec in sorted(self._plugins.values(), key=lambda r: r.name):
                if rec.info is None or rec.status == PLUGIN_STATE_DEGRADED:
                    continue
                if rec.info.matches(path.name, path.suffix):
                    return rec
        return None

    @contextmanager
    def borrow(self, rec: PluginRecord):
        guest = self._acquire(rec)
        try:
            yield guest
        finally:
            self._release(rec, guest)

    def _acquire(self, rec: PluginRecord) -> GuestInstance:
        deadline = time.monotonic() + self.borrow_timeout_sec
        with self._cv:
            while True:
                if rec.status == PLUGIN_STATE_DISABLED:
                    raise PluginUnavailableError(f"Plugin '{rec.name}' is disabled: {rec.error}")
                if rec.idle:
                    guest = rec.idle.pop()
                    rec.in_use += 1
                    return guest
                if rec.total_instances < self.max_instances:
                    rec.in_use += 1
                    break
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise PluginUnavailableError(
                        f"No instance of plugin '{rec.name}' became available within {self.borrow_timeout_sec:.1f}s "
                        f"(busy={rec.in_use} max={self.max_instances})"
                    )
                self._cv.wait(timeout=min(0.25, remaining))

        # Instantiation happens outside the pool lock; the slot is already reserved.
        try:
            guest = self._create_instance(rec)
            self._configure(rec, guest)
            return guest
        except Exception as exc:
            with self._cv:
                rec.in_use -= 1
                self._cv.notify_all()
            if isinstance(exc, HostError):
                raise PluginUnavailableError(f"Could not create instance of plugin '{rec.name}': {exc}") from exc
            raise

    def _release(self, rec: PluginRecord, guest: GuestInstance):
        with self._cv:
            rec.in_use -= 1
            if guest.poisoned:
                logger.warning("Discarding poisoned instance of plugin %s", rec.name)
            else:
                rec.idle.append(guest)
            self._cv.notify_all()

    def _mark_crashed(self, rec: PluginRecord, reason: str):
        with self._cv:
            rec.consecutive_crashes += 1
            rec.message = "instance crashed"
            rec.error = reason
            rec.updated_at = time.time()
            logger.error("Plugin crashed: %s (%s), consecutive=%d", rec.name, reason, rec.consecutive_crashes)
            if rec.consecutive_crashes >= self.max_crashes:
                rec.status = PLUGIN_STATE_DISABLED
                rec.message = "disabled after repeated crashes"
                logger.error("Plugin disabled after %d crashes: %s", rec.consecutive_crashes, rec.name)
            self._cv.notify_all()

    def _format_with(self, rec: PluginRecord, file_path: str, file_text: str, override_config: Optional[ConfigKeyMap]) -> Optional[str]:
        with self.call_chain.enter(rec.name):
            with self.borrow(rec) as guest:
                try:
                    result = guest.format_text(file_path, file_text, override_config)
                except GuestError as exc:
                    self._mark_crashed(rec, str(exc))
                    raise FormatError(str(exc)) from exc
        if rec.consecutive_crashes:
            with self._cv:
                rec.consecutive_crashes = 0
        return result

    def format_with_plugin_pool(
        self,
        caller_plugin_name: str,
        file_path: str,
        file_text: str,
        override_config: ConfigKeyMap,
    ) -> Optional[str]:
        rec = self.resolve(file_path)
        if rec is None:
            logger.debug("No plugin handles %s (requested by %s)", file_path, caller_plugin_name)
            return None
        if rec.name == caller_plugin_name:
            logger.debug("Plugin %s asked to format %s with itself; leaving it unchanged", caller_plugin_name, file_path)
            return None
        logger.debug(
            "Plugin %s delegates %s to %s (chain: %s)",
            caller_plugin_name,
            file_path,
            rec.name,
            self.call_chain.active(),
        )
        return self._format_with(rec, file_path, file_text, override_config)

    def format_text(self, file_path: str, file_text: str, override_config: Optional[ConfigKeyMap] = None) -> Optional[str]:
        """Format a file with whichever plugin handles its path; ``None`` means unchanged."""
        rec = self.resolve(file_path)
        if rec is None:
            raise FormatError(f"No plugin found to format {file_path}")
        return self._format_with(rec, file_path, file_text, override_config)

    async def format_text_async(
        self,
        file_path: str,
        file_text: str,
        override_config: Optional[ConfigKeyMap] = None,
        timeout: Optional[float] = None,
    ) -> Optional[str]:
        limit = self.format_timeout_sec if timeout is None else max(0.1, float(timeout))
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.format_text, file_path, file_text, override_config),
                timeout=limit,
            )
        except asyncio.TimeoutError:
            # The worker thread keeps running; its instance returns to the pool when the guest finishes.
            raise FormatError(f"Formatting {file_path} timed out after {limit:.1f}s")

    def shutdown(self):
        with self._cv:
            for rec in self._plugins.values():
                rec.idle.clear()
            self._plugins = {}
            self._cv.notify_all()
        logger.info("Plugin pool shut down")
