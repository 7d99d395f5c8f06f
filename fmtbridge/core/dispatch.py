# fmtbridge/core/dispatch.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import List, Optional

from .errors import FormatError
from .plugin_api import ConfigKeyMap, FormatStatus

logger = logging.getLogger("fmtbridge.dispatch")

DEFAULT_MAX_NESTING_DEPTH = 8


@dataclass
class FormatOutcome:
    status: FormatStatus
    text: Optional[str] = None
    error: Optional[str] = None


class CallChain:
    """Plugins active in the current thread's nested format calls, outermost first.

    Host functions run on the thread that called into the guest, so a nested
    format request always lands on the same thread as its parent.
    """

    def __init__(self, max_depth: int = DEFAULT_MAX_NESTING_DEPTH):
        self.max_depth = max(1, int(max_depth))
        self._local = threading.local()

    def _stack(self) -> List[str]:
        stack = getattr(self._local, "stack", None)
        if stack is None:
            stack = []
            self._local.stack = stack
        return stack

    def active(self) -> List[str]:
        return list(self._stack())

    def depth(self) -> int:
        return len(self._stack())

    def __contains__(self, plugin_name: str) -> bool:
        return plugin_name in self._stack()

    @contextmanager
    def enter(self, plugin_name: str):
        stack = self._stack()
        if len(stack) >= self.max_depth:
            chain = " -> ".join(stack + [plugin_name])
            raise FormatError(f"Maximum plugin nesting depth ({self.max_depth}) exceeded: {chain}")
        stack.append(plugin_name)
        try:
            yield
        finally:
            stack.pop()


def dispatch_format(env, file_path: str, file_text: str, override_config: ConfigKeyMap) -> FormatOutcome:
    """Re-enter the plugin pool on behalf of the guest that owns ``env``.

    Must be called without holding any of the environment's locks: the pool may
    drive another guest instance on this same thread before returning.
    """
    pool = env.pool
    if pool is None:
        return FormatOutcome(FormatStatus.ERROR, error=f"Plugin '{env.plugin_name}' has no plugin pool to format with")

    logger.debug("Plugin %s requested formatting of %s", env.plugin_name, file_path)
    try:
        result = pool.format_with_plugin_pool(env.plugin_name, file_path, file_text, override_config)
    except Exception as exc:
        logger.warning("Nested formatting of %s for plugin %s failed: %s", file_path, env.plugin_name, exc)
        return FormatOutcome(FormatStatus.ERROR, error=str(exc))

    if result is None:
        return FormatOutcome(FormatStatus.NO_CHANGE)
    return FormatOutcome(FormatStatus.CHANGE, text=result)
