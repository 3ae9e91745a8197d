"""
Observer registration shared by the vault, the approval simulator, the tracker
and the wallet-adapter service.

Handlers may be plain callables or coroutine functions. Coroutine handlers are
scheduled on the running loop and never awaited by the emitter, so an emitting
operation does not depend on any listener being present or well behaved.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

EventHandler = Callable[..., Any]


class EventEmitter:
    """Minimal named-event observer; subclass and call ``emit`` where state changes."""

    def __init__(self) -> None:
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    def on(self, event: str, handler: EventHandler) -> EventHandler:
        self._handlers[event].append(handler)
        return handler

    def once(self, event: str, handler: EventHandler) -> EventHandler:
        def _wrapper(*args: Any, **kwargs: Any) -> Any:
            self.off(event, _wrapper)
            return handler(*args, **kwargs)

        return self.on(event, _wrapper)

    def off(self, event: str, handler: EventHandler) -> bool:
        handlers = self._handlers.get(event)
        if not handlers or handler not in handlers:
            return False
        handlers.remove(handler)
        return True

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, ()))

    def remove_all_listeners(self, event: str | None = None) -> None:
        if event is None:
            self._handlers.clear()
        else:
            self._handlers.pop(event, None)

    def emit(self, event: str, *args: Any) -> bool:
        """
        Notify every handler registered for ``event``.

        Returns:
            True if at least one handler was registered.
        """
        handlers = list(self._handlers.get(event, ()))
        for handler in handlers:
            try:
                result = handler(*args)
            except Exception:
                logger.exception("Listener for '%s' raised", event)
                continue
            if inspect.isawaitable(result):
                self._schedule(event, result)
        return bool(handlers)

    def _schedule(self, event: str, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; dropping async listener for '%s'", event)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(awaitable)
        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error("Async listener for '%s' failed", event, exc_info=t.exception())

        task.add_done_callback(_done)
