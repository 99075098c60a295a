"""
String-keyed publish/subscribe used for orchestrator lifecycle notifications.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

# Event names
CONNECTION_STATE_CHANGE = "connectionStateChange"
PEER_CONNECT = "peerConnect"
PEER_DISCONNECT = "peerDisconnect"
PEER_ANNOUNCE = "peerAnnounce"
SIGNALING = "signaling"


class EventEmitter:
    """
    Deliver values to listeners registered per event name.

    Listeners run in registration order. A listener raising is logged and
    does not stop delivery to the others. Coroutine listeners are scheduled
    on the running loop.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Callable[..., Any]]] = {}
        self._pending: set = set()

    def on(self, event: str, listener: Callable[..., Any]):
        listeners = self._listeners.setdefault(event, [])
        if listener not in listeners:
            listeners.append(listener)

    def off(self, event: str, listener: Callable[..., Any]):
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, data: Any = None):
        # Copy so listeners may unsubscribe while being notified
        for listener in list(self._listeners.get(event, [])):
            try:
                result = listener(data)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_listener_done)
            except Exception as e:
                logger.error(f"Listener for {event} failed: {e}")

    def _on_listener_done(self, task: asyncio.Future):
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Async listener failed: {error}")

    def clear(self):
        self._listeners.clear()
