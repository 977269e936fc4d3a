"""Best-effort cross-window messaging between the answer portal and the admin view.

``WindowChannel`` models ``window.postMessage``: a message is delivered only
to listeners whose window origin equals the target origin, carries the
sender's origin, and is never acknowledged. Wildcard targets are refused.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger("answerlinks.messaging")


@dataclass(frozen=True)
class MessageEvent:
    data: Any
    origin: str


Listener = Callable[[MessageEvent], Any]


class MessageTarget(Protocol):
    def post_message(self, data: Dict[str, Any], target_origin: str) -> None:
        ...


class WindowChannel:
    """In-process registry of message listeners, one list per window origin."""

    def __init__(self):
        self._listeners: Dict[int, Tuple[str, Listener]] = {}
        self._next_handle = 0
        self._lock = threading.Lock()

    def add_listener(self, origin: str, listener: Listener) -> int:
        with self._lock:
            self._next_handle += 1
            self._listeners[self._next_handle] = (origin, listener)
            return self._next_handle

    def remove_listener(self, handle: int) -> None:
        with self._lock:
            self._listeners.pop(handle, None)

    def listener_count(self, origin: Optional[str] = None) -> int:
        with self._lock:
            return sum(1 for own, _ in self._listeners.values() if origin is None or own == origin)

    def deliver(self, data: Dict[str, Any], target_origin: str, source_origin: str) -> int:
        """Deliver ``data`` to the listeners of ``target_origin``. Returns how many ran."""
        if not target_origin or target_origin == "*":
            logger.warning("Dropped message with wildcard target origin from %s", source_origin)
            return 0
        with self._lock:
            listeners = [listener for own, listener in self._listeners.values() if own == target_origin]
        event = MessageEvent(data=dict(data), origin=source_origin)
        delivered = 0
        for listener in listeners:
            try:
                listener(event)
                delivered += 1
            except Exception:  # noqa: BLE001 - one failing listener must not stop the rest
                logger.exception("Message listener failed for %s", target_origin)
        return delivered


class ChannelOpener:
    """Opener window reachable through an in-process channel."""

    def __init__(self, channel: WindowChannel, source_origin: str):
        self.channel = channel
        self.source_origin = source_origin

    def post_message(self, data: Dict[str, Any], target_origin: str) -> None:
        self.channel.deliver(data, target_origin, self.source_origin)


@dataclass
class ScriptOpener:
    """Opener of a rendered page: messages are queued and emitted as page script."""

    outbox: List[Tuple[Dict[str, Any], str]] = field(default_factory=list)

    def post_message(self, data: Dict[str, Any], target_origin: str) -> None:
        if not target_origin or target_origin == "*":
            raise ValueError("A concrete target origin is required")
        self.outbox.append((dict(data), target_origin))

