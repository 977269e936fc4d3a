"""Admin-side listener that turns completion messages into cache invalidations."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from pydantic import ValidationError

from answerlinks.models import CompletionMessage, SubjectKind
from answerlinks.services.messaging import MessageEvent, WindowChannel
from answerlinks.services.query_cache import QueryCache, answered_key

logger = logging.getLogger("answerlinks.reconciler")


class CacheReconciler:
    """Subscription bound to the subject one admin view is displaying.

    Use it as a context manager so the listener never outlives the view::

        with CacheReconciler(channel, cache, SubjectKind.SURVEY, "S1", origin):
            ...
    """

    def __init__(
        self,
        channel: WindowChannel,
        cache: QueryCache,
        kind: SubjectKind,
        subject_id: str,
        origin: str,
        allowed_sources: Optional[Iterable[str]] = None,
    ):
        self.channel = channel
        self.cache = cache
        self.kind = kind
        self.subject_id = subject_id
        self.origin = origin
        self.allowed_sources = set(allowed_sources) if allowed_sources is not None else None
        self.reconciled_count = 0
        self._seen: Set[str] = set()
        self._handle: Optional[int] = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def __enter__(self) -> "CacheReconciler":
        if self._handle is None:
            self._handle = self.channel.add_listener(self.origin, self.handle_message)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._handle is not None:
            self.channel.remove_listener(self._handle)
            self._handle = None

    def handle_message(self, event: MessageEvent) -> bool:
        if self.allowed_sources is not None and event.origin not in self.allowed_sources:
            logger.warning("Ignored completion message from untrusted origin %s", event.origin)
            return False
        try:
            message = CompletionMessage.model_validate(event.data)
        except ValidationError:
            return False
        if message.type != self.kind.message_type or message.subject_id != self.subject_id:
            return False
        if message.correlation_id:
            if message.correlation_id in self._seen:
                return False
            self._seen.add(message.correlation_id)

        self.cache.invalidate(answered_key(self.kind.path, self.subject_id))
        self.cache.invalidate((self.kind.path, "answer-links", self.subject_id))
        self.reconciled_count += 1
        logger.info(
            "Reconciled %s %s after completion by trainee %s",
            self.kind.path,
            self.subject_id,
            message.trainee_id,
        )
        return True


# (session token, subject path, subject id)
ViewKey = Tuple[str, str, str]


class ReconcilerRegistry:
    """Live reconcilers, one per admin view, kept from page load until the session ends.

    Each view's reconciler listens on that view's own window channel, so
    forwarded messages are deduplicated across requests of the same view.
    """

    def __init__(self):
        self._views: Dict[ViewKey, CacheReconciler] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._views)

    def open(
        self,
        session_token: str,
        kind: SubjectKind,
        subject_id: str,
        factory: Callable[[], CacheReconciler],
    ) -> CacheReconciler:
        """Return the view's reconciler, creating and entering it on first use."""
        key = (session_token, kind.path, subject_id)
        with self._lock:
            reconciler = self._views.get(key)
            if reconciler is None:
                reconciler = self._views[key] = factory().__enter__()
                logger.debug("Opened reconciler for %s %s", kind.path, subject_id)
            return reconciler

    def close_session(self, session_token: Optional[str]) -> int:
        """Dispose of every view reconciler of a session. Returns how many were closed."""
        if not session_token:
            return 0
        return self._close(lambda key: key[0] == session_token)

    def close_inactive(self, is_active: Callable[[str], bool]) -> int:
        return self._close(lambda key: not is_active(key[0]))

    def clear(self) -> None:
        self._close(lambda key: True)

    def _close(self, predicate: Callable[[ViewKey], bool]) -> int:
        with self._lock:
            keys: List[ViewKey] = [key for key in self._views if predicate(key)]
            closing = [self._views.pop(key) for key in keys]
        for reconciler in closing:
            reconciler.__exit__(None, None, None)
        return len(closing)


# Global instance
view_reconcilers = ReconcilerRegistry()
