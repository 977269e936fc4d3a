"""Completion notification run by the answer portal after a confirmed submission."""
from __future__ import annotations

import logging
import uuid
from typing import Optional

from answerlinks.browser_store import CompletionMarkerStore
from answerlinks.models import CompletionMessage, SubjectKind
from answerlinks.services.messaging import MessageTarget

logger = logging.getLogger("answerlinks.notifier")


class CompletionNotifier:
    """Persists the completion marker and tells the opener window, best-effort.

    Nothing raised here ever reaches the trainee: the submission already
    succeeded and the admin side re-fetches from the registry anyway.
    """

    def __init__(
        self,
        markers: CompletionMarkerStore,
        opener: Optional[MessageTarget] = None,
        target_origin: str = "",
    ):
        self.markers = markers
        self.opener = opener
        self.target_origin = target_origin

    def notify(
        self,
        kind: SubjectKind,
        link_id: str,
        subject_id: Optional[str],
        trainee_id: Optional[str],
    ) -> Optional[CompletionMessage]:
        try:
            self.markers.mark_submitted(kind.path, link_id)
        except Exception:  # noqa: BLE001
            logger.warning("Could not persist completion marker for %s", link_id, exc_info=True)

        if self.opener is None or not (subject_id or trainee_id):
            return None
        message = CompletionMessage(
            type=kind.message_type,
            subject_id=subject_id,
            trainee_id=trainee_id,
            correlation_id=uuid.uuid4().hex,
        )
        try:
            self.opener.post_message(message.to_wire(), self.target_origin)
        except Exception:  # noqa: BLE001
            logger.warning("Could not notify opener about %s", link_id, exc_info=True)
            return None
        return message
