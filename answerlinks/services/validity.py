"""Derive answered trainees and per-trainee portal links from a link list."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

from answerlinks.models import AnswerLink, LinkState, LinkStatus, SubjectKind, Variant


class ViewMode(str, Enum):
    ALL = "all"
    ANSWERED = "answered"


@dataclass
class TraineeLinkMeta:
    portal_url: str
    link_id: str
    expiry_date: Optional[datetime]
    valid: bool
    variant: Optional[Variant]
    state: LinkState
    cohort_id: Optional[str] = None
    trainee_name: Optional[str] = None


def build_portal_url(portal_base: str, relative_path: str) -> str:
    """Join the configured portal base with the registry's relative path."""
    if not relative_path.startswith("/"):
        relative_path = "/" + relative_path
    return portal_base.rstrip("/") + relative_path


def build_answers_url(kind: SubjectKind, subject_id: str, trainee_id: str) -> str:
    """Staff-only page showing what one trainee submitted."""
    return f"/admin/{kind.path}/{subject_id}/answers/{trainee_id}"


class ValidityInterpreter:
    """Interprets a fetched link list for the variant currently shown.

    The registry has no explicit "answered" flag: ``valid=false`` covers both
    "expired, never answered" and "answered". Where an explicit answered list
    exists (plain surveys) it is authoritative and the heuristic only fills in
    what it cannot contradict.
    """

    def __init__(
        self,
        links: Iterable[AnswerLink],
        portal_base: str,
        variant: Optional[Variant] = None,
        explicit_answered: Optional[Set[str]] = None,
        now: Optional[datetime] = None,
    ):
        self.links = list(links)
        self.portal_base = portal_base
        self.variant = variant
        self.explicit_answered = set(explicit_answered) if explicit_answered is not None else None
        self.now = now

    def _matches_variant(self, link: AnswerLink) -> bool:
        return link.variant == self.variant

    def _shown_links(self) -> List[AnswerLink]:
        return [
            link
            for link in self.links
            if link.trainee_id is not None and self._matches_variant(link)
        ]

    @property
    def answered_set(self) -> Set[str]:
        """Trainees whose link for the selected variant is effectively answered."""
        return {
            link.trainee_id
            for link in self._shown_links()
            if link.state(self.now).is_effectively_answered
        }

    @property
    def link_by_trainee(self) -> Dict[str, TraineeLinkMeta]:
        meta: Dict[str, TraineeLinkMeta] = {}
        for link in self._shown_links():
            if not link.relative_path:
                continue
            meta[link.trainee_id] = TraineeLinkMeta(
                portal_url=build_portal_url(self.portal_base, link.relative_path),
                link_id=link.id,
                expiry_date=link.expiry_date,
                valid=link.valid,
                variant=link.variant,
                state=link.state(self.now),
                cohort_id=link.cohort_id,
                trainee_name=link.trainee_name,
            )
        return meta

    def reconciled_answered(self) -> Set[str]:
        """Answered trainees, preferring the explicit registry list when there is one."""
        heuristic = self.answered_set
        if self.explicit_answered is None:
            return heuristic
        confirmed = set(self.explicit_answered)
        for link in self._shown_links():
            if link.trainee_id in heuristic and link.trainee_id not in confirmed:
                # Only a link invalidated before expiry is proof of an answer.
                if link.state(self.now).status is LinkStatus.CONSUMED:
                    confirmed.add(link.trainee_id)
        return confirmed

    def is_consumed(self, link: AnswerLink) -> bool:
        """True when ``link`` was used for a submission, not merely left to expire."""
        state = link.state(self.now)
        if state.status is LinkStatus.CONSUMED:
            return True
        if state.status is LinkStatus.INACTIVE and self.explicit_answered is not None:
            return link.trainee_id in self.explicit_answered
        return False

    def filter_trainees(self, trainee_ids: Iterable[str], mode: ViewMode) -> List[str]:
        trainee_ids = list(trainee_ids)
        if mode is ViewMode.ANSWERED:
            answered = self.reconciled_answered()
            return [trainee_id for trainee_id in trainee_ids if trainee_id in answered]
        return trainee_ids
