"""Link issuing for the admin surface: create, extend and delete answer links."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from answerlinks.errors import LinkAlreadyConsumed, NoSubjectSelected
from answerlinks.models import AnswerLink, SubjectKind, Variant
from answerlinks.services.expiry import ExpiryUnit, to_minutes
from answerlinks.services.query_cache import QueryCache, answered_key, links_key
from answerlinks.services.registry import LinkRegistryClient
from answerlinks.services.validity import ValidityInterpreter

logger = logging.getLogger("answerlinks.issuer")


@dataclass
class IssuerSelection:
    """What the admin currently has selected in the links view."""

    subject_id: str = ""
    variant: Optional[Variant] = None
    expiry_value: float = 1
    expiry_unit: str = ExpiryUnit.DAYS.value
    trainee_ids: List[str] = field(default_factory=list)


class LinkIssuer:
    """Orchestrates link creation for cohorts and trainees of the selected subject.

    Nothing here writes into the query cache: after the registry confirms a
    mutation the affected queries are invalidated and the next read refetches.
    """

    def __init__(
        self,
        kind: SubjectKind,
        registry: LinkRegistryClient,
        cache: QueryCache,
        selection: Optional[IssuerSelection] = None,
    ):
        self.kind = kind
        self.registry = registry
        self.cache = cache
        self.selection = selection or IssuerSelection()
        if kind.has_variants and self.selection.variant is None:
            self.selection.variant = Variant.PRE
        if not kind.has_variants:
            self.selection.variant = None

    def _require_subject(self) -> str:
        if not self.selection.subject_id:
            raise NoSubjectSelected()
        return self.selection.subject_id

    @property
    def expiry_minutes(self) -> int:
        return to_minutes(self.selection.expiry_value, self.selection.expiry_unit)

    def _invalidate_links(self, subject_id: str, *, answered: bool = False) -> None:
        self.cache.invalidate((self.kind.path, "answer-links"))
        if answered:
            self.cache.invalidate(answered_key(self.kind.path, subject_id))

    # --- reads -------------------------------------------------------------

    async def load_links(self, trainee_ids: Optional[Iterable[str]] = None) -> List[AnswerLink]:
        subject_id = self._require_subject()
        trainee_ids = list(trainee_ids) if trainee_ids else None
        return await self.cache.fetch(
            links_key(self.kind.path, subject_id, trainee_ids),
            lambda: self.registry.list_links(self.kind, subject_id, trainee_ids),
        )

    async def load_answered(self) -> Optional[Set[str]]:
        """Explicit answered list; only plain surveys have one."""
        if self.kind.has_variants:
            return None
        subject_id = self._require_subject()
        return await self.cache.fetch(
            answered_key(self.kind.path, subject_id),
            lambda: self.registry.answered_trainees(self.kind, subject_id),
        )

    async def interpreter(self, portal_base: str) -> ValidityInterpreter:
        links = await self.load_links(self.selection.trainee_ids or None)
        explicit = await self.load_answered()
        return ValidityInterpreter(
            links,
            portal_base,
            variant=self.selection.variant,
            explicit_answered=explicit,
        )

    # --- mutations ---------------------------------------------------------

    async def generate_for_cohort(self, cohort_id: str) -> dict:
        return await self.generate_for_cohorts([cohort_id])

    async def generate_for_cohorts(self, cohort_ids: Iterable[str]) -> dict:
        subject_id = self._require_subject()
        result = await self.registry.create_links(
            self.kind,
            subject_id,
            cohort_ids=list(cohort_ids),
            variant=self.selection.variant,
            expiry_minutes=self.expiry_minutes,
        )
        self._invalidate_links(subject_id)
        return result

    async def generate_for_trainee(self, cohort_id: str, trainee_id: str) -> dict:
        subject_id = self._require_subject()
        result = await self.registry.create_links(
            self.kind,
            subject_id,
            cohort_ids=[cohort_id],
            trainee_ids=[trainee_id],
            variant=self.selection.variant,
            expiry_minutes=self.expiry_minutes,
        )
        self._invalidate_links(subject_id)
        return result

    async def extend_link(self, link_id: str, by_value: float, by_unit: str) -> dict:
        """Push a link's expiry forward. Consumed links are never resurrected."""
        subject_id = self._require_subject()
        links = await self.load_links()
        link = next((candidate for candidate in links if candidate.id == link_id), None)
        if link is not None:
            checker = ValidityInterpreter(
                links, "", variant=link.variant, explicit_answered=await self.load_answered()
            )
            if checker.is_consumed(link):
                logger.info("Refusing to extend consumed %s link %s", self.kind.path, link_id)
                raise LinkAlreadyConsumed()
        result = await self.registry.extend_link(self.kind, link_id, to_minutes(by_value, by_unit))
        self._invalidate_links(subject_id, answered=True)
        return result

    async def delete_link(self, link_id: str) -> None:
        subject_id = self._require_subject()
        await self.registry.delete_link(self.kind, link_id)
        self._invalidate_links(subject_id, answered=True)
