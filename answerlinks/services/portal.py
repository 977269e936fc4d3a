"""Answer portal flow for one link: validate, render, draft, check, submit, notify."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from answerlinks.browser_store import CompletionMarkerStore
from answerlinks.errors import (
    AnswerLinkError,
    AnswerValidationError,
    InvalidTransition,
    LinkExpiredOrConsumed,
    LinkNotFound,
    TimeUp,
)
from answerlinks.models import AnswerEntry, AnswerLink, Question, QuestionType, Subject, SubjectKind
from answerlinks.services.notifier import CompletionNotifier
from answerlinks.services.registry import LinkRegistryClient

logger = logging.getLogger("answerlinks.portal")

SUBMIT_FAILED_MESSAGE = "Failed to submit. Your answers are saved and you can try again."


class PortalState(str, Enum):
    LOADING = "LOADING"
    INVALID_OR_EXPIRED = "INVALID_OR_EXPIRED"
    ALREADY_SUBMITTED = "ALREADY_SUBMITTED"
    READY = "READY"
    SUBMITTING = "SUBMITTING"
    SUBMITTED = "SUBMITTED"
    TIME_UP = "TIME_UP"


@dataclass
class QuestionAnswer:
    selected_choices: Set[str] = field(default_factory=set)
    text_answer: Optional[str] = None
    grid_answers: Dict[str, Set[str]] = field(default_factory=dict)


class AnswerDraft:
    """Answers being built up by the trainee, keyed by question id."""

    def __init__(self):
        self.answers: Dict[str, QuestionAnswer] = {}

    def __len__(self) -> int:
        return len(self.answers)

    def get(self, question_id: str) -> Optional[QuestionAnswer]:
        return self.answers.get(question_id)

    def _answer(self, question_id: str) -> QuestionAnswer:
        return self.answers.setdefault(question_id, QuestionAnswer())

    def set_text(self, question_id: str, value: str) -> None:
        self._answer(question_id).text_answer = value

    def toggle_choice(self, question_id: str, choice: str, multiple: bool) -> None:
        answer = self._answer(question_id)
        if not multiple:
            answer.selected_choices = {choice}
        elif choice in answer.selected_choices:
            answer.selected_choices.discard(choice)
        else:
            answer.selected_choices.add(choice)

    def set_grid(self, question_id: str, row: str, column: str) -> None:
        self._answer(question_id).grid_answers[row] = {column}

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for question_id, answer in self.answers.items():
            entry: Dict[str, Any] = {}
            if answer.selected_choices:
                entry["selectedChoices"] = sorted(answer.selected_choices)
            if answer.text_answer is not None:
                entry["textAnswer"] = answer.text_answer
            if answer.grid_answers:
                entry["gridAnswers"] = {row: sorted(cols) for row, cols in answer.grid_answers.items()}
            data[question_id] = entry
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnswerDraft":
        draft = cls()
        for question_id, entry in (data or {}).items():
            if not isinstance(entry, dict):
                continue
            draft.answers[question_id] = QuestionAnswer(
                selected_choices=set(entry.get("selectedChoices") or []),
                text_answer=entry.get("textAnswer"),
                grid_answers={row: set(cols) for row, cols in (entry.get("gridAnswers") or {}).items()},
            )
        return draft


def is_complete(question: Question, answer: Optional[QuestionAnswer]) -> bool:
    """Completeness predicate for a single question. Optional questions always pass."""
    if not question.required:
        return True
    if answer is None:
        return False
    if question.question_type is QuestionType.TEXT:
        return bool(answer.text_answer and answer.text_answer.strip())
    if question.question_type in (QuestionType.RADIO, QuestionType.CHECKBOX):
        return len(answer.selected_choices) > 0
    if question.question_type is QuestionType.GRID:
        return all(answer.grid_answers.get(row) for row in question.rows)
    return True


class AnswerPortal:
    """State machine run for one page load of ``/{subject}/answer/{linkId}``."""

    def __init__(
        self,
        kind: SubjectKind,
        link_id: str,
        registry: LinkRegistryClient,
        markers: CompletionMarkerStore,
        notifier: Optional[CompletionNotifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.kind = kind
        self.link_id = link_id
        self.registry = registry
        self.markers = markers
        self.notifier = notifier or CompletionNotifier(markers)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.state = PortalState.LOADING
        self.link: Optional[AnswerLink] = None
        self.subject: Optional[Subject] = None
        self.draft = AnswerDraft()
        self.error: Optional[AnswerLinkError] = None
        self.banner: Optional[str] = None
        self.fatal = False
        self.show_errors = False
        self.restored_answers = 0
        self.deadline: Optional[datetime] = None

    # --- loading -----------------------------------------------------------

    async def load(self) -> PortalState:
        if self.state is not PortalState.LOADING:
            raise InvalidTransition(self.state.value, "load")

        if self.markers.has_marker(self.kind.path, self.link_id):
            self.state = PortalState.ALREADY_SUBMITTED
            return self.state

        try:
            validity = await self.registry.check_validity(self.kind, self.link_id)
        except LinkNotFound as exc:
            self.fatal = True
            return self._invalid(exc)
        except AnswerLinkError as exc:
            logger.warning("Link validity check failed for %s: %s", self.link_id, exc)
            return self._invalid(LinkExpiredOrConsumed())

        self.link = validity.link
        self.subject = validity.subject
        if not self.link.state().is_active or self.subject is None:
            return self._invalid(LinkExpiredOrConsumed())

        self._restore_draft()
        self.state = PortalState.READY
        self._start_clock()
        if self.time_is_up():
            self._expire()
        return self.state

    def _invalid(self, error: AnswerLinkError) -> PortalState:
        self.error = error
        self.banner = error.message
        self.state = PortalState.INVALID_OR_EXPIRED
        return self.state

    def _restore_draft(self) -> None:
        try:
            saved = self.markers.load_draft(self.kind.path, self.link_id)
        except ValueError:
            logger.warning("Discarding unreadable draft for %s", self.link_id)
            self.markers.clear_draft(self.kind.path, self.link_id)
            return
        if saved:
            self.draft = AnswerDraft.from_dict(saved)
            self.restored_answers = len(self.draft)

    # --- timing ------------------------------------------------------------

    def _start_clock(self) -> None:
        """Fix the deadline of a timed subject the first time this browser opens it."""
        limit = self.subject.time_limit if self.subject else None
        if limit is None:
            return
        deadline = self.markers.deadline(self.kind.path, self.link_id)
        if deadline is None:
            started = self.link.started_at if self.link and self.link.started_at else self.clock()
            if started.tzinfo is None:
                started = started.replace(tzinfo=timezone.utc)
            deadline = started + limit
            self.markers.set_deadline(self.kind.path, self.link_id, deadline)
        self.deadline = deadline

    def time_is_up(self) -> bool:
        return self.deadline is not None and self.clock() >= self.deadline

    @property
    def remaining_seconds(self) -> Optional[int]:
        if self.deadline is None:
            return None
        return max(0, int((self.deadline - self.clock()).total_seconds()))

    def _expire(self) -> None:
        self.error = TimeUp()
        self.banner = self.error.message
        self.state = PortalState.TIME_UP

    # --- questions ---------------------------------------------------------

    @property
    def all_questions(self) -> List[Question]:
        return self.subject.questions if self.subject else []

    @property
    def visible_questions(self) -> List[Question]:
        """Questions in subject order, hiding follow-ups whose trigger is not selected."""
        questions = self.all_questions
        by_number = {q.question_number: q for q in questions if q.question_number is not None}
        visible = []
        for question in questions:
            if question.follow_up and question.parent_question_number and question.parent_choice:
                parent = by_number.get(question.parent_question_number)
                if parent is not None:
                    parent_answer = self.draft.get(parent.id)
                    if parent_answer is None or question.parent_choice not in parent_answer.selected_choices:
                        continue
            visible.append(question)
        return visible

    def is_answered(self, question: Question) -> bool:
        return is_complete(question, self.draft.get(question.id))

    def missing_required(self) -> List[str]:
        return [q.id for q in self.visible_questions if not self.is_answered(q)]

    @property
    def can_submit(self) -> bool:
        visible = self.visible_questions
        return bool(visible) and all(self.is_answered(q) for q in visible)

    # --- interactions ------------------------------------------------------

    def _require_ready(self, operation: str) -> None:
        if self.state is PortalState.READY and self.time_is_up():
            self._expire()
        if self.state is PortalState.TIME_UP:
            raise TimeUp()
        if self.state is not PortalState.READY:
            raise InvalidTransition(self.state.value, operation)

    def _persist_draft(self) -> None:
        self.markers.save_draft(self.kind.path, self.link_id, self.draft.to_dict())

    def set_text(self, question_id: str, value: str) -> None:
        self._require_ready("edit answers")
        self.draft.set_text(question_id, value)
        self._persist_draft()

    def toggle_choice(self, question_id: str, choice: str, multiple: bool = False) -> None:
        self._require_ready("edit answers")
        self.draft.toggle_choice(question_id, choice, multiple)
        self._persist_draft()

    def set_grid(self, question_id: str, row: str, column: str) -> None:
        self._require_ready("edit answers")
        self.draft.set_grid(question_id, row, column)
        self._persist_draft()

    def replace_draft(self, draft: AnswerDraft) -> None:
        """Take over a whole draft, as posted by the answer form."""
        self._require_ready("edit answers")
        self.draft = draft
        self._persist_draft()

    # --- submission --------------------------------------------------------

    def flattened_answers(self) -> List[AnswerEntry]:
        entries = []
        for question in self.visible_questions:
            answer = self.draft.get(question.id)
            if answer is None:
                entries.append(AnswerEntry(entry_id=question.id))
                continue
            entries.append(
                AnswerEntry(
                    entry_id=question.id,
                    selected_choices=sorted(answer.selected_choices) if answer.selected_choices else None,
                    text_answer=answer.text_answer,
                    grid_answers=(
                        {row: sorted(cols) for row, cols in answer.grid_answers.items()}
                        if answer.grid_answers
                        else None
                    ),
                )
            )
        return entries

    async def submit_with_validation(self) -> PortalState:
        self._require_ready("submit")
        if not self.can_submit:
            self.show_errors = True
            self.error = AnswerValidationError(self.missing_required())
            self.banner = self.error.message
            raise self.error

        self.error = None
        self.banner = None
        self.state = PortalState.SUBMITTING
        try:
            await self.registry.submit_answers(self.kind, self.link_id, self.flattened_answers())
        except AnswerLinkError as exc:
            logger.warning("Submission failed for %s link %s: %s", self.kind.path, self.link_id, exc)
            self.error = exc
            self.banner = SUBMIT_FAILED_MESSAGE
            self.state = PortalState.READY
            return self.state

        self.state = PortalState.SUBMITTED
        self.markers.clear_draft(self.kind.path, self.link_id)
        subject_id = self.subject.id if self.subject else None
        self.notifier.notify(
            self.kind,
            self.link_id,
            subject_id or (self.link.subject_id if self.link else None),
            self.link.trainee_id if self.link else None,
        )
        return self.state
