"""Wire and domain models for answer links, subjects and completion messages."""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class SubjectKind(str, Enum):
    """The kind of subject a link grants access to; the value is its URL segment."""

    SURVEY = "survey"
    ASSESSMENT = "assessment"

    @property
    def path(self) -> str:
        return self.value

    @property
    def message_type(self) -> str:
        return f"{self.value}-answered"

    @property
    def links_field(self) -> str:
        return f"{self.value}Links"

    @property
    def link_field(self) -> str:
        return f"{self.value}Link"

    @property
    def answers_field(self) -> str:
        return f"{self.value}Answers"

    @property
    def entry_field(self) -> str:
        return f"{self.value}EntryId"

    @property
    def has_variants(self) -> bool:
        return self is SubjectKind.ASSESSMENT


class Variant(str, Enum):
    """Pre- or post-training instance of an assessment."""

    PRE = "PRE_ASSESSMENT"
    POST = "POST_ASSESSMENT"

    @classmethod
    def parse(cls, value: Any) -> Optional["Variant"]:
        if value is None or value == "":
            return None
        if isinstance(value, Variant):
            return value
        text = str(value).strip().upper()
        for variant in cls:
            if text in (variant.value, variant.name):
                return variant
        raise ValueError(f"Unknown variant: {value}")


class LinkStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CONSUMED = "CONSUMED"
    # valid=false past expiry: either expired unanswered or answered, we cannot tell
    INACTIVE = "INACTIVE"


@dataclass(frozen=True)
class LinkState:
    """Tagged state of a link: Active(expiry) | Expired | Consumed(answered_at) | Inactive."""

    status: LinkStatus
    expiry_date: Optional[datetime] = None
    answered_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status is LinkStatus.ACTIVE

    @property
    def is_effectively_answered(self) -> bool:
        """Heuristic answered-detection: any invalid link not explicitly expired."""
        return self.status in (LinkStatus.CONSUMED, LinkStatus.INACTIVE)


_LINK_ID_PATTERN = re.compile(r"/answer/([^/?#]+)")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AnswerLink(BaseModel):
    """A capability-bearing reference to one respondent's access to one subject."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(default="", validation_alias=AliasChoices("id", "linkId"))
    subject_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("subjectId", "surveyId", "assessmentId")
    )
    subject_kind: Optional[SubjectKind] = Field(default=None, validation_alias="subjectKind")
    variant: Optional[Variant] = Field(
        default=None, validation_alias=AliasChoices("linkType", "variant")
    )
    cohort_id: Optional[str] = Field(default=None, validation_alias="cohortId")
    cohort_name: Optional[str] = Field(default=None, validation_alias="cohortName")
    trainee_id: Optional[str] = Field(default=None, validation_alias="traineeId")
    trainee_name: Optional[str] = Field(default=None, validation_alias="traineeName")
    relative_path: str = Field(
        default="", validation_alias=AliasChoices("link", "relativePath")
    )
    expiry_date: Optional[datetime] = Field(default=None, validation_alias="expiryDate")
    valid: bool = True
    status: Optional[LinkStatus] = None
    answered_at: Optional[datetime] = Field(default=None, validation_alias="answeredAt")
    # Set by the registry once a timed attempt has been started.
    started_at: Optional[datetime] = Field(default=None, validation_alias="startedAt")

    @model_validator(mode="before")
    @classmethod
    def _normalise_variant(cls, data: Any) -> Any:
        if isinstance(data, dict):
            for key in ("linkType", "variant"):
                if key in data:
                    data = {**data, key: Variant.parse(data[key])}
        return data

    @model_validator(mode="after")
    def _fill_id_from_path(self) -> "AnswerLink":
        if not self.id and self.relative_path:
            match = _LINK_ID_PATTERN.search(self.relative_path)
            if match:
                self.id = match.group(1)
        return self

    def state(self, now: Optional[datetime] = None) -> LinkState:
        """Interpret the registry's overloaded ``valid`` flag into a real state."""
        expiry = _as_utc(self.expiry_date) if self.expiry_date else None
        if self.status is not None:
            return LinkState(self.status, expiry_date=expiry, answered_at=self.answered_at)
        if self.valid:
            return LinkState(LinkStatus.ACTIVE, expiry_date=expiry)
        now = _as_utc(now) if now else datetime.now(timezone.utc)
        # Invalidated before its expiry date: only a submission does that.
        if expiry is not None and expiry > now:
            return LinkState(LinkStatus.CONSUMED, expiry_date=expiry, answered_at=self.answered_at)
        return LinkState(LinkStatus.INACTIVE, expiry_date=expiry)


class QuestionType(str, Enum):
    TEXT = "TEXT"
    RADIO = "RADIO"
    CHECKBOX = "CHECKBOX"
    GRID = "GRID"


class Choice(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    order: str = Field(validation_alias=AliasChoices("order", "id"))
    choice_text: str = Field(default="", validation_alias="choiceText")
    choice_image_url: Optional[str] = Field(default=None, validation_alias="choiceImageUrl")


class Question(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    question_number: Optional[int] = Field(default=None, validation_alias="questionNumber")
    question: str = ""
    question_type: QuestionType = Field(validation_alias="questionType")
    question_image_url: Optional[str] = Field(default=None, validation_alias="questionImageUrl")
    # Assessment entries carry no flag; every assessment question must be answered.
    required: bool = True
    choices: list[Choice] = Field(default_factory=list)
    rows: list[str] = Field(default_factory=list)
    follow_up: bool = Field(default=False, validation_alias="followUp")
    parent_question_number: Optional[int] = Field(
        default=None, validation_alias="parentQuestionNumber"
    )
    parent_choice: Optional[str] = Field(default=None, validation_alias="parentChoice")

    @property
    def sorted_choices(self) -> list[Choice]:
        """Choices in display order; numeric orders compare as numbers."""
        return sorted(self.choices, key=_choice_sort_key)


def _choice_sort_key(choice: Choice) -> tuple:
    order = choice.order.strip()
    try:
        return (0, float(order), order)
    except ValueError:
        return (1, 0.0, order)


class Section(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    title: str = ""
    description: str = ""
    questions: list[Question] = Field(default_factory=list)


class Subject(BaseModel):
    """The survey or assessment instance embedded in a link-validity response."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str = ""
    description: Optional[str] = ""
    sections: list[Section] = Field(default_factory=list)
    timed: bool = False
    # Minutes allowed once the respondent opens a timed subject.
    duration: Optional[int] = Field(default=None, ge=0)

    @property
    def questions(self) -> list[Question]:
        return [question for section in self.sections for question in section.questions]

    @property
    def time_limit(self) -> Optional[timedelta]:
        if not self.timed or not self.duration:
            return None
        return timedelta(minutes=self.duration)


class LinkValidity(BaseModel):
    """Result of the public check-link-validity call."""

    link: AnswerLink
    subject: Optional[Subject] = None


class AnswerEntry(BaseModel):
    """One element of the flattened answer array sent on submission."""

    entry_id: str
    selected_choices: Optional[list[str]] = None
    text_answer: Optional[str] = None
    grid_answers: Optional[dict[str, list[str]]] = None

    def to_wire(self, kind: SubjectKind) -> dict[str, Any]:
        choices_key = "selectedChoiceIds" if kind is SubjectKind.ASSESSMENT else "selectedChoices"
        payload: dict[str, Any] = {kind.entry_field: self.entry_id}
        if self.selected_choices is not None:
            payload[choices_key] = self.selected_choices
        if self.text_answer is not None:
            payload["textAnswer"] = self.text_answer
        if self.grid_answers is not None:
            payload["gridAnswers"] = self.grid_answers
        return payload


class DraftEntry(BaseModel):
    """One question's in-progress answer as posted by the autosave script."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    selected_choices: Optional[list[str]] = Field(default=None, alias="selectedChoices")
    text_answer: Optional[str] = Field(default=None, alias="textAnswer")
    grid_answers: Optional[dict[str, list[str]]] = Field(default=None, alias="gridAnswers")


class SubmittedAnswer(BaseModel):
    """One stored answer of a trainee, as returned by the registry's answers endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    entry_id: str = Field(
        validation_alias=AliasChoices("surveyEntryId", "assessmentEntryId", "entryId")
    )
    trainee_name: Optional[str] = Field(default=None, validation_alias="traineeName")
    text_answer: Optional[str] = Field(default=None, validation_alias="textAnswer")
    selected_choices: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("selectedChoices", "selectedChoiceIds")
    )
    grid_answers: Optional[dict[str, list[str]]] = Field(default=None, validation_alias="gridAnswers")

    @model_validator(mode="before")
    @classmethod
    def _flatten_choices(cls, data: Any) -> Any:
        # Assessment answers come back as choice objects rather than ids.
        if isinstance(data, dict):
            for key in ("selectedChoices", "selectedChoiceIds"):
                value = data.get(key)
                if isinstance(value, list):
                    data = {
                        **data,
                        key: [
                            item.get("choiceText") or item.get("id", "") if isinstance(item, dict) else item
                            for item in value
                        ],
                    }
        return data


class CompletionMessage(BaseModel):
    """Cross-window message announcing that a link was answered."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str
    subject_id: Optional[str] = Field(default=None, alias="subjectId")
    trainee_id: Optional[str] = Field(default=None, alias="traineeId")
    correlation_id: Optional[str] = Field(default=None, alias="correlationId")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
