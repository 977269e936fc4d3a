"""Public answer portal routes: one page per answer link, no staff session."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Body, Depends, Request, Response, status
from starlette.datastructures import FormData

from answerlinks.app import templates
from answerlinks.browser_store import CompletionMarkerStore, browser_storage
from answerlinks.config import Settings
from answerlinks.dependencies import get_browser_markers, get_public_registry, get_settings
from answerlinks.errors import AnswerValidationError, TimeUp
from answerlinks.models import DraftEntry, Question, QuestionType, SubjectKind
from answerlinks.services import (
    AnswerDraft,
    AnswerPortal,
    CompletionNotifier,
    LinkRegistryClient,
    PortalState,
    ScriptOpener,
)

logger = logging.getLogger("answerlinks.routes.portal")

router = APIRouter()


def field_name(question: Question, row: str | None = None) -> str:
    name = f"q:{question.id}"
    return f"{name}:{row}" if row is not None else name


def draft_from_form(form: FormData, questions: list[Question]) -> AnswerDraft:
    """Build a draft from the posted answer form, one field per question or grid row."""
    draft = AnswerDraft()
    for question in questions:
        name = field_name(question)
        if question.question_type is QuestionType.TEXT:
            value = form.get(name)
            if value is not None:
                draft.set_text(question.id, str(value))
        elif question.question_type is QuestionType.RADIO:
            value = form.get(name)
            if value:
                draft.toggle_choice(question.id, str(value), multiple=False)
        elif question.question_type is QuestionType.CHECKBOX:
            for value in form.getlist(name):
                draft.toggle_choice(question.id, str(value), multiple=True)
        elif question.question_type is QuestionType.GRID:
            for row in question.rows:
                value = form.get(field_name(question, row))
                if value:
                    draft.set_grid(question.id, row, str(value))
    return draft


def _parent_fields(questions: list[Question]) -> dict[str, str]:
    """Form field of the parent question for each follow-up question."""
    by_number = {q.question_number: q for q in questions if q.question_number is not None}
    fields = {}
    for question in questions:
        parent = by_number.get(question.parent_question_number)
        if question.follow_up and parent is not None:
            fields[question.id] = field_name(parent)
    return fields


def _remember_browser(request: Request, response: Response, settings: Settings) -> None:
    new_browser_id = getattr(request.state, "new_browser_id", None)
    if new_browser_id:
        response.set_cookie(
            settings.BROWSER_COOKIE_NAME,
            new_browser_id,
            max_age=60 * 60 * 24 * 365,
            httponly=True,
            samesite="lax",
        )


def _render(
    request: Request,
    settings: Settings,
    portal: AnswerPortal,
    opener: ScriptOpener | None = None,
    status_code: int = status.HTTP_200_OK,
):
    response = templates.TemplateResponse(
        request,
        "answer.html",
        {
            "portal": portal,
            "kind": portal.kind,
            "state": portal.state.value,
            "subject": portal.subject,
            "link": portal.link,
            "visible_ids": {question.id for question in portal.visible_questions},
            "missing_ids": set(portal.missing_required()) if portal.show_errors else set(),
            "parent_fields": _parent_fields(portal.all_questions),
            "draft": portal.draft,
            "submitted_at": (
                portal.markers.submitted_at(portal.kind.path, portal.link_id)
                if portal.state is PortalState.ALREADY_SUBMITTED
                else None
            ),
            "remaining_seconds": portal.remaining_seconds,
            "time_limit": portal.subject.duration if portal.subject and portal.subject.timed else None,
            "outbox": opener.outbox if opener else [],
            "field_name": field_name,
        },
        status_code=status_code,
    )
    _remember_browser(request, response, settings)
    return response


def _status_for(portal: AnswerPortal) -> int:
    if portal.state is PortalState.INVALID_OR_EXPIRED:
        return status.HTTP_404_NOT_FOUND if portal.fatal else status.HTTP_410_GONE
    if portal.state is PortalState.TIME_UP:
        return status.HTTP_403_FORBIDDEN
    return status.HTTP_200_OK


def _make_portal(
    subject: SubjectKind,
    link_id: str,
    registry: LinkRegistryClient,
    markers: CompletionMarkerStore,
    settings: Settings,
) -> tuple[AnswerPortal, ScriptOpener]:
    opener = ScriptOpener()
    notifier = CompletionNotifier(markers, opener, settings.primary_admin_origin)
    return AnswerPortal(subject, link_id, registry, markers, notifier), opener


@router.get("/{subject}/answer/{link_id}")
async def answer_page(
    request: Request,
    subject: SubjectKind,
    link_id: str,
    settings: Settings = Depends(get_settings),
    registry: LinkRegistryClient = Depends(get_public_registry),
    markers: CompletionMarkerStore = Depends(get_browser_markers),
):
    """Open an answer link: already submitted, invalid, or the form."""
    browser_storage.cleanup_idle()
    portal, opener = _make_portal(subject, link_id, registry, markers, settings)
    await portal.load()
    return _render(request, settings, portal, opener, _status_for(portal))


@router.post("/{subject}/answer/{link_id}/draft")
async def save_draft(
    request: Request,
    subject: SubjectKind,
    link_id: str,
    response: Response,
    answers: dict[str, DraftEntry] = Body(...),
    settings: Settings = Depends(get_settings),
    markers: CompletionMarkerStore = Depends(get_browser_markers),
):
    """Persist the in-progress answers of this browser."""
    _remember_browser(request, response, settings)
    if markers.has_marker(subject.path, link_id):
        return {"saved": 0, "submitted": True}
    deadline = markers.deadline(subject.path, link_id)
    if deadline is not None and datetime.now(timezone.utc) >= deadline:
        raise TimeUp()
    draft = AnswerDraft.from_dict(
        {question_id: entry.model_dump(by_alias=True, exclude_none=True) for question_id, entry in answers.items()}
    )
    markers.save_draft(subject.path, link_id, draft.to_dict())
    return {"saved": len(draft), "submitted": False}


@router.post("/{subject}/answer/{link_id}/submit")
async def submit_answers(
    request: Request,
    subject: SubjectKind,
    link_id: str,
    settings: Settings = Depends(get_settings),
    registry: LinkRegistryClient = Depends(get_public_registry),
    markers: CompletionMarkerStore = Depends(get_browser_markers),
):
    """Validate completeness locally, then submit the whole answer set."""
    portal, opener = _make_portal(subject, link_id, registry, markers, settings)
    await portal.load()
    if portal.state is not PortalState.READY:
        return _render(request, settings, portal, opener, _status_for(portal))

    form = await request.form()
    try:
        portal.replace_draft(draft_from_form(form, portal.all_questions))
        await portal.submit_with_validation()
    except TimeUp:
        logger.info("Time is up for %s link %s", subject.path, link_id)
        return _render(request, settings, portal, opener, status.HTTP_403_FORBIDDEN)
    except AnswerValidationError as exc:
        logger.info("Incomplete answers for %s link %s: %s", subject.path, link_id, exc.missing_question_ids)
        return _render(request, settings, portal, opener, status.HTTP_422_UNPROCESSABLE_ENTITY)

    if portal.state is PortalState.READY:
        # Submission failed; the draft is kept for another attempt.
        return _render(request, settings, portal, opener, status.HTTP_502_BAD_GATEWAY)
    return _render(request, settings, portal, opener)
