"""Admin routes for issuing and tracking answer links of one subject."""
from __future__ import annotations

import logging
import re
from typing import Any, Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, Field

from answerlinks.app import templates
from answerlinks.auth import validate_session
from answerlinks.config import Settings
from answerlinks.dependencies import (
    get_admin_registry,
    get_current_session,
    get_query_cache,
    get_settings,
    get_view_reconcilers,
)
from answerlinks.errors import AuthError, AnswerLinkError
from answerlinks.flash import consume_flashes, flash
from answerlinks.models import Question, SubjectKind, SubmittedAnswer, Variant
from answerlinks.services import (
    CacheReconciler,
    IssuerSelection,
    LinkIssuer,
    LinkRegistryClient,
    QueryCache,
    ReconcilerRegistry,
    ValidityInterpreter,
    ViewMode,
    WindowChannel,
    build_answers_url,
)
from answerlinks.services.expiry import ExpiryUnit

logger = logging.getLogger("answerlinks.routes.links")

router = APIRouter()


class ExtendLinkRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    by_value: float = Field(alias="byValue")
    by_unit: ExpiryUnit = Field(alias="byUnit")


class ForwardedMessage(BaseModel):
    """A window message the admin page received and forwarded to the server."""

    data: dict[str, Any]
    origin: str


def _parse_variant(kind: SubjectKind, value: Optional[str]) -> Optional[Variant]:
    if not kind.has_variants:
        return None
    try:
        return Variant.parse(value) or Variant.PRE
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _make_issuer(
    kind: SubjectKind,
    subject_id: str,
    registry: LinkRegistryClient,
    cache: QueryCache,
    settings: Settings,
    *,
    variant: Optional[str] = None,
    expiry_value: Optional[float] = None,
    expiry_unit: Optional[str] = None,
    trainee_ids: Optional[list[str]] = None,
) -> LinkIssuer:
    selection = IssuerSelection(
        subject_id=subject_id,
        variant=_parse_variant(kind, variant),
        expiry_value=expiry_value if expiry_value is not None else settings.DEFAULT_EXPIRY_VALUE,
        expiry_unit=expiry_unit or settings.DEFAULT_EXPIRY_UNIT,
        trainee_ids=[trainee_id for trainee_id in (trainee_ids or []) if trainee_id],
    )
    return LinkIssuer(kind, registry, cache, selection)


def _links_url(kind: SubjectKind, subject_id: str, variant: Optional[Variant]) -> str:
    url = f"/admin/{kind.path}/{subject_id}/links"
    if variant is not None:
        url += f"?variant={variant.name}"
    return url


def _view_reconciler(
    kind: SubjectKind, subject_id: str, settings: Settings, cache: QueryCache
) -> CacheReconciler:
    """Reconciler listening on the window of one admin view, trusting only portal origins."""
    return CacheReconciler(
        WindowChannel(),
        cache,
        kind,
        subject_id,
        origin=settings.primary_admin_origin,
        allowed_sources={settings.portal_origin("survey"), settings.portal_origin("assessment")},
    )


async def _table(issuer: LinkIssuer, settings: Settings, view: ViewMode) -> dict[str, Any]:
    """Rows of the links view, as both the page and the JSON endpoint show them."""
    portal_base = settings.portal_base(issuer.kind.path)
    interpreter: ValidityInterpreter = await issuer.interpreter(portal_base)
    meta = interpreter.link_by_trainee
    answered = interpreter.reconciled_answered()
    roster = issuer.selection.trainee_ids or sorted(meta)
    rows = []
    for trainee_id in interpreter.filter_trainees(roster, view):
        link = meta.get(trainee_id)
        rows.append(
            {
                "trainee_id": trainee_id,
                "trainee_name": link.trainee_name if link else None,
                "portal_url": link.portal_url if link else None,
                "link_id": link.link_id if link else None,
                "expiry_date": link.expiry_date.isoformat() if link and link.expiry_date else None,
                "valid": link.valid if link else None,
                "state": link.state.status.value if link else None,
                "answered": trainee_id in answered,
                "answers_url": build_answers_url(issuer.kind, issuer.selection.subject_id, trainee_id),
            }
        )
    cohort_links = [
        {
            "cohort_id": link.cohort_id,
            "cohort_name": link.cohort_name,
            "link_id": link.id,
            "expiry_date": link.expiry_date.isoformat() if link.expiry_date else None,
            "valid": link.valid,
        }
        for link in interpreter.links
        if link.trainee_id is None and link.variant == issuer.selection.variant
    ]
    return {
        "subject": issuer.kind.path,
        "subject_id": issuer.selection.subject_id,
        "variant": issuer.selection.variant.name if issuer.selection.variant else None,
        "view": view.value,
        "answered": sorted(answered),
        "rows": rows,
        "cohort_links": cohort_links,
    }


@router.get("")
async def admin_home(request: Request, session_token: str = Depends(get_current_session)):
    """Render the subject picker."""
    return templates.TemplateResponse(
        request,
        "admin_index.html",
        {"kinds": list(SubjectKind), "messages": consume_flashes(request)},
    )


@router.get("/open")
async def open_subject(
    subject: SubjectKind,
    subject_id: str = Query(..., min_length=1),
    session_token: str = Depends(get_current_session),
):
    return RedirectResponse(
        f"/admin/{subject.path}/{subject_id}/links", status_code=status.HTTP_303_SEE_OTHER
    )


@router.get("/{subject}/{subject_id}/links")
async def links_page(
    request: Request,
    subject: SubjectKind,
    subject_id: str,
    variant: Optional[str] = None,
    view: ViewMode = ViewMode.ALL,
    trainee_ids: Optional[list[str]] = Query(None, alias="traineeIds"),
    session_token: str = Depends(get_current_session),
    settings: Settings = Depends(get_settings),
    registry: LinkRegistryClient = Depends(get_admin_registry),
    cache: QueryCache = Depends(get_query_cache),
    reconcilers: ReconcilerRegistry = Depends(get_view_reconcilers),
):
    """Render the link table for one subject and variant."""
    reconcilers.close_inactive(validate_session)
    reconcilers.open(
        session_token, subject, subject_id, lambda: _view_reconciler(subject, subject_id, settings, cache)
    )
    issuer = _make_issuer(subject, subject_id, registry, cache, settings, variant=variant, trainee_ids=trainee_ids)
    error = None
    table: dict[str, Any] = {"rows": [], "cohort_links": [], "answered": []}
    try:
        table = await _table(issuer, settings, view)
    except AuthError:
        raise
    except AnswerLinkError as exc:
        error = exc.message
    return templates.TemplateResponse(
        request,
        "links.html",
        {
            "kind": subject,
            "subject_id": subject_id,
            "variant": issuer.selection.variant,
            "variants": list(Variant) if subject.has_variants else [],
            "view": view,
            "units": list(ExpiryUnit),
            "default_expiry_value": settings.DEFAULT_EXPIRY_VALUE,
            "default_expiry_unit": settings.DEFAULT_EXPIRY_UNIT,
            "table": table,
            "error": error,
            "portal_origins": [settings.portal_origin("survey"), settings.portal_origin("assessment")],
            "messages": consume_flashes(request),
        },
    )


@router.get("/{subject}/{subject_id}/links/data")
async def links_data(
    subject: SubjectKind,
    subject_id: str,
    variant: Optional[str] = None,
    view: ViewMode = ViewMode.ALL,
    trainee_ids: Optional[list[str]] = Query(None, alias="traineeIds"),
    settings: Settings = Depends(get_settings),
    registry: LinkRegistryClient = Depends(get_admin_registry),
    cache: QueryCache = Depends(get_query_cache),
):
    """JSON form of the link table."""
    issuer = _make_issuer(subject, subject_id, registry, cache, settings, variant=variant, trainee_ids=trainee_ids)
    return await _table(issuer, settings, view)


@router.post("/{subject}/{subject_id}/links/cohorts")
async def generate_cohort_links(
    request: Request,
    subject: SubjectKind,
    subject_id: str,
    cohort_ids: list[str] = Form(..., alias="cohortIds"),
    expiry_value: float = Form(1, alias="expiryValue"),
    expiry_unit: str = Form("days", alias="expiryUnit"),
    variant: Optional[str] = Form(None),
    settings: Settings = Depends(get_settings),
    registry: LinkRegistryClient = Depends(get_admin_registry),
    cache: QueryCache = Depends(get_query_cache),
):
    """Create links for one or many cohorts."""
    issuer = _make_issuer(
        subject, subject_id, registry, cache, settings,
        variant=variant, expiry_value=expiry_value, expiry_unit=expiry_unit,
    )
    cohort_ids = [part for value in cohort_ids for part in re.split(r"[\s,]+", value) if part]
    try:
        result = await issuer.generate_for_cohorts(cohort_ids)
        flash(request, result.get("message") or "Links generated for cohort", "success")
    except AuthError:
        raise
    except AnswerLinkError as exc:
        logger.warning("Generating cohort links for %s failed: %s", subject_id, exc)
        flash(request, exc.message or "Failed to generate links", "error")
    return RedirectResponse(
        _links_url(subject, subject_id, issuer.selection.variant), status_code=status.HTTP_303_SEE_OTHER
    )


@router.post("/{subject}/{subject_id}/links/trainee")
async def generate_trainee_link(
    request: Request,
    subject: SubjectKind,
    subject_id: str,
    cohort_id: str = Form(..., alias="cohortId"),
    trainee_id: str = Form(..., alias="traineeId"),
    expiry_value: float = Form(1, alias="expiryValue"),
    expiry_unit: str = Form("days", alias="expiryUnit"),
    variant: Optional[str] = Form(None),
    settings: Settings = Depends(get_settings),
    registry: LinkRegistryClient = Depends(get_admin_registry),
    cache: QueryCache = Depends(get_query_cache),
):
    """Create a link for exactly one trainee of a cohort."""
    issuer = _make_issuer(
        subject, subject_id, registry, cache, settings,
        variant=variant, expiry_value=expiry_value, expiry_unit=expiry_unit,
    )
    try:
        result = await issuer.generate_for_trainee(cohort_id, trainee_id)
        flash(request, result.get("message") or "Link generated", "success")
    except AuthError:
        raise
    except AnswerLinkError as exc:
        logger.warning("Generating link for trainee %s failed: %s", trainee_id, exc)
        flash(request, exc.message or "Failed to generate link", "error")
    return RedirectResponse(
        _links_url(subject, subject_id, issuer.selection.variant), status_code=status.HTTP_303_SEE_OTHER
    )


@router.patch("/{subject}/{subject_id}/links/{link_id}")
async def extend_link(
    subject: SubjectKind,
    subject_id: str,
    link_id: str,
    body: ExtendLinkRequest,
    settings: Settings = Depends(get_settings),
    registry: LinkRegistryClient = Depends(get_admin_registry),
    cache: QueryCache = Depends(get_query_cache),
):
    """Push a link's expiry forward; consumed links answer 409."""
    issuer = _make_issuer(subject, subject_id, registry, cache, settings)
    result = await issuer.extend_link(link_id, body.by_value, body.by_unit.value)
    return {"status": "success", "message": result.get("message") or "Link updated"}


@router.delete("/{subject}/{subject_id}/links/{link_id}")
async def delete_link(
    subject: SubjectKind,
    subject_id: str,
    link_id: str,
    settings: Settings = Depends(get_settings),
    registry: LinkRegistryClient = Depends(get_admin_registry),
    cache: QueryCache = Depends(get_query_cache),
):
    """Delete a link. Deleting a link that is already gone succeeds."""
    issuer = _make_issuer(subject, subject_id, registry, cache, settings)
    await issuer.delete_link(link_id)
    return {"status": "success", "message": "Link deleted"}


def _display_answer(question: Question, answer: Optional[SubmittedAnswer]) -> str:
    if answer is None:
        return ""
    if answer.text_answer:
        return answer.text_answer
    labels = {choice.order: choice.choice_text for choice in question.choices}
    if answer.grid_answers:
        return "; ".join(
            f"{row}: " + ", ".join(labels.get(column, column) for column in columns)
            for row, columns in answer.grid_answers.items()
        )
    return ", ".join(labels.get(choice, choice) for choice in answer.selected_choices)


@router.get("/{subject}/{subject_id}/answers/{trainee_id}")
async def answers_page(
    request: Request,
    subject: SubjectKind,
    subject_id: str,
    trainee_id: str,
    registry: LinkRegistryClient = Depends(get_admin_registry),
):
    """Read-only view of what one trainee submitted, question by question."""
    subject_detail = await registry.get_subject(subject, subject_id)
    answers = await registry.fetch_answers(subject, subject_id, trainee_id)
    by_entry = {answer.entry_id: answer for answer in answers}
    trainee_name = next((answer.trainee_name for answer in answers if answer.trainee_name), None)
    return templates.TemplateResponse(
        request,
        "answers.html",
        {
            "kind": subject,
            "subject": subject_detail,
            "trainee_id": trainee_id,
            "trainee_name": trainee_name or trainee_id,
            "rows": [
                (question, _display_answer(question, by_entry.get(question.id)))
                for question in subject_detail.questions
            ],
            "links_url": _links_url(subject, subject_id, None),
        },
    )


@router.post("/{subject}/{subject_id}/messages")
async def forward_message(
    subject: SubjectKind,
    subject_id: str,
    forwarded: ForwardedMessage,
    session_token: str = Depends(get_current_session),
    settings: Settings = Depends(get_settings),
    cache: QueryCache = Depends(get_query_cache),
    reconcilers: ReconcilerRegistry = Depends(get_view_reconcilers),
):
    """Post a completion message received by the admin page into that view's window."""
    reconciler = reconcilers.open(
        session_token, subject, subject_id, lambda: _view_reconciler(subject, subject_id, settings, cache)
    )
    before = reconciler.reconciled_count
    reconciler.channel.deliver(forwarded.data, reconciler.origin, forwarded.origin)
    return {"reconciled": reconciler.reconciled_count > before}
