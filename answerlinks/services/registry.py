"""Async client for the external answer link registry REST API."""
from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

import httpx
from pydantic import ValidationError

from answerlinks.errors import (
    AuthError,
    LinkAlreadyConsumed,
    LinkNotFound,
    NetworkError,
    RegistryError,
)
from answerlinks.models import (
    AnswerEntry,
    AnswerLink,
    LinkValidity,
    Subject,
    SubjectKind,
    SubmittedAnswer,
    Variant,
)

logger = logging.getLogger("answerlinks.registry")

MALFORMED_MESSAGE = "The link registry returned malformed data."


def _body(response: httpx.Response) -> dict[str, Any]:
    """Decoded JSON object of a successful response; an unreadable body counts as empty."""
    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError:
        logger.warning("Registry %s returned a non-JSON body", response.request.url.path)
        return {}
    return body if isinstance(body, dict) else {"data": body}


def _malformed(response: httpx.Response, exc: Exception) -> RegistryError:
    logger.warning("Malformed registry data from %s: %s", response.request.url.path, exc)
    return RegistryError(response.status_code, MALFORMED_MESSAGE)


def _json_object(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError as exc:
        raise _malformed(response, exc) from exc
    if not isinstance(body, dict):
        raise _malformed(response, TypeError("expected a JSON object"))
    return body


def _registry_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("message") or body.get("detail")
    return None


class LinkRegistryClient:
    """Thin contract over the registry: create, extend, delete, list, check validity, submit.

    Admin calls send ``Authorization: Bearer <token>``. The two trainee-facing
    calls (check validity, submit) are sent without credentials or cookies.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    def _client(self, authenticated: bool) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if authenticated and self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        authenticated: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            async with self._client(authenticated) as client:
                return await client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            logger.warning("Registry %s %s failed: %s", method, path, exc)
            raise NetworkError() from exc

    def _raise_for_status(self, response: httpx.Response, *, authenticated: bool) -> None:
        if response.is_success:
            return
        message = _registry_message(response)
        if response.status_code == 401 and authenticated:
            raise AuthError()
        raise RegistryError(response.status_code, message)

    # --- admin calls -------------------------------------------------------

    async def create_links(
        self,
        kind: SubjectKind,
        subject_id: str,
        *,
        cohort_ids: Iterable[str],
        trainee_ids: Iterable[str] = (),
        variant: Optional[Variant] = None,
        expiry_minutes: int,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "cohortIds": list(cohort_ids),
            "traineeIds": list(trainee_ids),
            "expiryMinutes": expiry_minutes,
        }
        if kind.has_variants and variant is not None:
            payload["linkType"] = variant.value
        response = await self._request(
            "POST", f"/{kind.path}/{subject_id}/create-answer-link", json=payload
        )
        self._raise_for_status(response, authenticated=True)
        logger.info(
            "Created %s answer links for %s (cohorts=%s trainees=%s)",
            kind.path,
            subject_id,
            payload["cohortIds"],
            payload["traineeIds"],
        )
        return _body(response)

    async def extend_link(self, kind: SubjectKind, link_id: str, expiry_minutes: int) -> dict[str, Any]:
        response = await self._request(
            "PATCH",
            f"/{kind.path}/answer-link/{link_id}/extend",
            json={"expiryMinutes": expiry_minutes},
        )
        if response.status_code == 409:
            raise LinkAlreadyConsumed(_registry_message(response))
        self._raise_for_status(response, authenticated=True)
        logger.info("Extended %s link %s by %s minutes", kind.path, link_id, expiry_minutes)
        return _body(response)

    async def delete_link(self, kind: SubjectKind, link_id: str) -> None:
        response = await self._request("DELETE", f"/{kind.path}/answer-links/{link_id}")
        if response.status_code in (404, 410):
            logger.info("%s link %s already deleted", kind.path, link_id)
            return
        self._raise_for_status(response, authenticated=True)
        logger.info("Deleted %s link %s", kind.path, link_id)

    async def list_links(
        self,
        kind: SubjectKind,
        subject_id: str,
        trainee_ids: Optional[Iterable[str]] = None,
    ) -> list[AnswerLink]:
        params = [("traineeIds", trainee_id) for trainee_id in (trainee_ids or [])]
        response = await self._request(
            "GET", f"/{kind.path}/{subject_id}/answer-links", params=params
        )
        self._raise_for_status(response, authenticated=True)
        items = _json_object(response).get(kind.links_field) or []
        links = []
        try:
            for item in items:
                link = AnswerLink.model_validate(item)
                link.subject_kind = kind
                link.subject_id = link.subject_id or subject_id
                links.append(link)
        except (TypeError, ValidationError) as exc:
            raise _malformed(response, exc) from exc
        return links

    async def answered_trainees(self, kind: SubjectKind, subject_id: str) -> set[str]:
        response = await self._request("GET", f"/{kind.path}/{subject_id}/answered-trainees")
        self._raise_for_status(response, authenticated=True)
        trainees = _json_object(response).get("trainees") or []
        if not isinstance(trainees, list):
            raise _malformed(response, TypeError("trainees is not a list"))
        return {
            str(trainee["id"]) for trainee in trainees if isinstance(trainee, dict) and trainee.get("id")
        }

    async def get_subject(self, kind: SubjectKind, subject_id: str) -> Subject:
        response = await self._request("GET", f"/{kind.path}/{subject_id}")
        if response.status_code == 404:
            raise RegistryError(404, _registry_message(response) or f"Unknown {kind.path} {subject_id}.")
        self._raise_for_status(response, authenticated=True)
        body = _json_object(response)
        try:
            return Subject.model_validate(body.get(kind.path) or body)
        except ValidationError as exc:
            raise _malformed(response, exc) from exc

    async def fetch_answers(
        self, kind: SubjectKind, subject_id: str, trainee_id: str
    ) -> list[SubmittedAnswer]:
        """Stored answers of one trainee for one subject, for the staff answers view."""
        response = await self._request("GET", f"/{kind.path}/{subject_id}/answers/{trainee_id}")
        self._raise_for_status(response, authenticated=True)
        items = _json_object(response).get(kind.answers_field) or []
        try:
            return [SubmittedAnswer.model_validate(item) for item in items]
        except (TypeError, ValidationError) as exc:
            raise _malformed(response, exc) from exc

    # --- public calls ------------------------------------------------------

    async def check_validity(self, kind: SubjectKind, link_id: str) -> LinkValidity:
        response = await self._request(
            "GET", f"/{kind.path}/check-link-validity/{link_id}", authenticated=False
        )
        if response.status_code == 404:
            raise LinkNotFound(_registry_message(response))
        self._raise_for_status(response, authenticated=False)
        data = _json_object(response).get(kind.link_field) or {}
        if not isinstance(data, dict):
            raise _malformed(response, TypeError(f"{kind.link_field} is not an object"))
        subject_data = data.get(kind.path)
        try:
            link = AnswerLink.model_validate(data)
            subject = Subject.model_validate(subject_data) if subject_data else None
        except ValidationError as exc:
            raise _malformed(response, exc) from exc
        link.subject_kind = kind
        link.id = link.id or link_id
        if subject is not None:
            link.subject_id = link.subject_id or subject.id
        return LinkValidity(link=link, subject=subject)

    async def submit_answers(
        self, kind: SubjectKind, link_id: str, answers: list[AnswerEntry]
    ) -> dict[str, Any]:
        payload = {kind.answers_field: [entry.to_wire(kind) for entry in answers]}
        response = await self._request(
            "POST", f"/{kind.path}/submit-answers/{link_id}", authenticated=False, json=payload
        )
        self._raise_for_status(response, authenticated=False)
        logger.info("Submitted %d answers for %s link %s", len(answers), kind.path, link_id)
        return _body(response)
