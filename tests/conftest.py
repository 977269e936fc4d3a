"""Pytest configuration and fixtures."""
import json
import re
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

from answerlinks.app import app
from answerlinks.browser_store import BrowserStorage, CompletionMarkerStore, browser_storage
from answerlinks.dependencies import get_registry_transport
from answerlinks.services.query_cache import query_cache
from answerlinks.services.reconciler import view_reconcilers
from answerlinks.services.registry import LinkRegistryClient

REGISTRY_URL = "http://localhost:8080/api"
ADMIN_TOKEN = "admin-token"


def future(days: int = 1) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def past(days: int = 1) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()


SURVEY = {
    "id": "S1",
    "name": "Course feedback",
    "sections": [
        {
            "id": "sec1",
            "title": "About the course",
            "questions": [
                {
                    "id": "q1",
                    "questionNumber": 1,
                    "question": "Would you recommend the course?",
                    "questionType": "RADIO",
                    "choices": [
                        {"order": "2", "choiceText": "No"},
                        {"order": "1", "choiceText": "Yes"},
                    ],
                },
                {
                    "id": "q2",
                    "questionNumber": 2,
                    "question": "Why not?",
                    "questionType": "TEXT",
                    "followUp": True,
                    "parentQuestionNumber": 1,
                    "parentChoice": "2",
                },
                {
                    "id": "q3",
                    "questionNumber": 3,
                    "question": "Anything else?",
                    "questionType": "TEXT",
                    "required": False,
                },
                {
                    "id": "q4",
                    "questionNumber": 4,
                    "question": "Rate the course",
                    "questionType": "GRID",
                    "rows": ["Pace", "Content"],
                    "choices": [
                        {"order": "1", "choiceText": "Good"},
                        {"order": "2", "choiceText": "Poor"},
                    ],
                },
            ],
        }
    ],
}

ASSESSMENT = {
    "id": "A1",
    "name": "Safety check",
    "sections": [
        {
            "id": "part1",
            "questions": [
                {
                    "id": "aq1",
                    "questionNumber": 1,
                    "question": "Pick the safe options",
                    "questionType": "CHECKBOX",
                    "choices": [
                        {"order": "a", "choiceText": "Helmet"},
                        {"order": "b", "choiceText": "Sandals"},
                        {"order": "c", "choiceText": "Gloves"},
                    ],
                }
            ],
        }
    ],
}

ROUTES = [
    ("POST", r"/(\w+)/([^/]+)/create-answer-link", "create"),
    ("PATCH", r"/(\w+)/answer-link/([^/]+)/extend", "extend"),
    ("DELETE", r"/(\w+)/answer-links/([^/]+)", "delete"),
    ("GET", r"/(\w+)/check-link-validity/([^/]+)", "validity"),
    ("POST", r"/(\w+)/submit-answers/([^/]+)", "submit"),
    ("GET", r"/(\w+)/([^/]+)/answer-links", "list"),
    ("GET", r"/(\w+)/([^/]+)/answered-trainees", "answered"),
    ("GET", r"/(\w+)/([^/]+)/answers/([^/]+)", "answers"),
    ("GET", r"/(\w+)/([^/]+)", "subject"),
]


class FakeRegistry:
    """In-memory registry answering the REST contract through ``httpx.MockTransport``."""

    def __init__(self):
        self.links = {"survey": [], "assessment": []}
        self.answered = {}
        self.submissions = {}
        self.subjects = {"survey": {"S1": SURVEY}, "assessment": {"A1": ASSESSMENT}}
        self.requests = []
        self.overrides = {}
        self.offline = False
        self._counter = 0

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def add_link(self, kind: str, subject_id: str, trainee_id=None, **fields) -> dict:
        self._counter += 1
        link_id = fields.pop("id", f"L{self._counter}")
        link = {
            "id": link_id,
            f"{kind}Id": subject_id,
            "traineeId": trainee_id,
            "traineeName": f"Trainee {trainee_id}" if trainee_id else None,
            "cohortId": fields.pop("cohortId", "C1"),
            "link": f"/{kind}/answer/{link_id}",
            "expiryDate": future(),
            "valid": True,
        }
        link.update(fields)
        self.links[kind].append(link)
        return link

    def calls(self, method: str, action: str) -> list:
        return [request for request in self.requests if request.method == method and action in request.url.path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.offline:
            raise httpx.ConnectError("registry unreachable", request=request)
        path = request.url.path[len("/api"):]
        override = self.overrides.get((request.method, path))
        if override is not None:
            return override
        for method, pattern, action in ROUTES:
            match = re.fullmatch(pattern, path)
            if match and request.method == method:
                return getattr(self, f"_{action}")(request, *match.groups())
        return httpx.Response(404, json={"message": "Not found"})

    def _body(self, request: httpx.Request) -> dict:
        return json.loads(request.content or b"{}")

    def _find(self, kind: str, link_id: str):
        return next((link for link in self.links[kind] if link["id"] == link_id), None)

    def _create(self, request, kind, subject_id):
        body = self._body(request)
        trainees = body.get("traineeIds") or []
        for cohort_id in body.get("cohortIds") or []:
            if trainees:
                for trainee_id in trainees:
                    self.add_link(kind, subject_id, trainee_id, cohortId=cohort_id, linkType=body.get("linkType"))
            else:
                self.add_link(kind, subject_id, None, cohortId=cohort_id, linkType=body.get("linkType"))
        return httpx.Response(200, json={"message": "Links created"})

    def _extend(self, request, kind, link_id):
        if self._find(kind, link_id) is None:
            return httpx.Response(404, json={"message": "Link not found"})
        return httpx.Response(200, json={"message": "Link extended"})

    def _delete(self, request, kind, link_id):
        link = self._find(kind, link_id)
        if link is None:
            return httpx.Response(404, json={"message": "Link not found"})
        self.links[kind].remove(link)
        return httpx.Response(200, json={"message": "Link deleted"})

    def _list(self, request, kind, subject_id):
        wanted = request.url.params.get_list("traineeIds")
        links = [
            link
            for link in self.links[kind]
            if link[f"{kind}Id"] == subject_id and (not wanted or link["traineeId"] in wanted)
        ]
        return httpx.Response(200, json={f"{kind}Links": links})

    def _answered(self, request, kind, subject_id):
        trainees = [{"id": trainee_id} for trainee_id in self.answered.get(subject_id, [])]
        return httpx.Response(200, json={"trainees": trainees})

    def _validity(self, request, kind, link_id):
        link = self._find(kind, link_id)
        if link is None:
            return httpx.Response(404, json={"message": "Link not found"})
        subject = self.subjects[kind].get(link[f"{kind}Id"])
        return httpx.Response(200, json={f"{kind}Link": {**link, kind: subject}})

    def _answers(self, request, kind, subject_id, trainee_id):
        answers = self.submissions.get((kind, subject_id, trainee_id), [])
        return httpx.Response(200, json={f"{kind}Answers": answers})

    def _subject(self, request, kind, subject_id):
        subject = self.subjects.get(kind, {}).get(subject_id)
        if subject is None:
            return httpx.Response(404, json={"message": "Not found"})
        return httpx.Response(200, json={kind: subject})

    def _submit(self, request, kind, link_id):
        link = self._find(kind, link_id)
        if link is None or not link["valid"]:
            return httpx.Response(410, json={"message": "Link is no longer valid"})
        link["valid"] = False
        if link["traineeId"]:
            self.answered.setdefault(link[f"{kind}Id"], []).append(link["traineeId"])
            answers = self._body(request).get(f"{kind}Answers", [])
            stored = [{**answer, "traineeName": link["traineeName"]} for answer in answers]
            self.submissions[(kind, link[f"{kind}Id"], link["traineeId"])] = stored
        return httpx.Response(200, json={"message": "Answers submitted"})


@pytest.fixture(autouse=True)
def reset_state():
    """Each test starts with empty caches, browser storage and listeners."""
    query_cache.clear()
    browser_storage._browsers.clear()
    yield
    query_cache.clear()
    browser_storage._browsers.clear()
    view_reconcilers.clear()
    app.dependency_overrides.clear()


@pytest.fixture
def fake_registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def admin_registry(fake_registry: FakeRegistry) -> LinkRegistryClient:
    """Registry client carrying the admin bearer token."""
    return LinkRegistryClient(REGISTRY_URL, token=ADMIN_TOKEN, transport=fake_registry.transport())


@pytest.fixture
def public_registry(fake_registry: FakeRegistry) -> LinkRegistryClient:
    return LinkRegistryClient(REGISTRY_URL, transport=fake_registry.transport())


@pytest.fixture
def markers() -> CompletionMarkerStore:
    """Marker store of a single browser, isolated from the app's storage."""
    return CompletionMarkerStore(BrowserStorage(), "browser-1")


@pytest.fixture
def client(fake_registry: FakeRegistry) -> TestClient:
    """Create test client wired to the fake registry."""
    app.dependency_overrides[get_registry_transport] = fake_registry.transport
    return TestClient(app)


@pytest.fixture
def authenticated_client(client: TestClient) -> TestClient:
    """Create authenticated test client."""
    client.post("/login", data={"password": "trainingadmin", "api_token": ADMIN_TOKEN})
    return client
