"""Link issuing tests."""
import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from answerlinks.errors import LinkAlreadyConsumed, NetworkError, NoSubjectSelected
from answerlinks.models import SubjectKind, Variant
from answerlinks.services.issuer import IssuerSelection, LinkIssuer
from answerlinks.services.query_cache import QueryCache, answered_key, links_key


def past(days: int = 1) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()


@pytest.fixture
def cache() -> QueryCache:
    return QueryCache()


def make_issuer(kind, registry, cache, **selection):
    return LinkIssuer(kind, registry, cache, IssuerSelection(**selection))


def test_cohort_links_use_selected_expiry(fake_registry, admin_registry, cache):
    """Two hours is sent as 120 minutes along with every cohort id."""
    issuer = make_issuer(
        SubjectKind.SURVEY, admin_registry, cache, subject_id="S1", expiry_value=2, expiry_unit="hours"
    )
    asyncio.run(issuer.generate_for_cohorts(["C1", "C2"]))

    body = json.loads(fake_registry.calls("POST", "create-answer-link")[0].content)
    assert body["expiryMinutes"] == 120
    assert body["cohortIds"] == ["C1", "C2"]
    assert body["traineeIds"] == []


def test_trainee_link_targets_one_trainee(fake_registry, admin_registry, cache):
    issuer = make_issuer(SubjectKind.ASSESSMENT, admin_registry, cache, subject_id="A1")
    asyncio.run(issuer.generate_for_trainee("C1", "T7"))

    body = json.loads(fake_registry.calls("POST", "create-answer-link")[0].content)
    assert body == {"cohortIds": ["C1"], "traineeIds": ["T7"], "expiryMinutes": 1440, "linkType": "PRE_ASSESSMENT"}


def test_variant_defaults(admin_registry, cache):
    assert make_issuer(SubjectKind.ASSESSMENT, admin_registry, cache).selection.variant is Variant.PRE
    survey = make_issuer(SubjectKind.SURVEY, admin_registry, cache, variant=Variant.POST)
    assert survey.selection.variant is None


def test_operations_require_a_subject(fake_registry, admin_registry, cache):
    issuer = make_issuer(SubjectKind.SURVEY, admin_registry, cache)
    with pytest.raises(NoSubjectSelected):
        asyncio.run(issuer.generate_for_cohort("C1"))
    with pytest.raises(NoSubjectSelected):
        asyncio.run(issuer.delete_link("L1"))
    assert fake_registry.requests == []


def test_links_are_cached_until_a_mutation(fake_registry, admin_registry, cache):
    """Reads hit the cache; a confirmed mutation forces the next read to refetch."""
    fake_registry.add_link("survey", "S1", "T1")
    issuer = make_issuer(SubjectKind.SURVEY, admin_registry, cache, subject_id="S1")

    asyncio.run(issuer.load_links())
    asyncio.run(issuer.load_links())
    assert len(fake_registry.calls("GET", "answer-links")) == 1

    asyncio.run(issuer.generate_for_cohort("C1"))
    assert cache.get(links_key("survey", "S1")).stale
    links = asyncio.run(issuer.load_links())
    assert len(fake_registry.calls("GET", "answer-links")) == 2
    assert len(links) == 2


def test_failed_mutation_leaves_cache_alone(fake_registry, admin_registry, cache):
    fake_registry.add_link("survey", "S1", "T1")
    issuer = make_issuer(SubjectKind.SURVEY, admin_registry, cache, subject_id="S1")
    asyncio.run(issuer.load_links())
    fake_registry.offline = True

    with pytest.raises(NetworkError):
        asyncio.run(issuer.generate_for_cohort("C1"))
    assert not cache.invalidations
    assert not cache.get(links_key("survey", "S1")).stale


def test_extend_consumed_link_is_rejected(fake_registry, admin_registry, cache):
    """A link invalidated before its expiry was used; it is never extended."""
    link = fake_registry.add_link("survey", "S1", "T1", valid=False)
    issuer = make_issuer(SubjectKind.SURVEY, admin_registry, cache, subject_id="S1")

    with pytest.raises(LinkAlreadyConsumed):
        asyncio.run(issuer.extend_link(link["id"], 1, "days"))
    assert fake_registry.calls("PATCH", "extend") == []


def test_extend_expired_link_answered_per_registry_is_rejected(fake_registry, admin_registry, cache):
    link = fake_registry.add_link("survey", "S1", "T1", valid=False, expiryDate=past())
    fake_registry.answered["S1"] = ["T1"]
    issuer = make_issuer(SubjectKind.SURVEY, admin_registry, cache, subject_id="S1")

    with pytest.raises(LinkAlreadyConsumed):
        asyncio.run(issuer.extend_link(link["id"], 1, "days"))


def test_extend_expired_link(fake_registry, admin_registry, cache):
    """An unanswered expired link can be extended; both queries are invalidated."""
    link = fake_registry.add_link("survey", "S1", "T1", valid=False, expiryDate=past())
    issuer = make_issuer(SubjectKind.SURVEY, admin_registry, cache, subject_id="S1")

    result = asyncio.run(issuer.extend_link(link["id"], 3, "hours"))

    assert result["message"] == "Link extended"
    body = json.loads(fake_registry.calls("PATCH", "extend")[0].content)
    assert body == {"expiryMinutes": 180}
    assert ("survey", "answer-links") in cache.invalidations
    assert answered_key("survey", "S1") in cache.invalidations


def test_delete_twice_succeeds(fake_registry, admin_registry, cache):
    link = fake_registry.add_link("survey", "S1", "T1")
    issuer = make_issuer(SubjectKind.SURVEY, admin_registry, cache, subject_id="S1")

    asyncio.run(issuer.delete_link(link["id"]))
    asyncio.run(issuer.delete_link(link["id"]))
    assert cache.invalidations.count(("survey", "answer-links")) == 2


def test_assessments_have_no_explicit_answered_list(fake_registry, admin_registry, cache):
    issuer = make_issuer(SubjectKind.ASSESSMENT, admin_registry, cache, subject_id="A1")
    assert asyncio.run(issuer.load_answered()) is None
    assert fake_registry.calls("GET", "answered-trainees") == []
