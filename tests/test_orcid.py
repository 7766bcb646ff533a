import httpx
import pytest

from labprofile.services.orcid import OrcidApiError, OrcidClient, pick_lab_website_url
from labprofile.services.throttle import RequestThrottle
from labprofile.settings import Settings

ORCID = "0000-0002-1825-0097"

PERSON = {
    "name": {
        "given-names": {"value": "Ada"},
        "family-name": {"value": "Lovelace"},
        "credit-name": None,
    },
    "emails": {
        "email": [
            {"email": "old@example.org", "verified": True, "primary": False},
            {"email": "ada@example.org", "verified": True, "primary": True},
        ]
    },
    "researcher-urls": {
        "researcher-url": [
            {"url-name": "Twitter", "url": {"value": "https://x.example/ada"}},
            {"url-name": "Lovelace Lab", "url": {"value": "https://lab.example.org"}},
        ]
    },
}

EMPLOYMENTS = {
    "affiliation-group": [
        {
            "summaries": [
                {
                    "employment-summary": {
                        "organization": {"name": "Old University"},
                        "department-name": "Physics",
                        "start-date": {"year": {"value": "2001"}},
                        "end-date": {"year": {"value": "2010"}},
                    }
                }
            ]
        },
        {
            "summaries": [
                {
                    "employment-summary": {
                        "organization": {"name": "New Institute"},
                        "department-name": "Biology",
                        "start-date": {"year": {"value": "2012"}},
                        "end-date": None,
                    }
                }
            ]
        },
    ]
}

FUNDINGS = {
    "group": [
        {"funding-summary": [{"title": {"title": {"value": "R01 Kinase Atlas"}}, "type": "GRANT"}]},
        {"funding-summary": [{"title": None}]},
    ]
}

WORKS = {
    "group": [
        {
            "work-summary": [
                {
                    "title": {"title": {"value": "Paper one"}},
                    "external-ids": {
                        "external-id": [
                            {"external-id-type": "doi", "external-id-value": "10.9/related", "external-id-relationship": "part-of"},
                            {"external-id-type": "doi", "external-id-value": "10.9/self", "external-id-relationship": "self"},
                            {"external-id-type": "pmid", "external-id-value": "555", "external-id-relationship": "self"},
                        ]
                    },
                    "type": "JOURNAL_ARTICLE",
                    "publication-date": {"year": {"value": "2020"}},
                    "journal-title": {"value": "Nature"},
                },
                {"title": {"title": {"value": "Duplicate from another source"}}},
            ]
        },
        {"work-summary": [{"title": None}]},
    ]
}


def _client(tmp_path, handler, **settings_kwargs) -> tuple[OrcidClient, RequestThrottle]:
    settings = Settings(data_dir=tmp_path, **settings_kwargs)
    throttle = RequestThrottle(0)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OrcidClient(client, settings, throttle), throttle


def _router(request: httpx.Request) -> httpx.Response:
    endpoint = request.url.path.rsplit("/", 1)[-1]
    payloads = {"person": PERSON, "employments": EMPLOYMENTS, "fundings": FUNDINGS, "works": WORKS}
    return httpx.Response(200, json=payloads[endpoint])


@pytest.mark.asyncio
async def test_fetch_profile_combines_person_and_employment(tmp_path) -> None:
    client, throttle = _client(tmp_path, _router)
    profile = await client.fetch_profile(ORCID)

    assert profile.name == "Ada Lovelace"
    assert profile.email == "ada@example.org"
    assert profile.institution == "New Institute"
    assert profile.department == "Biology"
    assert profile.lab_website_url == "https://lab.example.org"
    assert throttle.calls == 2


@pytest.mark.asyncio
async def test_fetch_works_prefers_self_identifiers(tmp_path) -> None:
    client, _ = _client(tmp_path, _router)
    works = await client.fetch_works(ORCID)

    assert len(works) == 1
    work = works[0]
    assert work.title == "Paper one"
    assert work.doi == "10.9/self"
    assert work.pmid == "555"
    assert work.year == 2020
    assert work.journal == "Nature"
    assert work.type == "journal_article"


@pytest.mark.asyncio
async def test_grant_titles_skip_untitled(tmp_path) -> None:
    client, _ = _client(tmp_path, _router)
    assert await client.fetch_grant_titles(ORCID) == ["R01 Kinase Atlas"]


@pytest.mark.asyncio
async def test_token_switches_to_member_api(tmp_path) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _router(request)

    client, _ = _client(tmp_path, handler, orcid_sandbox=True)
    await client.fetch_works(ORCID, access_token="tok")
    await client.fetch_works(ORCID)

    assert seen[0].url.host == "api.sandbox.orcid.org"
    assert seen[0].headers["Authorization"] == "Bearer tok"
    assert seen[1].url.host == "pub.sandbox.orcid.org"
    assert "Authorization" not in seen[1].headers


@pytest.mark.asyncio
async def test_error_status_raises(tmp_path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    client, _ = _client(tmp_path, handler)
    with pytest.raises(OrcidApiError) as excinfo:
        await client.fetch_profile(ORCID)
    assert excinfo.value.status_code == 404


def test_lab_website_falls_back_to_first_url() -> None:
    urls = [{"url-name": "Blog", "url": {"value": "https://blog.example"}}]
    assert pick_lab_website_url(urls) == "https://blog.example"
    assert pick_lab_website_url([]) is None
