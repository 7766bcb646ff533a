from pathlib import Path

import pytest

from labprofile.models import ProfileFields, Publication
from labprofile.services.storage import SqlProfileStorage
from labprofile.settings import Settings


def _publication(user_id: str, pmid: str, title: str) -> Publication:
    return Publication(user_id=user_id, pmid=pmid, title=title, abstract=f"abstract {pmid}", year=2020)


@pytest.mark.asyncio
async def test_replace_publications_is_wholesale_and_scoped(tmp_path: Path) -> None:
    storage = SqlProfileStorage(Settings(data_dir=tmp_path))

    await storage.replace_publications("u1", [_publication("u1", "1", "A"), _publication("u1", "2", "B")])
    await storage.replace_publications("u2", [_publication("u2", "9", "Other")])
    stored = await storage.replace_publications("u1", [_publication("u1", "3", "C")])

    assert stored == 1
    assert [pub.pmid for pub in await storage.list_publications("u1")] == ["3"]
    assert [pub.pmid for pub in await storage.list_publications("u2")] == ["9"]


@pytest.mark.asyncio
async def test_profile_create_then_update_keeps_submitted_texts(tmp_path: Path) -> None:
    storage = SqlProfileStorage(Settings(data_dir=tmp_path))
    assert await storage.find_profile("u1") is None

    created = await storage.create_profile(
        "u1", ProfileFields(research_summary="first", techniques=["CRISPR"], grant_titles=["R01"])
    )
    assert created.profile_version == 1
    assert created.techniques == ["CRISPR"]

    saved = await storage.save_user_submitted_texts("u1", [{"label": "Focus", "content": "Kinases"}])
    assert saved

    updated = await storage.update_profile("u1", ProfileFields(research_summary="second"), version=2)
    assert updated.profile_version == 2
    assert updated.research_summary == "second"
    assert updated.techniques == []
    assert updated.user_submitted_texts == [{"label": "Focus", "content": "Kinases"}]


@pytest.mark.asyncio
async def test_create_twice_and_update_missing_fail(tmp_path: Path) -> None:
    storage = SqlProfileStorage(Settings(data_dir=tmp_path))
    await storage.create_profile("u1", ProfileFields())

    with pytest.raises(ValueError):
        await storage.create_profile("u1", ProfileFields())
    with pytest.raises(LookupError):
        await storage.update_profile("ghost", ProfileFields(), version=2)
    assert not await storage.save_user_submitted_texts("ghost", [])


@pytest.mark.asyncio
async def test_persist_run_writes_publications_and_profile_together(tmp_path: Path) -> None:
    storage = SqlProfileStorage(Settings(data_dir=tmp_path))

    created = await storage.persist_run(
        "u1", [_publication("u1", "1", "A")], ProfileFields(research_summary="first"), version=1
    )
    updated = await storage.persist_run(
        "u1",
        [_publication("u1", "2", "B"), _publication("u1", "3", "C")],
        ProfileFields(research_summary="second"),
        version=2,
    )

    assert created.profile_version == 1
    assert updated.profile_version == 2
    assert updated.research_summary == "second"
    assert updated.updated_at is not None
    assert [pub.pmid for pub in await storage.list_publications("u1")] == ["2", "3"]

    with pytest.raises(LookupError):
        await storage.persist_run("ghost", [_publication("ghost", "9", "X")], ProfileFields(), version=2)
    assert await storage.list_publications("ghost") == []
