import asyncio

from fastapi.testclient import TestClient

from labprofile.models import PipelineStage, ProfileFields, Publication, SynthesisResult
from labprofile.services.pipeline import PipelineResult
from labprofile.services.runner import PipelineRunner
from labprofile.services.status import PipelineStatusTracker
from labprofile.services.storage import SqlProfileStorage
from labprofile.settings import Settings
from labprofile.web.app import create_app


class _StubPipeline:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, bool]] = []

    async def run(self, user_id, orcid_id, options=None, on_progress=None) -> PipelineResult:
        self.calls.append((user_id, orcid_id, options.deep_mining))
        return PipelineResult(
            user_id=user_id,
            profile_created=True,
            publications_stored=2,
            synthesis=SynthesisResult(),
            warnings=["We found 2 publications on your ORCID profile."],
        )


def _seed_profile(settings: Settings, user_id: str) -> None:
    storage = SqlProfileStorage(settings)

    async def seed() -> None:
        await storage.create_profile(user_id, ProfileFields(research_summary="Kinases", grant_titles=["R01"]))
        await storage.replace_publications(user_id, [Publication(user_id=user_id, pmid="1", title="Paper")])

    asyncio.run(seed())


def test_status_not_started(tmp_path) -> None:
    client = TestClient(create_app(Settings(data_dir=tmp_path), tracker=PipelineStatusTracker()))
    body = client.get("/status/u1").json()
    assert body["stage"] == "not_started"
    assert body["has_profile"] is False


def test_status_reports_running_stage(tmp_path) -> None:
    tracker = PipelineStatusTracker()
    tracker.set_stage("u1", PipelineStage.MINING_METHODS, warnings=["sparse"])
    client = TestClient(create_app(Settings(data_dir=tmp_path), tracker=tracker))

    body = client.get("/status/u1").json()
    assert body["stage"] == "mining_methods"
    assert body["message"] == "Analyzing your research..."
    assert body["warnings"] == ["sparse"]


def test_status_recovers_from_stored_profile(tmp_path) -> None:
    settings = Settings(data_dir=tmp_path)
    _seed_profile(settings, "u1")
    client = TestClient(create_app(settings, tracker=PipelineStatusTracker()))

    body = client.get("/status/u1").json()
    assert body["stage"] == "complete"
    assert body["has_profile"] is True


def test_generate_runs_pipeline_and_reports_completion(tmp_path) -> None:
    tracker = PipelineStatusTracker()
    pipeline = _StubPipeline()
    runner = PipelineRunner(pipeline, tracker)
    client = TestClient(create_app(Settings(data_dir=tmp_path), runner=runner))

    response = client.post("/profiles/u1/generate", json={"orcid_id": "0000-0001", "deep_mining": False})

    assert response.json() == {"status": "started"}
    assert pipeline.calls == [("u1", "0000-0001", False)]
    body = client.get("/status/u1").json()
    assert body["stage"] == "complete"
    assert body["result"] == {"publications_found": 2, "profile_created": True}


def test_generate_refuses_when_running_or_existing(tmp_path) -> None:
    settings = Settings(data_dir=tmp_path)
    tracker = PipelineStatusTracker()
    tracker.set_stage("busy", PipelineStage.SYNTHESIZING)
    _seed_profile(settings, "done")
    pipeline = _StubPipeline()
    client = TestClient(create_app(settings, runner=PipelineRunner(pipeline, tracker)))

    assert client.post("/profiles/busy/generate", json={"orcid_id": "x"}).json() == {"status": "already_running"}
    assert client.post("/profiles/done/generate", json={"orcid_id": "x"}).json() == {"status": "already_exists"}
    assert pipeline.calls == []


def test_profile_endpoint(tmp_path) -> None:
    settings = Settings(data_dir=tmp_path)
    _seed_profile(settings, "u1")
    client = TestClient(create_app(settings, tracker=PipelineStatusTracker()))

    body = client.get("/profiles/u1").json()
    assert body["research_summary"] == "Kinases"
    assert body["grant_titles"] == ["R01"]
    assert body["publication_count"] == 1
    assert "user_submitted_texts" not in body
    assert client.get("/profiles/ghost").status_code == 404


def test_submitted_texts_round_trip_and_validation(tmp_path) -> None:
    settings = Settings(data_dir=tmp_path)
    _seed_profile(settings, "u1")
    client = TestClient(create_app(settings, tracker=PipelineStatusTracker()))

    response = client.put("/profiles/u1/submitted-texts", json=[{"label": "Focus", "content": "Kinase biology"}])
    assert response.status_code == 200
    assert client.get("/profiles/u1/submitted-texts").json() == {
        "texts": [{"label": "Focus", "content": "Kinase biology"}]
    }

    too_many = [{"label": f"L{n}", "content": "text"} for n in range(6)]
    assert client.put("/profiles/u1/submitted-texts", json=too_many).status_code == 422
    blank = [{"label": " ", "content": "text"}]
    assert client.put("/profiles/u1/submitted-texts", json=blank).status_code == 422
    assert client.put("/profiles/ghost/submitted-texts", json=[]).status_code == 404
