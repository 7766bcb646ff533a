from labprofile.models import PipelineResultSummary, PipelineStage
from labprofile.services.status import PipelineStatusTracker


def test_unknown_user_has_no_status() -> None:
    tracker = PipelineStatusTracker()
    assert tracker.get_status("nobody") is None
    assert not tracker.is_running("nobody")


def test_warnings_carry_over_until_replaced() -> None:
    tracker = PipelineStatusTracker()
    tracker.set_stage("u1", PipelineStage.FETCHING_ORCID, warnings=["sparse record"])
    tracker.set_stage("u1", PipelineStage.MINING_METHODS)

    status = tracker.get_status("u1")
    assert status.stage is PipelineStage.MINING_METHODS
    assert status.message == "Analyzing your research..."
    assert status.warnings == ["sparse record"]

    tracker.set_stage("u1", PipelineStage.SYNTHESIZING, warnings=[])
    assert tracker.get_status("u1").warnings == []


def test_error_and_result_are_never_carried() -> None:
    tracker = PipelineStatusTracker()
    tracker.set_stage("u1", PipelineStage.ERROR, error="ORCID down")
    assert not tracker.is_running("u1")

    tracker.set_stage("u1", PipelineStage.STARTING)
    status = tracker.get_status("u1")
    assert status.error is None
    assert tracker.is_running("u1")

    summary = PipelineResultSummary(publications_found=3, profile_created=True)
    tracker.set_stage("u1", PipelineStage.COMPLETE, result=summary)
    tracker.set_stage("u1", PipelineStage.STARTING)
    assert tracker.get_status("u1").result is None


def test_entries_are_replaced_not_mutated() -> None:
    tracker = PipelineStatusTracker()
    first = tracker.set_stage("u1", PipelineStage.STARTING, warnings=["a"])
    tracker.set_stage("u1", PipelineStage.FETCHING_ORCID, warnings=["b"])
    assert first.stage is PipelineStage.STARTING
    assert first.warnings == ["a"]


def test_users_are_independent_and_clearable() -> None:
    tracker = PipelineStatusTracker()
    tracker.set_stage("u1", PipelineStage.STARTING)
    tracker.set_stage("u2", PipelineStage.COMPLETE)

    tracker.clear("u1")
    assert tracker.get_status("u1") is None
    assert tracker.get_status("u2").stage is PipelineStage.COMPLETE

    tracker.clear_all()
    assert tracker.get_status("u2") is None
