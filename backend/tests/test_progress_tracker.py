import pytest

from conftest import make_task
from castforge.models.schemas import InputKind, PipelineStage, TaskStatus
from castforge.services.errors import InvalidTransition, NotFound
from castforge.services.pipeline.progress_manager import ProgressManager


def test_overall_progress_bands():
    manager = ProgressManager(performance={})

    assert manager.calculate_overall_progress(PipelineStage.SCRIPTING, 0) == 40
    assert manager.calculate_overall_progress(PipelineStage.SYNTHESIZING, 50) == 70
    assert manager.calculate_overall_progress(PipelineStage.SYNTHESIZING, 250) == 85
    assert manager.calculate_overall_progress(PipelineStage.ASSEMBLING, 100) == 100


def test_plan_stages_by_source_kind():
    plan = ProgressManager.plan_stages(InputKind.VIDEO_URL, with_intro_outro=False)
    assert plan == [
        PipelineStage.QUEUED,
        PipelineStage.TRANSCRIBING,
        PipelineStage.SCRIPTING,
        PipelineStage.SYNTHESIZING,
    ]
    assert ProgressManager.plan_stages(InputKind.RAW_TEXT, True)[-1] is PipelineStage.ASSEMBLING


def test_remaining_time_uses_performance_config():
    manager = ProgressManager(performance={"stages": {
        "scripting": {"base_time": 20},
        "synthesizing": {"base_time": 100},
        "bogus": {"base_time": 1},
    }})
    plan = ProgressManager.plan_stages(InputKind.RAW_TEXT, False)

    assert manager.estimate_remaining(PipelineStage.SCRIPTING, 50, plan) == 110
    assert manager.estimate_remaining(PipelineStage.INTRO_OUTRO, 0, plan) is None
    assert manager.estimate_remaining(PipelineStage.COMPLETED, 0, plan) == 0


async def test_status_moves_forward_only(repository, tracker):
    task = await repository.create_task(make_task())

    await tracker.begin(task.id)
    with pytest.raises(InvalidTransition):
        await tracker.begin(task.id)

    await tracker.complete(task.id)
    with pytest.raises(InvalidTransition):
        await tracker.fail(task.id, "late failure")

    stored = await repository.get_task(task.id)
    assert stored.status is TaskStatus.COMPLETED
    assert stored.error_message is None


async def test_advance_requires_processing(repository, tracker):
    task = await repository.create_task(make_task())

    with pytest.raises(InvalidTransition):
        await tracker.advance(task.id, PipelineStage.SCRIPTING, "Writing")


async def test_percent_never_goes_back(repository, tracker):
    task = await repository.create_task(make_task())
    await tracker.begin(task.id)
    await tracker.advance(task.id, PipelineStage.SYNTHESIZING, "Generating", 50)

    task = await tracker.advance(task.id, PipelineStage.SYNTHESIZING, "Still generating", 10)

    assert task.progress.percent == 70
    assert task.progress.message == "Still generating"


async def test_progress_is_read_from_repository(repository, tracker):
    task = await repository.create_task(make_task(owner_id="alice"))
    await tracker.begin(task.id)
    await tracker.advance(task.id, PipelineStage.SCRIPTING, "Writing")

    progress = await tracker.get_progress(task.id, "alice")

    assert progress.status is TaskStatus.PROCESSING
    assert progress.stage is PipelineStage.SCRIPTING
    assert progress.percent == 40
    assert progress.estimated_time_remaining is not None

    with pytest.raises(NotFound):
        await tracker.get_progress(task.id, "bob")


async def test_fail_keeps_percent_and_message(repository, tracker):
    task = await repository.create_task(make_task())
    await tracker.begin(task.id)
    await tracker.advance(task.id, PipelineStage.SCRIPTING, "Writing")

    task = await tracker.fail(task.id, "Something went wrong")

    assert task.status is TaskStatus.FAILED
    assert task.progress.stage is PipelineStage.FAILED
    assert task.progress.percent == 40
    assert task.error_message == "Something went wrong"
    assert task.completed_at is not None


async def test_subscribers_receive_updates(repository, tracker):
    task = await repository.create_task(make_task())
    queue = tracker.subscribe(task.id)

    await tracker.begin(task.id)
    tracker.unsubscribe(task.id, queue)
    await tracker.advance(task.id, PipelineStage.ANALYZING, "Reading")

    message = queue.get_nowait()
    assert message["task_id"] == task.id
    assert message["status"] == "processing"
    assert message["stage"] == "queued"
    assert "timestamp" in message
    assert queue.empty()
