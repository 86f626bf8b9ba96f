import pytest

from convoflow.config import EngineConfig
from convoflow.contracts import Impact, OptimizationType, WorkflowContext
from convoflow.generator import WorkflowGenerator
from convoflow.learning import OptimizationAdvisor, parallel_pairs
from convoflow.persistence import InMemoryWorkflowRepository, LearningRecord
from convoflow.registry import seed_templates, to_template


async def _generate(repo, **existing):
    template = to_template(await repo.get_template("schedule-meeting"))
    context = WorkflowContext(conversation_id="conv", existing_data=existing)
    return await WorkflowGenerator(repo).generate_workflow(template, context)


async def _seeded() -> InMemoryWorkflowRepository:
    repo = InMemoryWorkflowRepository()
    await seed_templates(repo)
    return repo


def _by_type(optimizations):
    return {o.type: o for o in optimizations}


def test_parallel_pairs_respect_transitive_dependencies():
    order = ["a", "b", "c", "d"]
    edges = {"c": {"a"}, "d": {"c"}}
    assert parallel_pairs(order, edges) == [["a", "b"], ["b", "c"], ["b", "d"]]


def test_parallel_pairs_tolerate_cycles():
    assert parallel_pairs(["a", "b"], {"a": {"b"}, "b": {"a"}}) == []


@pytest.mark.asyncio
async def test_repeatedly_skipped_steps_are_reported():
    repo = await _seeded()
    await _generate(repo, attendees=["a@example.com"])
    latest = await _generate(repo, attendees=["b@example.com"])

    skip = _by_type(await OptimizationAdvisor(repo).suggest_optimizations(latest))[
        OptimizationType.SKIP_STEP
    ]
    assert skip.suggestion == {
        "stepsToRemove": ["gather_attendees"],
        "skipCounts": {"gather_attendees": 2},
    }
    assert skip.confidence == 0.8
    assert skip.impact is Impact.MEDIUM


@pytest.mark.asyncio
async def test_single_skip_is_below_threshold():
    repo = await _seeded()
    workflow = await _generate(repo, attendees=["a@example.com"])
    advisor = OptimizationAdvisor(repo)
    assert OptimizationType.SKIP_STEP not in _by_type(
        await advisor.suggest_optimizations(workflow)
    )

    lenient = OptimizationAdvisor(repo, EngineConfig(repeated_skip_threshold=1))
    assert OptimizationType.SKIP_STEP in _by_type(
        await lenient.suggest_optimizations(workflow)
    )


@pytest.mark.asyncio
async def test_independent_tasks_are_reported_as_parallel():
    repo = await _seeded()
    workflow = await _generate(repo)

    parallel = _by_type(await OptimizationAdvisor(repo).suggest_optimizations(workflow))[
        OptimizationType.PARALLEL
    ]
    groups = parallel.suggestion["parallelGroups"]
    assert ["gather_attendees", "gather_datetime"] in groups
    assert ["gather_datetime", "check_availability"] not in groups
    # book_meeting depends on gather_datetime through confirm_details
    assert ["gather_datetime", "book_meeting"] not in groups
    assert parallel.impact is Impact.HIGH


@pytest.mark.asyncio
async def test_confident_patterns_become_suggestions():
    repo = await _seeded()
    workflow = await _generate(repo)
    for score, description in ((80.0, "Mornings work best"), (70.0, "Exactly seventy"), (75.0, "Short meetings")):
        await repo.save_pattern(
            LearningRecord(
                template_id="schedule-meeting",
                pattern_type="scheduling_preference",
                pattern_data={"description": description},
                confidence_score=score,
            )
        )

    patterns = [
        o
        for o in await OptimizationAdvisor(repo).suggest_optimizations(workflow)
        if o.type is OptimizationType.MODIFY_VALIDATION
    ]
    assert [p.description for p in patterns] == ["Mornings work best", "Short meetings"]
    assert patterns[0].confidence == pytest.approx(0.8)
