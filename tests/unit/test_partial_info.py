from convoflow.contracts import (
    PartialDataStrategy,
    StrategyKind,
    Workflow,
    WorkflowContext,
)
from convoflow.info.partial import determine_strategy, handle_partial_info, infer_missing_data
from convoflow.registry import default_scheduling_template


def _workflow() -> Workflow:
    return Workflow(
        id="wf-1",
        conversation_id="conv",
        steps=default_scheduling_template().parse_steps(),
        context=WorkflowContext(conversation_id="conv"),
    )


def test_all_critical_fields_present_merges_defaults():
    available = {
        "attendees": ["a@example.com"],
        "startTime": "2024-03-15T14:00:00",
        "endTime": "2024-03-15T15:00:00",
        "timezone": "Europe/Berlin",
    }
    outcome = handle_partial_info(_workflow(), available)

    assert outcome.strategy is StrategyKind.DEFAULT
    assert outcome.status == "active"
    assert outcome.data["priority"] == "medium"
    assert outcome.data["includeMeetingLink"] is True
    assert outcome.data["sendNotifications"] is True
    # collected values win over defaults
    assert outcome.data["timezone"] == "Europe/Berlin"


def test_few_missing_critical_fields_ask():
    outcome = handle_partial_info(_workflow(), {"attendees": ["a@example.com"]})
    assert outcome.strategy is StrategyKind.ASK
    assert outcome.status == "gathering"
    assert outcome.waiting_for == ["startTime", "endTime"]
    assert outcome.data == {"attendees": ["a@example.com"]}


def test_many_missing_critical_fields_wait():
    strategy = determine_strategy(_workflow().steps, {"attendees": []})
    assert strategy.strategy is StrategyKind.WAIT
    assert strategy.critical_fields == ["attendees", "startTime", "endTime"]

    outcome = handle_partial_info(_workflow(), {})
    assert outcome.status == "blocked"
    assert outcome.waiting_for == ["attendees", "startTime", "endTime"]


def test_infer_fills_derivable_fields():
    available = {
        "startTime": "2024-03-15T14:00:00",
        "duration": 45,
        "includeMeetingLink": True,
        "attendees": ["a@example.com", "b@example.com"],
        "purpose": "Design review",
    }
    inferred = infer_missing_data(available)
    assert inferred == {
        "endTime": "2024-03-15T14:45:00",
        "location": "Video meeting (link will be provided)",
        "title": "Design review with 2 attendee(s)",
    }


def test_infer_strategy_runs_caller_rules_for_absent_fields_only():
    outcome = handle_partial_info(
        _workflow(),
        {"title": "Standup", "owner": "ada"},
        strategy=PartialDataStrategy(strategy=StrategyKind.INFER),
        rules={
            "title": lambda data: "never used",
            "summary": lambda data: f"{data['title']} run by {data['owner']}",
        },
    )
    assert outcome.status == "active"
    assert outcome.inferred_fields == ["summary"]
    assert outcome.data["summary"] == "Standup run by ada"
    assert outcome.data["title"] == "Standup"


def test_proceed_passes_data_through():
    outcome = handle_partial_info(
        _workflow(), {"x": 1}, strategy=PartialDataStrategy(strategy=StrategyKind.PROCEED)
    )
    assert outcome.status == "active"
    assert outcome.data == {"x": 1}
