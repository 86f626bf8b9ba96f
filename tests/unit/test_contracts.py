import pytest

from convoflow.contracts import (
    FieldSpec,
    FieldType,
    StepDefinition,
    StepKind,
    TemplateStructureError,
    WorkflowStatus,
    WorkflowTemplate,
)


def test_field_spec_accepts_plain_names_and_legacy_keys():
    assert FieldSpec.model_validate("email").field == "email"

    spec = FieldSpec.model_validate({"name": "startTime", "type": "datetime"})
    assert spec.field == "startTime"
    assert spec.type is FieldType.DATETIME

    # unknown declared types fall back to name based inference later
    assert FieldSpec.model_validate({"field": "dueAt", "type": "timestamp"}).type is None

    typed = FieldSpec.model_validate({"field": "attendees", "type": "email"})
    assert typed.type is FieldType.EMAIL
    assert typed.required is True


def test_step_definition_lifts_loose_keys_into_extension():
    step = StepDefinition.model_validate(
        {
            "id": "book_meeting",
            "type": "execute",
            "title": "Book",
            "requiredData": ["startTime"],
            "dependsOn": ["confirm"],
            "retryOnFailure": True,
            "skip_if_known": True,
            "parentId": "root",
            "action": "schedule_meeting",
            "metadata": {"timezone": "Europe/Berlin"},
        }
    )

    assert step.kind is StepKind.EXECUTE
    assert step.required_data == ["startTime"]
    assert step.depends_on == ["confirm"]
    assert step.retry_on_failure is True
    assert step.extension.skip_if_known is True
    assert step.extension.parent_id == "root"
    assert step.extension.action == "schedule_meeting"
    assert step.extension.timezone == "Europe/Berlin"


def test_step_definition_round_trips_through_alias_dump():
    step = StepDefinition.model_validate(
        {"id": "a", "type": "gather", "title": "A", "requiredData": ["x"], "parentId": "p"}
    )
    again = StepDefinition.model_validate(step.model_dump(mode="json", by_alias=True))
    assert again == step


def test_prerequisite_fields_fall_back_to_required_data():
    step = StepDefinition.model_validate(
        {"id": "a", "type": "gather", "title": "A", "requiredData": ["email", "phone"]}
    )
    assert [f.field for f in step.prerequisite_fields()] == ["email", "phone"]

    declared = StepDefinition.model_validate(
        {
            "id": "b",
            "type": "gather",
            "title": "B",
            "requiredData": ["email"],
            "prerequisites": [{"field": "email", "type": "email", "required": False}],
        }
    )
    assert declared.prerequisite_fields()[0].required is False


def test_parse_steps_accepts_json_text():
    template = WorkflowTemplate(
        id="t",
        name="T",
        category="support",
        base_structure='{"steps": [{"id": "a", "type": "gather", "title": "A"}]}',
    )
    assert [s.id for s in template.parse_steps()] == ["a"]
    assert template.has_valid_structure()


@pytest.mark.parametrize(
    "structure",
    ["not json at all", {"no_steps": []}, {"steps": [{"id": "a", "type": "bogus", "title": "A"}]}, None],
)
def test_parse_steps_rejects_malformed_structures(structure):
    template = WorkflowTemplate(id="t", name="T", category="support", base_structure=structure)
    with pytest.raises(TemplateStructureError):
        template.parse_steps()
    assert not template.has_valid_structure()


def test_workflow_status_only_moves_forward():
    assert WorkflowStatus.PLANNING.can_transition_to(WorkflowStatus.ACTIVE)
    assert WorkflowStatus.ACTIVE.can_transition_to(WorkflowStatus.COMPLETED)
    assert WorkflowStatus.ACTIVE.can_transition_to(WorkflowStatus.CANCELLED)
    assert not WorkflowStatus.ACTIVE.can_transition_to(WorkflowStatus.PLANNING)
    assert not WorkflowStatus.COMPLETED.can_transition_to(WorkflowStatus.FAILED)
    assert not WorkflowStatus.CANCELLED.can_transition_to(WorkflowStatus.CANCELLED)
    assert WorkflowStatus.FAILED.is_terminal
