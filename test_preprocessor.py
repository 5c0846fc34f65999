"""
Tests for the preprocessor and field-name repair.

Tests cover:
- Enum normalization (case, whitespace, separators)
- Synonym lookup by index-free path and by bare field name
- Idempotence
- Only allowed values are written back
- camelCase key repair
- Structure normalizer hook
"""

import pytest
from pydantic import ValidationError

from output_recovery.core.preprocessor import normalize, preprocess
from output_recovery.models import RegenerationConfig
from output_recovery.utils.field_names import fix_field_names, to_snake_case

from conftest import EXERCISE_TYPES


@pytest.fixture
def synonym_config():
    return RegenerationConfig(
        enum_synonyms={
            "exercise_type": {"analysis": "case_study", "Q&A": "quiz"},
            "sections.lessons.exercise_type": {"debate": "discussion"},
        },
        escalation_model=None,
    )


class TestNormalize:
    """Single-value normalization"""

    def test_case_and_separators(self, synonym_config):
        value, changed, description = normalize("  Case-Study ", "exercise_type", synonym_config, EXERCISE_TYPES)
        assert value == "case_study"
        assert changed
        assert "case_study" in description

    def test_synonym_by_field_name(self, synonym_config):
        value, changed, _ = normalize("Analysis", "exercise_type", synonym_config, EXERCISE_TYPES)
        assert value == "case_study"
        assert changed

    def test_synonym_by_path_without_indices(self, synonym_config):
        """The index-free path table wins over the bare field name"""
        value, _, _ = normalize("Debate", "sections[0].lessons[3].exercise_type", synonym_config, EXERCISE_TYPES)
        assert value == "discussion"

    def test_non_string_passes_through(self, synonym_config):
        assert normalize(3, "exercise_type", synonym_config, EXERCISE_TYPES) == (3, False, "")
        assert normalize(None, "exercise_type", synonym_config, EXERCISE_TYPES) == (None, False, "")

    def test_already_canonical_is_unchanged(self, synonym_config):
        value, changed, description = normalize("quiz", "exercise_type", synonym_config, EXERCISE_TYPES)
        assert value == "quiz"
        assert not changed
        assert description == ""

    @pytest.mark.parametrize("raw", [
        "Case Study",
        "  QUIZ  ",
        "analysis",
        "role--play",
        "Simulation_",
        "q&a",
        "",
        "   ",
    ])
    def test_idempotent(self, synonym_config, raw):
        """normalize(normalize(v)) == normalize(v)"""
        once, _, _ = normalize(raw, "exercise_type", synonym_config, EXERCISE_TYPES)
        twice, changed, _ = normalize(once, "exercise_type", synonym_config, EXERCISE_TYPES)
        assert twice == once
        assert not changed

    @pytest.mark.parametrize("raw", ["a", "B", "c", "Study Group", "peer review"])
    def test_idempotent_with_chained_synonyms(self, raw):
        config = RegenerationConfig(
            enum_synonyms={"exercise_type": {
                "a": "b", "b": "c", "c": "discussion",
                "study group": "Peer Review", "peer review": "discussion",
            }},
            escalation_model=None,
        )
        once, _, _ = normalize(raw, "exercise_type", config, EXERCISE_TYPES)
        twice, changed, _ = normalize(once, "exercise_type", config, EXERCISE_TYPES)
        assert once == "discussion"
        assert twice == once
        assert not changed

    def test_synonym_cycle_rejected(self):
        with pytest.raises(ValidationError, match="cycle"):
            RegenerationConfig(enum_synonyms={"exercise_type": {"a": "b", "b": "a"}}, escalation_model=None)

    def test_self_mapping_is_not_a_cycle(self):
        config = RegenerationConfig(enum_synonyms={"exercise_type": {"case study": "case_study"}},
                                    escalation_model=None)
        value, _, _ = normalize("Case Study", "exercise_type", config, EXERCISE_TYPES)
        assert value == "case_study"


class TestPreprocess:
    """Whole-payload pass"""

    def test_synonym_applied_and_logged(self, exercise_contract, synonym_config):
        data, changes = preprocess({"exercise_type": "Analysis"}, exercise_contract, synonym_config)
        assert data == {"exercise_type": "case_study"}
        assert len(changes) == 1
        assert "exercise_type" in changes[0]

    def test_unallowed_result_is_not_written(self, exercise_contract, synonym_config):
        """role_play normalizes cleanly but is not allowed, so the payload keeps its original value"""
        data, changes = preprocess({"exercise_type": "Role Play"}, exercise_contract, synonym_config)
        assert data == {"exercise_type": "Role Play"}
        assert changes == []

    def test_input_is_not_mutated(self, course_contract, sample_course, synonym_config):
        sample_course["sections"][0]["lessons"][0]["exercise_type"] = "QUIZ"
        data, _ = preprocess(sample_course, course_contract, synonym_config)
        assert sample_course["sections"][0]["lessons"][0]["exercise_type"] == "QUIZ"
        assert data["sections"][0]["lessons"][0]["exercise_type"] == "quiz"

    def test_nested_synonyms(self, course_contract, sample_course, synonym_config):
        sample_course["sections"][0]["lessons"][1]["exercise_type"] = "debate"
        data, changes = preprocess(sample_course, course_contract, synonym_config)
        assert data["sections"][0]["lessons"][1]["exercise_type"] == "discussion"
        assert changes[0].startswith("sections[0].lessons[1].exercise_type")

    def test_idempotent_over_payload(self, course_contract, sample_course, synonym_config):
        sample_course["level"] = " Beginner "
        once, _ = preprocess(sample_course, course_contract, synonym_config)
        twice, changes = preprocess(once, course_contract, synonym_config)
        assert twice == once
        assert changes == []

    def test_field_names_repaired(self, exercise_contract, synonym_config):
        data, changes = preprocess({"exerciseType": "quiz"}, exercise_contract, synonym_config)
        assert data == {"exercise_type": "quiz"}
        assert any("renamed" in c for c in changes)

    def test_field_name_repair_can_be_disabled(self, exercise_contract):
        config = RegenerationConfig(fix_field_names=False, escalation_model=None)
        data, changes = preprocess({"exerciseType": "quiz"}, exercise_contract, config)
        assert data == {"exerciseType": "quiz"}
        assert changes == []

    def test_structure_normalizer_runs(self, exercise_contract, synonym_config):
        def unwrap(payload):
            return payload.get("result", payload)

        data, changes = preprocess({"result": {"exercise_type": "quiz"}}, exercise_contract, synonym_config, unwrap)
        assert data == {"exercise_type": "quiz"}
        assert "structure normalizer reshaped payload" in changes

    def test_structure_normalizer_failure_is_ignored(self, exercise_contract, synonym_config):
        def broken(payload):
            raise KeyError("missing")

        data, changes = preprocess({"exercise_type": "QUIZ"}, exercise_contract, synonym_config, broken)
        assert data == {"exercise_type": "quiz"}
        assert len(changes) == 1


class TestFieldNames:
    """camelCase -> snake_case key repair"""

    @pytest.mark.parametrize("raw,expected", [
        ("courseTitle", "course_title"),
        ("HTTPStatus", "http_status"),
        ("lesson-id", "lesson_id"),
        ("already_snake", "already_snake"),
        ("Exercise Type", "exercise_type"),
    ])
    def test_to_snake_case(self, raw, expected):
        assert to_snake_case(raw) == expected

    def test_nested_keys_renamed(self, course_contract):
        payload = {
            "courseTitle": "ML",
            "level": "beginner",
            "sections": [{"name": "A", "lessons": [{"title": "x", "exerciseType": "quiz", "durationMinutes": 5}]}],
        }
        fixed, changes = fix_field_names(payload, course_contract.root)
        lesson = fixed["sections"][0]["lessons"][0]
        assert fixed["course_title"] == "ML"
        assert lesson == {"title": "x", "exercise_type": "quiz", "duration_minutes": 5}
        assert len(changes) == 3
        assert "courseTitle" in payload

    def test_existing_key_is_not_overwritten(self, exercise_contract):
        fixed, changes = fix_field_names({"exercise_type": "quiz", "exerciseType": "banana"}, exercise_contract.root)
        assert fixed == {"exercise_type": "quiz", "exerciseType": "banana"}
        assert changes == []

    def test_undeclared_key_left_alone(self, exercise_contract):
        fixed, changes = fix_field_names({"exercise_type": "quiz", "extraNotes": "x"}, exercise_contract.root)
        assert "extraNotes" in fixed
        assert changes == []
