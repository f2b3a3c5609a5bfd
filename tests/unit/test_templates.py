"""
Unit tests for milestone templates and component-type matching.
"""
import pytest

from pipetrak.milestones.templates import (
    DEFAULT_TEMPLATES,
    FIELD_WELD,
    FULL_MILESTONE_SET,
    INSULATION,
    REDUCED_MILESTONE_SET,
    resolve_template_name,
    validate_template_milestones,
)


class TestDefaultTemplates:

    @pytest.mark.parametrize("name", list(DEFAULT_TEMPLATES))
    def test_defaults_are_valid(self, name):
        assert validate_template_milestones(DEFAULT_TEMPLATES[name]["milestones"]) == []

    def test_field_weld_has_weld_made(self):
        names = [m["name"] for m in DEFAULT_TEMPLATES[FIELD_WELD]["milestones"]]

        assert "Weld Made" in names


class TestValidateTemplate:

    def test_empty(self):
        assert validate_template_milestones([]) == ["Template must define at least one milestone"]

    def test_weights_must_sum_to_hundred(self):
        errors = validate_template_milestones([
            {"name": "A", "weight": 50, "order": 1},
            {"name": "B", "weight": 40, "order": 2},
        ])

        assert errors == ["Milestone weights must sum to 100 (got 90)"]

    def test_weight_tolerance(self):
        assert validate_template_milestones([
            {"name": "A", "weight": 33.333, "order": 1},
            {"name": "B", "weight": 33.333, "order": 2},
            {"name": "C", "weight": 33.334, "order": 3},
        ]) == []

    def test_order_gaps(self):
        errors = validate_template_milestones([
            {"name": "A", "weight": 50, "order": 1},
            {"name": "B", "weight": 50, "order": 3},
        ])

        assert "Milestone orders must be 1..N without gaps" in errors

    def test_duplicate_names_and_negative_weight(self):
        errors = validate_template_milestones([
            {"name": "A", "weight": 110, "order": 1},
            {"name": "A", "weight": -10, "order": 2},
        ])

        assert "Milestone names must be unique" in errors
        assert "Milestone weights must be non-negative numbers" in errors


class TestResolveTemplateName:

    @pytest.mark.parametrize("component_type,expected", [
        ("SPOOL", FULL_MILESTONE_SET),
        ("valve", REDUCED_MILESTONE_SET),
        ("Gate Valve", REDUCED_MILESTONE_SET),
        ("field-weld", FIELD_WELD),
        ("INSUL", INSULATION),
        ("WIDGET", REDUCED_MILESTONE_SET),
        (None, REDUCED_MILESTONE_SET),
    ])
    def test_matching(self, component_type, expected):
        assert resolve_template_name(component_type) == expected

    def test_unavailable_match_falls_back(self):
        assert resolve_template_name("FIELD_WELD", [REDUCED_MILESTONE_SET, FULL_MILESTONE_SET]) == REDUCED_MILESTONE_SET

    def test_falls_back_to_full(self):
        assert resolve_template_name("WIDGET", [FULL_MILESTONE_SET, INSULATION]) == FULL_MILESTONE_SET

    def test_custom_only(self):
        assert resolve_template_name("WIDGET", ["Custom"]) == "Custom"

    def test_nothing_available(self):
        with pytest.raises(LookupError):
            resolve_template_name("SPOOL", [])
