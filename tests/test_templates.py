"""Tests for the template catalog and template loading."""

from __future__ import annotations

import json
import logging

import pytest

from ruckplan.config import Settings
from ruckplan.errors import InvalidParameters, TemplateNotFound
from ruckplan.services.templates import (
    TemplateCatalog,
    builtin_templates,
    default_template,
    load_templates,
    template_id,
    validate_template,
)
from ruckplan.workflow_models import (
    Difficulty,
    Phase,
    ProgramCategory,
    TemplateProgressionRule,
    WorkflowTemplate,
    WorkoutType,
)


def test_builtin_ids_are_stable():
    first = [t.id for t in builtin_templates()]
    second = [t.id for t in builtin_templates()]
    assert first == second
    assert first[0] == template_id("military foundation")


def test_builtin_templates_validate_cleanly():
    for template in builtin_templates():
        assert validate_template(template) == []


def test_select_exact_match():
    catalog = TemplateCatalog()
    template = catalog.select_template(ProgramCategory.MILITARY, Difficulty.ADVANCED)
    assert template.name == "Ranger Challenge"


def test_select_falls_back_to_same_category():
    catalog = TemplateCatalog()
    template = catalog.select_template(ProgramCategory.MILITARY, Difficulty.INTERMEDIATE)
    assert template.category == ProgramCategory.MILITARY
    assert template.name == "Military Foundation"


def test_select_falls_back_to_default(caplog):
    catalog = TemplateCatalog()
    with caplog.at_level(logging.INFO, logger="ruckplan.services.templates"):
        template = catalog.select_template(ProgramCategory.HISTORICAL, Difficulty.ELITE)
    assert template == catalog.default
    assert any(r.message == "template_fallback_default" for r in caplog.records)


def test_empty_catalog_always_returns_default():
    custom_default = default_template().model_copy(update={"name": "House"})
    catalog = TemplateCatalog(templates=[], default=custom_default)
    assert catalog.templates == ()
    assert catalog.select_template(ProgramCategory.FITNESS, Difficulty.BEGINNER).name == "House"


def test_get_by_id_and_missing():
    catalog = TemplateCatalog()
    maintenance = catalog.select_template(ProgramCategory.FITNESS, Difficulty.INTERMEDIATE)
    assert catalog.get(maintenance.id) is maintenance
    assert catalog.get(str(catalog.default.id)) is catalog.default
    with pytest.raises(TemplateNotFound) as exc:
        catalog.get("00000000-0000-0000-0000-000000000000")
    assert exc.value.status_code == 404


def test_overlapping_rules_are_reported(caplog):
    template = WorkflowTemplate(
        name="Overlap",
        category=ProgramCategory.ADVENTURE,
        difficulty=Difficulty.BEGINNER,
        duration_weeks=6,
        progression_rules=(
            TemplateProgressionRule(week_start=1, week_end=4, weight_progression=1.0),
            TemplateProgressionRule(week_start=3, week_end=6, weight_progression=2.0),
            TemplateProgressionRule(week_start=9, week_end=10),
        ),
    )
    with caplog.at_level(logging.WARNING, logger="ruckplan.services.templates"):
        warnings = validate_template(template)
    assert len(warnings) == 2
    assert "overlap" in warnings[0]
    assert "after week 6" in warnings[1]
    assert template.progression_rule_for(3).weight_progression == 1.0


def test_decreasing_rule_is_reported():
    template = WorkflowTemplate(
        name="Taper Heavy",
        category=ProgramCategory.ADVENTURE,
        difficulty=Difficulty.BEGINNER,
        duration_weeks=4,
        progression_rules=(TemplateProgressionRule(week_start=1, week_end=4, weight_progression=-5.0),),
    )
    warnings = validate_template(template)
    assert len(warnings) == 1
    assert "decreases load" in warnings[0]


def test_inverted_rule_range_is_rejected():
    with pytest.raises(ValueError):
        TemplateProgressionRule(week_start=5, week_end=2)


def _template_json() -> list[dict]:
    return [
        {
            "name": "Appalachian Trek",
            "category": "adventure",
            "difficulty": "intermediate",
            "duration_weeks": 6,
            "week_patterns": {"build": [{"workout_types": ["endurance", "rest", "ruck"], "intensity_modifier": 0.9}]},
            "base_parameters": {"endurance": {"target_weight": 30, "target_distance": 5.0, "intensity": 0.65}},
            "progression_rules": [{"week_start": 1, "week_end": 6, "distance_progression": 0.5}],
        }
    ]


def test_load_templates_from_json(tmp_path):
    path = tmp_path / "templates.json"
    path.write_text(json.dumps(_template_json()), encoding="utf-8")
    loaded = load_templates(path)
    assert len(loaded) == 1
    trek = loaded[0]
    assert trek.category == ProgramCategory.ADVENTURE
    assert trek.week_pattern(Phase.BUILD, 2).workout_types == (WorkoutType.ENDURANCE, WorkoutType.REST, WorkoutType.RUCK)
    assert trek.base_parameters_for(WorkoutType.ENDURANCE).target_distance == 5.0


def test_load_templates_rejects_invalid_file(tmp_path):
    bad = _template_json()
    bad[0]["duration_weeks"] = -1
    path = tmp_path / "templates.json"
    path.write_text(json.dumps(bad), encoding="utf-8")
    with pytest.raises(InvalidParameters) as exc:
        load_templates(path)
    assert exc.value.details["errors"]


def test_catalog_from_settings_adds_file_templates(tmp_path):
    path = tmp_path / "templates.json"
    path.write_text(json.dumps(_template_json()), encoding="utf-8")
    catalog = TemplateCatalog.from_settings(Settings(database_url="sqlite://", templates_path=str(path)))
    assert len(catalog.templates) == len(builtin_templates()) + 1
    assert catalog.select_template(ProgramCategory.ADVENTURE, Difficulty.ELITE).name == "Appalachian Trek"


def test_week_pattern_cycles_and_defaults():
    template = builtin_templates()[0]
    build = template.week_patterns[Phase.BUILD]
    assert template.week_pattern(Phase.BUILD, 2) == build[1]
    assert template.week_pattern(Phase.BUILD, 3) == build[0]
    assert default_template().week_pattern(Phase.PEAK, 1).workout_types == (
        WorkoutType.ENDURANCE,
        WorkoutType.STRENGTH,
        WorkoutType.ENDURANCE,
    )
