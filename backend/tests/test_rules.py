import json

import pytest

from app.core.exceptions import ValidationError
from app.services.classification.classifier import RuleBasedClassifier
from app.services.classification.rules import (
    DEFAULT_RULES, PrimaryClass, RuleSet, TAXONOMY, load_rule_set, rule, validate_classification,
)


def test_default_rules_stay_inside_the_taxonomy() -> None:
    for r in DEFAULT_RULES:
        assert r.sub_class in TAXONOMY[r.primary_class]
        assert 0 <= r.confidence <= 100


def test_rule_outside_taxonomy_is_rejected() -> None:
    with pytest.raises(ValidationError):
        RuleSet([rule("bad", r"x", PrimaryClass.DATA_ISSUE, "Wait_Timeout", 50)])


def test_rule_confidence_is_bounded() -> None:
    with pytest.raises(ValidationError):
        RuleSet([rule("bad", r"x", PrimaryClass.DATA_ISSUE, "Data_Issue", 101)])


def test_rules_load_from_file_in_priority_order(tmp_path) -> None:
    path = tmp_path / "rules.json"
    path.write_text(json.dumps([
        {"name": "late", "pattern": "boom", "primaryClass": "ApplicationDefect", "subClass": "Logic_Error", "confidence": 50, "priority": 20},
        {"name": "early", "pattern": "boom", "primaryClass": "DataIssue", "subClass": "Data_Issue", "confidence": 70, "priority": 10},
        {"name": "off", "pattern": "boom", "primaryClass": "DataIssue", "subClass": "Data_Issue", "confidence": 90, "priority": 1, "isActive": False},
    ]), encoding="utf-8")

    rules = load_rule_set(str(path))
    assert [r.name for r in rules] == ["early", "late"]


def test_invalid_pattern_in_file_is_reported(tmp_path) -> None:
    path = tmp_path / "rules.json"
    path.write_text(json.dumps([
        {"name": "broken", "pattern": "(unclosed", "primaryClass": "DataIssue", "subClass": "Data_Issue", "confidence": 50},
    ]), encoding="utf-8")
    with pytest.raises(ValidationError):
        RuleSet.from_file(path)


def test_validate_classification() -> None:
    assert validate_classification("ApplicationDefect", None) == (PrimaryClass.APPLICATION_DEFECT, None)
    assert validate_classification("AutomationScriptError", " Wait_Timeout ") == (PrimaryClass.AUTOMATION_SCRIPT_ERROR, "Wait_Timeout")
    with pytest.raises(ValidationError):
        validate_classification("NotAClass", None)
    with pytest.raises(ValidationError):
        validate_classification("DataIssue", "Wait_Timeout")


def test_rules_from_file_match_regardless_of_case(tmp_path) -> None:
    path = tmp_path / "rules.json"
    path.write_text(json.dumps([
        {"name": "enoent", "pattern": "ENOENT|No Such File", "primaryClass": "DataIssue", "subClass": "Missing_Test_Data", "confidence": 80},
    ]), encoding="utf-8")

    classifier = RuleBasedClassifier(RuleSet.from_file(path))

    result = classifier.classify("Error: ENOENT: no such file or directory, open './lead.json'", None)
    assert (result.primary_class, result.sub_class) == ("DataIssue", "Missing_Test_Data")


@pytest.mark.parametrize(
    "entry",
    [
        {"name": "no_sub", "pattern": "x", "primaryClass": "DataIssue", "confidence": 50},
        {"pattern": "x", "primaryClass": "DataIssue", "subClass": "Data_Issue", "confidence": 50},
        {"name": "no_conf", "pattern": "x", "primaryClass": "DataIssue", "subClass": "Data_Issue"},
        {"name": "bad_conf", "pattern": "x", "primaryClass": "DataIssue", "subClass": "Data_Issue", "confidence": "high"},
        {"name": "bad_pattern", "pattern": None, "primaryClass": "DataIssue", "subClass": "Data_Issue", "confidence": 50},
    ],
)
def test_incomplete_rule_entries_are_reported(tmp_path, entry) -> None:
    path = tmp_path / "rules.json"
    path.write_text(json.dumps([entry]), encoding="utf-8")
    with pytest.raises(ValidationError):
        RuleSet.from_file(path)
