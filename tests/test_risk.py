"""Tests for the risk rule engine."""

from __future__ import annotations

import logging

import pytest

from impactgate.config import RiskVocabulary
from impactgate.impact.risk import DEFAULT_RISK_RULES, RiskAssessor, RiskRule
from impactgate.models import (
    ChangeInput,
    ChangeScope,
    ChangeType,
    FlowStrength,
    ImpactLevel,
    OperationType,
    ParsedChange,
    ParsedOperation,
    RiskCategory,
    RiskSeverity,
    ScopedFile,
    ScopedModule,
)


def _op(type: OperationType, target: str = "something") -> ParsedOperation:
    return ParsedOperation(type=type, target=target)


def _assess(
    assessor: RiskAssessor | None = None,
    change_type: ChangeType | None = ChangeType.BUGFIX,
    parsed: ParsedChange | None = None,
    scope: ChangeScope | None = None,
    flows: list | None = None,
):
    assessor = assessor or RiskAssessor()
    return assessor.assess(
        ChangeInput(description="change", change_type=change_type),
        parsed or ParsedChange(),
        scope or ChangeScope(),
        flows or [],
    )


def _rule_ids(risks) -> list[str]:
    return [r.rule_id for r in risks]


def _dependent(module_id: str, level: ImpactLevel = ImpactLevel.DIRECT) -> ScopedModule:
    return ScopedModule(module_id=module_id, module_name=module_id, impact_level=level)


class TestNoSignal:
    def test_quiet_bugfix_has_no_risks(self):
        assert _assess() == []


class TestDefaultRules:
    def test_r001_migrate_operation(self):
        risks = _assess(parsed=ParsedChange(operations=[_op(OperationType.MIGRATE)]))
        assert _rule_ids(risks) == ["R001"]
        assert risks[0].id == "risk-R001"
        assert risks[0].is_blocking is True
        assert risks[0].severity == RiskSeverity.CRITICAL

    def test_r001_schema_target(self):
        parsed = ParsedChange(operations=[_op(OperationType.ADD, "the database index")])
        assert "R001" in _rule_ids(_assess(parsed=parsed))

    def test_r001_migration_with_schema_keyword(self):
        parsed = ParsedChange(keywords=["column"])
        assert _rule_ids(_assess(change_type=ChangeType.MIGRATION, parsed=parsed)) == ["R001"]

    def test_r001_critical_flow_with_modify(self, make_flow):
        parsed = ParsedChange(operations=[_op(OperationType.MODIFY)])
        flows = [make_flow(impact_level=ImpactLevel.CASCADE)]
        assert "R001" in _rule_ids(_assess(parsed=parsed, flows=flows))

    def test_r002_api_file_refactor(self):
        scope = ChangeScope(primary_files=["src/api/users.py"])
        risks = _assess(change_type=ChangeType.REFACTOR, scope=scope)
        assert _rule_ids(risks) == ["R002"]
        assert risks[0].is_blocking is False

    def test_r002_requires_modification(self):
        parsed = ParsedChange(keywords=["endpoint"], operations=[_op(OperationType.ADD)])
        assert "R002" not in _rule_ids(_assess(parsed=parsed))

    def test_r002_keyword_and_delete(self):
        parsed = ParsedChange(keywords=["endpoint"], operations=[_op(OperationType.DELETE)])
        assert "R002" in _rule_ids(_assess(parsed=parsed))

    @pytest.mark.parametrize("parsed,scope", [
        (ParsedChange(entities=["AuthToken"]), None),
        (ParsedChange(keywords=["password"]), None),
        (None, ChangeScope(primary_files=["src/security/keys.py"])),
        (None, ChangeScope(primary_modules=["oauth-bridge"])),
    ])
    def test_r003_security_signals(self, parsed, scope):
        risks = _assess(parsed=parsed, scope=scope)
        assert _rule_ids(risks) == ["R003"]
        assert risks[0].category == RiskCategory.SECURITY

    def test_r003_keyword_match_is_exact(self):
        assert _assess(parsed=ParsedChange(keywords=["reauthorize"])) == []

    def test_r004_threshold(self):
        two = ChangeScope(primary_modules=["a"], dependent_modules=[_dependent("b")])
        three = ChangeScope(
            primary_modules=["a"], dependent_modules=[_dependent("b"), _dependent("c")]
        )
        assert _assess(scope=two) == []
        assert _rule_ids(_assess(scope=three)) == ["R004"]

    def test_r005_critical_direct_flow(self, make_flow):
        flows = [make_flow(strength=FlowStrength.CRITICAL, impact_level=ImpactLevel.DIRECT)]
        assert _rule_ids(_assess(flows=flows)) == ["R005"]

    def test_r005_ignores_indirect(self, make_flow):
        flows = [make_flow(strength=FlowStrength.CRITICAL, impact_level=ImpactLevel.INDIRECT)]
        assert _assess(flows=flows) == []

    def test_r006_keyword_and_db_target(self):
        parsed = ParsedChange(
            keywords=["cache"], operations=[_op(OperationType.REFACTOR, "slow query path")]
        )
        assert "R006" in _rule_ids(_assess(parsed=parsed))

    def test_r006_many_files(self):
        scope = ChangeScope(affected_files=[
            ScopedFile(file_path=f"f{i}.py", impact_level=ImpactLevel.DIRECT) for i in range(11)
        ])
        assert _rule_ids(_assess(scope=scope)) == ["R006"]

    def test_r007_feature_without_tests(self):
        assert _rule_ids(_assess(change_type=ChangeType.FEATURE)) == ["R007"]

    def test_r007_suppressed_by_test_keyword(self):
        parsed = ParsedChange(keywords=["coverage"])
        assert _assess(change_type=ChangeType.FEATURE, parsed=parsed) == []

    def test_r008_deletion_with_dependents(self):
        scope = ChangeScope(primary_modules=["users"], dependent_modules=[_dependent("orders")])
        risks = _assess(change_type=ChangeType.DELETION, scope=scope)
        assert _rule_ids(risks) == ["R008"]
        assert risks[0].is_blocking is True

    def test_r008_needs_dependents(self):
        assert _assess(change_type=ChangeType.DELETION) == []


class TestOrdering:
    def test_severity_then_rule_order(self):
        parsed = ParsedChange(
            keywords=["password", "endpoint"], operations=[_op(OperationType.MODIFY, "handler")]
        )
        scope = ChangeScope(primary_modules=["a", "b", "c"])
        risks = _assess(change_type=ChangeType.FEATURE, parsed=parsed, scope=scope)
        assert _rule_ids(risks) == ["R003", "R002", "R004", "R007"]


class TestDescriptions:
    def test_default_description(self):
        scope = ChangeScope(primary_modules=["a", "b", "c"])
        [risk] = _assess(scope=scope)
        assert risk.description == (
            "Cross-Module Impact detected. Affected areas: module:a, module:b, module:c. "
            "Consider addressing this during implementation."
        )

    def test_description_truncates_areas(self):
        scope = ChangeScope(primary_modules=["a", "b", "c", "d"])
        [risk] = _assess(scope=scope)
        assert "module:c and 1 more." in risk.description

    def test_affected_areas(self, users_scope: ChangeScope):
        parsed = ParsedChange(entities=["User"])
        risks = _assess(change_type=ChangeType.FEATURE, parsed=parsed, scope=users_scope)
        assert risks[0].affected_areas == [
            "module:users", "depends:orders", "models.py", "entity:User"
        ]

    def test_template(self):
        assessor = RiskAssessor(rules=[])
        assessor.add_rule(RiskRule(
            id="C1",
            name="Custom",
            category=RiskCategory.DEPLOYMENT,
            severity=RiskSeverity.LOW,
            condition=lambda ctx: True,
            mitigation="Deploy carefully.",
            description_template="{{changeType}} touches {{moduleCount}} modules",
        ))
        scope = ChangeScope(primary_modules=["a", "b"])
        [risk] = _assess(assessor, change_type=ChangeType.FEATURE, scope=scope)
        assert risk.description == "feature touches 2 modules"

        [risk] = _assess(assessor, change_type=None, scope=scope)
        assert risk.description.startswith("unknown")


class TestCustomRules:
    def test_failing_rule_is_skipped(self, caplog: pytest.LogCaptureFixture):
        assessor = RiskAssessor()
        assessor.add_rule(RiskRule(
            id="BOOM",
            name="Broken",
            category=RiskCategory.TESTING,
            severity=RiskSeverity.LOW,
            condition=lambda ctx: 1 / 0,
            mitigation="",
        ))
        with caplog.at_level(logging.WARNING, logger="impactgate.risk"):
            risks = _assess(assessor, change_type=ChangeType.FEATURE)
        assert _rule_ids(risks) == ["R007"]
        assert "Risk rule BOOM evaluation failed" in caplog.text

    def test_custom_rules_run_after_defaults(self):
        assessor = RiskAssessor()
        assessor.add_rule(RiskRule(
            id="C1",
            name="Always",
            category=RiskCategory.DEPLOYMENT,
            severity=RiskSeverity.MEDIUM,
            condition=lambda ctx: True,
            mitigation="",
        ))
        risks = _assess(assessor, change_type=ChangeType.FEATURE)
        assert _rule_ids(risks) == ["R007", "C1"]

    def test_remove_rule(self):
        assessor = RiskAssessor()
        assessor.add_rule(RiskRule(
            id="C1",
            name="Always",
            category=RiskCategory.DEPLOYMENT,
            severity=RiskSeverity.LOW,
            condition=lambda ctx: True,
            mitigation="",
        ))
        assert assessor.remove_rule("R001") is False
        assert assessor.remove_rule("C1") is True
        assert assessor.remove_rule("C1") is False
        assert [r.id for r in assessor.get_rules()] == [r.id for r in DEFAULT_RISK_RULES]

    def test_copy_is_independent(self):
        assessor = RiskAssessor()
        clone = assessor.copy()
        clone.add_rule(RiskRule(
            id="C1",
            name="Always",
            category=RiskCategory.DEPLOYMENT,
            severity=RiskSeverity.LOW,
            condition=lambda ctx: True,
            mitigation="",
        ))
        assert len(clone.get_rules()) == len(assessor.get_rules()) + 1

    def test_vocabulary_is_configurable(self):
        assessor = RiskAssessor(vocabulary=RiskVocabulary(cross_module_threshold=5))
        scope = ChangeScope(primary_modules=["a", "b", "c"])
        assert _assess(assessor, scope=scope) == []


class TestStatistics:
    def test_counts(self, make_risk):
        risks = [
            make_risk("risk-R001"),
            make_risk("risk-R002", severity=RiskSeverity.HIGH, is_blocking=False,
                      category=RiskCategory.BREAKING_CHANGE),
            make_risk("risk-R004", severity=RiskSeverity.MEDIUM, is_blocking=False,
                      category=RiskCategory.COMPATIBILITY),
        ]
        stats = RiskAssessor.get_statistics(risks)
        assert stats["total"] == 3
        assert stats["by_severity"] == {"critical": 1, "high": 1, "medium": 1, "low": 0}
        assert stats["by_category"]["breaking-change"] == 1
        assert stats["blocking"] == 1
