"""Risk assessment: a rule engine over one shared evaluation context.

Each rule is a flat record holding a predicate over an immutable
``RiskEvaluationContext``. Rules are evaluated in order; a predicate that
raises is logged and counts as "did not match".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from impactgate.config import RiskVocabulary
from impactgate.models import (
    SEVERITY_ORDER,
    ChangeInput,
    ChangeScope,
    ChangeType,
    FlowStrength,
    IdentifiedRisk,
    ImpactDataFlow,
    ImpactLevel,
    OperationType,
    ParsedChange,
    RiskCategory,
    RiskSeverity,
)

logger = logging.getLogger("impactgate.risk")


@dataclass(frozen=True)
class RiskEvaluationContext:
    """Everything a rule predicate may look at."""

    parsed: ParsedChange
    scope: ChangeScope
    data_flows: tuple[ImpactDataFlow, ...]
    change_input: ChangeInput
    vocabulary: RiskVocabulary = field(default_factory=RiskVocabulary)

    def has_keyword(self, words: list[str]) -> bool:
        return any(k in words for k in self.parsed.keywords)

    def has_operation(self, *types: OperationType) -> bool:
        return any(op.type in types for op in self.parsed.operations)

    def operation_target_contains(self, terms: list[str]) -> bool:
        return any(
            term in op.target.lower() for op in self.parsed.operations for term in terms
        )


@dataclass
class RiskRule:
    id: str
    name: str
    category: RiskCategory
    severity: RiskSeverity
    condition: Callable[[RiskEvaluationContext], bool]
    mitigation: str
    is_blocking: bool = False
    description_template: str | None = None


# ---------------------------------------------------------------------------
# Default rule predicates
# ---------------------------------------------------------------------------


def _schema_change(ctx: RiskEvaluationContext) -> bool:
    vocab = ctx.vocabulary
    has_critical_flow = any(
        f.strength == FlowStrength.CRITICAL and f.validation_required for f in ctx.data_flows
    )
    has_schema_operation = (
        ctx.has_operation(OperationType.MIGRATE)
        or ctx.operation_target_contains(vocab.schema_target_terms)
    )
    return (
        (has_critical_flow and ctx.has_operation(OperationType.MODIFY))
        or has_schema_operation
        or (
            ctx.change_input.change_type == ChangeType.MIGRATION
            and ctx.has_keyword(vocab.schema_keywords)
        )
    )


def _breaking_api_change(ctx: RiskEvaluationContext) -> bool:
    vocab = ctx.vocabulary
    affects_api = any(
        marker in f for f in ctx.scope.primary_files for marker in vocab.api_path_markers
    )
    is_modifying = ctx.change_input.change_type == ChangeType.REFACTOR or ctx.has_operation(
        OperationType.MODIFY, OperationType.DELETE, OperationType.REFACTOR
    )
    return (affects_api or ctx.has_keyword(vocab.api_keywords)) and is_modifying


def _security_change(ctx: RiskEvaluationContext) -> bool:
    words = ctx.vocabulary.security_keywords

    def mentions(value: str) -> bool:
        lower = value.lower()
        return any(k in lower for k in words)

    return (
        any(mentions(e) for e in ctx.parsed.entities)
        or ctx.has_keyword(words)
        or any(mentions(f) for f in ctx.scope.primary_files)
        or any(mentions(m) for m in ctx.scope.primary_modules)
    )


def _cross_module_impact(ctx: RiskEvaluationContext) -> bool:
    return ctx.scope.module_count > ctx.vocabulary.cross_module_threshold


def _data_flow_disruption(ctx: RiskEvaluationContext) -> bool:
    return any(
        f.strength == FlowStrength.CRITICAL and f.impact_level == ImpactLevel.DIRECT
        for f in ctx.data_flows
    )


def _performance_impact(ctx: RiskEvaluationContext) -> bool:
    vocab = ctx.vocabulary
    has_db_operation = ctx.operation_target_contains(vocab.performance_target_terms)
    many_files = len(ctx.scope.affected_files) > vocab.many_files_threshold
    return (ctx.has_keyword(vocab.performance_keywords) and has_db_operation) or many_files


def _test_coverage_gap(ctx: RiskEvaluationContext) -> bool:
    is_new_feature = ctx.change_input.change_type == ChangeType.FEATURE or ctx.has_operation(
        OperationType.ADD
    )
    return is_new_feature and not ctx.has_keyword(ctx.vocabulary.test_keywords)


def _deletion_with_dependents(ctx: RiskEvaluationContext) -> bool:
    is_deletion = ctx.change_input.change_type == ChangeType.DELETION or ctx.has_operation(
        OperationType.DELETE
    )
    has_dependents = bool(ctx.scope.dependent_modules or ctx.scope.affected_files)
    return is_deletion and has_dependents


DEFAULT_RISK_RULES: tuple[RiskRule, ...] = (
    RiskRule(
        id="R001",
        name="Database Schema Change",
        category=RiskCategory.DATA_CORRUPTION,
        severity=RiskSeverity.CRITICAL,
        condition=_schema_change,
        mitigation="Create migration scripts with rollback capability. Test on staging data first.",
        is_blocking=True,
    ),
    RiskRule(
        id="R002",
        name="Breaking API Change",
        category=RiskCategory.BREAKING_CHANGE,
        severity=RiskSeverity.HIGH,
        condition=_breaking_api_change,
        mitigation="Add API versioning or maintain backward compatibility. Document breaking changes.",
    ),
    RiskRule(
        id="R003",
        name="Security-Sensitive Change",
        category=RiskCategory.SECURITY,
        severity=RiskSeverity.CRITICAL,
        condition=_security_change,
        mitigation="Security review required. Test authentication flows. Verify no credential exposure.",
        is_blocking=True,
    ),
    RiskRule(
        id="R004",
        name="Cross-Module Impact",
        category=RiskCategory.COMPATIBILITY,
        severity=RiskSeverity.MEDIUM,
        condition=_cross_module_impact,
        mitigation="Coordinate with other module owners. Run integration tests across affected modules.",
    ),
    RiskRule(
        id="R005",
        name="Data Flow Disruption",
        category=RiskCategory.DATA_CORRUPTION,
        severity=RiskSeverity.HIGH,
        condition=_data_flow_disruption,
        mitigation="Verify data integrity after change. Add data validation checks.",
    ),
    RiskRule(
        id="R006",
        name="Potential Performance Impact",
        category=RiskCategory.PERFORMANCE,
        severity=RiskSeverity.MEDIUM,
        condition=_performance_impact,
        mitigation="Run performance benchmarks. Consider caching strategies.",
    ),
    RiskRule(
        id="R007",
        name="Test Coverage Gap",
        category=RiskCategory.TESTING,
        severity=RiskSeverity.MEDIUM,
        condition=_test_coverage_gap,
        mitigation="Add unit tests for new functionality. Update existing tests if behavior changes.",
    ),
    RiskRule(
        id="R008",
        name="Deletion with Dependencies",
        category=RiskCategory.BREAKING_CHANGE,
        severity=RiskSeverity.HIGH,
        condition=_deletion_with_dependents,
        mitigation="Update or remove all dependent code before deletion. Check for runtime references.",
        is_blocking=True,
    ),
)

_SEVERITY_MESSAGES = {
    RiskSeverity.CRITICAL: "This requires immediate attention and approval before proceeding.",
    RiskSeverity.HIGH: "This should be addressed before implementation.",
    RiskSeverity.MEDIUM: "Consider addressing this during implementation.",
    RiskSeverity.LOW: "This is informational and can be addressed if time permits.",
}


class RiskAssessor:
    """Evaluates the default rules, then any custom rules, against a change."""

    def __init__(
        self,
        rules: list[RiskRule] | tuple[RiskRule, ...] = DEFAULT_RISK_RULES,
        vocabulary: RiskVocabulary | None = None,
    ) -> None:
        self.rules: list[RiskRule] = list(rules)
        self.custom_rules: list[RiskRule] = []
        self.vocabulary = vocabulary or RiskVocabulary()

    def assess(
        self,
        change: ChangeInput,
        parsed: ParsedChange,
        scope: ChangeScope,
        data_flows: list[ImpactDataFlow],
    ) -> list[IdentifiedRisk]:
        """Run every rule and return matching risks, most severe first."""
        context = RiskEvaluationContext(
            parsed=parsed,
            scope=scope,
            data_flows=tuple(data_flows),
            change_input=change,
            vocabulary=self.vocabulary,
        )

        risks: list[IdentifiedRisk] = []
        for rule in self.get_rules():
            try:
                matched = rule.condition(context)
            except Exception as e:
                logger.warning("Risk rule %s evaluation failed: %s", rule.id, e)
                continue
            if matched:
                risks.append(self._create_risk(rule, context))

        # sorted() is stable, so ties keep rule order
        return sorted(risks, key=lambda r: SEVERITY_ORDER[r.severity])

    def add_rule(self, rule: RiskRule) -> None:
        self.custom_rules.append(rule)

    def remove_rule(self, rule_id: str) -> bool:
        """Remove a custom rule. Default rules cannot be removed."""
        for i, rule in enumerate(self.custom_rules):
            if rule.id == rule_id:
                del self.custom_rules[i]
                return True
        return False

    def get_rules(self) -> list[RiskRule]:
        return [*self.rules, *self.custom_rules]

    def copy(self) -> RiskAssessor:
        clone = RiskAssessor(self.rules, self.vocabulary.model_copy(deep=True))
        clone.custom_rules = list(self.custom_rules)
        return clone

    @staticmethod
    def get_statistics(risks: list[IdentifiedRisk]) -> dict:
        stats = {
            "total": len(risks),
            "by_severity": {s.value: 0 for s in RiskSeverity},
            "by_category": {c.value: 0 for c in RiskCategory},
            "blocking": 0,
        }
        for risk in risks:
            stats["by_severity"][risk.severity.value] += 1
            stats["by_category"][risk.category.value] += 1
            if risk.is_blocking:
                stats["blocking"] += 1
        return stats

    # ------------------------------------------------------------------

    def _create_risk(self, rule: RiskRule, context: RiskEvaluationContext) -> IdentifiedRisk:
        affected_areas = self._collect_affected_areas(context)
        return IdentifiedRisk(
            id=f"risk-{rule.id}",
            rule_id=rule.id,
            name=rule.name,
            category=rule.category,
            severity=rule.severity,
            description=self._describe(rule, context, affected_areas),
            affected_areas=affected_areas,
            mitigation=rule.mitigation,
            is_blocking=rule.is_blocking,
        )

    @staticmethod
    def _describe(
        rule: RiskRule, context: RiskEvaluationContext, areas: list[str]
    ) -> str:
        if rule.description_template:
            change_type = context.change_input.change_type
            return (
                rule.description_template
                .replace("{{changeType}}", change_type.value if change_type else "unknown")
                .replace("{{moduleCount}}", str(context.scope.module_count))
                .replace("{{fileCount}}", str(context.scope.file_count))
                .replace("{{entityCount}}", str(len(context.parsed.entities)))
            )

        area_list = ", ".join(areas[:3])
        more = f" and {len(areas) - 3} more" if len(areas) > 3 else ""
        return (
            f"{rule.name} detected. Affected areas: {area_list}{more}. "
            f"{_SEVERITY_MESSAGES[rule.severity]}"
        )

    @staticmethod
    def _collect_affected_areas(context: RiskEvaluationContext) -> list[str]:
        scope = context.scope
        areas: dict[str, None] = {}
        for module in scope.primary_modules:
            areas[f"module:{module}"] = None
        for dep in scope.dependent_modules:
            if dep.impact_level == ImpactLevel.DIRECT:
                areas[f"depends:{dep.module_name}"] = None
        for file_path in scope.primary_files:
            areas[file_path.rsplit("/", 1)[-1]] = None
        for entity in context.parsed.entities:
            areas[f"entity:{entity}"] = None
        return list(areas)


risk_assessor = RiskAssessor()
