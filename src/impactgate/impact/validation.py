"""Validation checklist generation.

Items come from four sources, in order:
  1. identified risks (one item per risk, shaped by risk category)
  2. module tests (primary modules, then direct dependents)
  3. significant data flows
  4. API-looking files in scope

The combined list is deduplicated by category and normalized title.
"""

from __future__ import annotations

import re
import uuid

from impactgate.config import ValidationGeneratorConfig
from impactgate.models import (
    ChangeScope,
    FlowStrength,
    IdentifiedRisk,
    ImpactDataFlow,
    ImpactLevel,
    RiskCategory,
    ValidationCategory,
    ValidationItem,
    ValidationStatus,
)

API_PATH_MARKERS: tuple[str, ...] = ("/api/", "/routes/", "/endpoints/", ".controller.", ".route.")
TEST_PASS_PATTERN = "(PASS|passed|✓|0 failed)"

_TITLE_NORMALIZE_RE = re.compile(r"[^a-z0-9]")
_UPPER_RE = re.compile(r"([A-Z])")


def dedup_key(item: ValidationItem) -> str:
    return f"{item.category.value}:{_TITLE_NORMALIZE_RE.sub('', item.title.lower())}"


class ValidationGenerator:
    """Builds the validation checklist for an analyzed change."""

    def __init__(self, config: ValidationGeneratorConfig | None = None) -> None:
        self.config = config or ValidationGeneratorConfig()

    def generate(
        self,
        scope: ChangeScope,
        data_flows: list[ImpactDataFlow],
        risks: list[IdentifiedRisk],
    ) -> list[ValidationItem]:
        items = self._risk_validations(risks)
        if self.config.include_module_tests:
            items.extend(self._module_test_validations(scope))
        if self.config.include_data_flow_validations:
            items.extend(self._data_flow_validations(data_flows))
        if self.config.include_api_validations:
            items.extend(self._api_validations(scope))
        return self.deduplicate(items)

    def set_config(self, **updates) -> None:
        self.config = self.config.model_copy(update=updates)

    def copy(self) -> ValidationGenerator:
        return ValidationGenerator(self.config.model_copy())

    @staticmethod
    def deduplicate(items: list[ValidationItem]) -> list[ValidationItem]:
        """Merge items with the same category and normalized title.

        The longer description wins; blocking is OR-combined.
        """
        seen: dict[str, ValidationItem] = {}
        for item in items:
            key = dedup_key(item)
            existing = seen.get(key)
            if existing is None:
                seen[key] = item
                continue
            winner = item if len(item.description) > len(existing.description) else existing
            blocking = existing.is_blocking or item.is_blocking
            if winner.is_blocking != blocking:
                winner = winner.model_copy(update={"is_blocking": blocking})
            seen[key] = winner
        return list(seen.values())

    @staticmethod
    def get_statistics(items: list[ValidationItem]) -> dict:
        stats = {
            "total": len(items),
            "by_category": {c.value: 0 for c in ValidationCategory},
            "blocking": 0,
            "auto_verifiable": 0,
            "pending": 0,
            "passed": 0,
            "failed": 0,
        }
        for item in items:
            stats["by_category"][item.category.value] += 1
            if item.is_blocking:
                stats["blocking"] += 1
            if item.auto_verifiable:
                stats["auto_verifiable"] += 1
            if item.status == ValidationStatus.PENDING:
                stats["pending"] += 1
            elif item.status == ValidationStatus.PASSED:
                stats["passed"] += 1
            elif item.status == ValidationStatus.FAILED:
                stats["failed"] += 1
        return stats

    # ------------------------------------------------------------------
    # Risk-derived items
    # ------------------------------------------------------------------

    def _risk_validations(self, risks: list[IdentifiedRisk]) -> list[ValidationItem]:
        return [self._risk_validation(risk) for risk in risks]

    def _risk_validation(self, risk: IdentifiedRisk) -> ValidationItem:
        category = risk.category

        if category == RiskCategory.DATA_CORRUPTION:
            return _item(
                title=f"Verify data integrity after {risk.name}",
                description=f"{risk.description}\n\nMitigation: {risk.mitigation}",
                category=ValidationCategory.MANUAL,
                is_blocking=risk.is_blocking,
                risk_id=risk.id,
            )
        if category == RiskCategory.BREAKING_CHANGE:
            return _item(
                title=f"Check backward compatibility for {risk.name}",
                description=(
                    "Verify that existing functionality is not broken.\n\n"
                    f"{risk.description}"
                ),
                category=ValidationCategory.TEST,
                is_blocking=risk.is_blocking,
                risk_id=risk.id,
            )
        if category == RiskCategory.SECURITY:
            # Security review blocks regardless of the risk's own flag
            return _item(
                title=f"Security review: {risk.name}",
                description=(
                    f"{risk.description}\n\nRequired checks:\n"
                    "- No credential exposure\n"
                    "- No injection vulnerabilities\n"
                    "- Proper authentication/authorization"
                ),
                category=ValidationCategory.REVIEW,
                is_blocking=True,
                risk_id=risk.id,
            )
        if category == RiskCategory.PERFORMANCE:
            return _item(
                title=f"Performance check: {risk.name}",
                description=(
                    f"{risk.description}\n\nVerify no significant performance degradation."
                ),
                category=ValidationCategory.TEST,
                is_blocking=False,
                risk_id=risk.id,
            )
        if category == RiskCategory.TESTING:
            return _item(
                title="Add tests for new functionality",
                description=(
                    f"{risk.description}\n\nEnsure adequate test coverage for changes."
                ),
                category=ValidationCategory.TEST,
                is_blocking=risk.is_blocking,
                risk_id=risk.id,
            )
        if category == RiskCategory.COMPATIBILITY:
            return _item(
                title=f"Integration test for {risk.name}",
                description=(
                    f"{risk.description}\n\nVerify integration across affected modules."
                ),
                category=ValidationCategory.TEST,
                is_blocking=risk.is_blocking,
                auto_verifiable=True,
                verify_command=f"{self.config.test_command_prefix} -m integration",
                risk_id=risk.id,
            )
        return _item(
            title=f"Review: {risk.name}",
            description=risk.description,
            category=ValidationCategory.MANUAL,
            is_blocking=risk.is_blocking,
            risk_id=risk.id,
        )

    # ------------------------------------------------------------------
    # Module tests
    # ------------------------------------------------------------------

    def _module_test_validations(self, scope: ChangeScope) -> list[ValidationItem]:
        items: list[ValidationItem] = []
        tested: set[str] = set()

        for module_id in scope.primary_modules:
            if module_id in tested:
                continue
            tested.add(module_id)
            items.append(_item(
                title=f"Run {module_id} module tests",
                description=(
                    f"Execute all tests for the {module_id} module to ensure no regressions."
                ),
                category=ValidationCategory.TEST,
                is_blocking=True,
                auto_verifiable=True,
                verify_command=self._test_command(module_id),
                expected_pattern=TEST_PASS_PATTERN,
                module_id=module_id,
            ))

        for dep in scope.dependent_modules:
            if dep.impact_level != ImpactLevel.DIRECT or dep.module_id in tested:
                continue
            tested.add(dep.module_id)
            items.append(_item(
                title=f"Run {dep.module_name} dependent tests",
                description=f"Test dependent module {dep.module_name}. Reason: {dep.reason}",
                category=ValidationCategory.TEST,
                is_blocking=False,
                auto_verifiable=True,
                verify_command=self._test_command(dep.module_id),
                expected_pattern=TEST_PASS_PATTERN,
                module_id=dep.module_id,
            ))

        return items

    def _test_command(self, module_id: str) -> str:
        return f"{self.config.test_command_prefix} {self.module_id_to_path(module_id)}"

    def module_id_to_path(self, module_id: str) -> str:
        """``module-userAuth`` -> ``<prefix>user-auth``."""
        name = _UPPER_RE.sub(r"-\1", module_id).lower()
        if name.startswith("-"):
            name = name[1:]
        name = name.replace("module-", "", 1)
        return f"{self.config.module_path_prefix}{name}"

    # ------------------------------------------------------------------
    # Data flows
    # ------------------------------------------------------------------

    @staticmethod
    def _data_flow_validations(data_flows: list[ImpactDataFlow]) -> list[ValidationItem]:
        items: list[ValidationItem] = []
        for flow in data_flows:
            if flow.strength not in (FlowStrength.CRITICAL, FlowStrength.IMPORTANT):
                continue
            if flow.impact_level not in (ImpactLevel.DIRECT, ImpactLevel.INDIRECT):
                continue

            suggested = ", ".join(flow.suggested_tests) or "None specified"
            items.append(_item(
                title=f"Verify {' → '.join(flow.entities)} data flow",
                description=(
                    f"Manually verify that data flows correctly from {flow.source} "
                    f"to {flow.target}.\n\n"
                    f"Relationships: {', '.join(flow.relationships)}\n"
                    f"Suggested tests: {suggested}"
                ),
                category=ValidationCategory.DATA_FLOW,
                is_blocking=flow.strength == FlowStrength.CRITICAL,
                data_flow_id=flow.id,
            ))
        return items

    # ------------------------------------------------------------------
    # API
    # ------------------------------------------------------------------

    def _api_validations(self, scope: ChangeScope) -> list[ValidationItem]:
        candidates = [
            *scope.primary_files,
            *(f.file_path for f in scope.affected_files if f.impact_level == ImpactLevel.DIRECT),
        ]
        api_files = [f for f in candidates if any(m in f for m in API_PATH_MARKERS)]
        if not api_files:
            return []

        file_list = "\n".join(f"- {f}" for f in api_files)
        return [
            _item(
                title="Test affected API endpoints",
                description=(
                    "Verify that all affected API endpoints work correctly.\n\n"
                    f"Affected files:\n{file_list}"
                ),
                category=ValidationCategory.API,
                is_blocking=True,
            ),
            _item(
                title="Run API integration tests",
                description="Execute API integration tests to verify endpoint functionality.",
                category=ValidationCategory.API,
                is_blocking=True,
                auto_verifiable=True,
                verify_command=f"{self.config.test_command_prefix} -m api",
                expected_pattern=TEST_PASS_PATTERN,
            ),
        ]


def _item(**fields) -> ValidationItem:
    return ValidationItem(id=f"val-{uuid.uuid4().hex[:12]}", **fields)


validation_generator = ValidationGenerator()
