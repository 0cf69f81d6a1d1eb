"""Tests for lifecycle triggers and the pre-implementation check."""

from __future__ import annotations

import asyncio

import pytest

from impactgate.config import AnalysisCriteria
from impactgate.impact.gate import GateController
from impactgate.impact.lifecycle import (
    AnalysisProvider,
    LifecycleHooks,
    SpecDocument,
    SpecImpactMetadata,
    TaskImpactMetadata,
    TaskInfo,
    TriggerPriority,
    format_gate_message,
)
from impactgate.models import ChangeInput, ChangeType, GateStatus, ImpactAnalysis, RiskSeverity


def _analysis(analysis_id: str, *risks) -> ImpactAnalysis:
    return ImpactAnalysis(
        id=analysis_id,
        input=ChangeInput(description="change"),
        risks=list(risks),
        gate=GateController().evaluate(list(risks), []),
    )


class InMemoryAnalyses:
    def __init__(self, by_task=None, by_spec=None):
        self.by_task = by_task or {}
        self.by_spec = by_spec or {}

    async def get_analysis_by_task(self, task_id):
        return self.by_task.get(task_id)

    async def get_analysis_by_spec(self, spec_id):
        return self.by_spec.get(spec_id)

    async def get_analysis(self, analysis_id):
        for analysis in [*self.by_task.values(), *self.by_spec.values()]:
            if analysis.id == analysis_id:
                return analysis
        return None


@pytest.fixture
def hooks() -> LifecycleHooks:
    return LifecycleHooks()


class TestTaskTriggers:
    def test_trivial_task(self, hooks):
        trigger = hooks.evaluate_task_for_analysis(TaskInfo(id="T1", title="Fix typo"))
        assert trigger.should_analyze is False
        assert trigger.reason == "Task appears trivial - no sensitive patterns detected"
        assert trigger.priority == TriggerPriority.LOW
        assert trigger.suggested_input is None

    def test_keywords_raise_to_medium(self, hooks):
        trigger = hooks.evaluate_task_for_analysis(TaskInfo(id="T2", title="Refactor payment API"))
        assert trigger.should_analyze is True
        assert trigger.priority == TriggerPriority.MEDIUM
        assert trigger.reason == 'Contains keyword: "refactor"; Contains keyword: "api"'
        assert trigger.suggested_input.task_id == "T2"
        assert trigger.suggested_input.description == "Refactor payment API\n\n"

    def test_high_priority_keyword(self, hooks):
        trigger = hooks.evaluate_task_for_analysis(
            TaskInfo(id="T3", title="Harden security headers")
        )
        assert trigger.priority == TriggerPriority.HIGH

    def test_sensitive_file(self, hooks):
        trigger = hooks.evaluate_task_for_analysis(
            TaskInfo(id="T4", title="Tweak login copy", target_files=["src/auth/login.py"])
        )
        assert trigger.priority == TriggerPriority.HIGH
        assert trigger.reason == "Targets sensitive file: src/auth/login.py"
        assert trigger.suggested_input.target_files == ["src/auth/login.py"]

    def test_sensitive_module(self, hooks):
        trigger = hooks.evaluate_task_for_analysis(
            TaskInfo(id="T5", title="Tweak copy", target_modules=["Database"])
        )
        assert trigger.priority == TriggerPriority.HIGH
        assert trigger.reason == "Targets sensitive module: Database"

    def test_long_description(self, hooks):
        description = "Make the header text on the landing page a little bit larger please"
        trigger = hooks.evaluate_task_for_analysis(
            TaskInfo(id="T6", title="Header", description=description)
        )
        assert trigger.should_analyze is True
        assert trigger.priority == TriggerPriority.MEDIUM
        assert trigger.reason == "Task has detailed description (likely complex)"

    def test_custom_keyword(self, hooks):
        hooks.add_trigger_keyword("billing")
        hooks.add_trigger_keyword("billing")
        assert hooks.criteria.trigger_keywords.count("billing") == 1
        trigger = hooks.evaluate_task_for_analysis(TaskInfo(id="T7", title="billing copy"))
        assert trigger.should_analyze is True

    def test_custom_sensitive_module(self, hooks):
        hooks.add_sensitive_module("ledger")
        trigger = hooks.evaluate_task_for_analysis(
            TaskInfo(id="T8", title="Tweak", target_modules=["ledger"])
        )
        assert trigger.priority == TriggerPriority.HIGH

    def test_criteria_are_copied(self):
        criteria = AnalysisCriteria()
        hooks = LifecycleHooks(criteria)
        hooks.add_sensitive_module("ledger")
        assert "ledger" not in criteria.sensitive_modules

    def test_task_metadata(self, hooks):
        skipped = hooks.create_task_metadata(
            hooks.evaluate_task_for_analysis(TaskInfo(id="T1", title="Fix typo"))
        )
        assert skipped.analysis_required is False
        assert skipped.skip_reason.startswith("Task appears trivial")

        required = hooks.create_task_metadata(
            hooks.evaluate_task_for_analysis(TaskInfo(id="T2", title="Remove old API")),
            analysis_id="impact-1",
        )
        assert required.analysis_required is True
        assert required.skip_reason is None
        assert required.analysis_id == "impact-1"


class TestSpecTriggers:
    def test_low_impact(self, hooks):
        trigger = hooks.evaluate_spec_for_analysis(
            SpecDocument(id="S1", title="Colors", content="Use blue buttons")
        )
        assert trigger.should_analyze is False
        assert trigger.reason == "Spec appears low-impact"
        assert trigger.priority == TriggerPriority.MEDIUM

    def test_always_analyze_type(self, hooks):
        trigger = hooks.evaluate_spec_for_analysis(SpecDocument(
            id="S2", title="Orders v2", content="Move orders", change_type=ChangeType.MIGRATION
        ))
        assert trigger.priority == TriggerPriority.HIGH
        assert trigger.reason == 'Change type "migration" requires analysis'
        assert trigger.suggested_input.change_type == ChangeType.MIGRATION
        assert trigger.suggested_input.spec_id == "S2"

    def test_high_priority_mention(self, hooks):
        trigger = hooks.evaluate_spec_for_analysis(
            SpecDocument(id="S3", title="Storage", content="New database for reports")
        )
        assert trigger.priority == TriggerPriority.HIGH
        assert trigger.reason == 'Spec mentions: "database"'

    def test_sensitive_module(self, hooks):
        trigger = hooks.evaluate_spec_for_analysis(
            SpecDocument(id="S4", title="Login copy", content="Friendlier text", module_id="auth")
        )
        assert trigger.priority == TriggerPriority.HIGH
        assert trigger.suggested_input.target_modules == ["auth"]

    def test_substantial_content(self, hooks):
        trigger = hooks.evaluate_spec_for_analysis(
            SpecDocument(id="S5", title="Copy", content="x " * 150)
        )
        assert trigger.should_analyze is True
        assert trigger.reason == "Spec has substantial content - recommend analysis"
        assert trigger.priority == TriggerPriority.MEDIUM

    def test_spec_metadata(self, hooks):
        assert hooks.create_spec_metadata().analyzed_at is None
        assert hooks.create_spec_metadata("impact-1").analyzed_at is not None


class TestPreImplementationCheck:
    def test_without_provider(self, hooks):
        check = asyncio.run(hooks.check_pre_implementation(task_id="T1"))
        assert check.allowed is True
        assert check.gate_status == GateStatus.CLEAR
        assert check.message == "No analysis provider configured - proceeding without check"

    def test_no_analysis_found(self, hooks):
        hooks.set_analysis_provider(InMemoryAnalyses())
        check = asyncio.run(hooks.check_pre_implementation(task_id="T1", spec_id="S1"))
        assert check.allowed is True
        assert check.message == "No impact analysis found - consider running analysis first"

    def test_blocked_analysis(self, make_risk):
        provider = InMemoryAnalyses(by_task={"T1": _analysis("impact-1", make_risk())})
        hooks = LifecycleHooks(analysis_provider=provider)
        check = asyncio.run(hooks.check_pre_implementation(task_id="T1"))

        assert check.allowed is False
        assert check.gate_status == GateStatus.BLOCKED
        assert check.analysis_id == "impact-1"
        assert check.blocker_count == 1
        assert check.message == (
            "Implementation BLOCKED: 1 unresolved blocker(s). Resolve blockers or request approval."
        )
        assert check.blocker_summary == ["CRITICAL: Risk risk-R001 - Description of risk-R001"]

    def test_falls_back_to_spec(self, make_risk):
        warning = _analysis(
            "impact-2", make_risk("risk-R004", severity=RiskSeverity.MEDIUM, is_blocking=False)
        )
        hooks = LifecycleHooks(analysis_provider=InMemoryAnalyses(by_spec={"S1": warning}))
        check = asyncio.run(hooks.check_pre_implementation(task_id="T9", spec_id="S1"))

        assert check.allowed is True
        assert check.gate_status == GateStatus.WARNING
        assert check.warning_count == 1

    def test_provider_protocol(self):
        assert isinstance(InMemoryAnalyses(), AnalysisProvider)


class TestMetadataSync:
    def test_sync_task(self, make_risk):
        analysis = _analysis("impact-1", make_risk())
        synced = LifecycleHooks.sync_task_gate_status(TaskImpactMetadata(), analysis)
        assert synced.analysis_id == "impact-1"
        assert synced.gate_status == GateStatus.BLOCKED

    def test_sync_spec(self):
        analysis = _analysis("impact-1")
        synced = LifecycleHooks.sync_spec_gate_status(SpecImpactMetadata(), analysis)
        assert synced.gate_status == GateStatus.CLEAR


class TestGateMessage:
    @pytest.mark.parametrize("status,expected", [
        (GateStatus.BLOCKED, "Implementation BLOCKED: 2 unresolved blocker(s)."),
        (GateStatus.WARNING, "Implementation allowed with 3 warning(s)."),
        (GateStatus.CLEAR, "Implementation gate is clear. Safe to proceed."),
    ])
    def test_messages(self, status, expected):
        assert format_gate_message(status, 2, 3).startswith(expected)
