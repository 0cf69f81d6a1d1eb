"""Lifecycle triggers: decide when a task or spec deserves an analysis,
and check the gate before implementation starts."""

from __future__ import annotations

import re
import time
from enum import Enum
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from impactgate.config import AnalysisCriteria
from impactgate.models import ChangeInput, ChangeType, GateStatus, ImpactAnalysis

_HIGH_PRIORITY_TASK_KEYWORDS = frozenset({"security", "authentication", "breaking", "migration"})
_HIGH_PRIORITY_SPEC_KEYWORDS = _HIGH_PRIORITY_TASK_KEYWORDS | {"database"}

_SPEC_SUBSTANTIAL_LENGTH = 200


class TriggerPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TaskInfo(BaseModel):
    id: str
    title: str
    description: str | None = None
    target_files: list[str] = Field(default_factory=list)
    target_modules: list[str] = Field(default_factory=list)


class SpecDocument(BaseModel):
    id: str
    title: str
    content: str = ""
    module_id: str | None = None
    change_type: ChangeType | None = None


class AnalysisTrigger(BaseModel):
    should_analyze: bool
    reason: str
    priority: TriggerPriority
    suggested_input: ChangeInput | None = None


class PreImplementationCheck(BaseModel):
    allowed: bool
    gate_status: GateStatus
    analysis_id: str | None = None
    blocker_count: int = 0
    warning_count: int = 0
    message: str
    blocker_summary: list[str] = Field(default_factory=list)


class TaskImpactMetadata(BaseModel):
    analysis_id: str | None = None
    gate_status: GateStatus | None = None
    analysis_required: bool = False
    skip_reason: str | None = None
    checked_at: float = Field(default_factory=time.time)


class SpecImpactMetadata(BaseModel):
    analysis_id: str | None = None
    gate_status: GateStatus | None = None
    analyzed_at: float | None = None


@runtime_checkable
class AnalysisProvider(Protocol):
    """Looks up stored analyses."""

    async def get_analysis_by_task(self, task_id: str) -> ImpactAnalysis | None: ...

    async def get_analysis_by_spec(self, spec_id: str) -> ImpactAnalysis | None: ...

    async def get_analysis(self, analysis_id: str) -> ImpactAnalysis | None: ...


class LifecycleHooks:
    """Heuristic analysis triggers plus the pre-implementation gate check."""

    def __init__(
        self,
        criteria: AnalysisCriteria | None = None,
        analysis_provider: AnalysisProvider | None = None,
    ) -> None:
        self.criteria = criteria.model_copy(deep=True) if criteria else AnalysisCriteria()
        self.analysis_provider = analysis_provider

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def evaluate_task_for_analysis(self, task: TaskInfo) -> AnalysisTrigger:
        reasons: list[str] = []
        priority = TriggerPriority.LOW
        text = f"{task.title} {task.description or ''}".lower()

        for keyword in self.criteria.trigger_keywords:
            if keyword.lower() in text:
                reasons.append(f'Contains keyword: "{keyword}"')
                if keyword in _HIGH_PRIORITY_TASK_KEYWORDS:
                    priority = TriggerPriority.HIGH
                elif priority != TriggerPriority.HIGH:
                    priority = TriggerPriority.MEDIUM

        patterns = [re.compile(p, re.IGNORECASE) for p in self.criteria.sensitive_file_patterns]
        for file_path in task.target_files:
            for pattern in patterns:
                if pattern.search(file_path):
                    reasons.append(f"Targets sensitive file: {file_path}")
                    priority = TriggerPriority.HIGH

        for module in task.target_modules:
            if module.lower() in self.criteria.sensitive_modules:
                reasons.append(f"Targets sensitive module: {module}")
                priority = TriggerPriority.HIGH

        if task.description and len(task.description) >= self.criteria.min_description_length:
            reasons.append("Task has detailed description (likely complex)")
            if priority == TriggerPriority.LOW:
                priority = TriggerPriority.MEDIUM

        if not reasons:
            return AnalysisTrigger(
                should_analyze=False,
                reason="Task appears trivial - no sensitive patterns detected",
                priority=priority,
            )

        return AnalysisTrigger(
            should_analyze=True,
            reason="; ".join(reasons),
            priority=priority,
            suggested_input=ChangeInput(
                task_id=task.id,
                description=f"{task.title}\n\n{task.description or ''}",
                target_files=task.target_files,
                target_modules=task.target_modules,
            ),
        )

    def create_task_metadata(
        self, trigger: AnalysisTrigger, analysis_id: str | None = None
    ) -> TaskImpactMetadata:
        return TaskImpactMetadata(
            analysis_id=analysis_id,
            analysis_required=trigger.should_analyze,
            skip_reason=None if trigger.should_analyze else trigger.reason,
        )

    # ------------------------------------------------------------------
    # Specs
    # ------------------------------------------------------------------

    def evaluate_spec_for_analysis(self, spec: SpecDocument) -> AnalysisTrigger:
        reasons: list[str] = []
        priority = TriggerPriority.MEDIUM

        if spec.change_type and spec.change_type in self.criteria.always_analyze_types:
            reasons.append(f'Change type "{spec.change_type.value}" requires analysis')
            priority = TriggerPriority.HIGH

        text = f"{spec.title} {spec.content}".lower()
        for keyword in self.criteria.trigger_keywords:
            if keyword.lower() in text:
                reasons.append(f'Spec mentions: "{keyword}"')
                if keyword in _HIGH_PRIORITY_SPEC_KEYWORDS:
                    priority = TriggerPriority.HIGH

        if spec.module_id and spec.module_id.lower() in self.criteria.sensitive_modules:
            reasons.append(f"Targets sensitive module: {spec.module_id}")
            priority = TriggerPriority.HIGH

        if not reasons and len(spec.content) > _SPEC_SUBSTANTIAL_LENGTH:
            reasons.append("Spec has substantial content - recommend analysis")

        if not reasons:
            return AnalysisTrigger(
                should_analyze=False, reason="Spec appears low-impact", priority=priority
            )

        return AnalysisTrigger(
            should_analyze=True,
            reason="; ".join(reasons),
            priority=priority,
            suggested_input=ChangeInput(
                spec_id=spec.id,
                description=spec.content,
                target_modules=[spec.module_id] if spec.module_id else [],
                change_type=spec.change_type,
            ),
        )

    def create_spec_metadata(self, analysis_id: str | None = None) -> SpecImpactMetadata:
        return SpecImpactMetadata(
            analysis_id=analysis_id,
            analyzed_at=time.time() if analysis_id else None,
        )

    # ------------------------------------------------------------------
    # Pre-implementation check
    # ------------------------------------------------------------------

    async def check_pre_implementation(
        self, task_id: str | None = None, spec_id: str | None = None
    ) -> PreImplementationCheck:
        if self.analysis_provider is None:
            return PreImplementationCheck(
                allowed=True,
                gate_status=GateStatus.CLEAR,
                message="No analysis provider configured - proceeding without check",
            )

        analysis = None
        if task_id:
            analysis = await self.analysis_provider.get_analysis_by_task(task_id)
        if analysis is None and spec_id:
            analysis = await self.analysis_provider.get_analysis_by_spec(spec_id)

        if analysis is None:
            return PreImplementationCheck(
                allowed=True,
                gate_status=GateStatus.CLEAR,
                message="No impact analysis found - consider running analysis first",
            )

        gate = analysis.gate
        return PreImplementationCheck(
            allowed=gate.status != GateStatus.BLOCKED,
            gate_status=gate.status,
            analysis_id=analysis.id,
            blocker_count=len(gate.blockers),
            warning_count=len(gate.warnings),
            message=format_gate_message(gate.status, len(gate.blockers), len(gate.warnings)),
            blocker_summary=[b.description for b in gate.blockers],
        )

    # ------------------------------------------------------------------
    # Metadata sync
    # ------------------------------------------------------------------

    @staticmethod
    def sync_task_gate_status(
        metadata: TaskImpactMetadata, analysis: ImpactAnalysis
    ) -> TaskImpactMetadata:
        return metadata.model_copy(update={
            "analysis_id": analysis.id,
            "gate_status": analysis.gate.status,
            "checked_at": time.time(),
        })

    @staticmethod
    def sync_spec_gate_status(
        metadata: SpecImpactMetadata, analysis: ImpactAnalysis
    ) -> SpecImpactMetadata:
        return metadata.model_copy(update={
            "analysis_id": analysis.id,
            "gate_status": analysis.gate.status,
        })

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_analysis_provider(self, provider: AnalysisProvider) -> None:
        self.analysis_provider = provider

    def add_sensitive_module(self, module_id: str) -> None:
        if module_id not in self.criteria.sensitive_modules:
            self.criteria.sensitive_modules.append(module_id)

    def add_trigger_keyword(self, keyword: str) -> None:
        if keyword not in self.criteria.trigger_keywords:
            self.criteria.trigger_keywords.append(keyword)


def format_gate_message(status: GateStatus, blockers: int, warnings: int) -> str:
    if status == GateStatus.BLOCKED:
        return (
            f"Implementation BLOCKED: {blockers} unresolved blocker(s). "
            "Resolve blockers or request approval."
        )
    if status == GateStatus.WARNING:
        return f"Implementation allowed with {warnings} warning(s). Review before proceeding."
    return "Implementation gate is clear. Safe to proceed."


lifecycle_hooks = LifecycleHooks()
