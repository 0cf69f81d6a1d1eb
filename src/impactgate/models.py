"""Data models for change impact analysis and the implementation gate."""

from __future__ import annotations

import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ChangeType(str, Enum):
    """Category of a planned change."""

    FEATURE = "feature"
    BUGFIX = "bugfix"
    REFACTOR = "refactor"
    MIGRATION = "migration"
    DELETION = "deletion"


class OperationType(str, Enum):
    """Kinds of operations detected in a change description."""

    ADD = "add"
    MODIFY = "modify"
    DELETE = "delete"
    REFACTOR = "refactor"
    MIGRATE = "migrate"


class ImpactLevel(str, Enum):
    """How closely a dependency is coupled to the primary change."""

    DIRECT = "direct"
    INDIRECT = "indirect"
    CASCADE = "cascade"


class RiskSeverity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RiskCategory(str, Enum):
    DATA_CORRUPTION = "data-corruption"
    BREAKING_CHANGE = "breaking-change"
    PERFORMANCE = "performance"
    SECURITY = "security"
    COMPATIBILITY = "compatibility"
    TESTING = "testing"
    DEPLOYMENT = "deployment"


class ValidationStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ValidationCategory(str, Enum):
    TEST = "test"
    DATA_FLOW = "data-flow"
    API = "api"
    MIGRATION = "migration"
    MANUAL = "manual"
    REVIEW = "review"


class GateStatus(str, Enum):
    BLOCKED = "blocked"
    WARNING = "warning"
    CLEAR = "clear"


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"


class FlowType(str, Enum):
    READ = "read"
    WRITE = "write"
    BIDIRECTIONAL = "bidirectional"


class FlowStrength(str, Enum):
    CRITICAL = "critical"
    IMPORTANT = "important"
    OPTIONAL = "optional"


# Severity rank used for stable ordering (lower sorts first)
SEVERITY_ORDER: dict[RiskSeverity, int] = {
    RiskSeverity.CRITICAL: 0,
    RiskSeverity.HIGH: 1,
    RiskSeverity.MEDIUM: 2,
    RiskSeverity.LOW: 3,
}


# ---------------------------------------------------------------------------
# Change input and parsing
# ---------------------------------------------------------------------------


class ChangeInput(BaseModel):
    """A request to analyze a planned change."""

    model_config = ConfigDict(frozen=True)

    description: str = ""
    project_id: str | None = None
    task_id: str | None = None
    spec_id: str | None = None
    target_files: list[str] = Field(default_factory=list)
    target_modules: list[str] = Field(default_factory=list)
    change_type: ChangeType | None = None  # inferred when omitted


class ParsedOperation(BaseModel):
    """An operation detected in the change text."""

    type: OperationType
    target: str
    description: str = ""

    @property
    def is_inferred(self) -> bool:
        return self.target == "inferred"


class ParsedChange(BaseModel):
    """Structured signal extracted from a change description."""

    model_config = ConfigDict(frozen=True)

    entities: list[str] = Field(default_factory=list)
    operations: list[ParsedOperation] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    change_type: ChangeType = ChangeType.FEATURE
    confidence: float = 0.5


# ---------------------------------------------------------------------------
# Scope
# ---------------------------------------------------------------------------


class ScopedModule(BaseModel):
    """A module pulled into scope by dependency expansion."""

    module_id: str
    module_name: str
    impact_level: ImpactLevel
    dependency_path: list[str] = Field(default_factory=list)
    reason: str = ""


class ScopedFile(BaseModel):
    """A file pulled into scope through the import graph."""

    file_path: str
    impact_level: ImpactLevel
    module_id: str | None = None
    reason: str = ""


class ChangeScope(BaseModel):
    """The blast radius of a change."""

    primary_modules: list[str] = Field(default_factory=list)
    primary_files: list[str] = Field(default_factory=list)
    dependent_modules: list[ScopedModule] = Field(default_factory=list)
    affected_files: list[ScopedFile] = Field(default_factory=list)
    affected_entities: list[str] = Field(default_factory=list)
    expansion_depth: int = 0

    @property
    def module_count(self) -> int:
        return len(self.primary_modules) + len(self.dependent_modules)

    @property
    def file_count(self) -> int:
        return len(self.primary_files) + len(self.affected_files)


# ---------------------------------------------------------------------------
# Data flows
# ---------------------------------------------------------------------------


class DataFlow(BaseModel):
    """A raw entity/module data-flow edge from the knowledge graph.

    ``source``/``target`` serialize as ``from``/``to``.
    """

    model_config = ConfigDict(populate_by_name=True)

    source: str = Field(alias="from")
    target: str = Field(alias="to")
    entities: list[str] = Field(default_factory=list)
    flow_type: FlowType = FlowType.READ
    strength: FlowStrength = FlowStrength.OPTIONAL
    relationships: list[str] = Field(default_factory=list)


class ImpactDataFlow(DataFlow):
    """A data flow enriched with impact information for one change."""

    id: str
    impact_level: ImpactLevel
    affected_operations: list[str] = Field(default_factory=list)
    validation_required: bool = False
    suggested_tests: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Risks
# ---------------------------------------------------------------------------


class IdentifiedRisk(BaseModel):
    """A risk produced by a matching rule."""

    id: str
    rule_id: str
    name: str
    category: RiskCategory
    severity: RiskSeverity
    description: str
    affected_areas: list[str] = Field(default_factory=list)
    mitigation: str = ""
    is_blocking: bool = False
    mitigation_applied: bool = False
    mitigation_notes: str | None = None

    def apply_mitigation(self, notes: str = "") -> IdentifiedRisk:
        """Return a copy of this risk marked as mitigated."""
        return self.model_copy(
            update={"mitigation_applied": True, "mitigation_notes": notes or None}
        )


# ---------------------------------------------------------------------------
# Validations
# ---------------------------------------------------------------------------


class ValidationResult(BaseModel):
    """Outcome reported by whoever executed a validation."""

    passed: bool
    output: str | None = None
    error: str | None = None
    verified_at: float = Field(default_factory=time.time)
    verified_by: str = "manual"  # "auto" or "manual"


class ValidationItem(BaseModel):
    """A checklist item to verify before implementation proceeds."""

    id: str
    title: str
    description: str
    category: ValidationCategory
    status: ValidationStatus = ValidationStatus.PENDING
    is_blocking: bool = False
    auto_verifiable: bool = False
    verify_command: str | None = None
    expected_pattern: str | None = None
    result: ValidationResult | None = None
    risk_id: str | None = None
    data_flow_id: str | None = None
    module_id: str | None = None

    def with_status(self, status: ValidationStatus) -> ValidationItem:
        return self.model_copy(update={"status": status})

    def with_result(self, result: ValidationResult) -> ValidationItem:
        """Return a copy carrying ``result`` and the matching status."""
        status = ValidationStatus.PASSED if result.passed else ValidationStatus.FAILED
        return self.model_copy(update={"status": status, "result": result})


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


class GateBlocker(BaseModel):
    type: str  # "risk" or "validation"
    item_id: str
    description: str
    resolution: str = ""


class GateWarning(BaseModel):
    type: str  # "risk" or "validation"
    item_id: str
    description: str


class GateApproval(BaseModel):
    """An explicit exception to specific blocker IDs."""

    approver: str
    approved_at: float = Field(default_factory=time.time)
    reason: str
    approved_blockers: list[str] = Field(default_factory=list)


class ImplementationGate(BaseModel):
    """The go/no-go decision. Always recomputed, never hand edited."""

    status: GateStatus
    blockers: list[GateBlocker] = Field(default_factory=list)
    warnings: list[GateWarning] = Field(default_factory=list)
    approval: GateApproval | None = None
    evaluated_at: float = Field(default_factory=time.time)


class BypassedBlocker(BaseModel):
    id: str
    type: str
    description: str


class GateAuditLog(BaseModel):
    """Audit record for approvals and overrides."""

    timestamp: float = Field(default_factory=time.time)
    action: str  # "approve", "force_override" or "revoke"
    approver: str
    reason: str
    blockers_bypassed: list[BypassedBlocker] = Field(default_factory=list)
    previous_status: GateStatus
    new_status: GateStatus


class ApproveGateRequest(BaseModel):
    approver: str
    reason: str
    blocker_ids: list[str] = Field(default_factory=list)


class GateSummary(BaseModel):
    status: GateStatus
    blocker_count: int
    warning_count: int
    is_approved: bool
    approved_blocker_count: int
    can_proceed: bool
    evaluated_at: str


# ---------------------------------------------------------------------------
# Full analysis
# ---------------------------------------------------------------------------


class ImpactAnalysis(BaseModel):
    """The complete artifact handed to downstream consumers."""

    id: str
    project_id: str = ""
    input: ChangeInput
    status: AnalysisStatus = AnalysisStatus.PENDING
    parsed: ParsedChange = Field(default_factory=ParsedChange)
    scope: ChangeScope = Field(default_factory=ChangeScope)
    data_flows: list[ImpactDataFlow] = Field(default_factory=list)
    risks: list[IdentifiedRisk] = Field(default_factory=list)
    validations: list[ValidationItem] = Field(default_factory=list)
    gate: ImplementationGate = Field(
        default_factory=lambda: ImplementationGate(status=GateStatus.CLEAR)
    )
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
    error: str | None = None
