"""Implementation gate: the clear / warning / blocked decision.

The gate is always recomputed from risks, validations and the current
approval. Approval and force-override produce audit records; status
changes are broadcast to registered hooks.
"""

from __future__ import annotations

import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Union

from impactgate.config import GateControllerConfig
from impactgate.exceptions import InvalidBlockerError
from impactgate.models import (
    ApproveGateRequest,
    BypassedBlocker,
    GateApproval,
    GateAuditLog,
    GateBlocker,
    GateStatus,
    GateSummary,
    GateWarning,
    IdentifiedRisk,
    ImpactAnalysis,
    ImplementationGate,
    ValidationItem,
    ValidationStatus,
)

logger = logging.getLogger("impactgate.gate")

# hook(analysis_id, previous_status, new_status, gate)
GateStatusHook = Callable[
    [str, GateStatus, GateStatus, ImplementationGate],
    Union[None, Awaitable[None]],
]

MIN_VALIDATIONS_ID = "min-validations"


def determine_status(blockers: list[GateBlocker], warnings: list[GateWarning]) -> GateStatus:
    if blockers:
        return GateStatus.BLOCKED
    if warnings:
        return GateStatus.WARNING
    return GateStatus.CLEAR


class GateController:
    """Evaluates the gate and runs the approval and override workflow."""

    def __init__(self, config: GateControllerConfig | None = None) -> None:
        self.config = config or GateControllerConfig()
        self._hooks: list[GateStatusHook] = []

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(
        self,
        risks: list[IdentifiedRisk],
        validations: list[ValidationItem],
        approval: GateApproval | None = None,
    ) -> ImplementationGate:
        blockers: list[GateBlocker] = []
        warnings: list[GateWarning] = []

        self._evaluate_risks(risks, blockers, warnings)
        self._evaluate_validations(validations, blockers, warnings)

        if approval is not None and approval.approved_blockers:
            approved = set(approval.approved_blockers)
            blockers = [b for b in blockers if b.item_id not in approved]

        return ImplementationGate(
            status=determine_status(blockers, warnings),
            blockers=blockers,
            warnings=warnings,
            approval=approval,
        )

    def _evaluate_risks(
        self,
        risks: list[IdentifiedRisk],
        blockers: list[GateBlocker],
        warnings: list[GateWarning],
    ) -> None:
        for risk in risks:
            if risk.mitigation_applied:
                continue

            label = f"{risk.severity.value.upper()}: {risk.name}"
            if risk.severity in self.config.blocking_severities and risk.is_blocking:
                blockers.append(GateBlocker(
                    type="risk",
                    item_id=risk.id,
                    description=f"{label} - {risk.description}",
                    resolution=risk.mitigation,
                ))
            else:
                warnings.append(GateWarning(type="risk", item_id=risk.id, description=label))

    def _evaluate_validations(
        self,
        validations: list[ValidationItem],
        blockers: list[GateBlocker],
        warnings: list[GateWarning],
    ) -> None:
        passed = 0

        for item in validations:
            if item.status == ValidationStatus.PASSED:
                passed += 1
            elif item.status == ValidationStatus.FAILED:
                description = f"FAILED: {item.title}"
                if self.config.block_on_failed_validation and item.is_blocking:
                    blockers.append(GateBlocker(
                        type="validation",
                        item_id=item.id,
                        description=description,
                        resolution=item.description,
                    ))
                else:
                    warnings.append(GateWarning(
                        type="validation", item_id=item.id, description=description
                    ))
            elif item.status == ValidationStatus.PENDING:
                description = f"PENDING: {item.title}"
                if self.config.block_on_pending_blocking_validation and item.is_blocking:
                    if item.auto_verifiable and item.verify_command:
                        resolution = f"Run: {item.verify_command}"
                    else:
                        resolution = item.description
                    blockers.append(GateBlocker(
                        type="validation",
                        item_id=item.id,
                        description=description,
                        resolution=resolution,
                    ))
                else:
                    warnings.append(GateWarning(
                        type="validation", item_id=item.id, description=description
                    ))
            elif item.status == ValidationStatus.SKIPPED and item.is_blocking:
                warnings.append(GateWarning(
                    type="validation", item_id=item.id, description=f"SKIPPED: {item.title}"
                ))

        required = self.config.min_passed_validations
        if required > 0 and passed < required:
            blockers.append(GateBlocker(
                type="validation",
                item_id=MIN_VALIDATIONS_ID,
                description=f"Only {passed}/{required} required validations passed",
                resolution="Complete more validations before proceeding",
            ))

    # ------------------------------------------------------------------
    # Approval workflow
    # ------------------------------------------------------------------

    def approve(
        self, request: ApproveGateRequest, current_gate: ImplementationGate
    ) -> tuple[ImplementationGate, GateApproval, GateAuditLog]:
        """Approve specific blockers.

        Raises InvalidBlockerError if any requested ID is not a current
        blocker. Blockers approved earlier stay approved.
        """
        existing_ids = {b.item_id for b in current_gate.blockers}
        invalid = [bid for bid in request.blocker_ids if bid not in existing_ids]
        if invalid:
            raise InvalidBlockerError(invalid)

        previous = current_gate.approval.approved_blockers if current_gate.approval else []
        approved_ids = list(dict.fromkeys([*previous, *request.blocker_ids]))
        approval = GateApproval(
            approver=request.approver,
            reason=request.reason,
            approved_blockers=approved_ids,
        )

        requested = set(request.blocker_ids)
        remaining = [b for b in current_gate.blockers if b.item_id not in requested]
        gate = ImplementationGate(
            status=determine_status(remaining, current_gate.warnings),
            blockers=remaining,
            warnings=list(current_gate.warnings),
            approval=approval,
        )

        audit = GateAuditLog(
            action="approve",
            approver=request.approver,
            reason=request.reason,
            blockers_bypassed=[
                BypassedBlocker(id=b.item_id, type=b.type, description=b.description)
                for b in current_gate.blockers
                if b.item_id in requested
            ],
            previous_status=current_gate.status,
            new_status=gate.status,
        )
        logger.info(
            "Gate approved by %s: %d blocker(s), status %s -> %s",
            request.approver, len(requested), current_gate.status.value, gate.status.value,
        )
        return gate, approval, audit

    def revoke_approval(
        self, risks: list[IdentifiedRisk], validations: list[ValidationItem]
    ) -> ImplementationGate:
        return self.evaluate(risks, validations, None)

    def force_override(
        self, request: ApproveGateRequest, current_gate: ImplementationGate
    ) -> tuple[ImplementationGate, GateApproval, GateAuditLog]:
        """Bypass every current blocker.

        Bypassed blockers stay visible as ``BYPASSED:`` warnings. The caller
        must persist the returned audit log.
        """
        approval = GateApproval(
            approver=request.approver,
            reason=f"FORCE OVERRIDE: {request.reason}",
            approved_blockers=[b.item_id for b in current_gate.blockers],
        )

        audit = GateAuditLog(
            action="force_override",
            approver=request.approver,
            reason=request.reason,
            blockers_bypassed=[
                BypassedBlocker(id=b.item_id, type=b.type, description=b.description)
                for b in current_gate.blockers
            ],
            previous_status=current_gate.status,
            new_status=GateStatus.CLEAR,
        )

        gate = ImplementationGate(
            status=GateStatus.CLEAR,
            blockers=[],
            warnings=[
                *current_gate.warnings,
                *(
                    GateWarning(
                        type=b.type, item_id=b.item_id, description=f"BYPASSED: {b.description}"
                    )
                    for b in current_gate.blockers
                ),
            ],
            approval=approval,
        )

        logger.warning(
            "FORCE OVERRIDE by %s (%s): bypassed %d blocker(s)",
            request.approver, request.reason, len(audit.blockers_bypassed),
        )
        return gate, approval, audit

    # ------------------------------------------------------------------
    # Status hooks
    # ------------------------------------------------------------------

    def on_status_change(self, hook: GateStatusHook) -> None:
        self._hooks.append(hook)

    def remove_hook(self, hook: GateStatusHook) -> None:
        if hook in self._hooks:
            self._hooks.remove(hook)

    async def notify_status_change(
        self,
        analysis_id: str,
        previous_status: GateStatus,
        new_status: GateStatus,
        gate: ImplementationGate,
    ) -> None:
        """Call hooks in registration order. Never raises."""
        if previous_status == new_status:
            return

        for hook in list(self._hooks):
            try:
                result: Any = hook(analysis_id, previous_status, new_status, gate)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Gate status hook error")

    # ------------------------------------------------------------------
    # Re-evaluation
    # ------------------------------------------------------------------

    def re_evaluate_after_validation(
        self, analysis: ImpactAnalysis, updated: ValidationItem
    ) -> ImplementationGate:
        validations = [updated if v.id == updated.id else v for v in analysis.validations]
        return self.evaluate(analysis.risks, validations, analysis.gate.approval)

    def re_evaluate_after_risk_mitigation(
        self, analysis: ImpactAnalysis, risk_id: str, notes: str = ""
    ) -> ImplementationGate:
        risks = [r.apply_mitigation(notes) if r.id == risk_id else r for r in analysis.risks]
        return self.evaluate(risks, analysis.validations, analysis.gate.approval)

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    @staticmethod
    def can_proceed(gate: ImplementationGate) -> bool:
        return gate.status != GateStatus.BLOCKED

    def get_summary(self, gate: ImplementationGate) -> GateSummary:
        return GateSummary(
            status=gate.status,
            blocker_count=len(gate.blockers),
            warning_count=len(gate.warnings),
            is_approved=gate.approval is not None,
            approved_blocker_count=len(gate.approval.approved_blockers) if gate.approval else 0,
            can_proceed=self.can_proceed(gate),
            evaluated_at=_iso(gate.evaluated_at),
        )

    @staticmethod
    def get_blockers_by_type(gate: ImplementationGate) -> dict[str, list[GateBlocker]]:
        return {
            "risks": [b for b in gate.blockers if b.type == "risk"],
            "validations": [b for b in gate.blockers if b.type == "validation"],
        }

    def set_config(self, **updates) -> None:
        self.config = self.config.model_copy(update=updates)

    def copy(self) -> GateController:
        """A controller with the same config and its own hook list."""
        clone = GateController(self.config.model_copy(deep=True))
        clone._hooks = list(self._hooks)
        return clone


def _iso(timestamp: float | None = None) -> str:
    return datetime.fromtimestamp(
        timestamp if timestamp is not None else time.time(), tz=timezone.utc
    ).isoformat()


gate_controller = GateController()
