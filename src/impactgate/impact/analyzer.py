"""End-to-end impact analysis pipeline.

parse -> scope -> data flows -> risks -> validations -> gate
"""

from __future__ import annotations

import logging
import time
import uuid

from impactgate.config import ImpactConfig
from impactgate.exceptions import GateError
from impactgate.impact.data_flow import ImpactDataFlowAnalyzer
from impactgate.impact.gate import GateController
from impactgate.impact.parser import ChangeParser
from impactgate.impact.providers import (
    DataFlowProvider,
    ImportGraphProvider,
    ModuleKnowledgeProvider,
    SpecProvider,
)
from impactgate.impact.risk import RiskAssessor
from impactgate.impact.scope import ScopeDetector
from impactgate.impact.validation import ValidationGenerator
from impactgate.models import (
    AnalysisStatus,
    ApproveGateRequest,
    ChangeInput,
    DataFlow,
    GateAuditLog,
    ImpactAnalysis,
    ImplementationGate,
    ValidationResult,
)

logger = logging.getLogger("impactgate.analyzer")


class ImpactAnalyzer:
    """Wires the six pipeline stages around one configuration value."""

    def __init__(
        self,
        config: ImpactConfig | None = None,
        module_provider: ModuleKnowledgeProvider | None = None,
        spec_provider: SpecProvider | None = None,
        import_provider: ImportGraphProvider | None = None,
        data_flow_provider: DataFlowProvider | None = None,
    ) -> None:
        self.config = config or ImpactConfig()
        self.data_flow_provider = data_flow_provider

        self.parser = ChangeParser()
        self.scope_detector = ScopeDetector(
            self.config.scope,
            module_provider=module_provider,
            spec_provider=spec_provider,
            import_provider=import_provider,
            data_flow_provider=data_flow_provider,
        )
        self.data_flow_analyzer = ImpactDataFlowAnalyzer()
        self.risk_assessor = RiskAssessor(vocabulary=self.config.risk)
        self.validation_generator = ValidationGenerator(self.config.validation)
        self.gate_controller = GateController(self.config.gate)

    @classmethod
    def from_graph(cls, graph, config: ImpactConfig | None = None) -> ImpactAnalyzer:
        """Use one object for every provider (e.g. a ``KnowledgeGraph``)."""
        return cls(
            config,
            module_provider=graph,
            spec_provider=graph,
            import_provider=graph,
            data_flow_provider=graph,
        )

    def analyze(
        self, change: ChangeInput, data_flows: list[DataFlow] | None = None
    ) -> ImpactAnalysis:
        """Run the full pipeline.

        Never raises: a failure inside any stage is captured on the returned
        analysis as ``status=failed`` with ``error`` set.
        """
        analysis = ImpactAnalysis(
            id=f"impact-{uuid.uuid4().hex[:12]}",
            project_id=change.project_id or self.config.name,
            input=change,
            status=AnalysisStatus.ANALYZING,
        )

        try:
            parsed = self.parser.parse(change)
            scope = self.scope_detector.detect(change, parsed)

            raw_flows = (
                data_flows
                if data_flows is not None
                else self._collect_flows(scope.affected_entities)
            )
            flows = self.data_flow_analyzer.analyze_for_impact(raw_flows, scope, parsed)
            risks = self.risk_assessor.assess(change, parsed, scope, flows)
            validations = self.validation_generator.generate(scope, flows, risks)
            gate = self.gate_controller.evaluate(risks, validations)
        except Exception as e:
            logger.exception("Impact analysis %s failed", analysis.id)
            return analysis.model_copy(update={
                "status": AnalysisStatus.FAILED,
                "error": str(e),
                "updated_at": time.time(),
            })

        logger.info(
            "Analysis %s: %s, %d risk(s), %d validation(s), gate %s",
            analysis.id, parsed.change_type.value, len(risks), len(validations), gate.status.value,
        )
        return analysis.model_copy(update={
            "status": AnalysisStatus.COMPLETED,
            "parsed": parsed,
            "scope": scope,
            "data_flows": flows,
            "risks": risks,
            "validations": validations,
            "gate": gate,
            "updated_at": time.time(),
        })

    def _collect_flows(self, entities: list[str]) -> list[DataFlow]:
        if self.data_flow_provider is None:
            return []

        flows: dict[tuple, DataFlow] = {}
        for entity in entities:
            try:
                entity_flows = self.data_flow_provider.get_entity_flows(entity) or []
            except Exception as e:
                logger.warning("Data flow lookup for %s failed: %s", entity, e)
                continue
            for flow in entity_flows:
                key = (flow.source, flow.target, tuple(flow.entities))
                flows.setdefault(key, flow)
        return list(flows.values())

    # ------------------------------------------------------------------
    # Follow-up operations on a finished analysis
    # ------------------------------------------------------------------

    async def record_validation_result(
        self, analysis: ImpactAnalysis, validation_id: str, result: ValidationResult
    ) -> ImpactAnalysis:
        item = next((v for v in analysis.validations if v.id == validation_id), None)
        if item is None:
            raise GateError(f"Unknown validation: {validation_id}")

        updated = item.with_result(result)
        gate = self.gate_controller.re_evaluate_after_validation(analysis, updated)
        validations = [updated if v.id == validation_id else v for v in analysis.validations]
        return await self._update(analysis, gate, validations=validations)

    async def mitigate_risk(
        self, analysis: ImpactAnalysis, risk_id: str, notes: str = ""
    ) -> ImpactAnalysis:
        if not any(r.id == risk_id for r in analysis.risks):
            raise GateError(f"Unknown risk: {risk_id}")

        gate = self.gate_controller.re_evaluate_after_risk_mitigation(analysis, risk_id, notes)
        risks = [r.apply_mitigation(notes) if r.id == risk_id else r for r in analysis.risks]
        return await self._update(analysis, gate, risks=risks)

    async def approve(
        self, analysis: ImpactAnalysis, request: ApproveGateRequest
    ) -> tuple[ImpactAnalysis, GateAuditLog]:
        gate, _, audit = self.gate_controller.approve(request, analysis.gate)
        return await self._update(analysis, gate), audit

    async def force_override(
        self, analysis: ImpactAnalysis, request: ApproveGateRequest
    ) -> tuple[ImpactAnalysis, GateAuditLog]:
        gate, _, audit = self.gate_controller.force_override(request, analysis.gate)
        return await self._update(analysis, gate), audit

    async def revoke_approval(self, analysis: ImpactAnalysis) -> ImpactAnalysis:
        gate = self.gate_controller.revoke_approval(analysis.risks, analysis.validations)
        return await self._update(analysis, gate)

    async def _update(
        self, analysis: ImpactAnalysis, gate: ImplementationGate, **fields
    ) -> ImpactAnalysis:
        updated = analysis.model_copy(update={**fields, "gate": gate, "updated_at": time.time()})
        await self.gate_controller.notify_status_change(
            analysis.id, analysis.gate.status, gate.status, gate
        )
        return updated
