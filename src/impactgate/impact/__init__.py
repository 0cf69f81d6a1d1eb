"""Change impact analysis and the implementation gate.

Usage:
    from impactgate.impact import ImpactAnalyzer
    from impactgate.models import ChangeInput

    analyzer = ImpactAnalyzer.from_graph(graph)
    analysis = analyzer.analyze(ChangeInput(description="Remove deprecated API endpoints"))
    print(analysis.gate.status)
"""

from impactgate.impact.analyzer import ImpactAnalyzer
from impactgate.impact.data_flow import ImpactDataFlowAnalyzer
from impactgate.impact.gate import GateController
from impactgate.impact.lifecycle import LifecycleHooks
from impactgate.impact.parser import ChangeParser
from impactgate.impact.risk import DEFAULT_RISK_RULES, RiskAssessor, RiskRule
from impactgate.impact.scope import ScopeDetector
from impactgate.impact.validation import ValidationGenerator

__all__ = [
    "DEFAULT_RISK_RULES",
    "ChangeParser",
    "GateController",
    "ImpactAnalyzer",
    "ImpactDataFlowAnalyzer",
    "LifecycleHooks",
    "RiskAssessor",
    "RiskRule",
    "ScopeDetector",
    "ValidationGenerator",
]
