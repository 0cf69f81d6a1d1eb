"""Impact data-flow analysis.

Enriches raw data-flow edges with:
  - an impact level (direct / indirect / cascade) relative to the scope
  - affected database-style operations
  - suggested tests
  - whether the flow needs a validation item

Also builds a flow graph for visualization, Mermaid diagrams and statistics.
"""

from __future__ import annotations

import re

import networkx as nx
from pydantic import BaseModel, Field

from impactgate.models import (
    ChangeScope,
    DataFlow,
    FlowStrength,
    FlowType,
    ImpactDataFlow,
    ImpactLevel,
    ParsedChange,
)

# (relationship pattern, test template)
_TEST_TEMPLATES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"creates?|generates?", re.I),
     "Test that {{source}} correctly creates {{target}} with valid data"),
    (re.compile(r"owns?|contains?", re.I),
     "Verify {{source}} ownership of {{target}} persists after change"),
    (re.compile(r"has|have", re.I),
     "Verify {{source}} can access associated {{target}} records"),
    (re.compile(r"belongsTo|references?", re.I),
     "Test {{target}} reference integrity from {{source}}"),
    (re.compile(r"updates?|modifies?", re.I),
     "Verify {{source}} updates to {{target}} propagate correctly"),
    (re.compile(r"deletes?|removes?", re.I),
     "Test cascade delete behavior from {{source}} to {{target}}"),
]

# (relationship pattern, canonical operations)
_OPERATION_PATTERNS: list[tuple[re.Pattern[str], tuple[str, ...]]] = [
    (re.compile(r"creates?|generates?", re.I), ("INSERT", "CREATE")),
    (re.compile(r"owns?|contains?|has", re.I), ("SELECT", "JOIN", "DELETE")),
    (re.compile(r"updates?|modifies?", re.I), ("UPDATE", "PATCH")),
    (re.compile(r"deletes?|removes?", re.I), ("DELETE", "CASCADE")),
    (re.compile(r"reads?|fetches?|gets?", re.I), ("SELECT", "READ")),
    (re.compile(r"writes?|saves?|stores?", re.I), ("INSERT", "UPDATE", "UPSERT")),
]

_FLOW_TYPE_OPERATIONS: dict[FlowType, tuple[str, ...]] = {
    FlowType.READ: ("SELECT", "READ"),
    FlowType.WRITE: ("INSERT", "UPDATE"),
    FlowType.BIDIRECTIONAL: ("SELECT", "INSERT", "UPDATE"),
}

_STRENGTH_WEIGHTS = {
    FlowStrength.CRITICAL: 3,
    FlowStrength.IMPORTANT: 2,
    FlowStrength.OPTIONAL: 1,
}

_IMPACT_WEIGHTS = {
    ImpactLevel.DIRECT: 2,
    ImpactLevel.INDIRECT: 1,
    ImpactLevel.CASCADE: 0,
}

_SANITIZE_RE = re.compile(r"[^a-zA-Z0-9]")


class FlowNode(BaseModel):
    id: str
    label: str
    type: str  # "entity" or "module"
    impact_level: ImpactLevel | None = None
    is_affected: bool = False
    inbound: int = 0
    outbound: int = 0


class FlowEdge(BaseModel):
    id: str
    source: str
    target: str
    label: str = ""
    flow_type: FlowType
    strength: FlowStrength
    impact_level: ImpactLevel | None = None
    is_affected: bool = False


class FlowGraphMetadata(BaseModel):
    total_nodes: int = 0
    total_edges: int = 0
    affected_nodes: int = 0
    affected_edges: int = 0
    criticality_score: float = 0.0


class FlowGraph(BaseModel):
    nodes: list[FlowNode] = Field(default_factory=list)
    edges: list[FlowEdge] = Field(default_factory=list)
    metadata: FlowGraphMetadata = Field(default_factory=FlowGraphMetadata)


class MermaidDiagram(BaseModel):
    type: str  # "flowchart" or "erDiagram"
    code: str
    title: str


class ImpactDataFlowAnalyzer:
    """Adds impact-specific information to data flows."""

    def analyze_for_impact(
        self,
        flows: list[DataFlow],
        scope: ChangeScope,
        parsed: ParsedChange | None = None,
    ) -> list[ImpactDataFlow]:
        """Classify each flow against the scope. One record per input flow."""
        results: list[ImpactDataFlow] = []
        for index, flow in enumerate(flows):
            impact_level = self.classify_impact_level(flow, scope)
            results.append(ImpactDataFlow(
                id=f"flow-{index}",
                source=flow.source,
                target=flow.target,
                entities=list(flow.entities),
                flow_type=flow.flow_type,
                strength=flow.strength,
                relationships=list(flow.relationships),
                impact_level=impact_level,
                affected_operations=self.detect_affected_operations(flow),
                validation_required=self.is_validation_required(flow, impact_level),
                suggested_tests=self.generate_suggested_tests(flow),
            ))
        return results

    @staticmethod
    def classify_impact_level(flow: DataFlow, scope: ChangeScope) -> ImpactLevel:
        has_affected_entity = any(e in scope.affected_entities for e in flow.entities)
        touches_primary = (
            flow.source in scope.primary_modules or flow.target in scope.primary_modules
        )
        touches_dependent = any(
            dep.module_id in (flow.source, flow.target) for dep in scope.dependent_modules
        )

        if touches_primary and has_affected_entity:
            return ImpactLevel.DIRECT
        if touches_dependent or has_affected_entity:
            return ImpactLevel.INDIRECT
        return ImpactLevel.CASCADE

    @staticmethod
    def generate_suggested_tests(flow: DataFlow) -> list[str]:
        source = flow.entities[0] if flow.entities else flow.source
        target = flow.entities[1] if len(flow.entities) > 1 else flow.target

        tests: dict[str, None] = {}
        for relationship in flow.relationships:
            for pattern, template in _TEST_TEMPLATES:
                if pattern.search(relationship):
                    test = template.replace("{{source}}", source).replace("{{target}}", target)
                    tests[test] = None

        if flow.flow_type == FlowType.BIDIRECTIONAL:
            tests[f"Test bidirectional sync between {flow.source} and {flow.target}"] = None

        if flow.strength == FlowStrength.CRITICAL:
            tests[f"Verify critical data integrity for {' -> '.join(flow.entities)} flow"] = None

        return list(tests)

    @staticmethod
    def detect_affected_operations(flow: DataFlow) -> list[str]:
        operations: dict[str, None] = {}
        for relationship in flow.relationships:
            for pattern, ops in _OPERATION_PATTERNS:
                if pattern.search(relationship):
                    operations.update(dict.fromkeys(ops))
        operations.update(dict.fromkeys(_FLOW_TYPE_OPERATIONS[flow.flow_type]))
        return list(operations)

    @staticmethod
    def is_validation_required(flow: DataFlow, impact_level: ImpactLevel) -> bool:
        if flow.strength == FlowStrength.CRITICAL:
            return True
        if impact_level == ImpactLevel.DIRECT:
            return True
        return impact_level == ImpactLevel.INDIRECT and flow.strength == FlowStrength.IMPORTANT

    # ------------------------------------------------------------------
    # Visualization
    # ------------------------------------------------------------------

    def build_flow_graph(self, flows: list[ImpactDataFlow], scope: ChangeScope) -> FlowGraph:
        """Build a node/edge graph of the analyzed flows.

        Modules are joined by one edge per flow, keyed by the flow id, so
        parallel flows between the same pair of modules stay distinct.
        """
        graph = nx.MultiDiGraph()
        dependents = {d.module_id: d for d in scope.dependent_modules}

        for flow in flows:
            for entity in flow.entities:
                if not graph.has_node(entity):
                    affected = entity in scope.affected_entities
                    graph.add_node(
                        entity,
                        type="entity",
                        impact_level=flow.impact_level if affected else None,
                        is_affected=affected,
                    )

            for module in (flow.source, flow.target):
                if not graph.has_node(module):
                    is_primary = module in scope.primary_modules
                    dep = dependents.get(module)
                    if is_primary:
                        level = ImpactLevel.DIRECT
                    else:
                        level = dep.impact_level if dep is not None else None
                    graph.add_node(
                        module,
                        type="module",
                        impact_level=level,
                        is_affected=is_primary or dep is not None,
                    )

            graph.add_edge(
                flow.source,
                flow.target,
                key=flow.id,
                label=", ".join(flow.relationships),
                flow_type=flow.flow_type,
                strength=flow.strength,
                impact_level=flow.impact_level,
                is_affected=flow.validation_required,
            )

        nodes = [
            FlowNode(
                id=node_id,
                label=node_id,
                inbound=graph.in_degree(node_id),
                outbound=graph.out_degree(node_id),
                **data,
            )
            for node_id, data in graph.nodes(data=True)
        ]
        edges = [
            FlowEdge(id=key, source=source, target=target, **data)
            for source, target, key, data in graph.edges(keys=True, data=True)
        ]

        return FlowGraph(
            nodes=nodes,
            edges=edges,
            metadata=FlowGraphMetadata(
                total_nodes=graph.number_of_nodes(),
                total_edges=graph.number_of_edges(),
                affected_nodes=sum(1 for n in nodes if n.is_affected),
                affected_edges=sum(1 for e in edges if e.is_affected),
                criticality_score=self._criticality_score(flows, nodes),
            ),
        )

    @staticmethod
    def _criticality_score(flows: list[ImpactDataFlow], nodes: list[FlowNode]) -> float:
        if not flows:
            return 0.0

        score = 0.0
        for flow in flows:
            score += _STRENGTH_WEIGHTS[flow.strength]
            score += _IMPACT_WEIGHTS[flow.impact_level]

        affected_ratio = sum(1 for n in nodes if n.is_affected) / len(nodes) if nodes else 0.0
        score *= 1 + affected_ratio

        # max strength (3) + max impact (2) per flow, doubled for the ratio
        max_score = len(flows) * 5 * 2
        return min(score / max_score, 1.0)

    def generate_flowchart_diagram(
        self, graph: FlowGraph, title: str = "Data Flow Impact"
    ) -> MermaidDiagram:
        lines = ["flowchart TD", f"    %% {title}", ""]

        for node in graph.nodes:
            shape, shape_end = ("([", "])") if node.type == "module" else ("((", "))")
            lines.append(f'    {_sanitize_id(node.id)}{shape}"{node.label}"{shape_end}')
        lines.append("")

        for edge in graph.edges:
            arrow = "-->"
            if edge.flow_type == FlowType.BIDIRECTIONAL:
                arrow = "<-->"
            elif edge.flow_type == FlowType.WRITE:
                arrow = "-..->"
            label = f'|"{edge.label}"|' if edge.label else ""
            lines.append(
                f"    {_sanitize_id(edge.source)} {arrow}{label} {_sanitize_id(edge.target)}"
            )
        lines.append("")

        affected = [n for n in graph.nodes if n.is_affected]
        if affected:
            lines.append("    %% Styling")
            styles = [
                (ImpactLevel.DIRECT, "fill:#ff6b6b,stroke:#c92a2a"),
                (ImpactLevel.INDIRECT, "fill:#ffd43b,stroke:#f59f00"),
                (ImpactLevel.CASCADE, "fill:#69db7c,stroke:#37b24d"),
            ]
            for level, style in styles:
                ids = [_sanitize_id(n.id) for n in affected if n.impact_level == level]
                if ids:
                    lines.append(f"    style {','.join(ids)} {style}")

        return MermaidDiagram(type="flowchart", code="\n".join(lines), title=title)

    def generate_er_diagram(
        self, graph: FlowGraph, title: str = "Entity Relationships"
    ) -> MermaidDiagram:
        lines = ["erDiagram", f"    %% {title}", ""]
        node_types = {n.id: n.type for n in graph.nodes}

        for edge in graph.edges:
            if "entity" not in (node_types.get(edge.source), node_types.get(edge.target)):
                continue
            cardinality = {
                FlowType.READ: "||--o{",
                FlowType.WRITE: "}o--||",
                FlowType.BIDIRECTIONAL: "}o--o{",
            }.get(edge.flow_type, "||--||")
            label = edge.label.split(",")[0].strip() or "relates"
            lines.append(
                f'    {_sanitize_id(edge.source)} {cardinality} '
                f'{_sanitize_id(edge.target)} : "{label}"'
            )

        return MermaidDiagram(type="erDiagram", code="\n".join(lines), title=title)

    @staticmethod
    def get_flow_statistics(flows: list[ImpactDataFlow]) -> dict:
        stats = {
            "total": len(flows),
            "by_strength": {s.value: 0 for s in FlowStrength},
            "by_impact_level": {level.value: 0 for level in ImpactLevel},
            "by_flow_type": {t.value: 0 for t in FlowType},
            "requires_validation": 0,
            "total_suggested_tests": 0,
        }
        for flow in flows:
            stats["by_strength"][flow.strength.value] += 1
            stats["by_impact_level"][flow.impact_level.value] += 1
            stats["by_flow_type"][flow.flow_type.value] += 1
            if flow.validation_required:
                stats["requires_validation"] += 1
            stats["total_suggested_tests"] += len(flow.suggested_tests)
        return stats


def _sanitize_id(node_id: str) -> str:
    return _SANITIZE_RE.sub("_", node_id)


impact_data_flow_analyzer = ImpactDataFlowAnalyzer()
