"""Shared test fixtures for ImpactGate."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from impactgate.graph import KnowledgeGraph
from impactgate.models import (
    ChangeScope,
    FlowStrength,
    FlowType,
    IdentifiedRisk,
    ImpactDataFlow,
    ImpactLevel,
    RiskCategory,
    RiskSeverity,
    ScopedModule,
    ValidationCategory,
    ValidationItem,
    ValidationStatus,
)


@pytest.fixture
def graph_data() -> dict:
    """A small shop: users <- orders <- payments <- notifications, plus auth."""
    return {
        "modules": [
            {"id": "users", "name": "users", "paths": "src/users/**"},
            {"id": "orders", "name": "orders", "paths": "src/orders/**"},
            {"id": "payments", "name": "payments", "paths": "src/payments/**"},
            {"id": "notifications", "name": "notifications", "paths": "src/notifications/**"},
            {"id": "auth", "name": "auth", "paths": "src/auth/**"},
            {"id": "api", "name": "api", "paths": "src/api/**"},
        ],
        "module_links": [
            {"source": "orders", "target": "users", "type": "depends_on"},
            {"source": "payments", "target": "orders", "type": "depends_on"},
            {"source": "notifications", "target": "payments", "type": "uses"},
            {"source": "users", "target": "auth", "type": "depends_on"},
            {"source": "api", "target": "users", "type": "uses"},
        ],
        "files": [
            "src/users/models.py",
            "src/users/service.py",
            "src/orders/service.py",
            "src/payments/gateway.py",
            "src/api/users.py",
        ],
        "imports": [
            {"source": "src/users/service.py", "target": "src/users/models.py"},
            {"source": "src/orders/service.py", "target": "src/users/service.py"},
            {"source": "src/payments/gateway.py", "target": "src/orders/service.py"},
            {"source": "src/api/users.py", "target": "src/users/service.py"},
        ],
        "specs": [
            {"id": "SPEC-1", "title": "User profiles", "module_id": "users",
             "depends_on": ["SPEC-2"]},
            {"id": "SPEC-2", "title": "Payment methods", "module_id": "payments"},
        ],
        "data_flows": [
            {"from": "users", "to": "orders", "entities": ["User", "Order"],
             "flow_type": "read", "strength": "critical", "relationships": ["owns"]},
            {"from": "orders", "to": "payments", "entities": ["Order", "Payment"],
             "flow_type": "write", "strength": "important", "relationships": ["creates"]},
            {"from": "payments", "to": "notifications", "entities": ["Payment", "Receipt"],
             "flow_type": "read", "strength": "optional", "relationships": ["generates"]},
        ],
    }


@pytest.fixture
def knowledge_graph(graph_data: dict) -> KnowledgeGraph:
    return KnowledgeGraph.from_dict(graph_data)


@pytest.fixture
def chain_graph() -> KnowledgeGraph:
    """A <- B <- C <- D <- E: each module depends on the previous one."""
    names = ["A", "B", "C", "D", "E"]
    return KnowledgeGraph.from_dict({
        "modules": [{"id": n, "name": n} for n in names],
        "module_links": [
            {"source": b, "target": a, "type": "depends_on"} for a, b in zip(names, names[1:])
        ],
    })


@pytest.fixture
def graph_file(tmp_path: Path, graph_data: dict) -> Path:
    path = tmp_path / "graph.json"
    path.write_text(json.dumps(graph_data))
    return path


@pytest.fixture
def users_scope() -> ChangeScope:
    return ChangeScope(
        primary_modules=["users"],
        primary_files=["src/users/models.py"],
        dependent_modules=[
            ScopedModule(
                module_id="orders",
                module_name="orders",
                impact_level=ImpactLevel.DIRECT,
                dependency_path=["users"],
                reason="depends_on users",
            ),
            ScopedModule(
                module_id="payments",
                module_name="payments",
                impact_level=ImpactLevel.INDIRECT,
                dependency_path=["users", "orders"],
                reason="depends_on orders",
            ),
        ],
        affected_entities=["User", "Order"],
        expansion_depth=3,
    )


def _build_risk(
    id: str = "risk-R001",
    severity: RiskSeverity = RiskSeverity.CRITICAL,
    is_blocking: bool = True,
    category: RiskCategory = RiskCategory.DATA_CORRUPTION,
    mitigation_applied: bool = False,
) -> IdentifiedRisk:
    return IdentifiedRisk(
        id=id,
        rule_id=id.removeprefix("risk-"),
        name=f"Risk {id}",
        category=category,
        severity=severity,
        description=f"Description of {id}",
        mitigation=f"Mitigate {id}",
        is_blocking=is_blocking,
        mitigation_applied=mitigation_applied,
    )


def _build_validation(
    id: str = "val-1",
    status: ValidationStatus = ValidationStatus.PENDING,
    is_blocking: bool = True,
    auto_verifiable: bool = False,
    verify_command: str | None = None,
    category: ValidationCategory = ValidationCategory.TEST,
    title: str | None = None,
    description: str = "Check it",
) -> ValidationItem:
    return ValidationItem(
        id=id,
        title=title or f"Validation {id}",
        description=description,
        category=category,
        status=status,
        is_blocking=is_blocking,
        auto_verifiable=auto_verifiable,
        verify_command=verify_command,
    )


def _build_flow(
    id: str = "flow-0",
    source: str = "users",
    target: str = "orders",
    entities: list[str] | None = None,
    strength: FlowStrength = FlowStrength.CRITICAL,
    impact_level: ImpactLevel = ImpactLevel.DIRECT,
    flow_type: FlowType = FlowType.READ,
    validation_required: bool = True,
) -> ImpactDataFlow:
    return ImpactDataFlow(
        id=id,
        source=source,
        target=target,
        entities=entities if entities is not None else ["User", "Order"],
        flow_type=flow_type,
        strength=strength,
        relationships=["owns"],
        impact_level=impact_level,
        validation_required=validation_required,
    )


@pytest.fixture
def make_risk():
    """Factory for risks; defaults to a blocking critical data-corruption risk."""
    return _build_risk


@pytest.fixture
def make_validation():
    """Factory for validation items; defaults to a pending blocking test."""
    return _build_validation


@pytest.fixture
def make_flow():
    """Factory for analyzed flows; defaults to a critical direct users -> orders read."""
    return _build_flow
