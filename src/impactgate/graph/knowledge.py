"""Knowledge graph of modules, files, specs and entities.

One ``networkx.MultiDiGraph`` holds every node, keyed ``<type>::<id>``:

    module::users      file::src/users/service.py
    spec::SPEC-1       entity::User

Edges are keyed by their ``kind``, so one pair of nodes can carry several
links. Module links use their link type (``depends_on``, ``uses``, ...), file
edges are ``imports``, spec edges are ``dependsOn`` or ``relatesTo``, and
entity flows are ``flows``.
"""

from __future__ import annotations

import fnmatch
import json
from pathlib import Path

import networkx as nx
from pydantic import ValidationError

from impactgate.exceptions import ProviderError
from impactgate.impact.providers import (
    ModuleInfo,
    ModuleLink,
    ModuleLinks,
    SpecDependency,
    SpecInfo,
)
from impactgate.models import DataFlow


def _node(kind: str, key: str) -> str:
    return f"{kind}::{key}"


class KnowledgeGraph:
    """Read-only knowledge source implementing every scope provider protocol."""

    def __init__(self, graph: nx.MultiDiGraph | None = None) -> None:
        self.graph = graph if graph is not None else nx.MultiDiGraph()
        self._flows: list[DataFlow] = []

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict) -> KnowledgeGraph:
        """Build from ``{modules, module_links, files, imports, specs, data_flows}``."""
        kg = cls()
        g = kg.graph

        for module in data.get("modules", []):
            info = ModuleInfo(**module)
            g.add_node(_node("module", info.id), type="module", **info.model_dump())

        for link in data.get("module_links", []):
            source = _node("module", link["source"])
            target = _node("module", link["target"])
            for node_id, key in ((source, link["source"]), (target, link["target"])):
                if not g.has_node(node_id):
                    g.add_node(node_id, type="module", id=key, name=key, paths="")
            kind = link.get("type", "depends_on")
            g.add_edge(source, target, key=kind, kind=kind)

        for file_path in data.get("files", []):
            g.add_node(_node("file", file_path), type="file", path=file_path)

        for edge in data.get("imports", []):
            importer, imported = edge["source"], edge["target"]
            for path in (importer, imported):
                if not g.has_node(_node("file", path)):
                    g.add_node(_node("file", path), type="file", path=path)
            g.add_edge(
                _node("file", importer), _node("file", imported), key="imports", kind="imports"
            )

        specs = data.get("specs", [])
        for spec in specs:
            g.add_node(
                _node("spec", spec["id"]),
                type="spec",
                id=spec["id"],
                title=spec.get("title", ""),
                module_id=spec.get("module_id"),
            )
        for spec in specs:
            for relationship, key in (("dependsOn", "depends_on"), ("relatesTo", "relates_to")):
                for other in spec.get(key, []):
                    if g.has_node(_node("spec", other)):
                        g.add_edge(
                            _node("spec", spec["id"]),
                            _node("spec", other),
                            key=relationship,
                            kind=relationship,
                        )

        for raw in data.get("data_flows", []):
            flow = DataFlow.model_validate(raw)
            kg._flows.append(flow)
            for entity in flow.entities:
                if not g.has_node(_node("entity", entity)):
                    g.add_node(_node("entity", entity), type="entity", name=entity)
            for a, b in zip(flow.entities, flow.entities[1:]):
                g.add_edge(_node("entity", a), _node("entity", b), key="flows", kind="flows")

        return kg

    # ------------------------------------------------------------------
    # ModuleKnowledgeProvider
    # ------------------------------------------------------------------

    def get_module(self, module_id: str) -> ModuleInfo | None:
        node_id = _node("module", module_id)
        if not self.graph.has_node(node_id):
            return None
        return self._module_info(node_id)

    def get_module_by_name(self, name: str) -> ModuleInfo | None:
        lower = name.lower()
        for module in self.list_modules():
            if module.name.lower() == lower or module.id.lower() == lower:
                return module
        return None

    def list_modules(self) -> list[ModuleInfo]:
        return [
            self._module_info(node_id)
            for node_id, data in self.graph.nodes(data=True)
            if data.get("type") == "module"
        ]

    def detect_module_from_path(self, file_path: str) -> ModuleInfo | None:
        """The module whose ``paths`` glob matches, preferring the longest glob."""
        best: ModuleInfo | None = None
        for module in self.list_modules():
            if module.paths and fnmatch.fnmatch(file_path, module.paths):
                if best is None or len(module.paths) > len(best.paths):
                    best = module
        return best

    def get_module_links(self, module_id: str) -> ModuleLinks:
        node_id = _node("module", module_id)
        if not self.graph.has_node(node_id):
            return ModuleLinks()

        outgoing = [
            ModuleLink(module_id=self.graph.nodes[succ]["id"], link_type=kind)
            for succ, kind in self._neighbors(node_id, "module", forward=True)
        ]
        incoming = [
            ModuleLink(module_id=self.graph.nodes[pred]["id"], link_type=kind)
            for pred, kind in self._neighbors(node_id, "module", forward=False)
        ]
        return ModuleLinks(outgoing=outgoing, incoming=incoming)

    # ------------------------------------------------------------------
    # SpecProvider
    # ------------------------------------------------------------------

    def get_spec(self, spec_id: str) -> SpecInfo | None:
        node_id = _node("spec", spec_id)
        if not self.graph.has_node(node_id):
            return None
        data = self.graph.nodes[node_id]
        return SpecInfo(id=spec_id, title=data.get("title", ""), module_id=data.get("module_id"))

    def get_spec_dependencies(self, spec_id: str) -> list[SpecDependency]:
        node_id = _node("spec", spec_id)
        if not self.graph.has_node(node_id):
            return []
        deps = []
        for succ, kind in self._neighbors(node_id, "spec", forward=True):
            data = self.graph.nodes[succ]
            deps.append(SpecDependency(
                spec_id=data["id"], module_id=data.get("module_id"), relationship=kind
            ))
        return deps

    # ------------------------------------------------------------------
    # ImportGraphProvider
    # ------------------------------------------------------------------

    def get_importers(self, file_path: str) -> list[str]:
        node_id = _node("file", file_path)
        if not self.graph.has_node(node_id):
            return []
        return [
            self.graph.nodes[pred]["path"]
            for pred, kind in self._neighbors(node_id, "file", forward=False)
            if kind == "imports"
        ]

    def get_imports(self, file_path: str) -> list[str]:
        node_id = _node("file", file_path)
        if not self.graph.has_node(node_id):
            return []
        return [
            self.graph.nodes[succ]["path"]
            for succ, kind in self._neighbors(node_id, "file", forward=True)
            if kind == "imports"
        ]

    # ------------------------------------------------------------------
    # DataFlowProvider
    # ------------------------------------------------------------------

    def get_entity_flows(self, entity_name: str) -> list[DataFlow]:
        return [flow for flow in self._flows if entity_name in flow.entities]

    @property
    def data_flows(self) -> list[DataFlow]:
        return list(self._flows)

    # ------------------------------------------------------------------

    def _module_info(self, node_id: str) -> ModuleInfo:
        data = self.graph.nodes[node_id]
        return ModuleInfo(id=data["id"], name=data.get("name", data["id"]), paths=data.get("paths", ""))

    def _neighbors(self, node_id: str, node_type: str, forward: bool) -> list[tuple[str, str]]:
        """(neighbor, edge kind) pairs restricted to one node type."""
        edges = (
            self.graph.out_edges(node_id, keys=True)
            if forward
            else self.graph.in_edges(node_id, keys=True)
        )
        result = []
        for u, v, kind in edges:
            other = v if forward else u
            if self.graph.nodes[other].get("type") == node_type:
                result.append((other, kind))
        return result


def load_knowledge_graph(path: Path) -> KnowledgeGraph:
    """Load a knowledge graph from a JSON document."""
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ProviderError(f"Cannot read knowledge graph {path}: {e}") from e
    try:
        return KnowledgeGraph.from_dict(data)
    except (KeyError, TypeError, ValidationError) as e:
        raise ProviderError(f"Invalid knowledge graph {path}: {e}") from e
