"""Scope detection: compute the blast radius of a change.

Steps:
  1. Identify primary modules and files (explicit, path-detected, spec-linked,
     and only as a last resort inferred from entities/keywords)
  2. Breadth-first expansion over the module graph
  3. Breadth-first expansion over file importers
  4. One-hop entity expansion through data flows

Every provider is optional. A missing provider turns its step into a no-op.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from impactgate.config import ScopeDetectorConfig
from impactgate.impact.providers import (
    DataFlowProvider,
    ImportGraphProvider,
    ModuleKnowledgeProvider,
    ModuleLinks,
    SpecProvider,
)
from impactgate.models import (
    ChangeInput,
    ChangeScope,
    ImpactLevel,
    ParsedChange,
    ScopedFile,
    ScopedModule,
)

logger = logging.getLogger("impactgate.scope")

T = TypeVar("T")

_UPPER_RE = re.compile(r"([A-Z])")
_DASHES_RE = re.compile(r"-+")


@dataclass
class _QueueItem:
    node_id: str
    depth: int
    path: list[str] = field(default_factory=list)
    reason: str = ""


def depth_to_impact_level(depth: int) -> ImpactLevel:
    """Map BFS depth to an impact level: <=1 direct, 2 indirect, >2 cascade."""
    if depth <= 1:
        return ImpactLevel.DIRECT
    if depth == 2:
        return ImpactLevel.INDIRECT
    return ImpactLevel.CASCADE


def entity_to_module_name(entity: str) -> str:
    """Convert an entity name to a candidate module name (OrderItem -> order-item)."""
    name = _UPPER_RE.sub(r"-\1", entity).lower()
    name = name.lstrip("-")
    return _DASHES_RE.sub("-", name)


class ScopeDetector:
    """Detects the modules, files and entities affected by a change."""

    def __init__(
        self,
        config: ScopeDetectorConfig | None = None,
        module_provider: ModuleKnowledgeProvider | None = None,
        spec_provider: SpecProvider | None = None,
        import_provider: ImportGraphProvider | None = None,
        data_flow_provider: DataFlowProvider | None = None,
    ) -> None:
        self.config = config or ScopeDetectorConfig()
        self.module_provider = module_provider
        self.spec_provider = spec_provider
        self.import_provider = import_provider
        self.data_flow_provider = data_flow_provider

    def set_providers(
        self,
        module_provider: ModuleKnowledgeProvider | None = None,
        spec_provider: SpecProvider | None = None,
        import_provider: ImportGraphProvider | None = None,
        data_flow_provider: DataFlowProvider | None = None,
    ) -> None:
        """Replace any providers that are given; leave the rest untouched."""
        if module_provider is not None:
            self.module_provider = module_provider
        if spec_provider is not None:
            self.spec_provider = spec_provider
        if import_provider is not None:
            self.import_provider = import_provider
        if data_flow_provider is not None:
            self.data_flow_provider = data_flow_provider

    def detect(self, change: ChangeInput, parsed: ParsedChange) -> ChangeScope:
        """Detect the scope of a change."""
        primary_modules, primary_files = self._identify_primary(change, parsed)
        dependent_modules = self._expand_module_dependencies(primary_modules, change.spec_id)
        affected_files = self._expand_file_dependencies(primary_files)
        affected_entities = self._identify_affected_entities(parsed.entities)

        logger.debug(
            "Scope: %d primary modules, %d dependents, %d affected files",
            len(primary_modules), len(dependent_modules), len(affected_files),
        )

        return ChangeScope(
            primary_modules=primary_modules,
            primary_files=primary_files,
            dependent_modules=dependent_modules,
            affected_files=affected_files,
            affected_entities=affected_entities,
            expansion_depth=self.config.max_depth,
        )

    # ------------------------------------------------------------------
    # Primary set
    # ------------------------------------------------------------------

    def _identify_primary(
        self, change: ChangeInput, parsed: ParsedChange
    ) -> tuple[list[str], list[str]]:
        modules: dict[str, None] = dict.fromkeys(change.target_modules)
        files: dict[str, None] = {}

        for file_path in change.target_files:
            files[file_path] = None
            if self.module_provider is not None:
                module = self._call(self.module_provider.detect_module_from_path, file_path, default=None)
                if module is not None:
                    modules[module.id] = None

        if change.spec_id and self.spec_provider is not None:
            spec = self._call(self.spec_provider.get_spec, change.spec_id, default=None)
            if spec is not None and spec.module_id:
                modules[spec.module_id] = None

        if self.module_provider is not None and not modules:
            for entity in parsed.entities:
                module = self._call(
                    self.module_provider.get_module_by_name,
                    entity_to_module_name(entity),
                    default=None,
                )
                if module is not None:
                    modules[module.id] = None

            for keyword in parsed.keywords:
                module = self._call(self.module_provider.get_module_by_name, keyword, default=None)
                if module is not None:
                    modules[module.id] = None

        return list(modules), list(files)

    # ------------------------------------------------------------------
    # Module expansion
    # ------------------------------------------------------------------

    def _expand_module_dependencies(
        self, primary_modules: list[str], spec_id: str | None = None
    ) -> list[ScopedModule]:
        dependents: list[ScopedModule] = []
        visited: set[str] = set(primary_modules)
        queue: deque[_QueueItem] = deque(
            _QueueItem(module_id, 0, [], "primary") for module_id in primary_modules
        )

        if spec_id and self.spec_provider is not None:
            for dep in self._call(self.spec_provider.get_spec_dependencies, spec_id, default=[]):
                if dep.module_id and dep.module_id not in visited:
                    visited.add(dep.module_id)
                    queue.append(_QueueItem(
                        dep.module_id,
                        1,
                        [f"spec:{spec_id}"],
                        f"Spec {dep.relationship}: {dep.spec_id}",
                    ))

        while queue:
            current = queue.popleft()

            if current.depth > 0:
                dependents.append(ScopedModule(
                    module_id=current.node_id,
                    module_name=self._module_name(current.node_id),
                    impact_level=depth_to_impact_level(current.depth),
                    dependency_path=current.path,
                    reason=current.reason,
                ))

            if current.depth >= self.config.max_depth:
                continue
            if not self.config.include_indirect and current.depth > 0:
                continue
            if self.module_provider is None:
                continue

            links = self._call(
                self.module_provider.get_module_links, current.node_id, default=ModuleLinks()
            )
            next_path = [*current.path, current.node_id]

            # Modules that depend on the current one (forward impact)
            for link in links.incoming:
                if link.module_id not in visited:
                    visited.add(link.module_id)
                    queue.append(_QueueItem(
                        link.module_id,
                        current.depth + 1,
                        next_path,
                        f"{link.link_type} {current.node_id}",
                    ))

            # Modules the current one depends on (cascade risk)
            for link in links.outgoing:
                if link.link_type == "depends_on" and link.module_id not in visited:
                    visited.add(link.module_id)
                    queue.append(_QueueItem(
                        link.module_id,
                        current.depth + 1,
                        next_path,
                        f"Cascade from {current.node_id}",
                    ))

        return dependents

    def _module_name(self, module_id: str) -> str:
        if self.module_provider is None:
            return module_id
        module = self._call(self.module_provider.get_module, module_id, default=None)
        return module.name if module is not None else module_id

    # ------------------------------------------------------------------
    # File expansion
    # ------------------------------------------------------------------

    def _expand_file_dependencies(self, primary_files: list[str]) -> list[ScopedFile]:
        affected: list[ScopedFile] = []
        if not self.config.expand_imports or self.import_provider is None:
            return affected

        visited: set[str] = set(primary_files)
        queue: deque[_QueueItem] = deque(
            _QueueItem(file_path, 0, [], "primary") for file_path in primary_files
        )

        while queue:
            current = queue.popleft()

            if current.depth > 0:
                module_id = None
                if self.module_provider is not None:
                    module = self._call(
                        self.module_provider.detect_module_from_path, current.node_id, default=None
                    )
                    module_id = module.id if module is not None else None
                affected.append(ScopedFile(
                    file_path=current.node_id,
                    impact_level=depth_to_impact_level(current.depth),
                    module_id=module_id,
                    reason=current.reason,
                ))

            if current.depth >= self.config.max_depth:
                continue

            # Consumers of the changed file only, never its own imports
            basename = current.node_id.rsplit("/", 1)[-1]
            for importer in self._call(self.import_provider.get_importers, current.node_id, default=[]):
                if importer not in visited:
                    visited.add(importer)
                    queue.append(_QueueItem(
                        importer, current.depth + 1, [], f"imports {basename}"
                    ))

        return affected

    # ------------------------------------------------------------------
    # Entity expansion
    # ------------------------------------------------------------------

    def _identify_affected_entities(self, primary_entities: list[str]) -> list[str]:
        affected: dict[str, None] = dict.fromkeys(primary_entities)
        if not self.config.expand_data_flows or self.data_flow_provider is None:
            return list(affected)

        # One hop only
        for entity in primary_entities:
            for flow in self._call(self.data_flow_provider.get_entity_flows, entity, default=[]):
                for related in flow.entities:
                    affected[related] = None

        return list(affected)

    @staticmethod
    def _call(func: Callable[[str], T], arg: str, default: T) -> T:
        """Call a provider method; a failing provider counts as empty."""
        try:
            result = func(arg)
        except Exception as e:
            logger.warning("Provider call %s(%r) failed: %s", getattr(func, "__name__", func), arg, e)
            return default
        return default if result is None else result


scope_detector = ScopeDetector()
