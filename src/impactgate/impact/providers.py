"""Knowledge source interfaces consumed by scope detection.

Each provider is a narrow, independently optional capability set. The
detector checks for presence before use; none of them is owned or mutated
by the engine.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from impactgate.models import DataFlow


class ModuleInfo(BaseModel):
    id: str
    name: str
    paths: str = ""  # glob, e.g. "src/users/**"


class ModuleLink(BaseModel):
    """One typed edge between modules, seen from one side."""

    module_id: str
    link_type: str


class ModuleLinks(BaseModel):
    outgoing: list[ModuleLink] = Field(default_factory=list)  # this module -> target
    incoming: list[ModuleLink] = Field(default_factory=list)  # source -> this module


class SpecInfo(BaseModel):
    id: str
    title: str = ""
    module_id: str | None = None


class SpecDependency(BaseModel):
    spec_id: str
    module_id: str | None = None
    relationship: str = "relatesTo"  # "dependsOn" or "relatesTo"


@runtime_checkable
class ModuleKnowledgeProvider(Protocol):
    """Module lookup and module-link traversal."""

    def get_module(self, module_id: str) -> ModuleInfo | None: ...

    def get_module_by_name(self, name: str) -> ModuleInfo | None: ...

    def list_modules(self) -> list[ModuleInfo]: ...

    def detect_module_from_path(self, file_path: str) -> ModuleInfo | None: ...

    def get_module_links(self, module_id: str) -> ModuleLinks: ...


@runtime_checkable
class SpecProvider(Protocol):
    """Spec lookup and spec-to-spec relationships."""

    def get_spec(self, spec_id: str) -> SpecInfo | None: ...

    def get_spec_dependencies(self, spec_id: str) -> list[SpecDependency]: ...


@runtime_checkable
class ImportGraphProvider(Protocol):
    """File-level import edges."""

    def get_importers(self, file_path: str) -> list[str]:
        """Files that import ``file_path``."""
        ...

    def get_imports(self, file_path: str) -> list[str]:
        """Files that ``file_path`` imports."""
        ...


@runtime_checkable
class DataFlowProvider(Protocol):
    """Entity-to-data-flow lookup."""

    def get_entity_flows(self, entity_name: str) -> list[DataFlow]: ...
