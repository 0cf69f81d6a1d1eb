"""Knowledge graph of modules, files, specs and entity data flows."""

from impactgate.graph.knowledge import KnowledgeGraph, load_knowledge_graph

__all__ = ["KnowledgeGraph", "load_knowledge_graph"]
