"""Change parser: turn a free-text change description into structured signal.

Extracts:
  - Entities (User, OrderItem, ...)
  - Operations (add, modify, delete, refactor, migrate)
  - Keywords used for module mapping
  - The inferred change type and a coarse confidence score

Parsing never fails. Empty or unrecognizable text yields an empty
``ParsedChange`` with the ``feature`` change type.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from impactgate.models import (
    ChangeInput,
    ChangeType,
    OperationType,
    ParsedChange,
    ParsedOperation,
)

# ---------------------------------------------------------------------------
# Entity detection
# ---------------------------------------------------------------------------

_ENTITY_PATTERNS: list[re.Pattern[str]] = [
    # PascalCase words (User, OrderItem)
    re.compile(r"\b([A-Z][a-z]+(?:[A-Z][a-z]+)*)\b"),
    # Explicit entity references
    re.compile(r"(?:entity|model|table|schema|record)\s+['\"]?(\w+)['\"]?", re.IGNORECASE),
    # Database/collection references
    re.compile(r"(?:collection|database|db)\.(\w+)", re.IGNORECASE),
]

_ENTITY_EXCLUDES: frozenset[str] = frozenset({
    # Common programming terms
    "String", "Number", "Boolean", "Array", "Object", "Function", "Promise",
    "Date", "Error", "Map", "Set", "Buffer", "Stream",
    # Action words
    "Add", "Create", "Update", "Delete", "Remove", "Get", "List",
    "Find", "Search", "Filter", "Sort", "Validate", "Check", "Process",
    # Prefixes/suffixes
    "Api", "App", "Web", "Test", "Mock", "Stub", "Fake",
    # Reserved words
    "This", "That", "The", "And", "For", "With", "From", "Into",
    # Framework terms
    "React", "Vue", "Angular", "Express", "Node", "Next", "Nuxt",
    "Component", "Service", "Controller", "Repository", "Module",
})

# ---------------------------------------------------------------------------
# Operation detection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _OperationPattern:
    type: OperationType
    patterns: tuple[re.Pattern[str], ...]
    keywords: tuple[str, ...]


def _op(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


_OPERATION_PATTERNS: list[_OperationPattern] = [
    _OperationPattern(
        OperationType.ADD,
        _op(
            r"\b(?:add|create|implement|introduce|build|develop|new)\s+(.+?)(?:\.|,|$)",
            r"\bnew\s+(\w+)",
        ),
        ("add", "create", "implement", "introduce", "build", "develop", "new", "feature"),
    ),
    _OperationPattern(
        OperationType.MODIFY,
        _op(
            r"\b(?:update|modify|change|edit|alter|adjust|enhance|improve)\s+(.+?)(?:\.|,|$)",
            r"\b(?:fix|patch|correct)\s+(.+?)(?:\.|,|$)",
        ),
        ("update", "modify", "change", "edit", "alter", "adjust", "enhance", "improve", "fix", "patch"),
    ),
    _OperationPattern(
        OperationType.DELETE,
        _op(r"\b(?:delete|remove|drop|eliminate|deprecate)\s+(.+?)(?:\.|,|$)"),
        ("delete", "remove", "drop", "eliminate", "deprecate", "clean"),
    ),
    _OperationPattern(
        OperationType.REFACTOR,
        _op(
            r"\b(?:refactor|restructure|reorganize|optimize|simplify)\s+(.+?)(?:\.|,|$)",
            r"\b(?:move|extract|split|merge|consolidate)\s+(.+?)(?:\.|,|$)",
        ),
        ("refactor", "restructure", "reorganize", "optimize", "simplify", "move", "extract", "split", "merge"),
    ),
    _OperationPattern(
        OperationType.MIGRATE,
        _op(r"\b(?:migrate|migration|upgrade|convert|transform)\s+(.+?)(?:\.|,|$)"),
        ("migrate", "migration", "upgrade", "convert", "transform", "schema"),
    ),
]

# ---------------------------------------------------------------------------
# Change type inference
# ---------------------------------------------------------------------------

# (change type, keywords, weight). Order matters: ties go to the earlier entry.
_CHANGE_TYPE_PATTERNS: list[tuple[ChangeType, tuple[str, ...], float]] = [
    (
        ChangeType.FEATURE,
        ("feature", "add", "new", "implement", "create", "build", "develop", "introduce"),
        1.0,
    ),
    (
        ChangeType.BUGFIX,
        ("fix", "bug", "issue", "error", "crash", "broken", "wrong", "incorrect", "patch"),
        1.2,
    ),
    (
        ChangeType.REFACTOR,
        ("refactor", "restructure", "reorganize", "optimize", "clean", "simplify", "improve", "enhance"),
        1.0,
    ),
    (
        ChangeType.MIGRATION,
        ("migrate", "migration", "upgrade", "database", "schema", "convert", "transform"),
        1.3,
    ),
    (
        ChangeType.DELETION,
        ("delete", "remove", "drop", "deprecate", "eliminate", "clean up", "remove unused"),
        1.1,
    ),
]

# Score contributed by each detected operation
_OPERATION_SCORES: dict[OperationType, dict[ChangeType, float]] = {
    OperationType.ADD: {ChangeType.FEATURE: 1.0},
    OperationType.MODIFY: {ChangeType.FEATURE: 0.5, ChangeType.BUGFIX: 0.5},
    OperationType.DELETE: {ChangeType.DELETION: 1.0},
    OperationType.REFACTOR: {ChangeType.REFACTOR: 1.0},
    OperationType.MIGRATE: {ChangeType.MIGRATION: 1.5},
}

STOP_WORDS: frozenset[str] = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
    "be", "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "shall", "can", "need", "it", "its",
    "this", "that", "these", "those", "then", "than", "so", "if", "when",
    "where", "how", "what", "which", "who", "whom", "whose",
})

_FILE_EXTENSION_RE = re.compile(r"\.(ts|tsx|js|jsx|json|md|py)$")
_NON_WORD_RE = re.compile(r"[^a-z0-9\s\-_]")
_CAMEL_PART_RE = re.compile(r"[a-z]+(?=[A-Z])|[A-Z][a-z]+")


class ChangeParser:
    """Parses change inputs (tasks, specs, descriptions) into ``ParsedChange``."""

    def __init__(self, stop_words: frozenset[str] | None = None) -> None:
        self.stop_words = stop_words if stop_words is not None else STOP_WORDS

    def parse(self, change: ChangeInput) -> ParsedChange:
        """Parse a change input into structured data."""
        text = self._gather_text(change)

        entities = self._extract_entities(text)
        operations = self._detect_operations(text)
        keywords = self._extract_keywords(text)
        change_type = change.change_type or self._infer_change_type(text, operations)
        confidence = self._calculate_confidence(entities, operations, keywords)

        return ParsedChange(
            entities=entities,
            operations=operations,
            keywords=keywords,
            change_type=change_type,
            confidence=confidence,
        )

    def parse_from_task(self, title: str, description: str | None = None) -> ParsedChange:
        """Parse from a task title and optional description."""
        return self.parse(ChangeInput(description=f"{title}. {description or ''}"))

    def parse_from_spec(
        self, title: str, content: str, module: str | None = None
    ) -> ParsedChange:
        """Parse from spec title and content, optionally pinned to a module."""
        return self.parse(ChangeInput(
            description=f"{title}. {content}",
            target_modules=[module] if module else [],
        ))

    def _gather_text(self, change: ChangeInput) -> str:
        parts: list[str] = []
        if change.description:
            parts.append(change.description)
        for file_path in change.target_files:
            # Meaningful names only: "src/users/UserService.ts" -> "UserService"
            base = file_path.rsplit("/", 1)[-1]
            parts.append(_FILE_EXTENSION_RE.sub("", base))
        parts.extend(change.target_modules)
        return " ".join(parts)

    def _extract_entities(self, text: str) -> list[str]:
        entities: dict[str, None] = {}
        for pattern in _ENTITY_PATTERNS:
            for match in pattern.finditer(text):
                entity = match.group(1)
                if (
                    entity
                    and len(entity) > 2
                    and entity not in _ENTITY_EXCLUDES
                    and entity[0].isupper()
                ):
                    entities[entity] = None
        return list(entities)

    def _detect_operations(self, text: str) -> list[ParsedOperation]:
        operations: list[ParsedOperation] = []
        seen_targets: set[str] = set()

        for op_pattern in _OPERATION_PATTERNS:
            for pattern in op_pattern.patterns:
                for match in pattern.finditer(text):
                    target = (match.group(1) or "").strip()
                    if len(target) > 2 and target.lower() not in seen_targets:
                        seen_targets.add(target.lower())
                        operations.append(ParsedOperation(
                            type=op_pattern.type,
                            target=target,
                            description=match.group(0).strip(),
                        ))

        if not operations:
            inferred = self._infer_operation_from_keywords(text)
            if inferred is not None:
                operations.append(inferred)

        return operations

    def _infer_operation_from_keywords(self, text: str) -> ParsedOperation | None:
        lower = text.lower()
        for op_pattern in _OPERATION_PATTERNS:
            for keyword in op_pattern.keywords:
                if keyword in lower:
                    return ParsedOperation(
                        type=op_pattern.type,
                        target="inferred",
                        description=(
                            f'Inferred {op_pattern.type.value} operation '
                            f'from keyword "{keyword}"'
                        ),
                    )
        return None

    def _extract_keywords(self, text: str) -> list[str]:
        keywords: dict[str, None] = {}

        words = _NON_WORD_RE.sub(" ", text.lower()).split()
        for word in words:
            if len(word) > 2 and word not in self.stop_words:
                keywords[word] = None

        # Constituents of camelCase/PascalCase identifiers
        for part in _CAMEL_PART_RE.findall(text):
            lower = part.lower()
            if len(lower) > 2 and lower not in self.stop_words:
                keywords[lower] = None

        return list(keywords)

    def _infer_change_type(
        self, text: str, operations: list[ParsedOperation]
    ) -> ChangeType:
        lower = text.lower()
        scores: dict[ChangeType, float] = {ct: 0.0 for ct, _, _ in _CHANGE_TYPE_PATTERNS}

        for change_type, keywords, weight in _CHANGE_TYPE_PATTERNS:
            for keyword in keywords:
                if keyword in lower:
                    scores[change_type] += weight

        for op in operations:
            for change_type, score in _OPERATION_SCORES[op.type].items():
                scores[change_type] += score

        best_type = ChangeType.FEATURE
        best_score = 0.0
        for change_type, score in scores.items():
            if score > best_score:
                best_score = score
                best_type = change_type
        return best_type

    @staticmethod
    def _calculate_confidence(
        entities: list[str],
        operations: list[ParsedOperation],
        keywords: list[str],
    ) -> float:
        confidence = 0.5

        if entities:
            confidence += min(len(entities) * 0.1, 0.2)

        if operations:
            confidence += min(len(operations) * 0.1, 0.2)
            if any(not op.is_inferred for op in operations):
                confidence += 0.05

        if len(keywords) > 5:
            confidence += 0.05

        return min(confidence, 1.0)


change_parser = ChangeParser()
