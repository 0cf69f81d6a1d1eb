"""Configuration management for ImpactGate."""

from __future__ import annotations

from pathlib import Path
from typing import Any, get_origin

from pydantic import BaseModel, Field, ValidationError

from impactgate.exceptions import ConfigError
from impactgate.models import ChangeType, RiskSeverity

IMPACTGATE_DIR = ".impactgate"
CONFIG_FILE = "config.json"


class ScopeDetectorConfig(BaseModel):
    """Dependency expansion settings."""

    max_depth: int = 3
    include_indirect: bool = True
    expand_imports: bool = True
    expand_data_flows: bool = True


class ValidationGeneratorConfig(BaseModel):
    """Checklist generation settings."""

    include_module_tests: bool = True
    include_data_flow_validations: bool = True
    include_api_validations: bool = True
    test_command_prefix: str = "pytest"
    module_path_prefix: str = "tests/"


class GateControllerConfig(BaseModel):
    """Which findings block implementation."""

    blocking_severities: list[RiskSeverity] = Field(
        default_factory=lambda: [RiskSeverity.CRITICAL, RiskSeverity.HIGH]
    )
    block_on_failed_validation: bool = True
    block_on_pending_blocking_validation: bool = True
    min_passed_validations: int = 0


class RiskVocabulary(BaseModel):
    """Keyword lists the default risk rules match against."""

    schema_keywords: list[str] = Field(
        default_factory=lambda: ["schema", "migration", "database", "table", "column", "index"]
    )
    schema_target_terms: list[str] = Field(
        default_factory=lambda: ["schema", "database", "migration"]
    )
    api_path_markers: list[str] = Field(
        default_factory=lambda: ["/api/", "/routes/", "/endpoints/", ".controller."]
    )
    api_keywords: list[str] = Field(
        default_factory=lambda: ["api", "endpoint", "route", "controller", "request", "response"]
    )
    security_keywords: list[str] = Field(
        default_factory=lambda: [
            "auth", "authentication", "authorization", "login", "logout",
            "password", "token", "session", "permission", "role", "access",
            "security", "credential", "oauth", "jwt", "secret", "encrypt",
        ]
    )
    performance_keywords: list[str] = Field(
        default_factory=lambda: [
            "query", "database", "cache", "index", "bulk", "batch",
            "loop", "iteration", "recursive", "sync", "async",
        ]
    )
    performance_target_terms: list[str] = Field(
        default_factory=lambda: ["database", "query"]
    )
    test_keywords: list[str] = Field(
        default_factory=lambda: ["test", "spec", "coverage", "unit", "integration", "e2e"]
    )
    cross_module_threshold: int = 2
    many_files_threshold: int = 10


class AnalysisCriteria(BaseModel):
    """Heuristics deciding whether a task or spec deserves an analysis."""

    trigger_keywords: list[str] = Field(
        default_factory=lambda: [
            "refactor", "migration", "database", "schema", "api",
            "authentication", "authorization", "security", "breaking",
            "deprecate", "remove", "delete", "rename", "restructure",
            "performance", "critical",
        ]
    )
    always_analyze_types: list[ChangeType] = Field(
        default_factory=lambda: [ChangeType.MIGRATION, ChangeType.REFACTOR, ChangeType.DELETION]
    )
    min_description_length: int = 50
    # Regexes, matched case-insensitively against target file paths
    sensitive_file_patterns: list[str] = Field(
        default_factory=lambda: [
            r"database\.(ts|js|py)",
            r"schema\.(ts|js|py|sql)",
            r"migration",
            r"auth",
            r"security",
            r"\.env",
            r"config\.(ts|js|json|py)",
        ]
    )
    sensitive_modules: list[str] = Field(
        default_factory=lambda: ["database", "auth", "security", "api", "shared"]
    )


class ImpactConfig(BaseModel):
    """Full project configuration."""

    name: str = ""
    root_path: str = "."
    scope: ScopeDetectorConfig = Field(default_factory=ScopeDetectorConfig)
    validation: ValidationGeneratorConfig = Field(default_factory=ValidationGeneratorConfig)
    gate: GateControllerConfig = Field(default_factory=GateControllerConfig)
    risk: RiskVocabulary = Field(default_factory=RiskVocabulary)
    lifecycle: AnalysisCriteria = Field(default_factory=AnalysisCriteria)


DEFAULT_CONFIG = ImpactConfig()

# Settable sections of ImpactConfig, in display order
CONFIG_SECTIONS: dict[str, type[BaseModel]] = {
    "scope": ScopeDetectorConfig,
    "validation": ValidationGeneratorConfig,
    "gate": GateControllerConfig,
    "risk": RiskVocabulary,
    "lifecycle": AnalysisCriteria,
}


def find_project_root(start: Path | None = None) -> Path | None:
    """The nearest directory at or above `start` holding a .impactgate directory."""
    here = (start or Path.cwd()).resolve()
    return next((d for d in (here, *here.parents) if (d / IMPACTGATE_DIR).is_dir()), None)


def get_impactgate_dir(root: Path) -> Path:
    return root / IMPACTGATE_DIR


def load_config(root: Path) -> ImpactConfig:
    """Read .impactgate/config.json; a project without one gets the defaults."""
    config_path = get_impactgate_dir(root) / CONFIG_FILE
    if not config_path.exists():
        return ImpactConfig(name=root.name, root_path=str(root))
    try:
        return ImpactConfig.model_validate_json(config_path.read_text())
    except (OSError, ValidationError) as e:
        raise ConfigError(f"Invalid config file {config_path}: {e}") from e


def save_config(root: Path, config: ImpactConfig) -> None:
    get_impactgate_dir(root).mkdir(parents=True, exist_ok=True)
    (get_impactgate_dir(root) / CONFIG_FILE).write_text(config.model_dump_json(indent=2))


def split_config_key(key: str) -> tuple[str, str]:
    """Resolve ``section.field`` against the section models.

    Raises:
        KeyError: The section is unknown, or the field is not declared on it.
    """
    section, _, field = key.partition(".")
    model = CONFIG_SECTIONS.get(section)
    if model is None:
        raise KeyError(
            f"Unknown config section '{section}' (expected one of: {', '.join(CONFIG_SECTIONS)})"
        )
    if field not in model.model_fields:
        raise KeyError(
            f"'{section}' has no setting '{field}' "
            f"(expected one of: {', '.join(model.model_fields)})"
        )
    return section, field


def get_config_value(config: ImpactConfig, key: str) -> Any:
    section, field = split_config_key(key)
    return getattr(getattr(config, section), field)


def set_config_value(config: ImpactConfig, key: str, value: Any) -> ImpactConfig:
    """Return a copy of `config` with one section setting replaced.

    The value is validated by the section model, so ``"3"`` becomes an int
    for integer settings. List settings also take a comma-separated string.

    Raises:
        KeyError: `key` does not name a section setting.
        ConfigError: The section model rejects the value.
    """
    section, field = split_config_key(key)
    current = getattr(config, section)
    annotation = CONFIG_SECTIONS[section].model_fields[field].annotation
    if isinstance(value, str) and get_origin(annotation) is list:
        value = [item.strip() for item in value.split(",") if item.strip()]
    try:
        updated = current.model_validate({**current.model_dump(), field: value})
    except ValidationError as e:
        raise ConfigError(f"Invalid value for {key}: {e.errors()[0]['msg']}") from e
    return config.model_copy(update={section: updated})


def changed_settings(config: ImpactConfig) -> set[str]:
    """Dotted keys whose value differs from the built-in default."""
    changed = set()
    for section in CONFIG_SECTIONS:
        ours = getattr(config, section).model_dump(mode="json")
        defaults = getattr(DEFAULT_CONFIG, section).model_dump(mode="json")
        changed.update(f"{section}.{k}" for k, v in ours.items() if v != defaults[k])
    return changed
