"""Command-line interface for ImpactGate."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from impactgate import __version__
from impactgate.config import (
    CONFIG_SECTIONS,
    DEFAULT_CONFIG,
    ImpactConfig,
    changed_settings,
    find_project_root,
    get_config_value,
    get_impactgate_dir,
    load_config,
    save_config,
    set_config_value,
)
from impactgate.exceptions import ConfigError, InvalidBlockerError, ProviderError
from impactgate.models import (
    ApproveGateRequest,
    ChangeInput,
    ChangeType,
    DataFlow,
    GateAuditLog,
    GateStatus,
    ImpactAnalysis,
)
from impactgate.ui.console import Console

console = Console()

GRAPH_FILE = "graph.json"
AUDIT_FILE = "gate-audit.jsonl"

EXIT_BLOCKED = 2


def setup_logging(verbose: bool) -> None:
    """Log to stderr so JSON output on stdout stays parseable."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )


def _get_project_root(path: str | None = None) -> Path | None:
    """Resolve --path, or search upward for a .impactgate directory."""
    if path:
        root = Path(path).resolve()
        if not root.exists():
            console.error(f"Path does not exist: {path}")
            sys.exit(1)
        return root
    return find_project_root()


def _load_project_config(root: Path | None) -> ImpactConfig:
    if root is None:
        return ImpactConfig()
    try:
        return load_config(root)
    except ConfigError as e:
        console.error(str(e))
        sys.exit(1)


def _load_graph(root: Path | None, graph_path: str | None):
    """Load the knowledge graph from --graph or .impactgate/graph.json."""
    from impactgate.graph import load_knowledge_graph

    if graph_path:
        path = Path(graph_path)
    elif root is not None and (get_impactgate_dir(root) / GRAPH_FILE).exists():
        path = get_impactgate_dir(root) / GRAPH_FILE
    else:
        return None

    try:
        return load_knowledge_graph(path)
    except ProviderError as e:
        console.error(str(e))
        sys.exit(1)


def _load_flows(flows_path: str) -> list[DataFlow]:
    try:
        raw = json.loads(Path(flows_path).read_text())
        return [DataFlow.model_validate(f) for f in raw]
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        console.error(f"Cannot read data flows from {flows_path}: {e}")
        sys.exit(1)


def _read_analysis(path: Path) -> ImpactAnalysis:
    try:
        return ImpactAnalysis.model_validate_json(path.read_text())
    except (OSError, ValidationError) as e:
        console.error(f"Cannot read analysis {path}: {e}")
        sys.exit(1)


def _write_analysis(path: Path, analysis: ImpactAnalysis) -> None:
    path.write_text(analysis.model_dump_json(indent=2, by_alias=True))


def _append_audit(path: Path, audit: GateAuditLog) -> None:
    with open(path, "a") as f:
        f.write(audit.model_dump_json() + "\n")


@click.group()
@click.version_option(version=__version__, prog_name="impactgate")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """ImpactGate - analyze a planned change and gate its implementation."""
    setup_logging(verbose)


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
def init(path: str | None):
    """Create .impactgate/config.json with the default configuration."""
    root = Path(path or ".").resolve()
    if not root.exists():
        console.error(f"Path does not exist: {root}")
        sys.exit(1)

    console.banner()
    config = _load_project_config(root)
    config.name = root.name
    config.root_path = str(root)
    save_config(root, config)
    console.success(f"Configuration saved to {get_impactgate_dir(root)}")
    console.info(f"Put a knowledge graph at {get_impactgate_dir(root) / GRAPH_FILE} to enable scope expansion.")


@main.command()
@click.argument("description")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--file", "-f", "files", multiple=True, help="Target file (repeatable).")
@click.option("--module", "-m", "modules", multiple=True, help="Target module (repeatable).")
@click.option("--spec", "spec_id", default=None, help="Linked spec ID.")
@click.option("--task", "task_id", default=None, help="Linked task ID.")
@click.option(
    "--type", "change_type",
    type=click.Choice([t.value for t in ChangeType]),
    default=None,
    help="Change type (inferred when omitted).",
)
@click.option("--graph", "graph_path", default=None, help="Knowledge graph JSON file.")
@click.option("--flows", "flows_path", default=None, help="Data flows JSON file (overrides the graph).")
@click.option("--max-depth", "-d", default=None, type=int, help="Max dependency expansion depth.")
@click.option(
    "--format", "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format.",
)
@click.option("--output", "-o", default=None, help="Also save the analysis JSON to this file.")
@click.option("--strict", is_flag=True, help="Exit with code 2 when the gate is blocked.")
def analyze(
    description: str,
    path: str | None,
    files: tuple[str, ...],
    modules: tuple[str, ...],
    spec_id: str | None,
    task_id: str | None,
    change_type: str | None,
    graph_path: str | None,
    flows_path: str | None,
    max_depth: int | None,
    output_format: str,
    output: str | None,
    strict: bool,
):
    """Analyze the impact of a planned change.

    Usage:

        impactgate analyze "Remove deprecated API endpoints" -f src/api/users.py

        impactgate analyze "Add payment processing" --graph graph.json --format json
    """
    from impactgate.impact import ImpactAnalyzer

    root = _get_project_root(path)
    config = _load_project_config(root)
    if max_depth is not None:
        config.scope.max_depth = max_depth

    graph = _load_graph(root, graph_path)
    analyzer = ImpactAnalyzer.from_graph(graph, config) if graph else ImpactAnalyzer(config)

    change = ChangeInput(
        description=description,
        project_id=config.name or None,
        task_id=task_id,
        spec_id=spec_id,
        target_files=list(files),
        target_modules=list(modules),
        change_type=ChangeType(change_type) if change_type else None,
    )
    flows = _load_flows(flows_path) if flows_path else None

    analysis = analyzer.analyze(change, data_flows=flows)

    if output:
        _write_analysis(Path(output), analysis)

    if output_format == "json":
        click.echo(analysis.model_dump_json(indent=2, by_alias=True))
    else:
        console.show_analysis(analysis)
        if output:
            console.success(f"Analysis saved to {output}")

    if analysis.error:
        sys.exit(1)
    if strict and analysis.gate.status == GateStatus.BLOCKED:
        sys.exit(EXIT_BLOCKED)


@main.command()
@click.argument("analysis_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--approve", "blocker_ids", multiple=True, help="Blocker ID to approve (repeatable).")
@click.option("--force", is_flag=True, help="Bypass every blocker (audited).")
@click.option("--revoke", is_flag=True, help="Drop the current approval and re-evaluate.")
@click.option("--approver", default=None, help="Who approves or overrides.")
@click.option("--reason", default=None, help="Why the approval or override is granted.")
@click.option(
    "--format", "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format.",
)
@click.option("--strict", is_flag=True, help="Exit with code 2 when the gate is blocked.")
def gate(
    analysis_file: str,
    path: str | None,
    blocker_ids: tuple[str, ...],
    force: bool,
    revoke: bool,
    approver: str | None,
    reason: str | None,
    output_format: str,
    strict: bool,
):
    """Show, approve, override or revoke the gate of a saved analysis.

    Approvals and overrides rewrite ANALYSIS_FILE and append an audit record
    to gate-audit.jsonl next to it.

    Usage:

        impactgate gate analysis.json --approve risk-R003 --approver alice --reason "reviewed"

        impactgate gate analysis.json --force --approver lead --reason "hotfix"
    """
    from impactgate.impact import ImpactAnalyzer

    if sum([bool(blocker_ids), force, revoke]) > 1:
        console.error("Use only one of --approve, --force and --revoke")
        sys.exit(1)
    if (blocker_ids or force) and not (approver and reason):
        console.error("--approver and --reason are required to approve or override")
        sys.exit(1)

    analysis_path = Path(analysis_file)
    analysis = _read_analysis(analysis_path)
    config = _load_project_config(_get_project_root(path))
    analyzer = ImpactAnalyzer(config)

    audit: GateAuditLog | None = None
    request = ApproveGateRequest(
        approver=approver or "", reason=reason or "", blocker_ids=list(blocker_ids)
    )
    try:
        if blocker_ids:
            analysis, audit = asyncio.run(analyzer.approve(analysis, request))
        elif force:
            analysis, audit = asyncio.run(analyzer.force_override(analysis, request))
        elif revoke:
            analysis = asyncio.run(analyzer.revoke_approval(analysis))
    except InvalidBlockerError as e:
        console.error(str(e))
        sys.exit(1)

    if blocker_ids or force or revoke:
        _write_analysis(analysis_path, analysis)
    if audit is not None:
        _append_audit(analysis_path.parent / AUDIT_FILE, audit)

    if output_format == "json":
        payload = {
            "gate": analysis.gate.model_dump(mode="json"),
            "summary": analyzer.gate_controller.get_summary(analysis.gate).model_dump(mode="json"),
            "audit": audit.model_dump(mode="json") if audit else None,
        }
        click.echo(json.dumps(payload, indent=2))
    else:
        console.show_gate(analysis.gate)
        if audit is not None:
            console.show_audit(audit)

    if strict and analysis.gate.status == GateStatus.BLOCKED:
        sys.exit(EXIT_BLOCKED)


@main.command()
@click.argument("title")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--description", default=None, help="Task description.")
@click.option("--file", "-f", "files", multiple=True, help="Target file (repeatable).")
@click.option("--module", "-m", "modules", multiple=True, help="Target module (repeatable).")
@click.option("--id", "task_id", default="cli-task", help="Task ID.")
def triage(
    title: str,
    path: str | None,
    description: str | None,
    files: tuple[str, ...],
    modules: tuple[str, ...],
    task_id: str,
):
    """Decide whether a task deserves an impact analysis."""
    from impactgate.impact.lifecycle import LifecycleHooks, TaskInfo

    config = _load_project_config(_get_project_root(path))
    hooks = LifecycleHooks(config.lifecycle)
    trigger = hooks.evaluate_task_for_analysis(TaskInfo(
        id=task_id,
        title=title,
        description=description,
        target_files=list(files),
        target_modules=list(modules),
    ))
    console.show_trigger(trigger)


# =========================================================================
# Config Management
# =========================================================================

@main.group("config")
def config_group():
    """Inspect and change project settings (.impactgate/config.json)."""


def _require_project(path: str | None) -> tuple[Path, ImpactConfig]:
    root = _get_project_root(path)
    if root is None or not get_impactgate_dir(root).is_dir():
        console.error(
            "No ImpactGate project found. Run 'impactgate init' first, "
            "or specify a path with --path."
        )
        sys.exit(1)
    return root, _load_project_config(root)


def _lookup(config: ImpactConfig, key: str):
    try:
        return get_config_value(config, key)
    except KeyError as e:
        console.error(e.args[0])
        sys.exit(1)


@config_group.command("show")
@click.argument("sections", nargs=-1, type=click.Choice(list(CONFIG_SECTIONS)))
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON instead of tables.")
def config_show(sections: tuple[str, ...], path: str | None, as_json: bool):
    """Show settings, optionally only some SECTIONS (scope, gate, risk, ...)."""
    _, config = _require_project(path)
    selected = list(sections) or list(CONFIG_SECTIONS)
    if as_json:
        data = config.model_dump(mode="json")
        click.echo(json.dumps({s: data[s] for s in selected}, indent=2))
        return
    console.show_config(config, selected, changed_settings(config))


@config_group.command("get")
@click.argument("key")
@click.option("--path", "-p", default=None, help="Path to the project root.")
def config_get(key: str, path: str | None):
    """Print one setting, e.g. gate.blocking_severities."""
    _, config = _require_project(path)
    value = _lookup(config, key)
    if isinstance(value, list):
        value = ", ".join(getattr(v, "value", str(v)) for v in value)
    console.console.print(f"{key} = {value}", markup=False)


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.option("--path", "-p", default=None, help="Path to the project root.")
def config_set(key: str, value: str, path: str | None):
    """Change one setting; list settings take comma-separated values."""
    root, config = _require_project(path)
    try:
        config = set_config_value(config, key, value)
    except KeyError as e:
        console.error(e.args[0])
        sys.exit(1)
    except ConfigError as e:
        console.error(str(e))
        sys.exit(1)
    save_config(root, config)
    console.success(f"Set {key} = {value}")


@config_group.command("reset")
@click.argument("key")
@click.option("--path", "-p", default=None, help="Path to the project root.")
def config_reset(key: str, path: str | None):
    """Restore one setting to its built-in default."""
    root, config = _require_project(path)
    default = _lookup(DEFAULT_CONFIG, key)
    config = set_config_value(config, key, default)
    save_config(root, config)
    console.success(f"Reset {key}")


if __name__ == "__main__":
    main()
