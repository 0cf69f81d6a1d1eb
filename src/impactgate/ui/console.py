"""Rich-powered console output for ImpactGate."""

from __future__ import annotations

from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from impactgate import __version__
from impactgate.config import ImpactConfig
from impactgate.impact.lifecycle import AnalysisTrigger
from impactgate.models import (
    GateAuditLog,
    GateStatus,
    ImpactAnalysis,
    ImpactLevel,
    ImplementationGate,
    RiskSeverity,
    ValidationStatus,
)

_GATE_STYLES = {
    GateStatus.CLEAR: "green",
    GateStatus.WARNING: "yellow",
    GateStatus.BLOCKED: "red",
}

_SEVERITY_STYLES = {
    RiskSeverity.CRITICAL: "bold red",
    RiskSeverity.HIGH: "red",
    RiskSeverity.MEDIUM: "yellow",
    RiskSeverity.LOW: "dim",
}

_IMPACT_STYLES = {
    ImpactLevel.DIRECT: "red",
    ImpactLevel.INDIRECT: "yellow",
    ImpactLevel.CASCADE: "green",
}

_STATUS_MARKS = {
    ValidationStatus.PENDING: "[dim]○[/dim]",
    ValidationStatus.RUNNING: "[blue]…[/blue]",
    ValidationStatus.PASSED: "[green]✓[/green]",
    ValidationStatus.FAILED: "[red]✗[/red]",
    ValidationStatus.SKIPPED: "[yellow]-[/yellow]",
}


class Console:
    """Terminal output for ImpactGate using Rich."""

    def __init__(self, stderr: bool = False) -> None:
        self.console = RichConsole(stderr=stderr)

    def banner(self) -> None:
        self.console.print(
            Panel(
                f"[bold cyan]ImpactGate[/bold cyan] [dim]v{__version__}[/dim]\n"
                "[dim]Change impact analysis and implementation gate[/dim]",
                border_style="cyan",
                padding=(1, 2),
            )
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {message}")

    def info(self, message: str) -> None:
        self.console.print(f"[blue]i[/blue] {message}")

    def show_analysis(self, analysis: ImpactAnalysis) -> None:
        """Display a full analysis: summary, scope, risks, validations, gate."""
        parsed = analysis.parsed
        self.console.print(
            Panel(
                f"[bold]Change:[/bold] {analysis.input.description}\n"
                f"[bold]Type:[/bold] {parsed.change_type.value} "
                f"[dim](confidence {parsed.confidence:.0%})[/dim]\n"
                f"[bold]Entities:[/bold] {', '.join(parsed.entities) or '-'}\n"
                f"[bold]Operations:[/bold] "
                f"{', '.join(f'{op.type.value} {op.target}' for op in parsed.operations) or '-'}",
                title=f"[bold]Impact Analysis[/bold] [dim]{analysis.id}[/dim]",
                border_style="cyan",
            )
        )

        if analysis.error:
            self.error(f"Analysis failed: {analysis.error}")
            return

        self.show_scope(analysis)
        self.show_risks(analysis)
        self.show_validations(analysis)
        self.show_gate(analysis.gate)

    def show_scope(self, analysis: ImpactAnalysis) -> None:
        scope = analysis.scope
        tree = Tree("[bold]Scope[/bold]")

        modules = tree.add(f"[bold]Modules[/bold] ({scope.module_count})")
        for module_id in scope.primary_modules:
            modules.add(f"[bold cyan]{module_id}[/bold cyan] [dim](primary)[/dim]")
        for dep in scope.dependent_modules:
            style = _IMPACT_STYLES[dep.impact_level]
            modules.add(
                f"{dep.module_name} [{style}]{dep.impact_level.value}[/{style}] "
                f"[dim]{dep.reason}[/dim]"
            )

        if scope.file_count:
            files = tree.add(f"[bold]Files[/bold] ({scope.file_count})")
            for path in scope.primary_files:
                files.add(f"[cyan]{path}[/cyan] [dim](primary)[/dim]")
            for f in scope.affected_files:
                style = _IMPACT_STYLES[f.impact_level]
                files.add(f"[cyan]{f.file_path}[/cyan] [{style}]{f.impact_level.value}[/{style}]")

        if scope.affected_entities:
            tree.add(f"[bold]Entities:[/bold] {', '.join(scope.affected_entities)}")

        if analysis.data_flows:
            flows = tree.add(f"[bold]Data flows[/bold] ({len(analysis.data_flows)})")
            for flow in analysis.data_flows:
                style = _IMPACT_STYLES[flow.impact_level]
                flows.add(
                    f"{flow.source} → {flow.target} [dim]({flow.strength.value})[/dim] "
                    f"[{style}]{flow.impact_level.value}[/{style}]"
                )

        self.console.print(tree)

    def show_risks(self, analysis: ImpactAnalysis) -> None:
        if not analysis.risks:
            self.success("No risks identified")
            return

        table = Table(title="Risks", border_style="cyan")
        table.add_column("Rule", style="bold")
        table.add_column("Severity")
        table.add_column("Name")
        table.add_column("Blocking", justify="center")
        table.add_column("Mitigation", style="dim")

        for risk in analysis.risks:
            style = _SEVERITY_STYLES[risk.severity]
            name = f"[strike]{risk.name}[/strike]" if risk.mitigation_applied else risk.name
            table.add_row(
                risk.rule_id,
                f"[{style}]{risk.severity.value}[/{style}]",
                name,
                "●" if risk.is_blocking else "",
                risk.mitigation,
            )
        self.console.print(table)

    def show_validations(self, analysis: ImpactAnalysis) -> None:
        if not analysis.validations:
            return

        table = Table(title="Validation Checklist", border_style="cyan")
        table.add_column("", justify="center")
        table.add_column("ID", style="dim")
        table.add_column("Category")
        table.add_column("Title")
        table.add_column("Command", style="cyan")

        for item in analysis.validations:
            title = f"[bold]{item.title}[/bold]" if item.is_blocking else item.title
            table.add_row(
                _STATUS_MARKS[item.status],
                item.id,
                item.category.value,
                title,
                item.verify_command or "",
            )
        self.console.print(table)

    def show_gate(self, gate: ImplementationGate) -> None:
        style = _GATE_STYLES[gate.status]
        lines = [f"[bold]Status:[/bold] [{style}]{gate.status.value.upper()}[/{style}]"]

        if gate.blockers:
            lines.append("")
            lines.append("[bold]Blockers:[/bold]")
            for b in gate.blockers:
                lines.append(f"  [red]✗[/red] [dim]{b.item_id}[/dim] {b.description}")
                if b.resolution:
                    lines.append(f"      [dim]→ {b.resolution}[/dim]")

        if gate.warnings:
            lines.append("")
            lines.append("[bold]Warnings:[/bold]")
            for w in gate.warnings:
                lines.append(f"  [yellow]![/yellow] {w.description}")

        if gate.approval:
            lines.append("")
            lines.append(
                f"[bold]Approved by[/bold] {gate.approval.approver}: {gate.approval.reason} "
                f"[dim]({len(gate.approval.approved_blockers)} blocker(s))[/dim]"
            )

        self.console.print(
            Panel("\n".join(lines), title="[bold]Implementation Gate[/bold]", border_style=style)
        )

    def show_audit(self, audit: GateAuditLog) -> None:
        self.console.print(
            Panel(
                f"[bold]Action:[/bold] {audit.action}\n"
                f"[bold]Approver:[/bold] {audit.approver}\n"
                f"[bold]Reason:[/bold] {audit.reason}\n"
                f"[bold]Bypassed:[/bold] {len(audit.blockers_bypassed)} blocker(s)\n"
                f"[bold]Status:[/bold] {audit.previous_status.value} → {audit.new_status.value}",
                title="[bold]Audit[/bold]",
                border_style="magenta",
            )
        )

    def show_trigger(self, trigger: AnalysisTrigger) -> None:
        if trigger.should_analyze:
            self.warning(f"Analysis recommended [bold]({trigger.priority.value})[/bold]")
            for reason in trigger.reason.split("; "):
                self.console.print(f"  [dim]-[/dim] {reason}")
        else:
            self.success(trigger.reason)

    def show_config(self, config: ImpactConfig, sections: list[str], changed: set[str]) -> None:
        """One table per section; settings changed from the default are highlighted."""
        self.console.print(f"[bold]Project:[/bold] {config.name or '-'}")
        for section in sections:
            table = Table(title=f"[bold]{section}[/bold]", title_justify="left", show_header=False)
            table.add_column("Setting", style="cyan", no_wrap=True)
            table.add_column("Value")
            for field, value in getattr(config, section).model_dump(mode="json").items():
                if isinstance(value, list):
                    value = ", ".join(str(v) for v in value) or "-"
                key = f"{section}.{field}"
                if key in changed:
                    table.add_row(f"[bold]{field}[/bold]", f"[yellow]{value}[/yellow]")
                else:
                    table.add_row(field, str(value))
            self.console.print(table)
