"""Rich rendering of cluster status, rollout runs and plans."""

from __future__ import annotations

from typing import Any

from rich.table import Table

from rollout_forge.cli.shared.console import CLIConsole
from rollout_forge.infra.k8s.controller import KubernetesControllerSync
from rollout_forge.orchestration.models import (
    PhaseOutcome,
    ResourceSpec,
    RolloutRun,
)

_OUTCOME_STYLE = {
    PhaseOutcome.SUCCESS: "green",
    PhaseOutcome.FAILURE: "red",
    PhaseOutcome.TIMEOUT: "red",
    PhaseOutcome.CANCELLED: "yellow",
    PhaseOutcome.SKIPPED: "dim",
}


class StatusDisplay:
    """Renders tables on the CLI console."""

    def __init__(self, console: CLIConsole) -> None:
        self.console = console

    def show_k8s_status(self, namespace: str, controller: KubernetesControllerSync) -> None:
        """Show pods and services of a namespace."""
        if not controller.namespace_exists(namespace):
            self.console.warn(f"Namespace '{namespace}' does not exist")
            return

        self.console.print_subheader(f"Pods in {namespace}")
        try:
            pods = controller.get_pods(namespace)
        except RuntimeError as e:
            self.console.error(f"Could not list pods: {e}")
            pods = []

        table = Table(show_header=True, header_style="bold")
        table.add_column("Pod", style="cyan")
        table.add_column("Status")
        table.add_column("Ready", justify="center")
        table.add_column("Restarts", justify="right")
        table.add_column("Node", style="dim")
        for pod in pods:
            style = "green" if pod.ready else "yellow"
            table.add_row(
                pod.name,
                f"[{style}]{pod.status}[/{style}]",
                "✓" if pod.ready else "✗",
                str(pod.restarts),
                pod.node,
            )
        self.console.print(table)

        self.console.print_subheader(f"Services in {namespace}")
        table = Table(show_header=True, header_style="bold")
        table.add_column("Service", style="cyan")
        table.add_column("Type")
        table.add_column("Cluster IP")
        table.add_column("External IP")
        table.add_column("Ports", style="dim")
        for svc in controller.get_services(namespace):
            table.add_row(svc.name, svc.type, svc.cluster_ip, svc.external_ip or "-", svc.ports)
        self.console.print(table)

    def show_run(self, run: RolloutRun) -> None:
        """Show the phase records of a finished run."""
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Phase", style="cyan")
        table.add_column("Outcome")
        table.add_column("Duration", justify="right")
        table.add_column("Detail", style="dim")
        for record in run.records:
            style = _OUTCOME_STYLE[record.outcome]
            table.add_row(
                record.name.value,
                f"[{style}]{record.outcome.value}[/{style}]",
                f"{record.duration_ms / 1000:.1f}s",
                record.detail,
            )
        self.console.print(table)

        if run.smoke_report is not None and not run.smoke_report.healthy:
            report = run.smoke_report
            self.console.warn(
                f"Smoke check: {report.succeeded}/{report.attempted} requests succeeded"
                + (f" ({report.errors[-1]})" if report.errors else "")
            )

    def show_plan(self, tiers: list[list[ResourceSpec]]) -> None:
        """Show dependency tiers in apply order."""
        table = Table(show_header=True, header_style="bold")
        table.add_column("Tier", justify="right")
        table.add_column("Resource", style="cyan")
        table.add_column("Namespace")
        table.add_column("Depends on", style="dim")
        table.add_column("Gated", justify="center")
        for index, tier in enumerate(tiers):
            for spec in tier:
                table.add_row(
                    str(index),
                    spec.identity,
                    spec.namespace,
                    ", ".join(spec.depends_on) or "-",
                    "✓" if spec.kind.is_workload and spec.selector else "",
                )
        self.console.print(table)

    def show_history(self, entries: list[dict[str, Any]]) -> None:
        """Show recent entries of the rollout audit log."""
        table = Table(show_header=True, header_style="bold")
        table.add_column("Started")
        table.add_column("Final state")
        table.add_column("Phases", justify="right")
        table.add_column("Failure", style="dim")
        for entry in entries:
            final = entry.get("finalState", "")
            style = "green" if final == "Done" else "red"
            failure = entry.get("failure") or {}
            table.add_row(
                str(entry.get("startedAt", ""))[:19],
                f"[{style}]{final}[/{style}]",
                str(len(entry.get("phases", []))),
                failure.get("cause", ""),
            )
        self.console.print(table)
