"""Rollout workflows behind the CLI commands.

RolloutDeployer turns a validated RolloutConfig into wired components
(cluster adapter, image builder, smoke tester, port-forward manager), runs
the rollout engine, and drives the local-cluster lifecycle for ``setup``
and ``stop``.
"""

from __future__ import annotations

import signal
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path

from loguru import logger

from rollout_forge.cli.shared.console import CLIConsole
from rollout_forge.config import RolloutConfig
from rollout_forge.infra.constants import DEFAULT_CONSTANTS, DeploymentConstants
from rollout_forge.infra.k8s import (
    ForwardSession,
    KubernetesCluster,
    KubernetesControllerSync,
    PortForwardManager,
    get_k8s_controller,
    get_k8s_controller_sync,
    terminate_recorded,
)
from rollout_forge.orchestration import (
    DeploymentTarget,
    ReadinessCondition,
    ReadinessGate,
    ResourceGraph,
    ResourceSpec,
    RolloutController,
    RolloutError,
    RolloutLog,
    RolloutOptions,
    RolloutPhase,
    RolloutRun,
    SmokeTester,
    fixed_url,
)
from rollout_forge.orchestration.smoke import UrlResolver

from .image_builder import DockerImageBuilder
from .shell_commands import ShellCommands
from .status_display import StatusDisplay


@dataclass(frozen=True)
class DeployRequest:
    """CLI overrides for one deploy invocation."""

    skip_build: bool = False
    skip_smoke: bool = False
    image_tag: str | None = None
    dependency_timeout: float | None = None
    target_timeout: float | None = None
    deadline: float | None = None
    forward: bool = False
    detach: bool = False


class RolloutDeployer:
    """Runs rollouts and local-cluster workflows for one configuration.

    Attributes:
        config: Validated rollout configuration
        console: CLI console for user-facing output
        commands: Shell command executor (docker, minikube)
        state_file: Where detached port-forwards are recorded
    """

    def __init__(
        self,
        config: RolloutConfig,
        console: CLIConsole,
        commands: ShellCommands,
        *,
        state_file: Path,
        constants: DeploymentConstants = DEFAULT_CONSTANTS,
    ) -> None:
        self.config = config
        self.console = console
        self.commands = commands
        self.state_file = state_file
        self.constants = constants
        self.status_display = StatusDisplay(console)
        self._forwards: PortForwardManager | None = None

    # =========================================================================
    # Wiring
    # =========================================================================

    @property
    def controller(self) -> KubernetesControllerSync:
        return get_k8s_controller_sync(self.config.cluster.backend)

    @property
    def forwards(self) -> PortForwardManager:
        if self._forwards is None:
            self._forwards = PortForwardManager(state_file=self.state_file)
        return self._forwards

    def build_cluster(self) -> KubernetesCluster:
        return KubernetesCluster(get_k8s_controller(self.config.cluster.backend))

    def build_smoke_tester(self) -> SmokeTester | None:
        smoke = self.config.smoke
        if not smoke.enabled:
            return None
        if smoke.url:
            resolver = fixed_url(smoke.url)
        elif self.config.target.service:
            resolver = self._forwarded_url(smoke.local_port)
        else:
            logger.info("Smoke check disabled: no smoke.url and no target service")
            return None
        return SmokeTester(
            resolver,
            requests=smoke.requests,
            interval=smoke.interval,
            timeout=smoke.timeout,
        )

    def _forwarded_url(self, local_port: int) -> UrlResolver:
        @contextmanager
        def resolve(target: DeploymentTarget) -> Iterator[str]:
            session = ForwardSession(
                service=target.service or target.name,
                local_port=local_port,
                remote_port=target.service_port or target.probe.port,
                namespace=target.namespace,
            )
            with self.forwards.forward(session) as base_url:
                yield base_url + "/" + target.probe.path.lstrip("/")

        return resolve

    def build_rollout_controller(self, request: DeployRequest) -> RolloutController:
        timeouts = self.config.timeouts
        options = RolloutOptions(
            dependency_timeout=request.dependency_timeout or timeouts.dependency,
            poll_interval=timeouts.poll_interval,
            deadline=request.deadline or timeouts.deadline,
            skip_build=request.skip_build,
            skip_smoke=request.skip_smoke,
            image_tag=request.image_tag,
        )
        audit_path = self.config.audit_log_path()
        builder = DockerImageBuilder(
            self.commands,
            use_minikube_env=self.config.cluster.is_minikube
            and self.config.cluster.use_docker_env,
            on_output=lambda line: logger.debug(f"[build] {line}"),
        )
        return RolloutController(
            self.build_cluster(),
            builder,
            options=options,
            smoke=self.build_smoke_tester(),
            audit_log=RolloutLog(audit_path) if audit_path else None,
            on_phase=self._on_phase,
        )

    def _on_phase(self, phase: RolloutPhase, detail: str) -> None:
        if phase is RolloutPhase.FAILED:
            return
        suffix = f" [dim]({detail})[/dim]" if detail else ""
        self.console.info(f"{phase.value}{suffix}")

    def deployment_target(self, request: DeployRequest) -> DeploymentTarget:
        target = self.config.deployment_target()
        if request.target_timeout:
            target = replace(
                target, probe=replace(target.probe, timeout=request.target_timeout)
            )
        return target

    # =========================================================================
    # Workflows
    # =========================================================================

    def plan(self) -> list[list[ResourceSpec]]:
        """Resolve apply tiers without touching the cluster.

        Raises:
            InvalidGraphError: If the graph has duplicates, cycles or
                unknown dependencies
        """
        return ResourceGraph.from_specs(self.config.resource_specs()).topological_order()

    def deploy(self, request: DeployRequest) -> RolloutRun:
        """Run one rollout and, on success, the requested port-forwards.

        Ctrl-C or SIGTERM during the rollout cancels it at the next
        suspension point; the returned run then ends Failed with the
        cancelled exit code. SIGTERM also stops the smoke-check forward.

        Raises:
            RolloutError: If the local cluster is not running or kubectl
                points at another cluster
        """
        cluster = self.config.cluster
        if cluster.is_minikube:
            if not self.commands.minikube.is_running():
                raise RolloutError(
                    "Minikube is not running",
                    details="Start it with: rollout-forge setup",
                )
            kube = self.controller
            if not kube.is_minikube_context():
                raise RolloutError(
                    f"kubectl context '{kube.get_current_context()}' is not minikube",
                    details="Switch with: kubectl config use-context minikube",
                )

        controller = self.build_rollout_controller(request)
        target = self.deployment_target(request)
        specs = self.config.resource_specs()

        # The rollout runs on a worker thread, which cannot own signal handlers
        forwards = self.forwards
        forwards.install_signal_handlers((signal.SIGTERM,))
        try:
            with ThreadPoolExecutor(max_workers=1) as pool:
                future = pool.submit(controller.run, specs, target)
                try:
                    run = future.result()
                except KeyboardInterrupt:
                    self.console.warn("Cancelling rollout...")
                    controller.cancel()
                    run = future.result()
        finally:
            forwards.restore_signal_handlers((signal.SIGTERM,))

        self.status_display.show_run(run)
        if run.succeeded:
            self._after_success(target, request)
        return run

    def _after_success(self, target: DeploymentTarget, request: DeployRequest) -> None:
        sessions = self.forward_sessions(target)
        if request.forward and sessions:
            self.start_forwards(sessions, detach=request.detach)
        elif sessions:
            self.console.print("\n[dim]To access the app, run:[/dim]")
            for session in sessions:
                self.console.print(f"  [cyan]{' '.join(session.command())}[/cyan]")

    def forward_sessions(self, target: DeploymentTarget) -> list[ForwardSession]:
        sessions = self.config.forward_sessions()
        if sessions or not target.service:
            return sessions
        return [
            ForwardSession(
                service=target.service,
                local_port=8080,
                remote_port=target.service_port or target.probe.port,
                namespace=target.namespace,
            )
        ]

    def start_forwards(self, sessions: list[ForwardSession], *, detach: bool) -> None:
        """Start forwards detached, or in the foreground until Ctrl-C."""
        forwards = self.forwards
        if detach:
            handles = forwards.start_many(sessions, detach=True)
            for handle in handles:
                self.console.ok(f"Forwarding {handle.url} (pid {handle.pid})")
            if handles:
                self.console.print("[dim]Stop with: rollout-forge stop --no-cluster[/dim]")
            return

        with forwards:
            forwards.install_signal_handlers()
            handles = forwards.start_many(sessions)
            if not handles:
                self.console.warn("No port-forward could be started")
                return
            for handle in handles:
                self.console.ok(f"Forwarding {handle.url} -> {handle.session.target}")
            self.console.print("[dim]Press Ctrl+C to stop port forwarding[/dim]")
            try:
                forwards.wait()
            except KeyboardInterrupt:
                forwards.stop_all()
        self.console.info("Port forwarding stopped")

    def setup(self, request: DeployRequest, *, recreate: bool = False, yes: bool = False) -> RolloutRun:
        """Prepare the local cluster and run the first full rollout.

        Raises:
            RolloutError: If minikube cannot be started
            ReadinessTimeoutError: If the ingress controller never becomes ready
        """
        cluster = self.config.cluster
        if cluster.is_minikube:
            minikube = self.commands.minikube
            if recreate and self.console.confirm_action(
                "Recreate the minikube cluster",
                "This stops and deletes the current cluster and all its data.",
                force=yes,
            ):
                with self.console.status("Deleting minikube cluster..."):
                    minikube.stop()
                    minikube.delete()

            with self.console.status("Starting minikube..."):
                started = minikube.ensure_running(cluster.addons)
            if not started:
                raise RolloutError(
                    "Could not start minikube",
                    details=minikube.status().stdout or None,
                )
            self.console.ok(f"Minikube running (addons: {', '.join(cluster.addons) or 'none'})")

            if cluster.wait_for_ingress and "ingress" in cluster.addons:
                self.wait_for_ingress_controller()
        else:
            self.console.info(
                f"Using existing cluster context '{self.controller.get_current_context()}'"
            )

        run = self.deploy(request)
        if run.succeeded:
            self.print_hosts_hint()
            self.status_display.show_k8s_status(self.config.namespace, self.controller)
        return run

    def wait_for_ingress_controller(self) -> None:
        cluster = self.config.cluster
        condition = ReadinessCondition(
            selector=cluster.ingress_selector,
            namespace=cluster.ingress_namespace,
            timeout=self.constants.INFRA_READY_TIMEOUT,
            poll_interval=self.config.timeouts.poll_interval,
        )
        with self.console.status("Waiting for the ingress controller..."):
            result = ReadinessGate(self.build_cluster()).wait_until_ready(condition)
        if not result.ready and result.error is not None:
            raise result.error
        self.console.ok("Ingress controller ready")

    def print_hosts_hint(self, hosts_file: Path | None = None) -> None:
        """Tell the user how to map the ingress host to the cluster IP."""
        host = self.config.ingress.host
        if not host or not self.config.cluster.is_minikube:
            return
        ip = self.commands.minikube.ip()
        if not ip:
            self.console.warn("Could not determine the minikube IP for the ingress host")
            return

        hosts_file = hosts_file or Path(self.constants.HOSTS_FILE)
        if _hosts_entry_exists(hosts_file, ip, host):
            self.console.ok(f"Ingress available at http://{host}")
        else:
            self.console.print("\n[dim]Map the ingress host with:[/dim]")
            self.console.print(f'  [cyan]echo "{ip} {host}" | sudo tee -a {hosts_file}[/cyan]')

    def stop(self, *, stop_cluster: bool = True) -> list[int]:
        """Terminate recorded port-forwards, then optionally stop minikube.

        Returns:
            PIDs of the port-forward processes that were terminated
        """
        pids = terminate_recorded(self.state_file)
        if pids:
            self.console.ok(f"Stopped {len(pids)} port-forward(s)")
        else:
            self.console.info("No recorded port-forwards")

        if stop_cluster and self.config.cluster.is_minikube:
            with self.console.status("Stopping minikube..."):
                result = self.commands.minikube.stop()
            if result.success:
                self.console.ok("Minikube stopped (data preserved)")
            else:
                self.console.warn(f"minikube stop failed: {result.stderr.strip()}")
        return pids

    def show_status(self, history: int = 5, *, namespace: str | None = None) -> None:
        """Pods and services of a namespace (default: the configured one), then recent rollouts."""
        self.status_display.show_k8s_status(namespace or self.config.namespace, self.controller)
        audit_path = self.config.audit_log_path()
        if audit_path and history:
            entries = RolloutLog(audit_path).read()[-history:]
            if entries:
                self.console.print_subheader("Recent rollouts")
                self.status_display.show_history(entries)


def _hosts_entry_exists(hosts_file: Path, ip: str, host: str) -> bool:
    try:
        lines = hosts_file.read_text().splitlines()
    except OSError:
        return False
    for line in lines:
        fields = line.split("#", 1)[0].split()
        if len(fields) >= 2 and fields[0] == ip and host in fields[1:]:
            return True
    return False
