"""Unit tests for RolloutDeployer workflows."""

from __future__ import annotations

import signal
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from rollout_forge.cli.deployment.deployer import DeployRequest, RolloutDeployer
from rollout_forge.config import RolloutConfig
from rollout_forge.infra.k8s.controller import CommandResult
from rollout_forge.orchestration import (
    ReadinessTimeoutError,
    RolloutError,
    RolloutPhase,
    RolloutRun,
)
from rollout_forge.orchestration.readiness import ReadinessResult

CONFIG = {
    "namespace": "gke-learning",
    "resources": [
        {"name": "gke-learning", "kind": "Namespace", "manifest": "k8s/namespace.yaml"},
        {"name": "app-config", "kind": "ConfigData", "manifest": "k8s/configmap.yaml"},
        {
            "name": "express-app",
            "kind": "StatelessService",
            "manifest": "k8s/deployment.yaml",
            "depends_on": ["app-config"],
            "selector": "app=express-app",
        },
    ],
    "target": {"resource": "express-app"},
    "timeouts": {"dependency": 60, "target": 200, "poll_interval": 1},
}


class TestRolloutDeployer:
    """Tests for RolloutDeployer."""

    @pytest.fixture(autouse=True)
    def kube(self):
        kube = MagicMock()
        kube.is_minikube_context.return_value = True
        kube.get_current_context.return_value = "minikube"
        with patch(
            "rollout_forge.cli.deployment.deployer.get_k8s_controller_sync",
            return_value=kube,
        ):
            yield kube

    @pytest.fixture
    def commands(self) -> MagicMock:
        commands = MagicMock()
        commands.minikube.is_running.return_value = True
        commands.minikube.ensure_running.return_value = True
        commands.minikube.ip.return_value = "192.168.49.2"
        commands.minikube.stop.return_value = CommandResult(success=True)
        return commands

    @pytest.fixture
    def console(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def config(self, tmp_path) -> RolloutConfig:
        return RolloutConfig.model_validate(CONFIG).with_base_dir(tmp_path)

    @pytest.fixture
    def deployer(self, config, console, commands, tmp_path) -> RolloutDeployer:
        return RolloutDeployer(
            config, console, commands, state_file=tmp_path / ".rollout-forge" / "forwards.json"
        )

    @pytest.fixture
    def controller(self, deployer) -> MagicMock:
        controller = MagicMock()
        controller.run.return_value = RolloutRun(phase=RolloutPhase.DONE)
        deployer.build_rollout_controller = MagicMock(return_value=controller)
        deployer.status_display = MagicMock()
        return controller

    # =========================================================================
    # Wiring
    # =========================================================================

    def test_plan_orders_resources(self, deployer) -> None:
        tiers = deployer.plan()

        assert [[s.name for s in tier] for tier in tiers] == [
            ["gke-learning"],
            ["app-config"],
            ["express-app"],
        ]

    def test_request_overrides_configured_timeouts(self, deployer, tmp_path) -> None:
        controller = deployer.build_rollout_controller(
            DeployRequest(dependency_timeout=5, deadline=30, skip_smoke=True)
        )

        assert controller.options.dependency_timeout == 5
        assert controller.options.poll_interval == 1
        assert controller.options.deadline == 30
        assert controller.options.skip_smoke
        assert controller.audit_log.path == tmp_path / ".rollout-forge" / "rollouts.jsonl"
        assert controller.builder.use_minikube_env

    def test_configured_timeouts_are_defaults(self, deployer) -> None:
        controller = deployer.build_rollout_controller(DeployRequest())

        assert controller.options.dependency_timeout == 60
        assert controller.options.deadline is None

    def test_target_timeout_override(self, deployer) -> None:
        assert deployer.deployment_target(DeployRequest()).probe.timeout == 200
        assert deployer.deployment_target(DeployRequest(target_timeout=15)).probe.timeout == 15

    def test_smoke_disabled(self, deployer) -> None:
        deployer.config.smoke.enabled = False

        assert deployer.build_smoke_tester() is None

    def test_default_forward_session(self, deployer) -> None:
        (session,) = deployer.forward_sessions(deployer.deployment_target(DeployRequest()))

        assert session.service == "express-app-service"
        assert (session.local_port, session.remote_port) == (8080, 80)

    # =========================================================================
    # Deploy
    # =========================================================================

    def test_deploy_requires_running_minikube(self, deployer, commands, controller) -> None:
        commands.minikube.is_running.return_value = False

        with pytest.raises(RolloutError, match="Minikube is not running"):
            deployer.deploy(DeployRequest())

        controller.run.assert_not_called()

    def test_deploy_refuses_foreign_kube_context(self, deployer, kube, controller) -> None:
        kube.is_minikube_context.return_value = False
        kube.get_current_context.return_value = "prod-cluster"

        with pytest.raises(RolloutError, match="'prod-cluster' is not minikube"):
            deployer.deploy(DeployRequest())

        controller.run.assert_not_called()

    def test_deploy_restores_sigterm_handler(self, deployer, controller) -> None:
        previous = signal.getsignal(signal.SIGTERM)
        seen = []
        controller.run.side_effect = lambda *_args: (
            seen.append(signal.getsignal(signal.SIGTERM)) or RolloutRun(phase=RolloutPhase.DONE)
        )

        deployer.deploy(DeployRequest())

        assert seen == [deployer.forwards._handle_signal]
        assert signal.getsignal(signal.SIGTERM) == previous

    def test_deploy_runs_controller_and_prints_forward_hint(
        self, deployer, console, controller
    ) -> None:
        run = deployer.deploy(DeployRequest())

        assert run.succeeded
        specs, target = controller.run.call_args.args
        assert [s.name for s in specs] == ["gke-learning", "app-config", "express-app"]
        assert target.name == "express-app"
        printed = " ".join(str(call.args[0]) for call in console.print.call_args_list)
        assert "kubectl port-forward -n gke-learning service/express-app-service 8080:80" in printed

    def test_deploy_with_forward_starts_sessions(self, deployer, controller) -> None:
        deployer.start_forwards = MagicMock()

        deployer.deploy(DeployRequest(forward=True, detach=True))

        sessions = deployer.start_forwards.call_args.args[0]
        assert [s.local_port for s in sessions] == [8080]
        assert deployer.start_forwards.call_args.kwargs == {"detach": True}

    def test_failed_deploy_does_not_forward(self, deployer, controller) -> None:
        controller.run.return_value = RolloutRun(phase=RolloutPhase.FAILED)
        deployer.start_forwards = MagicMock()

        run = deployer.deploy(DeployRequest(forward=True))

        assert not run.succeeded
        deployer.start_forwards.assert_not_called()

    # =========================================================================
    # Setup / stop
    # =========================================================================

    def test_setup_recreate_deletes_cluster_first(
        self, deployer, console, commands, controller
    ) -> None:
        console.confirm_action.return_value = True
        deployer.wait_for_ingress_controller = MagicMock()

        deployer.setup(DeployRequest(), recreate=True, yes=True)

        commands.minikube.stop.assert_called_once()
        commands.minikube.delete.assert_called_once()
        commands.minikube.ensure_running.assert_called_once_with(["ingress"])
        deployer.wait_for_ingress_controller.assert_called_once()
        controller.run.assert_called_once()

    def test_setup_fails_when_minikube_cannot_start(self, deployer, commands, controller) -> None:
        commands.minikube.ensure_running.return_value = False
        commands.minikube.status.return_value = CommandResult(success=False, stdout="host: Stopped")

        with pytest.raises(RolloutError, match="Could not start minikube"):
            deployer.setup(DeployRequest())

        controller.run.assert_not_called()

    def test_ingress_timeout_is_raised(self, deployer) -> None:
        error = ReadinessTimeoutError("app.kubernetes.io/component=controller", "ingress-nginx", 120)
        gate = MagicMock()
        gate.wait_until_ready.return_value = ReadinessResult(
            ready=False, elapsed=120, polls=60, reason="timeout", error=error
        )

        with patch("rollout_forge.cli.deployment.deployer.ReadinessGate", return_value=gate):
            with pytest.raises(ReadinessTimeoutError):
                deployer.wait_for_ingress_controller()

        condition = gate.wait_until_ready.call_args.args[0]
        assert condition.namespace == "ingress-nginx"

    def test_hosts_hint_when_entry_missing(self, deployer, console, tmp_path) -> None:
        hosts = tmp_path / "hosts"
        hosts.write_text("127.0.0.1 localhost\n")

        deployer.print_hosts_hint(hosts)

        printed = " ".join(str(call.args[0]) for call in console.print.call_args_list)
        assert "192.168.49.2 express-app.local" in printed

    def test_hosts_entry_present(self, deployer, console, tmp_path) -> None:
        hosts = tmp_path / "hosts"
        hosts.write_text("192.168.49.2  express-app.local  # rollout-forge\n")

        deployer.print_hosts_hint(hosts)

        console.ok.assert_called_once_with("Ingress available at http://express-app.local")

    def test_stop_terminates_recorded_forwards_and_cluster(
        self, deployer, commands
    ) -> None:
        with patch(
            "rollout_forge.cli.deployment.deployer.terminate_recorded", return_value=[4242]
        ) as terminate:
            pids = deployer.stop()

        assert pids == [4242]
        terminate.assert_called_once_with(deployer.state_file)
        commands.minikube.stop.assert_called_once()

    def test_stop_without_cluster(self, deployer, commands) -> None:
        pids = deployer.stop(stop_cluster=False)

        assert pids == []
        commands.minikube.stop.assert_not_called()

    def test_show_status_lists_history(self, deployer, tmp_path) -> None:
        log = tmp_path / ".rollout-forge" / "rollouts.jsonl"
        log.parent.mkdir(parents=True)
        log.write_text('{"finalState": "Done"}\n{"finalState": "Failed"}\n')
        deployer.status_display = MagicMock()

        deployer.show_status(history=1)

        deployer.status_display.show_history.assert_called_once_with([{"finalState": "Failed"}])

    def test_show_status_namespace_override(self, deployer, kube) -> None:
        deployer.status_display = MagicMock()

        deployer.show_status(history=0, namespace="staging")

        deployer.status_display.show_k8s_status.assert_called_once_with("staging", kube)
        assert deployer.config.namespace == "gke-learning"


def test_state_file_path_is_kept(tmp_path: Path) -> None:
    deployer = RolloutDeployer(
        RolloutConfig(), MagicMock(), MagicMock(), state_file=tmp_path / "forwards.json"
    )

    assert deployer.forwards.state_file == tmp_path / "forwards.json"
