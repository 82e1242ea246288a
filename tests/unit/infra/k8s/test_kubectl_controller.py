"""Unit tests for the kubectl-backed controller and API object parsing."""

from __future__ import annotations

import asyncio
import json
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from rollout_forge.infra.k8s.controller import (
    KubernetesControllerSync,
    parse_apply_output,
    pod_info_from_dict,
    service_info_from_dict,
)
from rollout_forge.infra.k8s.helpers import get_k8s_controller
from rollout_forge.infra.k8s.kubectl_controller import KubectlController

RUN = "rollout_forge.infra.k8s.kubectl_controller.subprocess.run"


def _completed(stdout: str = "", stderr: str = "", returncode: int = 0):
    return subprocess.CompletedProcess(
        args=["kubectl"], returncode=returncode, stdout=stdout, stderr=stderr
    )


def _pod(name: str, *, ready: bool, phase: str = "Running", **status) -> dict:
    return {
        "metadata": {"name": name, "creationTimestamp": "2026-10-19T09:00:00Z"},
        "spec": {"nodeName": "minikube"},
        "status": {
            "phase": phase,
            "podIP": "10.244.0.12",
            "conditions": [{"type": "Ready", "status": "True" if ready else "False"}],
            **status,
        },
    }


class TestParseApplyOutput:
    def test_parses_each_object_line(self) -> None:
        objects = parse_apply_output(
            "namespace/gke-learning unchanged\n"
            "configmap/app-config configured\n"
            "deployment.apps/express-app created\n"
        )

        assert [(o.ref, o.action) for o in objects] == [
            ("namespace/gke-learning", "unchanged"),
            ("configmap/app-config", "configured"),
            ("deployment.apps/express-app", "created"),
        ]
        assert [o.changed for o in objects] == [False, True, True]

    def test_ignores_warnings(self) -> None:
        objects = parse_apply_output(
            "Warning: resource configmaps/app-config is missing the last-applied annotation\n"
            "configmap/app-config configured\n"
        )

        assert [o.ref for o in objects] == ["configmap/app-config"]


class TestPodInfoFromDict:
    def test_ready_running_pod(self) -> None:
        info = pod_info_from_dict(_pod("express-app-7d9f", ready=True))

        assert info.name == "express-app-7d9f"
        assert info.status == "Running"
        assert info.ready
        assert info.node == "minikube"
        assert info.ip == "10.244.0.12"

    def test_waiting_reason_overrides_phase(self) -> None:
        info = pod_info_from_dict(
            _pod(
                "express-app-7d9f",
                ready=False,
                containerStatuses=[
                    {"restartCount": 4, "state": {"waiting": {"reason": "CrashLoopBackOff"}}}
                ],
            )
        )

        assert info.status == "CrashLoopBackOff"
        assert info.restarts == 4
        assert not info.ready

    def test_terminating_pod_is_not_ready(self) -> None:
        pod = _pod("express-app-old", ready=True)
        pod["metadata"]["deletionTimestamp"] = "2026-10-19T09:05:00Z"

        info = pod_info_from_dict(pod)

        assert info.status == "Terminating"
        assert not info.ready

    def test_service_info(self) -> None:
        info = service_info_from_dict(
            {
                "metadata": {"name": "express-app-service"},
                "spec": {
                    "type": "ClusterIP",
                    "clusterIP": "10.96.14.2",
                    "ports": [{"port": 80, "targetPort": 3000, "protocol": "TCP"}],
                },
            }
        )

        assert info.name == "express-app-service"
        assert info.ports == "80:3000/TCP"
        assert info.external_ip == ""


class TestKubectlController:
    """Tests for KubectlController command construction and parsing."""

    @pytest.fixture
    def controller(self) -> KubectlController:
        return KubectlController()

    def test_apply_manifest_passes_namespace(self, controller) -> None:
        with patch(RUN, return_value=_completed("configmap/app-config created\n")) as run:
            result = asyncio.run(
                controller.apply_manifest(Path("k8s/configmap.yaml"), namespace="gke-learning")
            )

        assert result.success
        assert run.call_args.args[0] == [
            "kubectl",
            "apply",
            "-f",
            "k8s/configmap.yaml",
            "-n",
            "gke-learning",
        ]

    def test_context_flag_is_prepended(self) -> None:
        controller = KubectlController(context="minikube")

        with patch(RUN, return_value=_completed("minikube\n")) as run:
            context = asyncio.run(controller.get_current_context())

        assert context == "minikube"
        assert run.call_args.args[0][:3] == ["kubectl", "--context", "minikube"]

    def test_rollout_restart_command(self, controller) -> None:
        with patch(RUN, return_value=_completed()) as run:
            asyncio.run(controller.rollout_restart("deployment", "gke-learning", "express-app"))

        assert run.call_args.args[0] == [
            "kubectl",
            "rollout",
            "restart",
            "deployment/express-app",
            "-n",
            "gke-learning",
        ]

    def test_scale_command(self, controller) -> None:
        with patch(RUN, return_value=_completed()) as run:
            asyncio.run(controller.scale_deployment("express-app", "gke-learning", 3))

        assert "--replicas=3" in run.call_args.args[0]

    def test_get_pods_parses_items(self, controller) -> None:
        payload = json.dumps(
            {"items": [_pod("a", ready=True), _pod("b", ready=False, phase="Pending")]}
        )
        with patch(RUN, return_value=_completed(payload)) as run:
            pods = asyncio.run(controller.get_pods("gke-learning", "app=express-app"))

        assert [(p.name, p.ready) for p in pods] == [("a", True), ("b", False)]
        assert run.call_args.args[0][-2:] == ["-l", "app=express-app"]

    def test_get_pods_failure_raises(self, controller) -> None:
        failed = _completed(stderr="The connection to the server was refused", returncode=1)
        with patch(RUN, return_value=failed):
            with pytest.raises(RuntimeError, match="connection to the server was refused"):
                asyncio.run(controller.get_pods("gke-learning"))

    def test_get_pods_bad_json_raises(self, controller) -> None:
        with patch(RUN, return_value=_completed("not json")):
            with pytest.raises(RuntimeError, match="Unparseable"):
                asyncio.run(controller.get_pods("gke-learning"))

    def test_missing_kubectl_reports_failure(self, controller) -> None:
        with patch(RUN, side_effect=FileNotFoundError("kubectl")):
            result = asyncio.run(controller.namespace_exists("gke-learning"))

        assert result is False

    def test_get_services_failure_is_empty(self, controller) -> None:
        with patch(RUN, return_value=_completed(returncode=1)):
            assert asyncio.run(controller.get_services("gke-learning")) == []

    def test_sync_wrapper_detects_minikube_context(self, controller) -> None:
        with patch(RUN, return_value=_completed("minikube\n")):
            assert KubernetesControllerSync(controller).is_minikube_context()


class TestControllerFactory:
    def test_known_backends(self) -> None:
        assert isinstance(get_k8s_controller("kubectl"), KubectlController)
        assert get_k8s_controller("kubectl") is get_k8s_controller("kubectl")

    def test_unknown_backend_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown Kubernetes backend"):
            get_k8s_controller("helm")
