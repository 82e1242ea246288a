"""Unit tests for port-forward session management."""

from __future__ import annotations

import json
import os
import signal
import subprocess
import sys
import textwrap
import time
from pathlib import Path

import pytest

from rollout_forge.infra.k8s.port_forward import (
    ForwardSession,
    ForwardStatus,
    PortForwardManager,
    _launch,
    read_forward_state,
    terminate_recorded,
    write_forward_state,
)
from rollout_forge.orchestration.errors import ForwardError

REPO_ROOT = Path(__file__).resolve().parents[4]


class FakeProcess:
    """Stand-in for subprocess.Popen."""

    _next_pid = 4000

    def __init__(self, *, alive: bool = True, stderr: str = "", ignores_term: bool = False):
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.returncode = None if alive else 1
        self.stderr = stderr
        self.ignores_term = ignores_term
        self.terminated = 0
        self.killed = 0

    def poll(self):
        return self.returncode

    def terminate(self) -> None:
        self.terminated += 1
        if not self.ignores_term:
            self.returncode = -15

    def kill(self) -> None:
        self.killed += 1
        self.returncode = -9

    def wait(self, timeout=None):
        if self.returncode is None:
            raise subprocess.TimeoutExpired("kubectl", timeout)
        return self.returncode

    def exit(self, code: int = 1) -> None:
        self.returncode = code


class FakeLauncher:
    def __init__(self) -> None:
        self.launched: list[tuple[list[str], bool]] = []
        self.next: list[FakeProcess] = []

    def __call__(self, cmd: list[str], detach: bool, stderr) -> FakeProcess:
        self.launched.append((cmd, detach))
        process = self.next.pop(0) if self.next else FakeProcess()
        if process.stderr and stderr is not None:
            stderr.write(process.stderr)
            stderr.flush()
        return process


def _session(port: int, service: str = "express-app-service") -> ForwardSession:
    return ForwardSession(service=service, local_port=port, remote_port=80, namespace="gke-learning")


class TestForwardSession:
    def test_command_targets_service(self) -> None:
        assert _session(8080).command() == [
            "kubectl",
            "port-forward",
            "-n",
            "gke-learning",
            "service/express-app-service",
            "8080:80",
        ]

    def test_explicit_resource_type_is_kept(self) -> None:
        assert _session(8080, service="pod/mongodb-0").target == "pod/mongodb-0"


class TestPortForwardManager:
    """Tests for PortForwardManager."""

    @pytest.fixture
    def launcher(self) -> FakeLauncher:
        return FakeLauncher()

    @pytest.fixture
    def busy_ports(self) -> set[int]:
        return set()

    @pytest.fixture
    def manager(self, launcher, busy_ports, tmp_path) -> PortForwardManager:
        return PortForwardManager(
            launcher=launcher,
            startup_wait=0,
            stop_timeout=0.1,
            state_file=tmp_path / "forwards.json",
            sleep=lambda _s: None,
            port_in_use=lambda port: port in busy_ports,
            register_atexit=False,
            handle_sigterm=False,
        )

    def test_start_registers_active_session(self, manager, launcher) -> None:
        handle = manager.start(_session(8080))

        assert handle.status is ForwardStatus.ACTIVE
        assert handle.url == "http://localhost:8080"
        assert manager.active_sessions() == [handle]
        assert launcher.launched[0][1] is False

    def test_busy_port_is_rejected_without_launching(
        self, manager, launcher, busy_ports
    ) -> None:
        busy_ports.add(8080)

        with pytest.raises(ForwardError, match="8080 is already in use"):
            manager.start(_session(8080))

        assert launcher.launched == []

    def test_early_exit_raises_with_stderr(self, manager, launcher) -> None:
        launcher.next.append(
            FakeProcess(alive=False, stderr='services "express-app-service" not found')
        )

        with pytest.raises(ForwardError) as excinfo:
            manager.start(_session(8080))

        assert "not found" in excinfo.value.details
        assert manager.active_sessions() == []

    def test_launch_os_error_is_forward_error(self, manager) -> None:
        def broken(cmd, detach, stderr):
            raise FileNotFoundError("kubectl")

        manager.launcher = broken

        with pytest.raises(ForwardError, match="Could not start"):
            manager.start(_session(8080))

    def test_stop_all_stops_every_live_session(self, manager, launcher) -> None:
        processes = [FakeProcess(), FakeProcess(), FakeProcess()]
        launcher.next.extend(processes)
        for port in (8080, 8081, 8082):
            manager.start(_session(port))
        processes[1].exit()

        stopped = manager.stop_all()

        assert stopped == 2
        assert manager.active_sessions() == []
        assert processes[0].terminated == 1
        assert processes[1].terminated == 0
        assert processes[2].terminated == 1

    def test_stop_is_idempotent(self, manager) -> None:
        handle = manager.start(_session(8080))

        manager.stop(handle)
        manager.stop(handle)

        assert handle.status is ForwardStatus.STOPPED
        assert handle.process.terminated == 1

    def test_stop_kills_process_ignoring_sigterm(self, manager, launcher) -> None:
        stubborn = FakeProcess(ignores_term=True)
        launcher.next.append(stubborn)
        handle = manager.start(_session(8080))

        manager.stop(handle)

        assert stubborn.terminated == 1
        assert stubborn.killed == 1

    def test_dead_session_is_marked_failed(self, manager) -> None:
        handle = manager.start(_session(8080))
        handle.process.exit(1)

        assert manager.active_sessions() == []
        assert handle.status is ForwardStatus.FAILED

    def test_start_many_isolates_failures(self, manager, launcher, busy_ports) -> None:
        busy_ports.add(8081)

        handles = manager.start_many([_session(8080), _session(8081), _session(8082)])

        assert [h.session.local_port for h in handles] == [8080, 8082]
        assert len(manager.active_sessions()) == 2

    def test_forward_context_stops_on_exit(self, manager) -> None:
        with manager.forward(_session(54320)) as url:
            assert url == "http://localhost:54320"
            (handle,) = manager.active_sessions()

        assert handle.status is ForwardStatus.STOPPED
        assert manager.active_sessions() == []

    def test_forward_context_stops_on_error(self, manager) -> None:
        with pytest.raises(RuntimeError):
            with manager.forward(_session(54320)):
                raise RuntimeError("smoke failed")

        assert manager.active_sessions() == []

    def test_context_manager_stops_all(self, manager) -> None:
        with manager:
            handle = manager.start(_session(8080))

        assert handle.status is ForwardStatus.STOPPED

    def test_wait_returns_when_sessions_end(self, manager) -> None:
        handle = manager.start(_session(8080))
        manager.sleep = lambda _s: handle.process.exit(0)

        manager.wait(poll_interval=0.5)

        assert handle.status is ForwardStatus.FAILED

    def test_wait_interrupt_stops_all(self, manager) -> None:
        handle = manager.start(_session(8080))

        def interrupt(_seconds: float) -> None:
            raise KeyboardInterrupt

        manager.sleep = interrupt

        manager.wait()

        assert handle.status is ForwardStatus.STOPPED

    def test_signal_handler_stops_all_and_interrupts(self, manager) -> None:
        handle = manager.start(_session(8080))

        with pytest.raises(KeyboardInterrupt):
            manager._handle_signal(signal.SIGTERM, None)

        assert handle.status is ForwardStatus.STOPPED

    def test_install_and_restore_signal_handlers(self, manager) -> None:
        previous = signal.getsignal(signal.SIGTERM)

        manager.install_signal_handlers()
        assert signal.getsignal(signal.SIGTERM) == manager._handle_signal

        manager.restore_signal_handlers()
        assert signal.getsignal(signal.SIGTERM) == previous


class TestSigtermTeardown:
    """SIGTERM stops attached sessions without an explicit install."""

    @pytest.fixture
    def manager(self, tmp_path) -> PortForwardManager:
        manager = PortForwardManager(
            launcher=FakeLauncher(),
            startup_wait=0,
            stop_timeout=0.1,
            state_file=tmp_path / "forwards.json",
            sleep=lambda _s: None,
            port_in_use=lambda _port: False,
            register_atexit=False,
        )
        yield manager
        manager.stop_all()
        manager.restore_signal_handlers()

    def test_handler_installed_while_sessions_run(self, manager) -> None:
        previous = signal.getsignal(signal.SIGTERM)

        first = manager.start(_session(8080))
        second = manager.start(_session(8081))
        assert signal.getsignal(signal.SIGTERM) == manager._handle_signal

        manager.stop(first)
        assert signal.getsignal(signal.SIGTERM) == manager._handle_signal

        manager.stop(second)
        assert signal.getsignal(signal.SIGTERM) == previous

    def test_detached_session_leaves_handler_alone(self, manager) -> None:
        previous = signal.getsignal(signal.SIGTERM)

        manager.start(_session(8080), detach=True)

        assert signal.getsignal(signal.SIGTERM) == previous

    def test_explicit_install_survives_last_stop(self, manager) -> None:
        manager.install_signal_handlers((signal.SIGTERM,))
        handle = manager.start(_session(8080))

        manager.stop(handle)

        assert signal.getsignal(signal.SIGTERM) == manager._handle_signal

    def test_sigterm_to_owner_stops_forward_process(self, tmp_path) -> None:
        pid_file = tmp_path / "child.pid"
        script = textwrap.dedent(
            f"""
            import os, signal, subprocess, sys, time
            from pathlib import Path

            from rollout_forge.infra.k8s.port_forward import (
                ForwardSession,
                PortForwardManager,
            )

            def launch(cmd, detach, stderr):
                return subprocess.Popen(
                    [sys.executable, "-c", "import time; time.sleep(60)"],
                    stdout=subprocess.DEVNULL,
                    stderr=stderr,
                )

            manager = PortForwardManager(
                launcher=launch,
                startup_wait=0,
                state_file=Path({str(tmp_path / "forwards.json")!r}),
                port_in_use=lambda port: False,
            )
            handle = manager.start(
                ForwardSession("express-app-service", 8080, 80, "gke-learning")
            )
            Path({str(pid_file)!r}).write_text(str(handle.pid))
            os.kill(os.getpid(), signal.SIGTERM)
            time.sleep(30)
            """
        )
        env = {**os.environ, "PYTHONPATH": str(REPO_ROOT)}
        owner = subprocess.run(
            [sys.executable, "-c", script],
            env=env,
            capture_output=True,
            text=True,
            timeout=30,
        )
        child = int(pid_file.read_text())
        try:
            assert owner.returncode != 0
            assert "KeyboardInterrupt" in owner.stderr
            with pytest.raises(ProcessLookupError):
                os.kill(child, 0)
        finally:
            try:
                os.kill(child, signal.SIGKILL)
            except ProcessLookupError:
                pass


class TestForwardStderr:
    """kubectl stderr is captured without blocking the process."""

    @pytest.fixture
    def manager(self, tmp_path) -> PortForwardManager:
        manager = PortForwardManager(
            startup_wait=0.2,
            stop_timeout=2,
            state_file=tmp_path / "forwards.json",
            port_in_use=lambda _port: False,
            register_atexit=False,
            handle_sigterm=False,
        )
        yield manager
        manager.stop_all()

    def test_chatty_forward_keeps_running(self, manager, tmp_path) -> None:
        marker = tmp_path / "done"
        script = (
            "import sys, time\n"
            "sys.stderr.write('E0101 connection refused\\n' * 10000)\n"
            "sys.stderr.flush()\n"
            f"open({str(marker)!r}, 'w').close()\n"
            "time.sleep(60)\n"
        )
        manager.launcher = lambda cmd, detach, stderr: _launch(
            [sys.executable, "-c", script], detach, stderr
        )

        handle = manager.start(_session(8080))
        deadline = time.monotonic() + 10
        while not marker.exists() and time.monotonic() < deadline:
            time.sleep(0.05)

        assert marker.exists()
        assert handle.is_alive()
        assert handle.stderr_output().count("connection refused") == 10000

    def test_startup_failure_reports_real_stderr(self, manager) -> None:
        script = (
            "import sys\n"
            "sys.stderr.write('error: services \"express-app-service\" not found\\n')\n"
            "sys.exit(1)\n"
        )

        def launch(cmd, detach, stderr):
            process = _launch([sys.executable, "-c", script], detach, stderr)
            process.wait(timeout=10)
            return process

        manager.launcher = launch

        with pytest.raises(ForwardError) as excinfo:
            manager.start(_session(8080))

        assert 'services "express-app-service" not found' in excinfo.value.details


class TestDetachedSessions:
    """Tests for detached sessions and the forward state file."""

    @pytest.fixture
    def state_file(self, tmp_path) -> Path:
        return tmp_path / "state" / "forwards.json"

    @pytest.fixture
    def manager(self, state_file) -> PortForwardManager:
        return PortForwardManager(
            launcher=FakeLauncher(),
            startup_wait=0,
            state_file=state_file,
            sleep=lambda _s: None,
            port_in_use=lambda _port: False,
            register_atexit=False,
            handle_sigterm=False,
        )

    def test_detached_session_is_recorded_and_released(self, manager, state_file) -> None:
        handle = manager.start(_session(8080), detach=True)

        records = read_forward_state(state_file)
        assert records == [
            {
                "pid": handle.pid,
                "namespace": "gke-learning",
                "service": "express-app-service",
                "local_port": 8080,
                "remote_port": 80,
                "started_at": handle.started_at.isoformat(),
            }
        ]
        assert handle.detached
        assert manager.stop_all() == 0
        assert handle.process.terminated == 0

    def test_detach_launches_in_new_session(self, manager) -> None:
        manager.start(_session(8080), detach=True)

        assert manager.launcher.launched[0][1] is True

    def test_terminate_recorded_signals_recorded_pids(self, state_file) -> None:
        write_forward_state(state_file, [{"pid": 101}, {"pid": 102}, {"pid": 103}])
        signalled = []

        def kill(pid: int, signum: int) -> None:
            if pid == 102:
                raise ProcessLookupError
            signalled.append((pid, signum))

        terminated = terminate_recorded(
            state_file, kill=kill, is_port_forward=lambda pid: pid != 103
        )

        assert terminated == [101]
        assert signalled == [(101, signal.SIGTERM)]
        assert not state_file.exists()

    def test_terminate_recorded_without_state_file(self, tmp_path) -> None:
        assert terminate_recorded(tmp_path / "missing.json", kill=lambda *_: None) == []

    def test_corrupt_state_file_reads_empty(self, state_file) -> None:
        state_file.parent.mkdir(parents=True)
        state_file.write_text("{not json")

        assert read_forward_state(state_file) == []

    def test_state_entries_without_pid_are_ignored(self, state_file) -> None:
        state_file.parent.mkdir(parents=True)
        state_file.write_text(json.dumps([{"pid": 7}, {"service": "x"}, "junk"]))

        assert read_forward_state(state_file) == [{"pid": 7}]
