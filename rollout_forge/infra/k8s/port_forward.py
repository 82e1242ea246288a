"""Background kubectl port-forward sessions.

PortForwardManager owns every forward it starts: each one gets a handle in
a registry, and teardown (explicit, atexit or signal-driven) stops each
process exactly once. Sessions can also be detached to outlive the CLI; their
PIDs are then recorded in a JSON state file so a later ``stop`` terminates
exactly those processes.
"""

from __future__ import annotations

import atexit
import itertools
import json
import os
import signal
import socket
import subprocess
import tempfile
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import IO, Any

from loguru import logger

from rollout_forge.infra.constants import DEFAULT_CONSTANTS
from rollout_forge.orchestration.errors import ForwardError


class ForwardStatus(str, Enum):
    STARTING = "starting"
    ACTIVE = "active"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class ForwardSession:
    """What to forward: ``localhost:local_port`` -> ``service:remote_port``."""

    service: str
    local_port: int
    remote_port: int
    namespace: str

    @property
    def target(self) -> str:
        return self.service if "/" in self.service else f"service/{self.service}"

    def command(self, kubectl: str = "kubectl") -> list[str]:
        return [
            kubectl,
            "port-forward",
            "-n",
            self.namespace,
            self.target,
            f"{self.local_port}:{self.remote_port}",
        ]

    def __str__(self) -> str:
        return f"localhost:{self.local_port} -> {self.namespace}/{self.target}:{self.remote_port}"


@dataclass
class ForwardHandle:
    """A started session and its process."""

    id: int
    session: ForwardSession
    process: Any  # subprocess.Popen[str] or a compatible object
    status: ForwardStatus = ForwardStatus.STARTING
    detached: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    stderr_log: IO[str] | None = None

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def url(self) -> str:
        return f"http://localhost:{self.session.local_port}"

    def is_alive(self) -> bool:
        return self.process.poll() is None

    def stderr_output(self) -> str:
        """Everything kubectl has written to stderr so far."""
        if self.stderr_log is None or self.stderr_log.closed:
            return ""
        self.stderr_log.seek(0)
        return self.stderr_log.read()

    def close_log(self) -> None:
        if self.stderr_log is not None:
            self.stderr_log.close()


Launcher = Callable[[list[str], bool, IO[str] | None], Any]


def _launch(cmd: list[str], detach: bool, stderr: IO[str] | None) -> subprocess.Popen[str]:
    """Start kubectl port-forward in the background.

    stderr must go to a file, not a pipe: nothing reads it while the forward
    runs and kubectl logs a line per failed connection. Detached processes
    get their own session so terminal signals sent to the CLI do not reach
    them.
    """
    return subprocess.Popen(
        cmd,
        stdout=subprocess.DEVNULL,
        stderr=stderr if stderr is not None else subprocess.DEVNULL,
        text=True,
        start_new_session=detach,
    )


def _is_port_in_use(port: int, host: str = "localhost") -> bool:
    """Check if a local port is already in use.

    Args:
        port: Port number to check
        host: Host to check on (default: localhost)

    Returns:
        True if port is in use, False otherwise
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
            return False
        except OSError:
            return True


def _terminate(process: Any, timeout: float) -> None:
    if process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()


def _startup_error(handle: ForwardHandle) -> str:
    stderr = handle.stderr_output().strip()
    return stderr or f"exited with code {handle.process.returncode}"


def _in_main_thread() -> bool:
    return threading.current_thread() is threading.main_thread()


def _last_lines(text: str, count: int = 5) -> str:
    return "\n".join(text.strip().splitlines()[-count:])


# =============================================================================
# Manager
# =============================================================================


class PortForwardManager:
    """Registry of running port-forward sessions with guaranteed teardown.

    Args:
        kubectl: kubectl executable
        launcher: Starts a command in the background; receives the command,
            whether the process must outlive this one, and the file its
            stderr goes to (None to discard it). Injectable for tests.
        startup_wait: Seconds to wait before checking that a forward survived
        stop_timeout: Seconds to wait after SIGTERM before killing
        state_file: Where detached sessions are recorded
        sleep: Sleep function (injectable for tests)
        port_in_use: Local port probe (injectable for tests)
        register_atexit: Stop all sessions at interpreter exit
        handle_sigterm: While sessions are registered, stop them on SIGTERM
            (installed only when the first session starts on the main thread)

    Example:
        with PortForwardManager() as forwards:
            forwards.install_signal_handlers()
            forwards.start(ForwardSession("express-app-service", 8080, 80, "gke-learning"))
            forwards.wait()
    """

    def __init__(
        self,
        *,
        kubectl: str = "kubectl",
        launcher: Launcher = _launch,
        startup_wait: float = DEFAULT_CONSTANTS.FORWARD_STARTUP_WAIT,
        stop_timeout: float = DEFAULT_CONSTANTS.FORWARD_STOP_TIMEOUT,
        state_file: Path | None = None,
        sleep: Callable[[float], None] = time.sleep,
        port_in_use: Callable[[int], bool] = _is_port_in_use,
        register_atexit: bool = True,
        handle_sigterm: bool = True,
    ) -> None:
        self.kubectl = kubectl
        self.launcher = launcher
        self.startup_wait = startup_wait
        self.stop_timeout = stop_timeout
        self.state_file = state_file or default_state_file()
        self.sleep = sleep
        self.port_in_use = port_in_use
        self.handle_sigterm = handle_sigterm

        self._handles: dict[int, ForwardHandle] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()
        self._previous_handlers: dict[int, Any] = {}
        self._sigterm_owned = False

        if register_atexit:
            atexit.register(self.stop_all)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, session: ForwardSession, *, detach: bool = False) -> ForwardHandle:
        """Start one session and wait for it to come up.

        Raises:
            ForwardError: If the local port is busy or kubectl exits early
        """
        if self.port_in_use(session.local_port):
            raise ForwardError(
                f"Port {session.local_port} is already in use",
                details=f"Cannot forward {session}; choose another local port.",
            )

        logger.debug("Starting port-forward {}", session)
        stderr_log = (
            None
            if detach
            else tempfile.TemporaryFile(mode="w+", encoding="utf-8", errors="replace")
        )
        try:
            process = self.launcher(session.command(self.kubectl), detach, stderr_log)
        except OSError as e:
            if stderr_log is not None:
                stderr_log.close()
            raise ForwardError(f"Could not start kubectl port-forward: {e}") from e

        handle = ForwardHandle(
            id=next(self._ids), session=session, process=process, stderr_log=stderr_log
        )
        self.sleep(self.startup_wait)

        if not handle.is_alive():
            handle.status = ForwardStatus.FAILED
            details = _startup_error(handle)
            handle.close_log()
            raise ForwardError(f"Port-forward {session} failed to start", details=details)

        handle.status = ForwardStatus.ACTIVE
        with self._lock:
            self._handles[handle.id] = handle
            if not detach:
                self._watch_sigterm()
        logger.info("Port-forward active: {}", session)

        if detach:
            self.detach(handle)
        return handle

    def start_many(
        self, sessions: Iterable[ForwardSession], *, detach: bool = False
    ) -> list[ForwardHandle]:
        """Start several sessions; a failing one is logged and skipped."""
        handles = []
        for session in sessions:
            try:
                handles.append(self.start(session, detach=detach))
            except ForwardError as e:
                logger.error("{}: {}", e.message, e.details or "")
        return handles

    def stop(self, handle: ForwardHandle) -> None:
        """Stop one session. Stopping an already stopped session is a no-op."""
        with self._lock:
            if handle.status in (ForwardStatus.STOPPED, ForwardStatus.FAILED):
                self._release(handle)
                return
            if not handle.is_alive():
                handle.status = ForwardStatus.FAILED
                logger.warning(
                    "Port-forward {} had already exited: {}",
                    handle.session,
                    _last_lines(handle.stderr_output()) or "no output",
                )
            else:
                _terminate(handle.process, self.stop_timeout)
                handle.status = ForwardStatus.STOPPED
                logger.debug("Port-forward stopped: {}", handle.session)
            self._release(handle)

    def stop_all(self) -> int:
        """Stop every registered session.

        Returns:
            Number of sessions that were running and got stopped
        """
        stopped = 0
        with self._lock:
            for handle in list(self._handles.values()):
                was_alive = handle.is_alive()
                self.stop(handle)
                if was_alive:
                    stopped += 1
        return stopped

    def active_sessions(self) -> list[ForwardHandle]:
        """Sessions whose process is still running.

        Sessions found dead are marked failed and dropped from the registry.
        """
        with self._lock:
            for handle in list(self._handles.values()):
                if not handle.is_alive():
                    handle.status = ForwardStatus.FAILED
                    logger.warning(
                        "Port-forward {} exited: {}",
                        handle.session,
                        _last_lines(handle.stderr_output()) or "no output",
                    )
                    self._release(handle)
            return list(self._handles.values())

    def wait(self, poll_interval: float = 1.0) -> None:
        """Block until every session has ended or the user interrupts.

        On interrupt all sessions are stopped before returning.
        """
        try:
            while self.active_sessions():
                self.sleep(poll_interval)
        except KeyboardInterrupt:
            logger.info("Interrupted; stopping port-forwards")
            self.stop_all()

    @contextmanager
    def forward(self, session: ForwardSession) -> Iterator[str]:
        """Run a temporary session for the duration of a block.

        Yields:
            The local base URL of the forward
        """
        handle = self.start(session)
        try:
            yield handle.url
        finally:
            self.stop(handle)

    def __enter__(self) -> PortForwardManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop_all()
        self.restore_signal_handlers()

    # =========================================================================
    # Signals
    # =========================================================================

    def install_signal_handlers(
        self, signums: Iterable[int] = (signal.SIGINT, signal.SIGTERM)
    ) -> None:
        """Stop all sessions on the given signals, then raise KeyboardInterrupt.

        Signals this manager already handles are left as they are.
        """
        for signum in signums:
            if signum in self._previous_handlers:
                continue
            try:
                self._previous_handlers[signum] = signal.signal(
                    signum, self._handle_signal
                )
            except ValueError:
                # Not the main thread
                logger.debug("Cannot install handler for signal {}", signum)

    def restore_signal_handlers(self, signums: Iterable[int] | None = None) -> None:
        """Put back the handlers replaced by this manager (all of them by default)."""
        for signum in list(self._previous_handlers if signums is None else signums):
            if signum not in self._previous_handlers:
                continue
            try:
                signal.signal(signum, self._previous_handlers[signum])
            except ValueError:
                logger.debug("Cannot restore handler for signal {}", signum)
                continue
            del self._previous_handlers[signum]
            if signum == signal.SIGTERM:
                self._sigterm_owned = False

    def _handle_signal(self, signum: int, frame: Any) -> None:
        logger.info("Received signal {}; stopping port-forwards", signum)
        self.stop_all()
        raise KeyboardInterrupt

    def _watch_sigterm(self) -> None:
        """Install the SIGTERM handler for the lifetime of the registered sessions."""
        if not self.handle_sigterm or signal.SIGTERM in self._previous_handlers:
            return
        if not _in_main_thread():
            logger.debug("Not on the main thread; SIGTERM handler left to the caller")
            return
        self.install_signal_handlers((signal.SIGTERM,))
        self._sigterm_owned = signal.SIGTERM in self._previous_handlers

    def _release(self, handle: ForwardHandle) -> None:
        self._handles.pop(handle.id, None)
        handle.close_log()
        if self._sigterm_owned and not self._handles and _in_main_thread():
            self.restore_signal_handlers((signal.SIGTERM,))

    # =========================================================================
    # Detached sessions
    # =========================================================================

    def detach(self, handle: ForwardHandle) -> None:
        """Release a session so it outlives this process, recording its PID."""
        with self._lock:
            self._handles.pop(handle.id, None)
            handle.detached = True

        records = read_forward_state(self.state_file)
        records.append(
            {
                "pid": handle.pid,
                "namespace": handle.session.namespace,
                "service": handle.session.service,
                "local_port": handle.session.local_port,
                "remote_port": handle.session.remote_port,
                "started_at": handle.started_at.isoformat(),
            }
        )
        write_forward_state(self.state_file, records)
        logger.info("Detached port-forward {} (pid {})", handle.session, handle.pid)


# =============================================================================
# State file
# =============================================================================


def default_state_file() -> Path:
    return Path(DEFAULT_CONSTANTS.STATE_DIR) / DEFAULT_CONSTANTS.FORWARDS_STATE_FILE


def read_forward_state(path: Path) -> list[dict[str, Any]]:
    """Read recorded detached sessions; a missing or corrupt file reads as empty."""
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable forward state {}: {}", path, e)
        return []
    return [entry for entry in data if isinstance(entry, dict) and "pid" in entry]


def write_forward_state(path: Path, records: list[dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(records, indent=2), encoding="utf-8")


def _is_port_forward_process(pid: int) -> bool:
    """Check a PID still belongs to kubectl port-forward (where /proc exists)."""
    if not Path("/proc/self").exists():
        return True
    try:
        return b"port-forward" in Path(f"/proc/{pid}/cmdline").read_bytes()
    except OSError:
        return False


def terminate_recorded(
    path: Path | None = None,
    *,
    kill: Callable[[int, int], None] = os.kill,
    is_port_forward: Callable[[int], bool] = _is_port_forward_process,
) -> list[int]:
    """Terminate the detached sessions recorded in the state file.

    Only recorded PIDs are signalled, and only while they still belong to a
    port-forward process. The state file is removed afterwards.

    Returns:
        PIDs that were sent SIGTERM
    """
    path = path or default_state_file()
    terminated = []
    for entry in read_forward_state(path):
        pid = int(entry["pid"])
        if not is_port_forward(pid):
            logger.debug("PID {} is no longer a port-forward; skipping", pid)
            continue
        try:
            kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            logger.debug("Port-forward PID {} already exited", pid)
            continue
        except PermissionError as e:
            logger.warning("Cannot terminate PID {}: {}", pid, e)
            continue
        terminated.append(pid)
        logger.info(
            "Stopped port-forward {} -> {}:{} (pid {})",
            entry.get("local_port"),
            entry.get("service"),
            entry.get("remote_port"),
            pid,
        )

    path.unlink(missing_ok=True)
    return terminated
