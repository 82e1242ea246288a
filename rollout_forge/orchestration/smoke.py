"""Post-deploy smoke requests.

The smoke check warms up observability signals after a rollout. It is never
a pass/fail criterion: every error is caught, logged and reported.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager

import httpx
from loguru import logger

from .models import DeploymentTarget, SmokeReport

UrlResolver = Callable[[DeploymentTarget], AbstractContextManager[str]]


def fixed_url(base_url: str) -> UrlResolver:
    """Resolve every target to ``base_url`` joined with its probe path."""

    @contextmanager
    def resolve(target: DeploymentTarget) -> Iterator[str]:
        yield base_url.rstrip("/") + "/" + target.probe.path.lstrip("/")

    return resolve


class SmokeTester:
    """Issues a small fixed number of health requests against the target.

    Args:
        resolve_url: Context manager factory yielding the URL to hit; it may
            set up (and tear down) a temporary port-forward
        requests: Number of requests to issue
        interval: Seconds between requests
        timeout: Per-request timeout in seconds
        client_factory: Builds the httpx client (injectable for tests)
        sleep: Sleep function (injectable for tests)
    """

    def __init__(
        self,
        resolve_url: UrlResolver,
        *,
        requests: int = 5,
        interval: float = 1.0,
        timeout: float = 5.0,
        client_factory: Callable[[], httpx.Client] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.resolve_url = resolve_url
        self.requests = requests
        self.interval = interval
        self.timeout = timeout
        self.client_factory = client_factory or (
            lambda: httpx.Client(timeout=self.timeout)
        )
        self.sleep = sleep

    def run(self, target: DeploymentTarget) -> SmokeReport:
        report = SmokeReport(url="")
        try:
            with self.resolve_url(target) as url, self.client_factory() as client:
                report.url = url
                for attempt in range(self.requests):
                    if attempt:
                        self.sleep(self.interval)
                    report.attempted += 1
                    self._request(client, url, report)
        except Exception as exc:
            logger.warning("Smoke check for {} aborted: {}", target.name, exc)
            report.errors.append(str(exc))

        logger.info(
            "Smoke check {}: {}/{} requests succeeded",
            report.url or target.name,
            report.succeeded,
            report.attempted,
        )
        return report

    def _request(self, client: httpx.Client, url: str, report: SmokeReport) -> None:
        try:
            response = client.get(url)
        except httpx.HTTPError as exc:
            report.errors.append(f"{type(exc).__name__}: {exc}")
            return
        if response.is_success:
            report.succeeded += 1
        else:
            report.errors.append(f"HTTP {response.status_code}")
