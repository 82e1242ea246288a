"""Helpers for driving the async Kubernetes layer from synchronous code."""

from __future__ import annotations

import asyncio
import concurrent.futures
from collections.abc import Coroutine
from typing import Any, TypeVar

T = TypeVar("T")


def run_sync(coro: Coroutine[Any, Any, T]) -> T:
    """Run an async coroutine to completion from a blocking context.

    The rollout engine and the CLI are synchronous; controller backends are
    async. When called from inside a running loop the coroutine is executed
    on a fresh loop in a worker thread.

    Args:
        coro: The coroutine to execute

    Returns:
        The result of the coroutine

    Example:
        from rollout_forge.infra.k8s import KubectlController, run_sync

        pods = run_sync(KubectlController().get_pods("gke-learning"))
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    if loop.is_running():
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()
    return loop.run_until_complete(coro)
