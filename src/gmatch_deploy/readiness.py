"""Bounded polling for resource readiness."""

import asyncio
import copy
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog

from .config import DeployConfig, PollingStrategyType
from .executor.base import ClusterExecutor, ProbeState

logger = structlog.get_logger()


class PollingStrategy:
    """Decides how long to sleep before the next probe."""

    def reset(self):
        pass

    def next_delay(self) -> float:
        raise NotImplementedError


class FixedInterval(PollingStrategy):
    """Probe every ``interval`` seconds."""

    def __init__(self, interval: float = 2.0):
        self.interval = interval

    def next_delay(self) -> float:
        return self.interval


class ExponentialBackoff(PollingStrategy):
    """Start at ``initial`` seconds and multiply by ``factor`` up to ``maximum``."""

    def __init__(self, initial: float = 1.0, factor: float = 2.0, maximum: float = 15.0):
        self.initial = initial
        self.factor = factor
        self.maximum = maximum
        self._current = initial

    def reset(self):
        self._current = self.initial

    def next_delay(self) -> float:
        delay = self._current
        self._current = min(self._current * self.factor, self.maximum)
        return delay


def strategy_from_config(config: DeployConfig) -> PollingStrategy:
    if config.polling_strategy == PollingStrategyType.EXPONENTIAL:
        return ExponentialBackoff(initial=config.poll_interval)
    return FixedInterval(config.poll_interval)


@dataclass
class ReadinessResult:
    """Outcome of waiting for one resource."""

    state: ProbeState  # READY, FAILED, or PROGRESSING on timeout
    message: Optional[str] = None
    elapsed: float = 0.0
    probes: int = 0

    @property
    def ready(self) -> bool:
        return self.state == ProbeState.READY

    @property
    def timed_out(self) -> bool:
        return self.state == ProbeState.PROGRESSING


class ReadinessWaiter:
    """Polls a cluster probe until ready, failed or past the deadline."""

    def __init__(
        self,
        cluster: ClusterExecutor,
        strategy: Optional[PollingStrategy] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize waiter.

        Args:
            cluster: Cluster executor providing probe()
            strategy: Polling strategy, fixed 2s interval by default
            clock: Monotonic clock
            sleep: Async sleep function
        """
        self.cluster = cluster
        self.strategy = strategy or FixedInterval()
        self.clock = clock
        self.sleep = sleep

    async def wait_until_ready(self, ref: str, timeout: float) -> ReadinessResult:
        """Wait for a resource to become ready.

        Returns at the latest one poll interval after the deadline.

        Args:
            ref: Resource reference (kind/name)
            timeout: Budget in seconds

        Returns:
            ReadinessResult
        """
        # Each wait gets its own strategy state; waits may run concurrently
        strategy = copy.copy(self.strategy)
        strategy.reset()
        start = self.clock()
        deadline = start + timeout
        probes = 0
        message = None

        while True:
            result = await self.cluster.probe(ref)
            probes += 1
            message = result.message
            elapsed = self.clock() - start

            if result.state != ProbeState.PROGRESSING:
                return ReadinessResult(result.state, message, elapsed, probes)

            remaining = deadline - self.clock()
            if remaining <= 0:
                logger.warning(
                    "readiness.timeout", ref=ref, timeout=timeout, last=message
                )
                return ReadinessResult(
                    ProbeState.PROGRESSING,
                    f"not ready after {timeout}s ({message})",
                    elapsed,
                    probes,
                )

            logger.debug("readiness.waiting", ref=ref, status=message)
            await self.sleep(min(strategy.next_delay(), remaining))
