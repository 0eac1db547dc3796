"""
Coordinated shutdown.

The coordinator owns the process lifecycle state and the set of tasks
currently executing. Both are mutated under one lock so that admitting a
task and leaving the Running state cannot interleave: once the state is
Draining, no new task enters the in-flight set.

Sequence:
1. ``request_shutdown`` (signal, or a sibling component failing) moves the
   process to Draining.
2. ``drain`` tells participants to stop accepting work (the HTTP listener
   runs its own bounded drain), then waits for the in-flight set to empty or
   the drain deadline to pass, and moves to Stopped.
3. ``release_resources`` closes dependencies in reverse acquisition order.
"""

import asyncio
import logging
import signal
import threading
import time
from collections.abc import Awaitable, Callable
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

from jobqueue.constants import ShutdownState
from jobqueue.errors import DrainTimeout
from jobqueue.observability.metrics import MetricsCollector
from jobqueue.types.envelope import TaskEnvelope

logger = logging.getLogger(__name__)

_STATE_ORDER = {
    ShutdownState.RUNNING: 0,
    ShutdownState.DRAINING: 1,
    ShutdownState.STOPPED: 2,
}


class ShutdownParticipant(Protocol):
    """A component driven by the coordinator during shutdown."""

    name: str

    async def stop_accepting(self) -> None:
        """Stop taking new work. May run a bounded drain of its own."""
        ...

    async def abandon(self) -> None:
        """Give up on work still running after the drain deadline."""
        ...


class Admission(StrEnum):
    """Result of asking to start executing a task."""

    ADMITTED = "admitted"
    NOT_RUNNING = "not_running"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class InFlightEntry:
    envelope: TaskEnvelope
    started_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class DrainReport:
    """How the drain ended."""

    graceful: bool
    elapsed_seconds: float
    reason: str
    abandoned: tuple[str, ...] = ()
    error: DrainTimeout | None = None


class ShutdownCoordinator:
    """Drives the Running -> Draining -> Stopped state machine."""

    def __init__(
        self,
        drain_timeout_seconds: float,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the coordinator.

        Args:
            drain_timeout_seconds: How long to wait for in-flight tasks before
                abandoning them.
            metrics: Collector for drain and in-flight metrics.
        """
        if drain_timeout_seconds <= 0:
            raise ValueError("drain_timeout_seconds must be positive")

        self._drain_timeout = drain_timeout_seconds
        self._metrics = metrics or MetricsCollector()

        self._lock = threading.Lock()
        self._state = ShutdownState.RUNNING
        self._reason: str | None = None
        self._fatal = False
        self._in_flight: dict[str, InFlightEntry] = {}

        self._idle = asyncio.Event()
        self._idle.set()
        self._shutdown_requested = asyncio.Event()

        self._participants: list[ShutdownParticipant] = []
        self._resources = AsyncExitStack()
        self._drain_lock = asyncio.Lock()
        self._report: DrainReport | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ShutdownState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == ShutdownState.RUNNING

    @property
    def reason(self) -> str | None:
        """Why shutdown was requested."""
        return self._reason

    def _transition(self, target: ShutdownState) -> bool:
        # Caller holds self._lock
        if _STATE_ORDER[target] < _STATE_ORDER[self._state]:
            raise RuntimeError(f"Illegal shutdown transition {self._state} -> {target}")
        if target == self._state:
            return False
        logger.info(
            "Shutdown state changed",
            extra={"from_state": str(self._state), "to_state": str(target)},
        )
        self._state = target
        return True

    @property
    def fatal(self) -> bool:
        """True when shutdown was caused by a component failure."""
        return self._fatal

    def request_shutdown(self, reason: str, fatal: bool = False) -> bool:
        """
        Enter Draining. Later calls are no-ops.

        Args:
            reason: Logged and reported in the drain report.
            fatal: Set when a component failed rather than an operator asking.

        Returns:
            True if this call changed the state.
        """
        with self._lock:
            if self._state != ShutdownState.RUNNING:
                return False
            self._reason = reason
            self._fatal = fatal
            self._transition(ShutdownState.DRAINING)

        if fatal:
            logger.error("Shutdown requested after failure", extra={"reason": reason})
        else:
            logger.info("Shutdown requested", extra={"reason": reason})
        self._shutdown_requested.set()
        return True

    async def wait_for_shutdown_request(self, timeout: float | None = None) -> bool:
        """
        Block until shutdown is requested.

        Returns:
            True if shutdown was requested, False if ``timeout`` elapsed first.
        """
        if timeout is None:
            await self._shutdown_requested.wait()
            return True
        try:
            await asyncio.wait_for(self._shutdown_requested.wait(), timeout)
        except TimeoutError:
            return False
        return True

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to ``request_shutdown``."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_shutdown, f"signal {sig.name}")

    # ------------------------------------------------------------------
    # In-flight set
    # ------------------------------------------------------------------

    def begin(self, envelope: TaskEnvelope) -> Admission:
        """Admit a task into the in-flight set if the process is Running."""
        with self._lock:
            if self._state != ShutdownState.RUNNING:
                return Admission.NOT_RUNNING
            if envelope.id in self._in_flight:
                return Admission.DUPLICATE
            self._in_flight[envelope.id] = InFlightEntry(envelope)
            self._idle.clear()
            count = len(self._in_flight)

        self._metrics.set_in_flight(count)
        return Admission.ADMITTED

    def finish(self, task_id: str) -> None:
        """Remove a task from the in-flight set. Unknown ids are ignored."""
        with self._lock:
            if self._in_flight.pop(task_id, None) is None:
                return
            count = len(self._in_flight)
            if count == 0:
                self._idle.set()

        self._metrics.set_in_flight(count)

    @property
    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def in_flight_ids(self) -> list[str]:
        with self._lock:
            return list(self._in_flight)

    # ------------------------------------------------------------------
    # Participants and resources
    # ------------------------------------------------------------------

    def add_participant(self, participant: ShutdownParticipant) -> None:
        self._participants.append(participant)

    def add_resource(self, name: str, close: Callable[[], Awaitable[None]]) -> None:
        """Register a dependency to close after Stopped; last added closes first."""
        self._resources.push_async_callback(self._close_resource, name, close)
        logger.debug("Resource registered", extra={"resource": name})

    async def _close_resource(self, name: str, close: Callable[[], Awaitable[None]]) -> None:
        try:
            await close()
        except Exception as e:
            logger.error(f"{name} close failed: {e}", extra={"resource": name})
        else:
            logger.debug(f"{name} closed", extra={"resource": name})

    async def release_resources(self) -> None:
        """
        Close registered resources in reverse order of acquisition.

        Raises:
            RuntimeError: If called before the coordinator reached Stopped.
        """
        if self._state != ShutdownState.STOPPED:
            raise RuntimeError("Resources can only be released after shutdown is complete")
        await self._resources.aclose()

    async def _stop_participant(self, participant: ShutdownParticipant) -> None:
        try:
            await participant.stop_accepting()
        except Exception:
            logger.exception(f"{participant.name} failed to stop cleanly")

    async def _abandon_participant(self, participant: ShutdownParticipant) -> None:
        try:
            await participant.abandon()
        except Exception:
            logger.exception(f"{participant.name} failed to abandon work")

    # ------------------------------------------------------------------
    # Drain
    # ------------------------------------------------------------------

    async def drain(self) -> DrainReport:
        """
        Drain in-flight work and enter Stopped.

        Safe to call more than once; later calls return the first report.
        """
        async with self._drain_lock:
            if self._report is not None:
                return self._report

            self.request_shutdown("drain requested")
            start = time.monotonic()
            logger.info(
                "Draining in-flight tasks",
                extra={
                    "in_flight": self.in_flight_count,
                    "timeout_seconds": self._drain_timeout,
                },
            )

            stopping = [
                asyncio.create_task(self._stop_participant(p)) for p in self._participants
            ]

            try:
                await asyncio.wait_for(self._idle.wait(), self._drain_timeout)
                graceful = True
            except TimeoutError:
                graceful = False

            abandoned: tuple[str, ...] = ()
            error: DrainTimeout | None = None
            if not graceful:
                with self._lock:
                    abandoned = tuple(self._in_flight)
                    self._in_flight.clear()
                    self._idle.set()
                self._metrics.set_in_flight(0)

                error = DrainTimeout(self._drain_timeout, len(abandoned))
                logger.warning(
                    f"DrainTimeout: {error}, forcing stop",
                    extra={"abandoned": list(abandoned)},
                )
                for participant in self._participants:
                    await self._abandon_participant(participant)

            await asyncio.gather(*stopping)

            with self._lock:
                self._transition(ShutdownState.STOPPED)

            elapsed = time.monotonic() - start
            self._metrics.record_drain("graceful" if graceful else "forced")
            if graceful:
                logger.info(
                    "Shutdown completed gracefully",
                    extra={"elapsed_seconds": round(elapsed, 3)},
                )

            self._report = DrainReport(
                graceful=graceful,
                elapsed_seconds=elapsed,
                reason=self._reason or "",
                abandoned=abandoned,
                error=error,
            )
            return self._report
