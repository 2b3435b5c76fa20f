"""SLA deadline scheduling.

A scheduler owns at most one one-shot deadline per request. When a deadline
passes it calls the bound timeout handler with the request id and the step
index that was active when the timer was armed; the handler decides whether
the timer is stale.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from approvalflow.services.approval.schemas import ArmedTimer, StepInstance

logger = logging.getLogger(__name__)

# Handler type: (request_id, step_index) -> awaitable
TimeoutHandler = Callable[[str, int], Awaitable[Any]]

SECONDS_PER_HOUR = 3600


def sla_delay(step: StepInstance) -> timedelta | None:
    """Delay until the step's SLA elapses, or None if it has no SLA."""
    if not step.sla_hours:
        return None
    return timedelta(hours=step.sla_hours)


class SLAScheduler(ABC):
    """Arms and cancels per-request SLA deadlines."""

    def __init__(self) -> None:
        self._handler: TimeoutHandler | None = None

    def bind(self, handler: TimeoutHandler) -> None:
        """Set the callback invoked when a deadline passes."""
        self._handler = handler

    @abstractmethod
    def now(self) -> datetime:
        """Current time according to this scheduler's clock."""

    @abstractmethod
    def arm(
        self, request_id: str, step: StepInstance, step_index: int
    ) -> ArmedTimer | None:
        """Schedule a deadline for the step, replacing any armed one.

        Returns None (and arms nothing) when the step has no SLA.
        """

    @abstractmethod
    def cancel(self, request_id: str) -> None:
        """Cancel the request's armed deadline. Safe when none is armed."""

    @abstractmethod
    def is_armed(self, request_id: str) -> bool:
        """Whether a deadline is currently armed for the request."""

    def shutdown(self) -> None:
        """Cancel every armed deadline."""

    async def _dispatch(self, request_id: str, step_index: int) -> None:
        if self._handler is None:
            logger.warning(
                f"SLA deadline for {request_id} (step {step_index}) "
                f"fired with no handler bound"
            )
            return
        try:
            await self._handler(request_id, step_index)
        except Exception:
            logger.exception(
                f"SLA timeout handler failed for {request_id} (step {step_index})"
            )


class AsyncioSLAScheduler(SLAScheduler):
    """Deadlines backed by ``loop.call_later`` on the running event loop."""

    def __init__(self) -> None:
        super().__init__()
        self._timers: dict[str, tuple[ArmedTimer, asyncio.TimerHandle]] = {}
        self._tasks: set[asyncio.Task] = set()

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def arm(
        self, request_id: str, step: StepInstance, step_index: int
    ) -> ArmedTimer | None:
        self.cancel(request_id)

        delay = sla_delay(step)
        if delay is None:
            return None

        loop = asyncio.get_running_loop()
        timer = ArmedTimer(
            request_id=request_id,
            step_index=step_index,
            deadline=self.now() + delay,
        )
        handle = loop.call_later(delay.total_seconds(), self._fire, timer)
        self._timers[request_id] = (timer, handle)

        logger.debug(
            f"Armed SLA timer for {request_id} step {step_index} "
            f"({step.sla_hours}h, deadline {timer.deadline.isoformat()})"
        )
        return timer

    def cancel(self, request_id: str) -> None:
        entry = self._timers.pop(request_id, None)
        if entry is None:
            return
        timer, handle = entry
        handle.cancel()
        logger.debug(f"Cancelled SLA timer for {request_id} step {timer.step_index}")

    def is_armed(self, request_id: str) -> bool:
        return request_id in self._timers

    def shutdown(self) -> None:
        for _, handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        for task in self._tasks:
            task.cancel()

    def _fire(self, timer: ArmedTimer) -> None:
        current = self._timers.get(timer.request_id)
        if current is not None and current[0] is timer:
            del self._timers[timer.request_id]

        task = asyncio.ensure_future(
            self._dispatch(timer.request_id, timer.step_index)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


class ManualSLAScheduler(SLAScheduler):
    """Deadlines on a virtual clock that only moves when advanced.

    Used by tests and simulations: ``await scheduler.advance(timedelta(hours=1))``
    fires every deadline that falls inside the window, in deadline order.
    """

    def __init__(self, start: datetime | None = None) -> None:
        super().__init__()
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._timers: dict[str, ArmedTimer] = {}

    def now(self) -> datetime:
        return self._now

    def arm(
        self, request_id: str, step: StepInstance, step_index: int
    ) -> ArmedTimer | None:
        self.cancel(request_id)

        delay = sla_delay(step)
        if delay is None:
            return None

        timer = ArmedTimer(
            request_id=request_id,
            step_index=step_index,
            deadline=self._now + delay,
        )
        self._timers[request_id] = timer
        return timer

    def cancel(self, request_id: str) -> None:
        self._timers.pop(request_id, None)

    def is_armed(self, request_id: str) -> bool:
        return request_id in self._timers

    def shutdown(self) -> None:
        self._timers.clear()

    @property
    def pending(self) -> list[ArmedTimer]:
        """Armed timers ordered by deadline."""
        return sorted(self._timers.values(), key=lambda t: t.deadline)

    async def advance(self, delta: timedelta) -> list[ArmedTimer]:
        """Move the clock forward and fire every deadline that passed.

        @param delta - How far to move the clock
        @returns Timers that fired, in firing order
        """
        target = self._now + delta
        fired: list[ArmedTimer] = []

        while True:
            due = [t for t in self._timers.values() if t.deadline <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.deadline)
            del self._timers[timer.request_id]
            self._now = max(self._now, timer.deadline)
            fired.append(timer)
            await self._dispatch(timer.request_id, timer.step_index)

        self._now = target
        return fired
