"""Hourly trigger for the ingest orchestrator.

The clock and the sleep function are injected so the schedule can be driven
in tests without waiting for wall-clock hours.
"""

import asyncio
import datetime as dt
import logging
from typing import Awaitable, Callable

from ..schemas import RunResult
from ..services.registry import SourceConfigError
from .ingest import IngestOrchestrator, RunInProgressError

logger = logging.getLogger(__name__)

utcnow = lambda: dt.datetime.now(dt.timezone.utc)


def next_fire_time(now: dt.datetime, minute: int = 0) -> dt.datetime:
    """First ``HH:minute:00`` strictly after ``now``."""
    candidate = now.replace(minute=minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += dt.timedelta(hours=1)
    return candidate


class HourlyTrigger:
    def __init__(
        self,
        orchestrator: IngestOrchestrator,
        clock: Callable[[], dt.datetime] = utcnow,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
        minute: int = 0,
    ):
        self.orchestrator = orchestrator
        self.clock = clock
        self.sleep = sleep
        self.minute = minute
        self._inflight: set[asyncio.Task] = set()

    async def tick(self) -> RunResult | None:
        try:
            result = await self.orchestrator.run()
        except RunInProgressError:
            logger.warning("[scheduler] previous run still in flight; skipping this trigger")
            return None
        except SourceConfigError as e:
            logger.error("[scheduler][FATAL run] %s", e)
            return None
        except Exception:
            logger.exception("[scheduler][ERR run]")
            return None
        logger.info("[scheduler] run finished: count=%d status=%s", result.count, result.status)
        return result

    async def run_forever(self, max_runs: int | None = None) -> None:
        fired = 0
        try:
            while max_runs is None or fired < max_runs:
                now = self.clock()
                nxt = next_fire_time(now, self.minute)
                logger.debug("[scheduler] next run at %s", nxt.isoformat())
                await self.sleep((nxt - now).total_seconds())
                # runs are not awaited here: an overrunning run must not delay the schedule
                task = asyncio.ensure_future(self.tick())
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
                fired += 1
        finally:
            if self._inflight:
                await asyncio.gather(*self._inflight, return_exceptions=True)
