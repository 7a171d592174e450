import argparse
import asyncio
import datetime as dt
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, asdict
from functools import partial
from typing import AsyncContextManager, Callable

from ..config import Settings, get_settings
from ..db import SessionLocal, ensure_schema
from ..schemas import RunResult, SourceConfig, SourceKind
from ..services.adapters import RawArticle, SourceAdapter, build_adapters
from ..services.matcher import EventMatcher
from ..services.registry import DbSourceRegistry, SourceConfigError, SourceRegistry, YamlSourceRegistry
from ..services.store import EventStore, as_utc

logger = logging.getLogger(__name__)

utcnow = lambda: dt.datetime.now(dt.timezone.utc)


class RunInProgressError(RuntimeError):
    """A trigger fired while the previous run was still going."""


@dataclass
class RunStats:
    sources: int = 0
    candidates: int = 0
    duplicates: int = 0
    inserted: int = 0
    events_created: int = 0
    failures: int = 0


@asynccontextmanager
async def open_store(session_factory: Callable = SessionLocal):
    async with session_factory() as session:
        yield EventStore(session)


class IngestOrchestrator:
    """Runs one fetch -> classify -> match -> persist pass over enabled sources.

    Fetching is concurrent (bounded by ``settings.concurrency``); matching and
    writing happen in a single committer loop in source order, so two
    candidates for the same new occurrence can never race into two events.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        store_factory: Callable[[], AsyncContextManager[EventStore]] = open_store,
        settings: Settings | None = None,
        adapters: dict[SourceKind, SourceAdapter] | None = None,
        matcher: EventMatcher | None = None,
        clock: Callable[[], dt.datetime] = utcnow,
    ):
        self.settings = settings or get_settings()
        self.registry = registry
        self.store_factory = store_factory
        self.adapters = adapters if adapters is not None else build_adapters(
            self.settings.fetch_timeout, self.settings.user_agent)
        self.matcher = matcher or EventMatcher(self.settings.match_threshold, self.settings.match_strategy)
        self.clock = clock
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run(self) -> RunResult:
        """Raises ``SourceConfigError`` when sources cannot be enumerated."""
        if self._lock.locked():
            raise RunInProgressError("ingest run already in progress")
        async with self._lock:
            stats = RunStats()
            try:
                await asyncio.wait_for(self._run(stats), timeout=self.settings.run_timeout)
            except asyncio.TimeoutError:
                logger.error("[ingest][TIMEOUT] run exceeded %.0fs; %s",
                             self.settings.run_timeout, _fmt_stats(stats))
                return RunResult(count=stats.inserted, status="timeout")
            logger.info("[ingest] done, %s", _fmt_stats(stats))
            return RunResult(count=stats.inserted)

    async def _run(self, stats: RunStats) -> None:
        sources = await self.registry.enabled_sources()
        stats.sources = len(sources)
        logger.info("[ingest] %d enabled sources", len(sources))

        sem = asyncio.Semaphore(self.settings.concurrency)
        # 1) fetch all sources in parallel
        tasks = [asyncio.ensure_future(self._fetch(src, sem)) for src in sources]
        try:
            # 2) commit one source at a time, in registry order
            async with self.store_factory() as store:
                for src, task in zip(sources, tasks):
                    candidates = await task
                    await self._commit_source(store, src, candidates, stats)
        finally:
            for t in tasks:
                if not t.done():
                    t.cancel()

    async def _fetch(self, src: SourceConfig, sem: asyncio.Semaphore) -> list[RawArticle]:
        adapter = self.adapters.get(src.kind)
        if adapter is None:
            logger.warning("[ingest][SKIP] %s: no adapter for kind %s", src.id, src.kind)
            return []
        async with sem:
            loop = asyncio.get_running_loop()
            try:
                return await asyncio.wait_for(
                    loop.run_in_executor(None, partial(adapter.fetch, src)),
                    timeout=self.settings.fetch_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("[ingest][ERR fetch] %s: no response within %.0fs", src.id, self.settings.fetch_timeout)
            except Exception as e:
                logger.warning("[ingest][ERR fetch] %s: %s", src.id, e)
            return []

    async def _bounded(self, aw):
        return await asyncio.wait_for(aw, timeout=self.settings.store_timeout)

    async def _commit_source(self, store: EventStore, src: SourceConfig,
                             candidates: list[RawArticle], stats: RunStats) -> None:
        since = self.clock() - dt.timedelta(days=self.settings.window_days)
        window = None
        for raw in candidates:
            stats.candidates += 1
            created = False
            try:
                # commit/rollback per article: an event never outlives a failed insert
                async with store.atomic():
                    if await self._bounded(store.article_exists(raw.url)):
                        stats.duplicates += 1
                        continue
                    if window is None:
                        window = await self._bounded(store.find_recent_events(since))
                    ev = self.matcher.find(raw, window)
                    if ev is None:
                        ev = await self._bounded(store.create_event(
                            raw.title, raw.source_peril, raw.published_at,
                            location_text=raw.location_text, lat=raw.lat, lng=raw.lng,
                        ))
                        created = True
                    else:
                        await self._bounded(store.touch_event(ev.id, raw.published_at))
                    await self._bounded(store.insert_article(raw, ev.id))
            except asyncio.CancelledError:
                logger.warning("[db][CANCEL] %s %s", src.id, raw.url)
                raise
            except Exception:
                stats.failures += 1
                logger.exception("[db][ERR item] %s %s", src.id, raw.url)
                continue

            stats.inserted += 1
            if created:
                stats.events_created += 1
                # an event born outside the trailing window is not a merge target
                if ev.last_updated_at >= since:
                    window.append(ev)
            elif as_utc(raw.published_at) > ev.last_updated_at:
                ev.last_updated_at = as_utc(raw.published_at)
            # keep the freshest event first, as find_recent_events returns it
            window.sort(key=lambda e: e.last_updated_at, reverse=True)


def _fmt_stats(stats: RunStats) -> str:
    return ", ".join(f"{k}={v}" for k, v in asdict(stats).items())


def build_orchestrator(settings: Settings | None = None, sources_path: str | None = None) -> IngestOrchestrator:
    settings = settings or get_settings()
    path = sources_path or settings.sources_path
    registry = YamlSourceRegistry(path) if path else DbSourceRegistry(SessionLocal)
    return IngestOrchestrator(registry, settings=settings)


async def run(sources_path: str | None = None, loop: bool = False) -> RunResult | None:
    await ensure_schema()
    orchestrator = build_orchestrator(sources_path=sources_path)
    if loop:
        from .scheduler import HourlyTrigger

        await HourlyTrigger(orchestrator).run_forever()
        return None
    return await orchestrator.run()

# ---------- CLI ----------

if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Fetch enabled hazard sources and merge articles into events")
    ap.add_argument("--sources", default=None, help="YAML file or directory with *.yaml; defaults to the sources table")
    ap.add_argument("--loop", action="store_true", help="stay up and run at the top of every hour")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)-15s %(name)s %(levelname)-8s %(message)s",
    )
    try:
        result = asyncio.run(run(args.sources, args.loop))
    except SourceConfigError as e:
        logger.error("[ingest][FATAL] %s", e)
        raise SystemExit(1)
    if result is not None:
        print(json.dumps(result.model_dump()), flush=True)
