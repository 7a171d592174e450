"""Tests for the read endpoints and the manual trigger in api.app.main."""

import asyncio
import datetime as dt
import uuid

import pytest
from fastapi import HTTPException

from api.app.main import get_event, list_events, trigger_ingest
from api.app.schemas import RunResult
from api.app.services.adapters import RawArticle
from api.app.services.peril import Peril
from api.app.services.registry import SourceConfigError
from api.app.services.store import EventStore
from api.app.workers.ingest import RunInProgressError

NOW = dt.datetime(2026, 3, 1, 12, 0, tzinfo=dt.timezone.utc)


class FakeOrchestrator:
    def __init__(self, outcome):
        self.outcome = outcome

    async def run(self):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


async def _seed(maker):
    async with maker() as session:
        store = EventStore(session)
        async with store.atomic():
            ev = await store.create_event("M6.2 Earthquake - Chile", Peril.EARTHQUAKE, NOW,
                                          location_text="Chile", lat=-33.3, lng=-71.9)
            await store.insert_article(RawArticle(
                title="M6.2 Earthquake - Chile", url="https://e.example.gov/1", summary="Magnitude 6.2 near Chile.",
                published_at=NOW, source_peril=Peril.EARTHQUAKE, source_id="usgs",
                lat=-33.3, lng=-71.9, location_text="Chile",
            ), ev.id)
            await store.create_event("Flood hits Jakarta", Peril.FLOOD, NOW - dt.timedelta(hours=1))
        return ev


class TestReadEndpoints:
    def test_list_events_embeds_articles(self, sqlite_sessionmaker) -> None:
        async def scenario():
            async with sqlite_sessionmaker() as maker:
                await _seed(maker)
                async with maker() as session:
                    return await list_events(search="CHILE", limit=10, db=session)

        (out,) = asyncio.run(scenario())
        assert out.canonical_title == "M6.2 Earthquake - Chile"
        assert out.peril == "Earthquake"
        assert out.last_updated_at == NOW
        assert [a.url for a in out.articles] == ["https://e.example.gov/1"]
        assert out.articles[0].source_id == "usgs"

    def test_list_events_orders_by_freshness(self, sqlite_sessionmaker) -> None:
        async def scenario():
            async with sqlite_sessionmaker() as maker:
                await _seed(maker)
                async with maker() as session:
                    return await list_events(search=None, limit=100, db=session)

        assert [e.canonical_title for e in asyncio.run(scenario())] == [
            "M6.2 Earthquake - Chile",
            "Flood hits Jakarta",
        ]

    def test_get_event_and_missing(self, sqlite_sessionmaker) -> None:
        async def scenario():
            async with sqlite_sessionmaker() as maker:
                ev = await _seed(maker)
                async with maker() as session:
                    found = await get_event(ev.id, db=session)
                    with pytest.raises(HTTPException) as missing:
                        await get_event(uuid.uuid4(), db=session)
                    return ev, found, missing.value

        ev, found, missing = asyncio.run(scenario())
        assert found.id == str(ev.id)
        assert found.event_key == ev.event_key
        assert missing.status_code == 404


class TestTriggerEndpoint:
    def test_returns_count(self) -> None:
        result = asyncio.run(trigger_ingest(orchestrator=FakeOrchestrator(RunResult(count=4))))
        assert result == RunResult(count=4)

    def test_overlap_is_conflict(self) -> None:
        with pytest.raises(HTTPException) as exc:
            asyncio.run(trigger_ingest(orchestrator=FakeOrchestrator(RunInProgressError("busy"))))
        assert exc.value.status_code == 409

    def test_config_error_is_server_error(self) -> None:
        with pytest.raises(HTTPException) as exc:
            asyncio.run(trigger_ingest(orchestrator=FakeOrchestrator(SourceConfigError("no table"))))
        assert exc.value.status_code == 500
