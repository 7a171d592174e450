"""Event store gateway over an async SQLAlchemy session.

The ingest worker only needs the narrow surface below; it never touches ORM
objects directly, it works with ``EventRecord`` snapshots so that a rolled
back article cannot leave half-expired state in the matching window.
"""

from __future__ import annotations

import datetime as dt
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Sequence

from sqlalchemy import case, func, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models import Article, Event


def as_utc(value: dt.datetime) -> dt.datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _peril_value(peril) -> str:
    return getattr(peril, "value", peril)


def new_event_key(peril: str, now: dt.datetime | None = None) -> str:
    now = now or dt.datetime.now(dt.timezone.utc)
    return f"{peril}-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:12]}"


@dataclass
class EventRecord:
    id: uuid.UUID
    event_key: str
    canonical_title: str
    peril: str
    last_updated_at: dt.datetime
    location_text: str | None = None
    lat: float | None = None
    lng: float | None = None

    @classmethod
    def from_row(cls, ev: Event) -> "EventRecord":
        return cls(
            id=ev.id,
            event_key=ev.event_key,
            canonical_title=ev.canonical_title,
            peril=ev.peril,
            last_updated_at=as_utc(ev.last_updated_at),
            location_text=ev.location_text,
            lat=ev.lat,
            lng=ev.lng,
        )


class EventStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        """One transaction; commits on success, rolls back on any error."""
        async with self.session.begin():
            yield

    async def find_recent_events(self, since: dt.datetime) -> list[EventRecord]:
        res = await self.session.execute(
            select(Event)
            .where(Event.last_updated_at >= as_utc(since))
            .order_by(Event.last_updated_at.desc())
        )
        return [EventRecord.from_row(ev) for ev in res.scalars().all()]

    async def article_exists(self, external_url: str) -> bool:
        res = await self.session.execute(
            select(func.count()).select_from(Article).where(Article.external_url == external_url)
        )
        return res.scalar_one() > 0

    async def create_event(
        self,
        title: str,
        peril: str,
        first_published_at: dt.datetime,
        location_text: str | None = None,
        lat: float | None = None,
        lng: float | None = None,
    ) -> EventRecord:
        ev = Event(
            event_key=new_event_key(_peril_value(peril)),
            canonical_title=title,
            peril=_peril_value(peril),
            location_text=location_text,
            lat=lat,
            lng=lng,
            last_updated_at=as_utc(first_published_at),
        )
        self.session.add(ev)
        await self.session.flush()
        return EventRecord.from_row(ev)

    async def touch_event(self, event_id: uuid.UUID, published_at: dt.datetime) -> None:
        ts = literal(as_utc(published_at), type_=Event.last_updated_at.type)
        await self.session.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(last_updated_at=case((Event.last_updated_at < ts, ts), else_=Event.last_updated_at))
            .execution_options(synchronize_session=False)
        )

    async def insert_article(self, article, event_id: uuid.UUID) -> Article:
        row = Article(
            event_id=event_id,
            source_id=article.source_id,
            title=article.title,
            external_url=article.url,
            summary=article.summary or "",
            published_at=as_utc(article.published_at),
            peril=_peril_value(article.source_peril),
            lat=article.lat,
            lng=article.lng,
            location_text=article.location_text,
        )
        self.session.add(row)
        await self.session.flush()
        return row


# ---------- READ SIDE ----------

async def query_events(session: AsyncSession, search: str | None = None, limit: int = 100) -> Sequence[Event]:
    stmt = select(Event).options(selectinload(Event.articles)).order_by(Event.last_updated_at.desc())
    if search:
        stmt = stmt.where(Event.canonical_title.icontains(search, autoescape=True))
    stmt = stmt.limit(limit)
    res = await session.execute(stmt)
    return res.scalars().unique().all()


async def get_event(session: AsyncSession, event_id: uuid.UUID) -> Event | None:
    res = await session.execute(
        select(Event).options(selectinload(Event.articles)).where(Event.id == event_id)
    )
    return res.scalars().first()
