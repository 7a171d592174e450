import uuid
from functools import lru_cache
from typing import Optional

from fastapi import FastAPI, Depends, Query, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .db import SessionLocal, ensure_schema
from .models import Event, Article
from .schemas import EventOut, ArticleOut, RunResult
from .services.registry import SourceConfigError
from .services.store import as_utc, get_event as load_event, query_events
from .workers.ingest import IngestOrchestrator, RunInProgressError, build_orchestrator

app = FastAPI(title="Peril Watch")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().allowed_origins],
    allow_credentials=True, allow_methods=["*"], allow_headers=["*"],
)

async def get_db():
    async with SessionLocal() as s:
        yield s

@lru_cache(maxsize=1)
def get_orchestrator() -> IngestOrchestrator:
    return build_orchestrator()

@app.on_event("startup")
async def on_startup():
    await ensure_schema()

def _article_out(a: Article) -> ArticleOut:
    return ArticleOut(
        id=str(a.id), title=a.title, url=a.external_url, summary=a.summary or "",
        source_id=a.source_id, peril=a.peril, published_at=as_utc(a.published_at),
        lat=a.lat, lng=a.lng, location_text=a.location_text,
    )

def _event_out(e: Event) -> EventOut:
    return EventOut(
        id=str(e.id), event_key=e.event_key, canonical_title=e.canonical_title,
        peril=e.peril, location_text=e.location_text, lat=e.lat, lng=e.lng,
        last_updated_at=as_utc(e.last_updated_at),
        articles=[_article_out(a) for a in (e.articles or [])],
    )

@app.get("/health")
async def health(db: AsyncSession = Depends(get_db)):
    events = (await db.execute(select(func.count()).select_from(Event))).scalar_one()
    articles = (await db.execute(select(func.count()).select_from(Article))).scalar_one()
    last_article = (await db.execute(select(func.max(Article.ingested_at)))).scalar_one()
    return {"ok": True, "events": events, "articles": articles, "last_article": last_article}

@app.get("/events", response_model=list[EventOut])
async def list_events(
    search: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    rows = await query_events(db, search=search, limit=limit)
    return [_event_out(e) for e in rows]

@app.get("/events/{event_id}", response_model=EventOut)
async def get_event(event_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    e = await load_event(db, event_id)
    if not e:
        raise HTTPException(404, "event not found")
    return _event_out(e)

@app.post("/ingest/run", response_model=RunResult)
async def trigger_ingest(orchestrator: IngestOrchestrator = Depends(get_orchestrator)):
    try:
        return await orchestrator.run()
    except RunInProgressError:
        raise HTTPException(409, "ingest run already in progress")
    except SourceConfigError as ex:
        raise HTTPException(500, f"cannot read source configuration: {ex}")
