import datetime as dt, uuid
from sqlalchemy import Column, String, Float, Boolean, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship
from .db import Base

utcnow = lambda: dt.datetime.now(dt.timezone.utc)

class Source(Base):
    __tablename__ = "sources"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=True)
    kind = Column(String(32), nullable=False)  # feed|structured-api|html-scrape
    base_url = Column(String, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True, index=True)

class Event(Base):
    __tablename__ = "events"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_key = Column(String, nullable=False, unique=True)
    # title/peril/location are fixed at creation
    canonical_title = Column(String, nullable=False)
    peril = Column(String(32), nullable=False, index=True)
    location_text = Column(String, nullable=True)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    first_seen = Column(DateTime(timezone=True), default=utcnow)
    last_updated_at = Column(DateTime(timezone=True), nullable=False, index=True)
    articles = relationship("Article", back_populates="event", cascade="all, delete-orphan",
                            order_by="Article.published_at")

class Article(Base):
    __tablename__ = "articles"
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    source_id = Column(String, nullable=True)
    title = Column(String, nullable=False)
    external_url = Column(String, nullable=False, unique=True)
    summary = Column(Text, nullable=False, default="")
    published_at = Column(DateTime(timezone=True), nullable=False)
    peril = Column(String(32), nullable=False)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    location_text = Column(String, nullable=True)
    ingested_at = Column(DateTime(timezone=True), default=utcnow)
    event = relationship("Event", back_populates="articles")
