"""Readers for the externally administered source registry.

Failing to enumerate sources is the one fatal error of an ingest run, so both
readers wrap anything that goes wrong in ``SourceConfigError``.
"""

from __future__ import annotations

import glob
import logging
import os
from typing import Callable, Protocol

import yaml
from sqlalchemy import select

from ..models import Source
from ..schemas import SourceConfig

logger = logging.getLogger(__name__)


class SourceConfigError(RuntimeError):
    """The list of enabled sources could not be read."""


class SourceRegistry(Protocol):
    async def enabled_sources(self) -> list[SourceConfig]: ...


class DbSourceRegistry:
    def __init__(self, session_factory: Callable):
        self.session_factory = session_factory

    async def enabled_sources(self) -> list[SourceConfig]:
        try:
            async with self.session_factory() as session:
                rows = (await session.execute(
                    select(Source).where(Source.enabled.is_(True)).order_by(Source.id)
                )).scalars().all()
                raw = [
                    {"id": r.id, "kind": r.kind, "base_url": r.base_url, "enabled": r.enabled, "name": r.name}
                    for r in rows
                ]
        except Exception as e:
            raise SourceConfigError(f"cannot read sources table: {e}") from e
        return _validate(raw, "sources table")


def _validate(raw: list, origin: str) -> list[SourceConfig]:
    out: list[SourceConfig] = []
    for item in raw:
        try:
            out.append(SourceConfig(**_normalise_entry(item)))
        except (TypeError, ValueError) as e:
            # one bad row only disables that source
            logger.warning("[sources][SKIP] %s: %r: %s", origin, item, e)
    return out


def _normalise_entry(raw: dict) -> dict:
    item = dict(raw)
    # feed lists written for the worker CLI use url/type
    if "base_url" not in item and "url" in item:
        item["base_url"] = item.pop("url")
    if "kind" not in item and "type" in item:
        item["kind"] = item.pop("type")
    return item


def _read_yaml(path: str) -> list:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or []
    if isinstance(data, dict):
        data = data.get("sources") or []
    if not isinstance(data, list):
        raise SourceConfigError(f"{path}: expected a list of sources")
    return data


class YamlSourceRegistry:
    """A YAML file, or a directory of ``*.yaml`` files, listing sources."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> list[SourceConfig]:
        try:
            if os.path.isdir(self.path):
                raw = []
                for p in sorted(glob.glob(os.path.join(self.path, "*.yaml"))):
                    raw.extend(_read_yaml(p))
            else:
                raw = _read_yaml(self.path)
        except SourceConfigError:
            raise
        except (OSError, yaml.YAMLError) as e:
            raise SourceConfigError(f"cannot read {self.path}: {e}") from e
        return _validate(raw, self.path)

    async def enabled_sources(self) -> list[SourceConfig]:
        sources = [s for s in self.load() if s.enabled]
        logger.debug("[sources] %s -> %d enabled", self.path, len(sources))
        return sources
