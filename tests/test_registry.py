"""Tests for api.app.services.registry."""

import asyncio
import textwrap

import pytest

from api.app.models import Source
from api.app.schemas import SourceKind
from api.app.services.registry import DbSourceRegistry, SourceConfigError, YamlSourceRegistry


def _write(path, text):
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


class TestYamlSourceRegistry:
    def test_reads_enabled_sources_only(self, tmp_path) -> None:
        path = _write(tmp_path / "sources.yaml", """
            - id: usgs
              kind: structured-api
              base_url: https://earthquake.example.gov/all_hour.geojson
            - id: wire
              kind: feed
              base_url: https://wire.example.com/rss
              enabled: false
        """)
        sources = asyncio.run(YamlSourceRegistry(str(path)).enabled_sources())
        assert [s.id for s in sources] == ["usgs"]
        assert sources[0].kind is SourceKind.STRUCTURED_API

    def test_accepts_legacy_kinds_and_url_key(self, tmp_path) -> None:
        path = _write(tmp_path / "sources.yaml", """
            - {id: 1, type: rss, url: https://a.example.com/rss}
            - {id: 2, type: json_api, url: https://b.example.com/api}
            - {id: 3, type: html, url: https://c.example.com/news}
        """)
        sources = YamlSourceRegistry(str(path)).load()
        assert [s.kind for s in sources] == [SourceKind.FEED, SourceKind.STRUCTURED_API, SourceKind.HTML_SCRAPE]
        assert [s.id for s in sources] == ["1", "2", "3"]
        assert sources[0].base_url == "https://a.example.com/rss"

    def test_invalid_entry_is_skipped(self, tmp_path) -> None:
        path = _write(tmp_path / "sources.yaml", """
            - {id: ok, kind: feed, base_url: https://a.example.com/rss}
            - {id: bad, kind: carrier-pigeon, base_url: https://b.example.com}
            - just a string
        """)
        assert [s.id for s in YamlSourceRegistry(str(path)).load()] == ["ok"]

    def test_mapping_with_sources_key(self, tmp_path) -> None:
        path = _write(tmp_path / "sources.yaml", """
            sources:
              - {id: ok, kind: feed, base_url: https://a.example.com/rss}
        """)
        assert [s.id for s in YamlSourceRegistry(str(path)).load()] == ["ok"]

    def test_directory_of_files(self, tmp_path) -> None:
        _write(tmp_path / "a.yaml", "- {id: a, kind: feed, base_url: https://a.example.com/rss}\n")
        _write(tmp_path / "b.yaml", "- {id: b, kind: html-scrape, base_url: https://b.example.com/news}\n")
        _write(tmp_path / "notes.txt", "ignored")
        assert [s.id for s in YamlSourceRegistry(str(tmp_path)).load()] == ["a", "b"]

    def test_missing_file_is_fatal(self, tmp_path) -> None:
        with pytest.raises(SourceConfigError):
            asyncio.run(YamlSourceRegistry(str(tmp_path / "nope.yaml")).enabled_sources())

    def test_malformed_yaml_is_fatal(self, tmp_path) -> None:
        path = _write(tmp_path / "sources.yaml", "- {id: a, kind: feed\n")
        with pytest.raises(SourceConfigError):
            YamlSourceRegistry(str(path)).load()

    def test_scalar_document_is_fatal(self, tmp_path) -> None:
        path = _write(tmp_path / "sources.yaml", "42\n")
        with pytest.raises(SourceConfigError):
            YamlSourceRegistry(str(path)).load()


class TestDbSourceRegistry:
    def test_reads_enabled_rows(self, sqlite_sessionmaker) -> None:
        async def scenario():
            async with sqlite_sessionmaker() as maker:
                async with maker() as session:
                    session.add_all([
                        Source(id="usgs", kind="structured-api", base_url="https://e.example.gov/q", enabled=True),
                        Source(id="gdacs", kind="rss", base_url="https://g.example.org/rss", enabled=True),
                        Source(id="off", kind="feed", base_url="https://o.example.com/rss", enabled=False),
                        Source(id="weird", kind="fax", base_url="https://w.example.com", enabled=True),
                    ])
                    await session.commit()
                return await DbSourceRegistry(maker).enabled_sources()

        sources = asyncio.run(scenario())
        assert [(s.id, s.kind) for s in sources] == [
            ("gdacs", SourceKind.FEED),
            ("usgs", SourceKind.STRUCTURED_API),
        ]

    def test_unreadable_table_is_fatal(self) -> None:
        def broken_factory():
            raise ConnectionRefusedError("db down")

        with pytest.raises(SourceConfigError):
            asyncio.run(DbSourceRegistry(broken_factory).enabled_sources())
