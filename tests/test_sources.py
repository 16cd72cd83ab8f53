# tests/test_sources.py
"""
Record sources: raw records from JSON files and from a JSON feed over HTTP.
"""
from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
import requests

from rental_aggregator.sources import http as http_mod
from rental_aggregator.sources.file import JsonFileSource
from rental_aggregator.sources.http import HttpJsonSource
from rental_aggregator.sources.types import SourceConfig


def _write(path, payload):
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


class TestJsonFileSource:
    def test_list_payload_respects_limit(self, tmp_path):
        p = _write(tmp_path / "r.json", [{"id": str(i)} for i in range(5)])
        records = JsonFileSource(p).fetch_records(SourceConfig(source="kleinanzeigen", limit=3))
        assert [r["id"] for r in records] == ["0", "1", "2"]

    def test_items_payload_and_non_mappings_dropped(self, tmp_path):
        p = _write(tmp_path / "r.json", {"items": [{"id": "1"}, "junk", None, {"id": "2"}]})
        records = JsonFileSource(p).fetch_records(SourceConfig(source="kleinanzeigen"))
        assert [r["id"] for r in records] == ["1", "2"]

    def test_unexpected_payload(self, tmp_path):
        p = _write(tmp_path / "r.json", 42)
        with pytest.raises(ValueError):
            JsonFileSource(p).fetch_records(SourceConfig(source="kleinanzeigen"))

    def test_no_details_file(self, tmp_path):
        p = _write(tmp_path / "r.json", [])
        assert JsonFileSource(p).fetch_detail("1") is None

    def test_details_lookup(self, tmp_path):
        p = _write(tmp_path / "r.json", [])
        d = _write(tmp_path / "d.json", {"1": {"description": "lang"}})
        src = JsonFileSource(p, details_path=d)

        assert src.fetch_detail("1") == {"description": "lang"}
        with pytest.raises(LookupError):
            src.fetch_detail("2")


def _response(payload):
    resp = MagicMock()
    resp.raise_for_status.return_value = None
    resp.json.return_value = payload
    return resp


class TestHttpJsonSource:
    def test_feed_params_and_items(self, monkeypatch):
        get = MagicMock(return_value=_response({"items": [{"id": "1"}, {"id": "2"}, {"id": "3"}]}))
        monkeypatch.setattr(http_mod.requests, "get", get)

        src = HttpJsonSource("https://scraper.local/kleinanzeigen/search")
        cfg = SourceConfig(source="kleinanzeigen", query="wohnung berlin", limit=2, params={"city": "berlin", "page": None})
        records = src.fetch_records(cfg)

        assert [r["id"] for r in records] == ["1", "2"]
        args, kwargs = get.call_args
        assert args == ("https://scraper.local/kleinanzeigen/search",)
        assert kwargs["params"] == {"q": "wohnung berlin", "limit": 2, "city": "berlin"}
        assert kwargs["timeout"] == 30
        assert kwargs["headers"]["User-Agent"] == http_mod.USER_AGENT

    def test_empty_query_not_sent(self, monkeypatch):
        get = MagicMock(return_value=_response([]))
        monkeypatch.setattr(http_mod.requests, "get", get)

        HttpJsonSource("https://scraper.local/feed").fetch_records(SourceConfig(source="wg-gesucht"))
        assert get.call_args.kwargs["params"] == {"limit": 50}

    def test_unexpected_feed_payload(self, monkeypatch):
        monkeypatch.setattr(http_mod.requests, "get", MagicMock(return_value=_response("oops")))
        with pytest.raises(ValueError):
            HttpJsonSource("https://scraper.local/feed").fetch_records(SourceConfig(source="wg-gesucht"))

    def test_http_error_propagates(self, monkeypatch):
        resp = _response(None)
        resp.raise_for_status.side_effect = requests.HTTPError("503 Service Unavailable")
        monkeypatch.setattr(http_mod.requests, "get", MagicMock(return_value=resp))

        with pytest.raises(requests.HTTPError):
            HttpJsonSource("https://scraper.local/feed").fetch_records(SourceConfig(source="wg-gesucht"))

    def test_detail_url_template(self, monkeypatch):
        get = MagicMock(return_value=_response({"description": "lang"}))
        monkeypatch.setattr(http_mod.requests, "get", get)

        src = HttpJsonSource(
            "https://scraper.local/feed",
            detail_url_template="https://scraper.local/detail/{source_id}",
        )
        assert src.fetch_detail("12/3") == {"description": "lang"}
        assert get.call_args.args == ("https://scraper.local/detail/12%2F3",)

    def test_detail_without_template(self, monkeypatch):
        get = MagicMock()
        monkeypatch.setattr(http_mod.requests, "get", get)
        assert HttpJsonSource("https://scraper.local/feed").fetch_detail("1") is None
        get.assert_not_called()

    def test_detail_must_be_an_object(self, monkeypatch):
        monkeypatch.setattr(http_mod.requests, "get", MagicMock(return_value=_response(["a"])))
        src = HttpJsonSource("https://x/feed", detail_url_template="https://x/d/{source_id}")
        with pytest.raises(ValueError):
            src.fetch_detail("1")
