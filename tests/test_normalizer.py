# tests/test_normalizer.py
"""
Tests for source dispatch and the per-source mappings
(rental_aggregator/normalize.py, rental_aggregator/sources/*).
"""
from __future__ import annotations

import copy

import pytest

from rental_aggregator.config import ID_POLICY_RANDOM
from rental_aggregator.errors import UnderivableIdError, UnsupportedSourceError
from rental_aggregator.models import KLEINANZEIGEN, WG_GESUCHT, CanonicalListing
from rental_aggregator.normalize import normalize, preview
from rental_aggregator.sources import registry
from rental_aggregator.sources.adapters.kleinanzeigen import KleinanzeigenExtractor
from rental_aggregator.sources.base import BaseExtractor
from rental_aggregator.sources.registry import get_extractor, register_extractor


def _ka_raw(**overrides):
    raw = {"id": "123", "title": "Nachmieter gesucht", "price": "650 €", "location": "Berlin"}
    raw.update(overrides)
    return raw


def _wg_raw(**overrides):
    raw = {
        "offer_id": "9876543",
        "offer_title": "Helles Zimmer in Friedrichshain",
        "total_costs": "520",
        "district_custom": "Friedrichshain",
        "town_name": "Berlin",
        "street": "Boxhagener Str.",
        "property_size": "18",
        "number_of_rooms": "1",
        "category": "0",
        "thumb": "//img.wg-gesucht.de/t.jpg",
        "sized": "https://img.wg-gesucht.de/s.jpg",
        "small": None,
        "geo_latitude": "52.51",
        "geo_longitude": "13.45",
        "available_from_date": "01.11.2026",
        "flatshare_inhabitants_total": "3",
        "flatshare_males": "1",
        "flatshare_females": "2",
        "user_id": "u-77",
        "verified_user": "1",
    }
    raw.update(overrides)
    return raw


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

class TestDispatch:
    def test_unknown_source_raises(self):
        with pytest.raises(UnsupportedSourceError) as exc:
            normalize({"id": "1", "title": "x"}, "immoscout")
        assert "immoscout" in str(exc.value)

    def test_known_sources_registered(self):
        assert set(registry.EXTRACTORS) >= {KLEINANZEIGEN, WG_GESUCHT}

    def test_get_extractor_passes_id_policy(self):
        ex = get_extractor(KLEINANZEIGEN, id_policy=ID_POLICY_RANDOM)
        assert isinstance(ex, KleinanzeigenExtractor)
        assert ex.id_policy == ID_POLICY_RANDOM

    def test_register_new_source_without_touching_normalize(self, monkeypatch):
        monkeypatch.setattr(registry, "EXTRACTORS", dict(registry.EXTRACTORS))

        @register_extractor
        class ImmoweltExtractor(BaseExtractor):
            source = "immowelt"

            def extract(self, raw):
                return CanonicalListing(
                    id=f"iw-{raw['key']}", source=self.source, source_id=raw["key"], title=raw["headline"]
                )

        listing = normalize({"key": "5", "headline": "Loft"}, "immowelt")
        assert listing.id == "iw-5"
        assert listing.source == "immowelt"

    def test_register_requires_source_tag(self, monkeypatch):
        monkeypatch.setattr(registry, "EXTRACTORS", dict(registry.EXTRACTORS))

        class Nameless(BaseExtractor):
            def extract(self, raw):
                raise NotImplementedError

        with pytest.raises(ValueError):
            register_extractor(Nameless)


# ---------------------------------------------------------------------------
# Kleinanzeigen
# ---------------------------------------------------------------------------

class TestKleinanzeigen:
    def test_basic_record(self):
        listing = normalize(_ka_raw(), KLEINANZEIGEN)

        assert listing.id == "123"
        assert listing.source == "kleinanzeigen"
        assert listing.source_id == "123"
        assert listing.title == "Nachmieter gesucht"
        assert listing.price == 650.0
        assert listing.currency == "EUR"
        assert listing.location == "Berlin"
        assert listing.detailed_location == "Berlin"
        assert listing.type == "apartment"
        assert listing.images == []

    def test_size_rooms_and_type_from_text(self):
        listing = normalize(
            _ka_raw(
                title="Schöne 3-Zimmer Wohnung",
                description="Altbau, 78 m² mit Balkon",
                images=["//img.kleinanzeigen.de/1.jpg", "//img.kleinanzeigen.de/1.jpg"],
                url="https://www.kleinanzeigen.de/s-anzeige/123",
            ),
            KLEINANZEIGEN,
        )
        assert listing.size == 78.0
        assert listing.rooms == 3.0
        assert listing.type == "room"
        assert listing.images == ["https://img.kleinanzeigen.de/1.jpg"]
        assert listing.url == "https://www.kleinanzeigen.de/s-anzeige/123"

    def test_missing_id_hashes_url(self):
        a = normalize(_ka_raw(id=None, url="https://www.kleinanzeigen.de/s-anzeige/x"), KLEINANZEIGEN)
        b = normalize(_ka_raw(id=None, url="https://www.kleinanzeigen.de/s-anzeige/x"), KLEINANZEIGEN)
        assert a.id == b.id
        assert len(a.id) == 12

    def test_nothing_to_derive_id_from(self):
        with pytest.raises(UnderivableIdError):
            normalize({"price": "500 €"}, KLEINANZEIGEN, id_policy="fail")

    def test_random_policy_keeps_record(self):
        listing = normalize({"price": "500 €"}, KLEINANZEIGEN, id_policy=ID_POLICY_RANDOM)
        assert listing.id.startswith("generated-")

    def test_merge_detail_prefers_detail_values(self):
        ex = KleinanzeigenExtractor()
        raw = _ka_raw(description="kurz", images=["https://x/a.jpg"])
        detail = {
            "description": "Lange Beschreibung, 65 m², 3 Raum, Balkon",
            "images": ["https://x/b.jpg", "https://x/c.jpg"],
            "location": "Berlin Neukölln",
            "additionalDetails": {"Warmmiete": "780 €"},
            "postedDate": "12.10.2026",
        }

        merged = ex.merge_detail(raw, detail)
        listing = ex.extract(merged)

        assert merged["detailedInfoFetched"] is True
        assert listing.id == "123"
        assert listing.full_description == "Lange Beschreibung, 65 m², 3 Raum, Balkon"
        assert listing.description == "kurz"
        assert listing.size == 65.0
        assert listing.rooms == 3.0
        assert listing.images == ["https://x/b.jpg", "https://x/c.jpg"]
        assert listing.detailed_location == "Berlin Neukölln"
        assert listing.source_data["additionalDetails"] == {"Warmmiete": "780 €"}
        assert listing.source_data["detailedInfoFetched"] is True

    def test_merge_detail_keeps_list_images_when_detail_has_none(self):
        ex = KleinanzeigenExtractor()
        merged = ex.merge_detail(_ka_raw(images=["https://x/a.jpg"]), {"images": []})
        assert merged["allImages"] == ["https://x/a.jpg"]


# ---------------------------------------------------------------------------
# WG-gesucht
# ---------------------------------------------------------------------------

class TestWgGesucht:
    def test_mapping(self):
        listing = normalize(_wg_raw(), WG_GESUCHT)

        assert listing.id == "wg-9876543"
        assert listing.source_id == "9876543"
        assert listing.source == "wg-gesucht"
        assert listing.price == 520.0
        assert listing.currency == "EUR"
        assert listing.location == "Friedrichshain"
        assert listing.detailed_location == "Boxhagener Str. Friedrichshain"
        assert listing.size == 18.0
        assert listing.rooms == 1.0
        assert listing.type == "room"
        assert (listing.coordinates.lat, listing.coordinates.lng) == (52.51, 13.45)
        assert listing.images == ["https://img.wg-gesucht.de/t.jpg", "https://img.wg-gesucht.de/s.jpg"]
        assert listing.url == "https://www.wg-gesucht.de/9876543.html"

    def test_source_data(self):
        data = normalize(_wg_raw(), WG_GESUCHT).source_data
        assert data["availableFrom"] == "01.11.2026"
        assert data["flatshareDetails"]["total"] == "3"
        assert data["userId"] == "u-77"
        assert data["verified"] is True

    @pytest.mark.parametrize("category,expected", [
        ("0", "room"),
        ("1", "apartment"),
        ("2", "apartment"),
        ("3", "house"),
        ("wg-room", "room"),
    ])
    def test_category_decides_type(self, category, expected):
        listing = normalize(_wg_raw(category=category, offer_title="Nachmieter gesucht"), WG_GESUCHT)
        assert listing.type == expected

    def test_unknown_category_falls_back_to_keywords(self):
        listing = normalize(_wg_raw(category="99", offer_title="Reihenhaus mit Garten"), WG_GESUCHT)
        assert listing.type == "house"

    def test_town_used_without_district(self):
        listing = normalize(_wg_raw(district_custom=None), WG_GESUCHT)
        assert listing.location == "Berlin"

    def test_absolute_url_kept(self):
        listing = normalize(_wg_raw(url="https://www.wg-gesucht.de/wg-zimmer-in-Berlin.9876543.html"), WG_GESUCHT)
        assert listing.url == "https://www.wg-gesucht.de/wg-zimmer-in-Berlin.9876543.html"

    def test_size_falls_back_to_description(self):
        listing = normalize(
            _wg_raw(property_size="0", description="Das Zimmer hat 14 qm"),
            WG_GESUCHT,
        )
        assert listing.size == 14.0

    def test_unverified_user(self):
        assert normalize(_wg_raw(verified_user="0"), WG_GESUCHT).source_data["verified"] is False


# ---------------------------------------------------------------------------
# Cross-cutting properties
# ---------------------------------------------------------------------------

class TestProperties:
    @pytest.mark.parametrize("source,raw", [
        (KLEINANZEIGEN, _ka_raw(description="65 m², 2 Zimmer", images=["//x/1.jpg"])),
        (WG_GESUCHT, _wg_raw()),
    ])
    def test_idempotent_and_pure(self, source, raw):
        before = copy.deepcopy(raw)
        assert normalize(raw, source) == normalize(raw, source)
        assert raw == before

    def test_same_title_different_sources_do_not_collide(self):
        ka = normalize({"title": "Nachmieter gesucht", "price": "650 €"}, KLEINANZEIGEN)
        wg = normalize({"offer_title": "Nachmieter gesucht", "total_costs": "650"}, WG_GESUCHT)
        assert ka.id != wg.id

    def test_same_native_id_different_sources_do_not_collide(self):
        ka = normalize(_ka_raw(id="555"), KLEINANZEIGEN)
        wg = normalize(_wg_raw(offer_id="555"), WG_GESUCHT)
        assert ka.id != wg.id


class TestPreview:
    def test_drops_records_that_fail(self):
        out = preview([_ka_raw(), {"price": "1 €"}, _ka_raw(id="124")], KLEINANZEIGEN, id_policy="fail")
        assert [l.id for l in out] == ["123", "124"]

    def test_unknown_source_still_raises(self):
        with pytest.raises(UnsupportedSourceError):
            preview([_ka_raw()], "nope")
