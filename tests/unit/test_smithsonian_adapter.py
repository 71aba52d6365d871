"""Tests for api/smithsonian_adapter.py - Smithsonian normalization."""
from __future__ import annotations

import copy

from api import smithsonian_adapter as adapter
from api.smithsonian_adapter import extract_best_images, get_museum_name


class TestMuseumNames:
    """Tests for get_museum_name."""

    def test_known_code(self):
        assert get_museum_name("NMAH") == "National Museum of American History"

    def test_unknown_code_returned_as_is(self):
        assert get_museum_name("XYZ") == "XYZ"

    def test_empty_code(self):
        assert get_museum_name("") == "Smithsonian Institution"
        assert get_museum_name(None) == "Smithsonian Institution"


class TestImages:
    """Tests for extract_best_images."""

    def test_labelled_resources_preferred(self, smithsonian_row):
        thumb, screen, full = extract_best_images(smithsonian_row)

        assert thumb.endswith("NMAH-JN2017-01234_thumb")
        assert screen.endswith("NMAH-JN2017-01234_screen")
        assert full == "https://ids.si.edu/ids/deliveryService?id=NMAH-JN2017-01234"

    def test_ids_derivatives_when_no_resources(self, smithsonian_row):
        media = smithsonian_row["content"]["descriptiveNonRepeating"]["online_media"]["media"][0]
        media["resources"] = []

        thumb, screen, _full = extract_best_images(smithsonian_row)

        assert thumb == "https://ids.si.edu/ids/deliveryService?id=NMAH-JN2017-01234_thumb"
        assert screen == "https://ids.si.edu/ids/deliveryService?id=NMAH-JN2017-01234_screen"

    def test_content_url_without_ids_id(self):
        row = {"content": {"descriptiveNonRepeating": {"online_media": {"media": [
            {"content": "https://example.org/full.jpg"},
        ]}}}}

        assert extract_best_images(row) == (
            "https://example.org/full.jpg",
            "https://example.org/full.jpg",
            "https://example.org/full.jpg",
        )

    def test_no_media(self):
        assert extract_best_images({"content": {}}) == ("", "", "")


class TestNormalize:
    """Tests for normalize()."""

    def test_full_row(self, smithsonian_row):
        item = adapter.normalize(smithsonian_row)

        assert item is not None
        assert item.id == "edanmdm-nmah_1234"
        assert item.source == "smithsonian"
        assert item.title == "Stoneware jug"
        assert item.museum == "National Museum of American History"
        assert item.rights == "CC0"
        assert item.url == "http://n2t.net/ark:/65665/ng49ca746a1-1234"
        assert item.thumbnail_url == item.media.thumbnail

    def test_dates(self, smithsonian_row):
        item = adapter.normalize(smithsonian_row)

        assert item.dates.published == "1850s"
        assert item.dates.collected == "1923"
        assert item.dates.display == "1923"
        assert item.filter_date == 1850
        assert item.century == "19th"

    def test_grouped_sections(self, smithsonian_row):
        item = adapter.normalize(smithsonian_row)

        assert [(c.role, c.names) for c in item.creators] == [
            ("Maker", ["Crolius, Clarkson", "Remmey, John"]),
            ("Owner", ["Smith, Jane"]),
        ]
        assert item.creators[0].display_text == "Crolius, Clarkson, Remmey, John"
        assert [d.title for d in item.descriptions] == ["Description", "Credit Line"]
        assert item.descriptions[0].paragraphs == [
            "Salt-glazed jug.",
            "Cobalt decoration.",
            "Impressed maker's mark.",
        ]
        assert item.identifiers[0].label == "ID Number"
        assert item.location.place == "New York, New York"

    def test_place_from_indexed_structured(self, smithsonian_row):
        del smithsonian_row["content"]["freetext"]["place"]

        item = adapter.normalize(smithsonian_row)

        assert item.location.place == "United States, New York"

    def test_dropped_without_images(self, smithsonian_search_payload):
        no_media = smithsonian_search_payload["response"]["rows"][1]
        assert adapter.normalize(no_media) is None

    def test_dropped_without_rights(self, smithsonian_row):
        dnr = smithsonian_row["content"]["descriptiveNonRepeating"]
        del dnr["metadata_usage"]
        del dnr["online_media"]["media"][0]["usage"]

        assert adapter.normalize(smithsonian_row) is None

    def test_untitled_default(self, smithsonian_row):
        del smithsonian_row["title"]
        del smithsonian_row["content"]["descriptiveNonRepeating"]["title"]

        assert adapter.normalize(smithsonian_row).title == "Untitled"

    def test_malformed_rows_never_raise(self):
        assert adapter.normalize(None) is None
        assert adapter.normalize("row") is None
        assert adapter.normalize({"id": "x", "content": "not a dict"}) is None

    def test_normalize_record_unwraps_response(self, smithsonian_row):
        item = adapter.normalize_record({"response": copy.deepcopy(smithsonian_row)})
        assert item.id == "edanmdm-nmah_1234"


class TestPayloadAccessors:
    """Tests for rows_of and total_of."""

    def test_rows_and_total(self, smithsonian_search_payload):
        assert len(adapter.rows_of(smithsonian_search_payload)) == 2
        assert adapter.total_of(smithsonian_search_payload) == 1234

    def test_missing_fields(self):
        assert adapter.rows_of({}) == []
        assert adapter.total_of({"response": {"rowCount": "many"}}) == 0
