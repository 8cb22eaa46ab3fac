"""Tests for booth loading, ranking and answer formatting."""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from booths import (
    booth_answer,
    format_booth_result,
    get_all_booths,
    get_directions_url,
    haversine_km,
    is_booth_query,
    load_booths,
    nearest_booth_answer,
    search_booths,
    search_nearest_booths,
    station_number_in,
)


class TestLoadBooths:
    def test_bundled_dataset(self):
        booths = get_all_booths()
        assert len(booths) == 10
        assert [b.station_number for b in booths] == list(range(1, 11))

    def test_record_fields_parsed_from_content(self):
        booth = get_all_booths()[4]
        assert booth.title == "CMS College High School Chungam"
        assert booth.landmark == "Near Chungam Bridge"
        assert booth.area_localized == "ചുങ്കം"
        assert booth.lat == pytest.approx(9.5971)
        assert booth.lng == pytest.approx(76.5262)

    def test_loaded_once(self):
        assert get_all_booths() is get_all_booths()

    def test_custom_path(self, tmp_path: Path):
        data = [{
            "id": "b-1",
            "title": "Test School",
            "content": "Located at 9.5 N, 76.5 E. Landmark: Near the well.",
            "tags": [77, "kottayam", "test", 5],
        }]
        path = tmp_path / "booths.json"
        path.write_text(json.dumps(data), encoding="utf-8")

        (booth,) = load_booths(str(path))
        assert booth.station_number == 77
        assert booth.landmark == "Near the well"
        assert booth.area_localized == ""
        assert (booth.lat, booth.lng) == (9.5, 76.5)

    def test_missing_coordinates_default_to_zero(self, tmp_path: Path):
        path = tmp_path / "booths.json"
        path.write_text(json.dumps([{"id": "b-2", "title": "X", "content": "no gps", "tags": [1]}]))

        (booth,) = load_booths(str(path))
        assert (booth.lat, booth.lng) == (0.0, 0.0)


class TestStationNumber:
    @pytest.mark.parametrize(
        "query,expected",
        [
            ("booth 5", 5),
            ("Polling Station 12", 12),
            ("my booth number is 7", 7),
            ("No. 3", 3),
            ("8", 8),
            ("where is thellakom school", None),
        ],
    )
    def test_patterns(self, query: str, expected: int | None):
        assert station_number_in(query) == expected


class TestSearchBooths:
    def test_exact_station_number_short_circuits(self):
        results = search_booths("booth 5")
        assert [b.station_number for b in results] == [5]

    def test_bare_number(self):
        assert [b.station_number for b in search_booths("9")] == [9]

    def test_unknown_station_number_falls_back_to_scoring(self):
        assert search_booths("booth 42") == []

    def test_text_match_ties_keep_dataset_order(self):
        results = search_booths("Thellakom")
        assert [b.station_number for b in results] == [1, 2]

    def test_landmark_match(self):
        results = search_booths("chungam bridge")
        assert results[0].station_number == 5

    def test_malayalam_area_name(self):
        results = search_booths("ചുങ്കം ബൂത്ത്")
        assert results[0].station_number == 5

    def test_max_results(self):
        assert len(search_booths("kottayam", max_results=3)) == 3

    def test_non_positive_max_results(self):
        assert search_booths("kottayam", max_results=0) == []
        assert search_booths("kottayam", max_results=-2) == []
        assert search_booths("station 5", max_results=-1) == []

    def test_no_match(self):
        assert search_booths("xyzzy") == []

    def test_empty_query(self):
        assert search_booths("") == []
        assert search_booths("   ") == []

    def test_explicit_corpus(self):
        corpus = get_all_booths()[:2]
        results = search_booths("pallom", booths=corpus)
        assert results == []


class TestNearest:
    def test_haversine_one_degree_longitude_at_equator(self):
        assert haversine_km(0, 0, 0, 1) == pytest.approx(111.19, abs=0.01)

    def test_nearest_first(self):
        results = search_nearest_booths(9.5971, 76.5262)
        booth, distance = results[0]
        assert booth.station_number == 5
        assert distance == pytest.approx(0.0, abs=1e-6)
        distances = [d for _, d in results]
        assert distances == sorted(distances)

    def test_max_distance(self):
        assert search_nearest_booths(0.0, 0.0) == []

    def test_negative_max_results(self):
        assert search_nearest_booths(9.5971, 76.5262, max_results=-1) == []


class TestIsBoothQuery:
    @pytest.mark.parametrize(
        "text",
        ["Where is my booth?", "polling station near me", "where do I vote", "എന്റെ ബൂത്ത് എവിടെ", "12"],
    )
    def test_booth_queries(self, text: str):
        assert is_booth_query(text)

    def test_non_booth_query(self):
        assert not is_booth_query("How do I register as a new voter?")


class TestRendering:
    def test_directions_url(self):
        assert (
            get_directions_url(9.6384, 76.5367)
            == "https://www.google.com/maps/dir/?api=1&destination=9.6384,76.5367"
        )

    def test_format_english(self):
        text = format_booth_result(get_all_booths()[4], "en", distance_km=1.234)
        assert "Polling Station 5" in text
        assert "Near Chungam Bridge" in text
        assert "1.2 km" in text

    def test_format_malayalam(self):
        text = format_booth_result(get_all_booths()[4], "ml")
        assert "പോളിംഗ് സ്റ്റേഷൻ 5" in text


class TestBoothAnswer:
    def test_single_station(self):
        answer = booth_answer("booth 5", "en")
        assert answer.confidence == 0.95
        assert answer.escalate is False
        assert answer.model == "booth-locator"
        assert "Polling Station 5 Details" in answer.text
        assert answer.sources[0].url == "https://kottayam.nic.in/en/election/"

    def test_multiple_stations(self):
        answer = booth_answer("thellakom booth", "en")
        assert "2 matching polling stations found" in answer.text

    def test_station_not_found(self):
        answer = booth_answer("booth 42", "en")
        assert answer.confidence == 0.9
        assert "Booth number 42 was not found" in answer.text

    def test_no_answer_defers(self):
        assert booth_answer("which booth", "en") is None

    def test_nearest_answer(self):
        answer = nearest_booth_answer(9.5971, 76.5262, "en")
        assert answer is not None
        assert "nearest polling stations" in answer.text
        assert "0.0 km" in answer.text

    def test_nearest_answer_nothing_nearby(self):
        assert nearest_booth_answer(0.0, 0.0, "en") is None
