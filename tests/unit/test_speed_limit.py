"""Unit tests for speed limit lookup and resolution."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from speedly.models import SpeedLimitRecord, SpeedLimitSource
from speedly.speed_limit import (
    ESTIMATE_CONFIDENCE,
    REMOTE_CONFIDENCE,
    SpeedLimitResolver,
    build_overpass_query,
    estimate_speed_limit,
    maxspeed_unit,
    parse_maxspeed,
    query_overpass_speed_limit,
)
from speedly.units import SpeedUnit

from conftest import BASE_LAT, BASE_TIME, DEG_PER_100M, make_fix


def _overpass_response(maxspeed):
    tags = {"highway": "primary"}
    if maxspeed is not None:
        tags["maxspeed"] = maxspeed
    return MagicMock(
        status_code=200,
        json=lambda: {"elements": [{"type": "way", "id": 1, "tags": tags}]},
        raise_for_status=lambda: None,
    )


class TestParseMaxspeed:
    @pytest.mark.parametrize("value", ["50", "50 mph", "50km/h", "50kmh", "50 km/h", " 50 "])
    def test_numeric_forms(self, value):
        assert parse_maxspeed(value) == 50

    @pytest.mark.parametrize("value", ["national", "none", "walk", "", "50;30", "RU:urban"])
    def test_unparsable(self, value):
        assert parse_maxspeed(value) is None

    def test_units(self):
        assert maxspeed_unit("30 mph") is SpeedUnit.IMPERIAL
        assert maxspeed_unit("30mph") is SpeedUnit.IMPERIAL
        assert maxspeed_unit("30") is SpeedUnit.METRIC
        assert maxspeed_unit("30 km/h") is SpeedUnit.METRIC


class TestOverpassQuery:
    def test_query_shape(self):
        query = build_overpass_query(50.1, 14.4)
        assert query.startswith("[out:json][timeout:5];")
        assert 'way(around:50,50.1,14.4)["highway"]["maxspeed"];' in query
        assert query.endswith("out tags 1;")

    @patch("requests.get")
    def test_request_parameters(self, mock_get):
        mock_get.return_value = _overpass_response("70")

        query_overpass_speed_limit(50.1, 14.4, BASE_TIME)

        _, kwargs = mock_get.call_args
        assert kwargs["timeout"] == 5.0
        assert kwargs["headers"]["User-Agent"] == "Speedly/1.0"
        assert "way(around:50,50.1,14.4)" in kwargs["params"]["data"]

    @patch("requests.get")
    def test_remote_record(self, mock_get):
        mock_get.return_value = _overpass_response("30 mph")

        record = query_overpass_speed_limit(50.1, 14.4, BASE_TIME)

        assert record.limit == 30
        assert record.unit is SpeedUnit.IMPERIAL
        assert record.source is SpeedLimitSource.REMOTE_LOOKUP
        assert record.confidence == REMOTE_CONFIDENCE
        assert record.detected_at == BASE_TIME

    @patch("requests.get")
    def test_no_elements(self, mock_get):
        mock_get.return_value = MagicMock(json=lambda: {"elements": []}, raise_for_status=lambda: None)
        assert query_overpass_speed_limit(50.1, 14.4, BASE_TIME) is None

    @patch("requests.get")
    def test_missing_tag(self, mock_get):
        mock_get.return_value = _overpass_response(None)
        assert query_overpass_speed_limit(50.1, 14.4, BASE_TIME) is None

    @patch("requests.get")
    def test_timeout(self, mock_get):
        mock_get.side_effect = requests.Timeout("timed out")
        assert query_overpass_speed_limit(50.1, 14.4, BASE_TIME) is None

    @patch("requests.get")
    def test_http_error(self, mock_get):
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("429 Too Many Requests")
        mock_get.return_value = response
        assert query_overpass_speed_limit(50.1, 14.4, BASE_TIME) is None

    @patch("requests.get")
    def test_invalid_json(self, mock_get):
        response = MagicMock(raise_for_status=lambda: None)
        response.json.side_effect = ValueError("Expecting value")
        mock_get.return_value = response
        assert query_overpass_speed_limit(50.1, 14.4, BASE_TIME) is None


class TestSpeedLimitResolver:
    @patch("requests.get")
    def test_remote_lookup(self, mock_get):
        mock_get.return_value = _overpass_response("80")
        resolver = SpeedLimitResolver()

        record = resolver.resolve(make_fix())

        assert record.limit == 80
        assert resolver.current is record
        assert resolver.effective_limit(SpeedUnit.METRIC) == 80
        assert resolver.effective_source() == "OpenStreetMap"

    @patch("requests.get")
    def test_unparsable_tag_falls_back_to_estimate(self, mock_get):
        mock_get.return_value = _overpass_response("national")
        resolver = SpeedLimitResolver()

        record = resolver.resolve(make_fix())

        assert record.source is SpeedLimitSource.ESTIMATED
        assert record.confidence == ESTIMATE_CONFIDENCE
        assert record.limit == 50
        assert resolver.effective_source() == "Estimated (Urban default)"

    @patch("requests.get")
    def test_network_error_falls_back_to_estimate(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("offline")
        resolver = SpeedLimitResolver()

        record = resolver.resolve(make_fix())

        assert record.source is SpeedLimitSource.ESTIMATED
        assert record.confidence == 0.3

    @patch("requests.get")
    def test_gate_closed_returns_cached_without_request(self, mock_get):
        mock_get.return_value = _overpass_response("80")
        resolver = SpeedLimitResolver()
        first = resolver.resolve(make_fix())

        second = resolver.resolve(make_fix(seconds=3))

        assert second is first
        assert mock_get.call_count == 1

    @patch("requests.get")
    def test_gate_reopens_after_interval_and_distance(self, mock_get):
        mock_get.side_effect = [_overpass_response("80"), _overpass_response("50")]
        resolver = SpeedLimitResolver()
        resolver.resolve(make_fix())

        record = resolver.resolve(make_fix(seconds=12, lat=BASE_LAT + 2 * DEG_PER_100M))

        assert record.limit == 50
        assert mock_get.call_count == 2

    @patch("requests.get")
    def test_poor_accuracy_skips_lookup(self, mock_get):
        resolver = SpeedLimitResolver()

        assert resolver.resolve(make_fix(accuracy=60.0)) is None
        mock_get.assert_not_called()

    @patch("requests.get")
    def test_manual_override_precedence(self, mock_get):
        resolver = SpeedLimitResolver()
        resolver.apply(
            SpeedLimitRecord(limit=50, source=SpeedLimitSource.REMOTE_LOOKUP, confidence=0.9, detected_at=BASE_TIME)
        )

        resolver.set_manual_limit(80)
        assert resolver.effective_limit(SpeedUnit.METRIC) == 80
        assert resolver.effective_source() == "Manual"
        assert resolver.current.limit == 50

        resolver.clear_manual_limit()
        assert resolver.effective_limit(SpeedUnit.METRIC) == 50
        mock_get.assert_not_called()

    def test_manual_limit_without_lookup(self):
        resolver = SpeedLimitResolver()
        assert resolver.effective_limit(SpeedUnit.METRIC) is None

        resolver.set_manual_limit(60)
        assert resolver.effective_limit(SpeedUnit.IMPERIAL) == 60
        assert resolver.manual_record.source is SpeedLimitSource.MANUAL_OVERRIDE

        resolver.set_manual_limit(0)
        assert resolver.effective_limit(SpeedUnit.METRIC) is None

    def test_negative_manual_limit_rejected(self):
        with pytest.raises(ValueError):
            SpeedLimitResolver().set_manual_limit(-10)

    def test_limit_converted_to_display_unit(self):
        resolver = SpeedLimitResolver()
        resolver.apply(estimate_speed_limit(BASE_TIME))

        assert resolver.effective_limit(SpeedUnit.METRIC) == 50
        assert resolver.effective_limit(SpeedUnit.IMPERIAL) == 31
