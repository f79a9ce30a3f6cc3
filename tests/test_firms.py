"""Tests for FIRMS CSV parsing, confidence scoring and the feed client."""

import httpx
import pytest

from app.core.errors import FeedFetchError
from app.services.firms import Detection, FirmsClient, confidence_score, parse_firms_csv

from conftest import VIIRS_HEADER, viirs_csv, viirs_row


class TestParseFirmsCsv:
    """CSV decoding into Detection records."""

    def test_parses_rows_in_file_order(self):
        text = viirs_csv(viirs_row(30.1, 79.2, "h"), viirs_row(22.5, 78.0, "n", acq_time="0930"))

        dets = parse_firms_csv(text)

        assert [d.latitude for d in dets] == [30.1, 22.5]
        first = dets[0]
        assert first.longitude == 79.2
        assert first.bright_ti4 == 330.0
        assert first.acq_date == "2024-03-01"
        assert first.acq_time == "0812"
        assert first.satellite == "N"
        assert first.confidence == "h"
        assert first.daynight == "D"
        assert first.frp == 12.3

    def test_missing_columns_keep_defaults(self):
        text = "latitude,longitude,confidence\n25.0,75.0,low\n"

        (det,) = parse_firms_csv(text)

        assert det.brightness == 0.0
        assert det.bright_ti4 == 0.0
        assert det.acq_date == ""
        assert det.type == 0

    def test_zero_coordinates_are_dropped(self):
        text = viirs_csv(viirs_row(0, 77.0), viirs_row(25.0, 0), viirs_row(25.0, 77.0))

        dets = parse_firms_csv(text)

        assert len(dets) == 1
        assert dets[0].latitude == 25.0

    def test_unparseable_coordinates_are_dropped(self):
        text = viirs_csv(viirs_row("abc", 77.0), viirs_row(25.0, ""), viirs_row("nan", 77.0), viirs_row(26.0, 78.0))

        dets = parse_firms_csv(text)

        assert [d.latitude for d in dets] == [26.0]

    def test_out_of_range_coordinates_are_dropped(self):
        text = viirs_csv(viirs_row(95.0, 77.0), viirs_row(25.0, 181.0), viirs_row(-90.5, 77.0), viirs_row(90.0, 180.0))

        dets = parse_firms_csv(text)

        assert [(d.latitude, d.longitude) for d in dets] == [(90.0, 180.0)]

    def test_short_rows_do_not_raise(self):
        text = VIIRS_HEADER + "\nIND,24.0,76.0\n"

        (det,) = parse_firms_csv(text)

        assert det.latitude == 24.0
        assert det.confidence == ""

    def test_header_whitespace_and_bom(self):
        text = "\ufeff latitude , longitude ,brightness\n21.5,80.0,350\n"

        (det,) = parse_firms_csv(text)

        assert det.latitude == 21.5
        assert det.brightness == 350.0

    def test_blank_lines_are_skipped(self):
        text = viirs_csv(viirs_row(25.0, 77.0)) + "\n\n"

        assert len(parse_firms_csv(text)) == 1

    @pytest.mark.parametrize("text", ["", "   \n", VIIRS_HEADER + "\n"])
    def test_empty_input(self, text):
        assert parse_firms_csv(text) == []

    def test_properties_carry_raw_fields(self):
        (det,) = parse_firms_csv(viirs_csv(viirs_row(25.0, 77.0, "h")))

        props = det.properties()

        assert props["confidence_str"] == "h"
        assert props["acq_date"] == "2024-03-01"
        assert props["bright_ti4"] == 330.0


class TestConfidenceScore:
    """Label mapping and brightness fallback."""

    @pytest.mark.parametrize(
        "label,expected",
        [
            ("high", 0.90),
            ("HIGH", 0.90),
            ("Nominal", 0.75),
            ("nominal", 0.75),
            ("low", 0.50),
            ("LoW", 0.50),
            ("h", 0.90),
            ("n", 0.75),
            ("l", 0.50),
        ],
    )
    def test_labels(self, label, expected):
        assert confidence_score(Detection(confidence=label, brightness=999)) == expected

    def test_brightness_ratio(self):
        assert confidence_score(Detection(confidence="85", brightness=200)) == pytest.approx(0.5)

    def test_brightness_is_capped(self):
        assert confidence_score(Detection(brightness=800)) == 1.0

    def test_viirs_channel_stands_in_for_brightness(self):
        assert confidence_score(Detection(bright_ti4=300)) == pytest.approx(0.75)

    def test_no_signal_scores_zero(self):
        assert confidence_score(Detection()) == 0.0


def _client(handler, api_key="KEY") -> FirmsClient:
    return FirmsClient(
        api_key=api_key,
        base_url="https://firms.example/api/country/csv/",
        source="VIIRS_SNPP_NRT",
        area="IND",
        days=2,
        transport=httpx.MockTransport(handler),
    )


class TestFirmsClient:
    """Feed fetch behavior against a mocked FIRMS endpoint."""

    def test_url_layout(self):
        client = _client(lambda r: httpx.Response(200))
        assert client.url() == "https://firms.example/api/country/csv/KEY/VIIRS_SNPP_NRT/IND/2"

    @pytest.mark.asyncio
    async def test_fetch_returns_body(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, text=viirs_csv(viirs_row(25.0, 77.0)))

        text = await _client(handler).fetch_csv()

        assert seen == ["/api/country/csv/KEY/VIIRS_SNPP_NRT/IND/2"]
        assert len(parse_firms_csv(text)) == 1

    @pytest.mark.asyncio
    async def test_missing_key_raises(self):
        client = _client(lambda r: httpx.Response(200), api_key="")
        assert client.configured is False
        with pytest.raises(FeedFetchError, match="NASA_FIRMS_API_KEY"):
            await client.fetch_csv()

    @pytest.mark.asyncio
    async def test_http_error_status_raises(self):
        client = _client(lambda r: httpx.Response(503, text="down"))
        with pytest.raises(FeedFetchError, match="503"):
            await client.fetch_csv()

    @pytest.mark.asyncio
    async def test_rejected_key_body_raises(self):
        client = _client(lambda r: httpx.Response(200, text="Invalid MAP_KEY."))
        with pytest.raises(FeedFetchError, match="rejected"):
            await client.fetch_csv()

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(FeedFetchError, match="request failed"):
            await _client(handler).fetch_csv()
