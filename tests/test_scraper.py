import json

import httpx
import pytest

from backend.booking.client import new_client
from backend.booking.config import HarvestConfig
from backend.booking.errors import NotFoundError, ParseError, StorageError, TransportError, ValidationError
from backend.booking.scraper import (
    Harvester,
    HarvestState,
    collect_booking,
    extract_property_details,
    save_final_data,
)
from backend.booking.storage import MongoStore
from backend.py_models.accommodation import DetailedProperty, SummaryProperty


def _row(name="Guesthouse Aisha", page="guesthouse-aisha"):
    return SummaryProperty(property_name=name, page_name=page, description="Listing blurb")


def _detail(url, item):
    return DetailedProperty(property_name=item.property_name, page_name=item.page_name, url=url)


def test_retry_then_success():
    calls = []

    def flaky(url, item):
        calls.append(url)
        if len(calls) < 3:
            raise TransportError("read timeout", url=url)
        return _detail(url, item)

    sleeps = []
    report = Harvester(flaky, sleep=sleeps.append).harvest([_row()])

    assert calls == ["https://www.booking.com/hotel/kz/guesthouse-aisha.html"] * 3
    # two backoffs, then the inter-item delay
    assert sleeps == [2.0, 4.0, 3.0]
    (res,) = report.results
    assert res.state is HarvestState.SUCCEEDED
    assert res.attempts == 3
    assert res.error is None
    assert report.records == [res.record]


def test_exhausted_item_does_not_stop_the_run():
    calls = {"broken-house": 0, "guesthouse-aisha": 0}

    def fetch(url, item):
        calls[item.page_name] += 1
        if item.page_name == "broken-house":
            raise NotFoundError("no apollo store found in page", url=url)
        return _detail(url, item)

    sleeps = []
    report = Harvester(fetch, sleep=sleeps.append).harvest([_row("Broken House", "broken-house"), _row()])

    assert calls == {"broken-house": 3, "guesthouse-aisha": 1}
    assert sleeps == [2.0, 4.0, 3.0]
    first, second = report.results
    assert first.state is HarvestState.EXHAUSTED
    assert first.attempts == 3
    assert isinstance(first.error, NotFoundError)
    assert first.record is None
    assert second.state is HarvestState.SUCCEEDED
    assert (report.succeeded, report.failed) == (1, 1)


def test_row_without_page_name_is_exhausted_without_fetching():
    def fetch(url, item):
        raise AssertionError("should not fetch")

    report = Harvester(fetch, sleep=lambda s: None).harvest([_row(page="")])
    (res,) = report.results
    assert res.state is HarvestState.EXHAUSTED
    assert res.attempts == 0


def test_unexpected_errors_propagate():
    def fetch(url, item):
        raise KeyError("bug")

    with pytest.raises(KeyError):
        Harvester(fetch, sleep=lambda s: None).harvest([_row()])


def test_backoff_scales_with_config():
    sleeps = []

    def fetch(url, item):
        raise ParseError("parse json: bad")

    Harvester(fetch, max_attempts=4, backoff_unit=0.5, sleep=sleeps.append).harvest([_row()])
    assert sleeps == [0.5, 1.0, 1.5]


def test_save_final_data_overwrites(tmp_path):
    out = tmp_path / "final_data.json"
    out.write_text("[\"stale\", \"entries\"]", encoding="utf-8")
    save_final_data([DetailedProperty(property_name="Юрта", page_name="yurt")], out)
    data = json.loads(out.read_text(encoding="utf-8"))
    assert len(data) == 1
    assert data[0]["property_name"] == "Юрта"
    assert data[0]["photos"] == []
    assert "Юрта" in out.read_text(encoding="utf-8")


def test_collect_booking_end_to_end(tmp_path, fake_db, booking_site):
    transport, hits = booking_site
    config = HarvestConfig(
        summary_url="https://www.booking.com/searchresults.html?dest_id=-2335204&dest_type=city",
        backup_path=str(tmp_path / "final_data.json"),
    )
    store = MongoStore(fake_db, workers=2)
    sleeps = []

    with new_client(transport=transport) as client:
        summary = collect_booking(config, client, store=store, sleep=sleeps.append)

    assert (summary.listed, summary.succeeded, summary.failed) == (2, 1, 1)
    assert hits["/hotel/kz/broken-house.html"] == 3
    assert sleeps == [3.0, 2.0, 4.0]

    assert summary.persisted.inserted == 1
    (doc,) = fake_db["accommodations"].docs
    assert doc["external_id"] == "guesthouse-aisha"
    assert doc["service_description"] == "Listing blurb"
    assert doc["rating"] == 8.7
    assert doc["amenities"] == {"wifi": True, "parking": True}

    backup = json.loads((tmp_path / "final_data.json").read_text(encoding="utf-8"))
    assert [r["page_name"] for r in backup] == ["guesthouse-aisha"]
    assert backup[0]["accommodation_type"] == "Guesthouse"
    assert backup[0]["inspection_status"] == "New"
    assert backup[0]["url"] == "https://www.booking.com/hotel/kz/guesthouse-aisha.html"


def test_collect_booking_fails_when_listing_page_is_unusable(tmp_path):
    def handler(request):
        return httpx.Response(200, stream=httpx.ByteStream(b"<html><body>captcha</body></html>"))

    config = HarvestConfig(summary_url="https://www.booking.com/searchresults.html", backup_path=str(tmp_path / "b.json"))
    with new_client(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(NotFoundError):
            collect_booking(config, client, sleep=lambda s: None)
    assert not (tmp_path / "b.json").exists()


def test_blank_page_name_is_skipped_and_the_run_continues():
    seen = []

    def fetch(url, item):
        seen.append(item.page_name)
        return _detail(url, item)

    report = Harvester(fetch, sleep=lambda s: None).harvest([_row("Blank", "   "), _row("Ok", "ok")])

    assert seen == ["ok"]
    blank, ok = report.results
    assert blank.state is HarvestState.EXHAUSTED
    assert blank.attempts == 0
    assert ok.state is HarvestState.SUCCEEDED


def test_non_retryable_error_is_attempted_once():
    calls = []

    def fetch(url, item):
        calls.append(url)
        raise ValidationError("bad record", url=url)

    sleeps = []
    report = Harvester(fetch, sleep=sleeps.append).harvest([_row()])

    assert len(calls) == 1
    assert sleeps == []
    (res,) = report.results
    assert res.state is HarvestState.EXHAUSTED
    assert res.attempts == 1
    assert isinstance(res.error, ValidationError)


def test_backup_is_written_before_the_store_fails(tmp_path, booking_site):
    class DownStore:
        def persist_batch(self, records):
            raise StorageError("connection reset")

    transport, _ = booking_site
    config = HarvestConfig(
        summary_url="https://www.booking.com/searchresults.html",
        backup_path=str(tmp_path / "final_data.json"),
        max_attempts=1,
    )
    with new_client(transport=transport) as client:
        with pytest.raises(StorageError):
            collect_booking(config, client, store=DownStore(), sleep=lambda s: None)

    backup = json.loads((tmp_path / "final_data.json").read_text(encoding="utf-8"))
    assert [r["page_name"] for r in backup] == ["guesthouse-aisha"]


def test_detail_without_basic_data_keeps_listing_identity(apollo_page):
    graph = {"GenericFacilityHighlight:1": {"title": "Garden"}}

    def handler(request):
        return httpx.Response(200, stream=httpx.ByteStream(apollo_page(graph).encode("utf-8")))

    url = "https://www.booking.com/hotel/kz/guesthouse-aisha.html"
    with new_client(transport=httpx.MockTransport(handler)) as client:
        rec = extract_property_details(
            client, url, "Listing blurb", default_name="Guesthouse Aisha", default_page_name="guesthouse-aisha"
        )

    assert rec.property_name == "Guesthouse Aisha"
    assert rec.page_name == "guesthouse-aisha"
    assert rec.facilities == ["Garden"]
    assert rec.url == url
