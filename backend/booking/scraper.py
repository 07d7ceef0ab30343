import json
import logging
import time
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

import httpx

from backend.booking.client import fetch_html
from backend.booking.config import HarvestConfig
from backend.booking.errors import NotFoundError, ScrapeError
from backend.booking.filters import build_detail_url
from backend.booking.parsing import classify_detail, locate_apollo_blob, parse_graph, parse_summary
from backend.booking.storage import MongoStore, PersistSummary
from backend.py_models.accommodation import DetailedProperty, SummaryProperty

log = logging.getLogger("booking")


# --- single page pipelines ---------------------------------------------------

def fetch_graph(client: httpx.Client, url: str, cookie: Optional[str] = None) -> dict:
    """Fetch → locate the Apollo blob → parse it."""
    html = fetch_html(client, url, cookie=cookie)
    return parse_graph(locate_apollo_blob(html))


def fetch_summary(client: httpx.Client, url: str, cookie: Optional[str] = None) -> List[SummaryProperty]:
    return parse_summary(fetch_graph(client, url, cookie=cookie))


def extract_property_details(
    client: httpx.Client,
    url: str,
    default_description: Optional[str] = None,
    default_rating: Optional[str] = None,
    default_count: Optional[int] = None,
    default_name: str = "",
    default_page_name: str = "",
) -> DetailedProperty:
    graph = fetch_graph(client, url)
    detail = classify_detail(
        graph,
        default_description,
        default_rating,
        default_count,
        default_name=default_name,
        default_page_name=default_page_name,
    )
    detail.url = url
    detail.inspection_status = "New"
    detail.last_updated = date.today().isoformat()
    return detail


# --- harvest loop ------------------------------------------------------------

class HarvestState(str, Enum):
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


@dataclass
class HarvestResult:
    reference: SummaryProperty
    url: Optional[str]
    state: HarvestState = HarvestState.ATTEMPTING
    attempts: int = 0
    error: Optional[ScrapeError] = None
    record: Optional[DetailedProperty] = None


@dataclass
class HarvestReport:
    results: List[HarvestResult] = field(default_factory=list)

    @property
    def records(self) -> List[DetailedProperty]:
        return [r.record for r in self.results if r.state is HarvestState.SUCCEEDED and r.record is not None]

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.state is HarvestState.SUCCEEDED)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.state is HarvestState.EXHAUSTED)


# (detail url, listing row) -> detail record
DetailFetcher = Callable[[str, SummaryProperty], DetailedProperty]


class Harvester:
    """
    Turns listing rows into detail records, one row at a time.

    Each row runs a small state machine: ATTEMPTING → (BACKOFF → ATTEMPTING)* →
    SUCCEEDED | EXHAUSTED. Backoff after attempt k waits ``backoff_unit * k``;
    a success is followed by ``item_delay`` before the next row. All waits go
    through `sleep`, so tests can pass a recorder instead of time.sleep.
    """

    def __init__(
        self,
        fetch_detail: DetailFetcher,
        *,
        country: str = "kz",
        max_attempts: int = 3,
        backoff_unit: float = 2.0,
        item_delay: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger = log,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.fetch_detail = fetch_detail
        self.country = country
        self.max_attempts = max_attempts
        self.backoff_unit = backoff_unit
        self.item_delay = item_delay
        self.sleep = sleep
        self.log = logger

    @classmethod
    def from_client(cls, client: httpx.Client, config: HarvestConfig, sleep: Callable[[float], None] = time.sleep):
        def _fetch(url: str, item: SummaryProperty) -> DetailedProperty:
            return extract_property_details(
                client,
                url,
                item.description,
                item.reviews_ratings,
                item.reviews_count,
                default_name=item.property_name,
                default_page_name=item.page_name,
            )

        return cls(
            _fetch,
            country=config.country,
            max_attempts=config.max_attempts,
            backoff_unit=config.backoff_unit,
            item_delay=config.item_delay,
            sleep=sleep,
        )

    def harvest_item(self, item: SummaryProperty) -> HarvestResult:
        if not item.page_name.strip():
            err = NotFoundError(f"no page name for {item.property_name!r}")
            return HarvestResult(reference=item, url=None, state=HarvestState.EXHAUSTED, error=err)

        url = build_detail_url(item.page_name, self.country)
        result = HarvestResult(reference=item, url=url)
        while result.state not in (HarvestState.SUCCEEDED, HarvestState.EXHAUSTED):
            if result.state is HarvestState.ATTEMPTING:
                result.attempts += 1
                try:
                    result.record = self.fetch_detail(url, item)
                except ScrapeError as exc:
                    result.error = exc
                    self.log.warning(
                        "Attempt %d/%d failed for %s: %s", result.attempts, self.max_attempts, url, exc
                    )
                    if exc.retryable and result.attempts < self.max_attempts:
                        result.state = HarvestState.BACKOFF
                    else:
                        result.state = HarvestState.EXHAUSTED
                else:
                    result.error = None
                    result.state = HarvestState.SUCCEEDED
            elif result.state is HarvestState.BACKOFF:
                wait = self.backoff_unit * result.attempts
                self.log.info("Retrying in %ss...", wait)
                self.sleep(wait)
                result.state = HarvestState.ATTEMPTING
        return result

    def harvest(self, items: List[SummaryProperty]) -> HarvestReport:
        report = HarvestReport()
        total = len(items)
        for idx, item in enumerate(items, start=1):
            self.log.info("[%d/%d] Processing property: %s", idx, total, item.property_name)
            res = self.harvest_item(item)
            report.results.append(res)
            if res.state is HarvestState.SUCCEEDED:
                # be gentle with the site between properties
                self.sleep(self.item_delay)
            else:
                self.log.error(
                    "Skipping %s after %d attempts: %s",
                    item.page_name or item.property_name,
                    res.attempts,
                    res.error,
                )

        self.log.info(
            "Parsing completed: %d successful, %d failed out of %d total",
            report.succeeded, report.failed, total,
        )
        return report


# --- backup ------------------------------------------------------------------

def save_final_data(records: List[DetailedProperty], path: str | Path = "final_data.json") -> Path:
    """Overwrite `path` with the records as a pretty-printed JSON array."""
    out_path = Path(path)
    if not records:
        log.warning("No data to save (%s will be empty).", out_path)
    rows = [r.model_dump(mode="json") for r in records]
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(rows, f, indent=2, ensure_ascii=False)
    log.info("Saved %d properties to %s", len(rows), out_path)
    return out_path


# --- full run ----------------------------------------------------------------

@dataclass
class RunSummary:
    listed: int = 0
    succeeded: int = 0
    failed: int = 0
    persisted: Optional[PersistSummary] = None
    backup_path: Optional[Path] = None
    duration: float = 0.0


def collect_booking(
    config: HarvestConfig,
    client: httpx.Client,
    store: Optional[MongoStore] = None,
    sleep: Callable[[float], None] = time.sleep,
    summary_url: Optional[str] = None,
    max_items: Optional[int] = None,
) -> RunSummary:
    """
    Search page → detail harvest → storage + JSON backup.

    Failing to read the search page is fatal and propagates; failures on single
    properties are counted in the summary instead.
    """
    started = time.monotonic()
    url = summary_url or config.summary_url

    properties = fetch_summary(client, url, cookie=config.session_cookie)
    log.info("Found %d properties from summary page", len(properties))
    if not properties:
        raise NotFoundError("No properties found on summary page", url=url)
    if max_items:
        properties = properties[:max_items]

    report = Harvester.from_client(client, config, sleep=sleep).harvest(properties)
    records = report.records
    summary = RunSummary(listed=len(properties), succeeded=report.succeeded, failed=report.failed)

    if records:
        # backup before the database write
        summary.backup_path = save_final_data(records, config.backup_path)
        if store is not None:
            log.info("Saving %d properties to database...", len(records))
            summary.persisted = store.persist_batch(records)
    else:
        log.warning("No valid property details were parsed.")

    summary.duration = time.monotonic() - started
    log.info("=== PARSING COMPLETED === %d properties in %.1fs", len(records), summary.duration)
    return summary
