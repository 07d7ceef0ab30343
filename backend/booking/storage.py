import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional

import pydantic
from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

from backend.booking.errors import ScrapeError, StorageError, ValidationError
from backend.booking.filters import build_detail_url
from backend.py_models.accommodation import AccommodationDocument, DetailedProperty, Review

log = logging.getLogger("booking")

SOURCE_WEBSITE = "booking"

# first matching rule wins for each facility name
_AMENITY_RULES = (
    (("wifi", "internet"), "wifi"),
    (("parking",), "parking"),
    (("pool", "swimming"), "pool"),
    (("gym", "fitness"), "gym"),
    (("spa", "wellness"), "spa"),
    (("restaurant", "dining"), "restaurant"),
    (("bar", "lounge"), "bar"),
    (("breakfast",), "breakfast"),
    (("room service",), "room_service"),
    (("laundry",), "laundry"),
    (("air conditioning", "a/c"), "ac"),
    (("heating",), "heating"),
    (("tv", "television"), "tv"),
    (("minibar",), "minibar"),
    (("safe",), "safe"),
    (("balcony", "terrace"), "balcony"),
    (("kitchen", "kitchenette"), "kitchen"),
    (("pet", "animal"), "pets_allowed"),
    (("wheelchair", "accessible"), "disabled_access"),
)

_rating_re = re.compile(r"^\s*([+-]?\d+(?:\.\d+)?)")


# --- record → document -------------------------------------------------------

def sanitize(s: str) -> str:
    """Replace control characters with spaces and trim."""
    return "".join(ch if ord(ch) >= 32 and ord(ch) != 127 else " " for ch in s.replace("\x00", "")).strip()


def facilities_to_amenities(facilities: Iterable[str]) -> Optional[dict]:
    amenities: dict[str, bool] = {}
    for facility in facilities:
        clean = sanitize(facility).lower()
        for needles, flag in _AMENITY_RULES:
            if any(n in clean for n in needles):
                amenities[flag] = True
                break
    return amenities or None


def parse_rating(text: Optional[str]) -> Optional[float]:
    """'8.7' → 8.7; anything unparsable or outside 0–10 → None."""
    if not text:
        return None
    m = _rating_re.match(text)
    if not m:
        return None
    val = float(m.group(1))
    return val if 0 <= val <= 10 else None


def _reviews_json(reviews: List[Review], rating: Optional[str], count: Optional[int]) -> dict:
    return {
        "general_rating": parse_rating(rating) or 0.0,
        "general_review_count": count or 0,
        "detailed_reviews": [r.model_dump() for r in reviews],
        "source": SOURCE_WEBSITE,
    }


def to_document(
    record: DetailedProperty,
    source_website: str = SOURCE_WEBSITE,
    external_id: Optional[str] = None,
    country: str = "kz",
) -> AccommodationDocument:
    """Map a detail record to the stored shape; ValidationError if it does not fit."""
    website_url = build_detail_url(record.page_name, country) if record.page_name.strip() else None
    try:
        return AccommodationDocument(
            name=record.property_name,
            latitude=record.latitude or None,
            longitude=record.longitude or None,
            address=record.address or None,
            accommodation_type=record.accommodation_type or None,
            service_description=record.description or None,
            website_url=website_url,
            photos=list(record.photos) or None,
            rating=parse_rating(record.reviews_ratings),
            review_count=record.reviews_count or None,
            reviews=_reviews_json(record.reviews, record.reviews_ratings, record.reviews_count),
            amenities=facilities_to_amenities(record.facilities),
            verification_status="new",
            source_website=source_website,
            source_url=website_url,
            external_id=external_id if external_id is not None else record.page_name.strip(),
        )
    except pydantic.ValidationError as exc:
        raise ValidationError(f"invalid record {record.page_name!r}: {exc}", url=record.url) from exc


# --- store -------------------------------------------------------------------

class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"


@dataclass
class PersistSummary:
    total: int = 0
    inserted: int = 0
    updated: int = 0
    failed: int = 0
    errors: List[tuple[str, str]] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return self.inserted + self.updated


class MongoStore:
    """
    accommodations: one document per (source_website, external_id), upserted.
    parsing_logs: one activity row per write attempt.
    """

    def __init__(self, db, *, country: str = "kz", workers: int = 4, logger: logging.Logger = log):
        self.accommodations = db["accommodations"]
        self.parsing_logs = db["parsing_logs"]
        self.country = country
        self.workers = max(1, workers)
        self.log = logger
        self._client: Optional[MongoClient] = None

    @classmethod
    def connect(cls, uri: str, db_name: str, **kwargs) -> "MongoStore":
        client = MongoClient(uri, serverSelectionTimeoutMS=5000)
        try:
            client.admin.command("ping")
        except PyMongoError as exc:
            client.close()
            raise StorageError(f"failed to connect to MongoDB: {exc}") from exc
        store = cls(client[db_name], **kwargs)
        store._client = client
        store.ensure_indexes()
        store.log.info("MongoDB connection established (db=%s)", db_name)
        return store

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def ensure_indexes(self) -> None:
        self.accommodations.create_index(
            [("source_website", ASCENDING), ("external_id", ASCENDING)], unique=True
        )

    def log_activity(
        self,
        source_website: str,
        operation: str,
        status: str,
        duration_ms: int,
        error_message: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> None:
        """Best effort: a failed log write is reported and swallowed."""
        completed = datetime.now(timezone.utc)
        try:
            self.parsing_logs.insert_one({
                "source_website": source_website,
                "operation": operation,
                "status": status,
                "error_message": error_message,
                "duration_ms": duration_ms,
                "completed_at": completed,
                "external_id": external_id,
            })
        except PyMongoError as exc:
            self.log.error("Failed to log %s for %s: %s", operation, external_id, exc)

    def upsert(
        self,
        record: DetailedProperty,
        source_website: str = SOURCE_WEBSITE,
        external_id: Optional[str] = None,
    ) -> UpsertOutcome:
        started = time.monotonic()
        external_id = external_id if external_id is not None else record.page_name.strip()

        def _ms() -> int:
            return int((time.monotonic() - started) * 1000)

        self.log.debug("Processing property: %s, Address: %s", record.property_name, record.address)
        try:
            doc = to_document(record, source_website, external_id, country=self.country)
        except ValidationError as exc:
            self.log.error("Invalid data for property %s: %s", external_id, exc)
            self.log_activity(source_website, "insert", "failed", _ms(), f"Invalid data: {exc}", external_id)
            raise

        now = datetime.now(timezone.utc)
        try:
            res = self.accommodations.update_one(
                {"source_website": source_website, "external_id": external_id},
                {"$set": {**doc.model_dump(), "last_updated": now}, "$setOnInsert": {"created_at": now}},
                upsert=True,
            )
        except PyMongoError as exc:
            self.log.error("Failed to upsert property %s: %s", external_id, exc)
            self.log_activity(source_website, "insert", "failed", _ms(), f"Database error: {exc}", external_id)
            raise StorageError(f"failed to upsert {external_id!r}: {exc}") from exc

        outcome = UpsertOutcome.INSERTED if res.upserted_id is not None else UpsertOutcome.UPDATED
        self.log.info("Successfully %s accommodation: %s (PageName: %s)", outcome.value, record.property_name, external_id)
        self.log_activity(source_website, outcome.value, "success", _ms(), external_id=external_id)
        return outcome

    def _persist_one(self, record: DetailedProperty) -> tuple[DetailedProperty, Optional[UpsertOutcome], Optional[ScrapeError]]:
        try:
            return record, self.upsert(record), None
        except (ValidationError, StorageError) as exc:
            return record, None, exc

    def persist_batch(self, records: List[DetailedProperty]) -> PersistSummary:
        """
        Upsert every record on a fixed pool of worker threads and wait for all of them.
        One bad record is counted as failed; the rest of the batch still goes through.
        """
        summary = PersistSummary(total=len(records))
        if not records:
            return summary

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="persist") as pool:
            futures = [pool.submit(self._persist_one, r) for r in records]
            for fut in futures:
                record, outcome, error = fut.result()
                if outcome is UpsertOutcome.INSERTED:
                    summary.inserted += 1
                elif outcome is UpsertOutcome.UPDATED:
                    summary.updated += 1
                else:
                    summary.failed += 1
                    summary.errors.append((record.page_name, str(error)))

        self.log.info(
            "Booking processing completed: %d successful, %d failed out of %d total",
            summary.succeeded, summary.failed, summary.total,
        )
        return summary
