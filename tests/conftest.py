import json
import threading

import httpx
import pytest


class FakeUpdateResult:
    def __init__(self, upserted_id=None, matched_count=0):
        self.upserted_id = upserted_id
        self.matched_count = matched_count


class FakeCollection:
    """Just enough of pymongo's Collection for MongoStore."""

    def __init__(self):
        self.docs = []
        self.indexes = []
        self._next_id = 1
        self._lock = threading.Lock()

    def create_index(self, keys, unique=False):
        self.indexes.append((keys, unique))
        return "_".join(k for k, _ in keys)

    def insert_one(self, doc):
        with self._lock:
            doc = dict(doc, _id=self._next_id)
            self._next_id += 1
            self.docs.append(doc)

    def update_one(self, flt, update, upsert=False):
        with self._lock:
            for doc in self.docs:
                if all(doc.get(k) == v for k, v in flt.items()):
                    doc.update(update.get("$set", {}))
                    return FakeUpdateResult(None, 1)
            if not upsert:
                return FakeUpdateResult(None, 0)
            doc = {**flt, **update.get("$set", {}), **update.get("$setOnInsert", {}), "_id": self._next_id}
            self._next_id += 1
            self.docs.append(doc)
            return FakeUpdateResult(doc["_id"], 0)


@pytest.fixture
def fake_db():
    return {"accommodations": FakeCollection(), "parsing_logs": FakeCollection()}


@pytest.fixture
def apollo_page():
    """Wrap one or more graphs in <script data-capla-store-data="apollo"> tags."""

    def _page(*graphs):
        scripts = "\n".join(
            f'<script data-capla-store-data="apollo" type="application/json">\n  {json.dumps(g)}\n</script>'
            for g in graphs
        )
        return f"<!DOCTYPE html><html><head><title>t</title></head><body>{scripts}</body></html>"

    return _page


@pytest.fixture
def detail_graph():
    return {
        "BasicPropertyData:1": {
            "name": "Guesthouse Aisha",
            "pageName": "guesthouse-aisha",
            "accommodationTypeId": 216,
            "location": {"latitude": 43.2, "longitude": 76.9, "formattedAddress": "Almaty"},
        },
        "TextWithTranslationTag:9": {"text": "Cozy rooms near the mountains."},
        "AccommodationPhoto:5": {
            'resource({"size":"max1024x768"})': {
                "absoluteUrl": "https://cf.bstatic.com/images/hotel/max1024x768/1.jpg?k=abc\\u0026o="
            }
        },
        "BaseFacility:3": {"instances": [{"title": "Free WiFi"}, {"title": ""}, {"title": "Parking"}]},
        "GenericFacilityHighlight:7": {"title": "Garden"},
        "PropertyType:{\"type\":\"GUESTHOUSE\"}": {"type": "GUESTHOUSE"},
        "Property:1": {
            "accommodationType": {"__ref": "PropertyType:{\"type\":\"GUESTHOUSE\"}"},
            "reviews": {
                "questions": [
                    {"name": "staff", "score": 9.4},
                    {"name": "", "score": 7.0},
                    {"name": "location", "score": 8.8},
                ]
            },
        },
        "ROOT_QUERY": {"__typename": "Query"},
    }


@pytest.fixture
def summary_graph():
    return {
        "ROOT_QUERY": {
            "__typename": "Query",
            "searchQueries": {
                "__typename": "SearchQueries",
                'search({"input":{"dest_id":"-2335204"}})': {
                    "results": [
                        {
                            "displayName": {"text": "Guesthouse Aisha"},
                            "description": {"text": "Listing blurb"},
                            "basicPropertyData": {
                                "pageName": "guesthouse-aisha",
                                "location": {"address": "Almaty"},
                                "reviews": {"totalScore": 8.66, "reviewsCount": 120},
                            },
                        },
                        {"displayName": {"text": ""}, "basicPropertyData": {"pageName": "nameless"}},
                        {"__ref": "SearchResultProperty:2"},
                    ]
                },
            },
        },
        "SearchResultProperty:2": {
            "displayName": {"text": "Broken House"},
            "basicPropertyData": {"pageName": "broken-house"},
        },
    }


@pytest.fixture
def booking_site(apollo_page, summary_graph, detail_graph):
    """MockTransport serving the listing page, one good detail page and 503s elsewhere."""
    hits = {}

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        hits[path] = hits.get(path, 0) + 1
        if path == "/searchresults.html":
            body = apollo_page({"Other:1": {}}, summary_graph)
        elif path == "/hotel/kz/guesthouse-aisha.html":
            body = apollo_page(detail_graph)
        else:
            return httpx.Response(503, stream=httpx.ByteStream(b"<html>Service unavailable</html>"))
        return httpx.Response(
            200,
            headers={"Content-Type": "text/html; charset=utf-8"},
            stream=httpx.ByteStream(body.encode("utf-8")),
        )

    return httpx.MockTransport(handler), hits
