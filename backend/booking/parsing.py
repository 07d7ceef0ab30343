# backend/booking/parsing.py
from bs4 import BeautifulSoup
import json
import logging
import string
from typing import Any, Callable, Optional

from backend.booking.errors import NotFoundError, ParseError
from backend.booking.graph import (
    KeyOrder,
    as_dict,
    as_float,
    as_int,
    as_list,
    as_str,
    find_collection,
    get_path,
    ref_field,
    resolve_ref,
    type_prefix,
)
from backend.py_models.accommodation import DetailedProperty, Review, SummaryProperty

__all__ = [
    "locate_apollo_blob",
    "parse_graph",
    "classify_detail",
    "parse_summary",
    "clean_photo_url",
]

log = logging.getLogger("booking")

APOLLO_ATTR = "data-capla-store-data"
ROOT_QUERY = "ROOT_QUERY"
PHOTO_RESOURCE_KEY = 'resource({"size":"max1024x768"})'


# --- blob location ---------------------------------------------------------

def locate_apollo_blob(html: str) -> str:
    """
    Return the trimmed text of the Apollo store <script>.
    Search pages often carry several; the one mentioning ROOT_QUERY wins,
    otherwise the first in document order.
    """
    soup = BeautifulSoup(html, "lxml")
    scripts = soup.find_all("script", attrs={APOLLO_ATTR: "apollo"})
    if not scripts:
        raise NotFoundError("no apollo store found in page")

    texts = [s.string if s.string is not None else s.get_text() for s in scripts]
    chosen = next((t for t in texts if ROOT_QUERY in t), texts[0])
    return chosen.strip()


def parse_graph(raw: str) -> dict:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ParseError(f"parse json: {exc}") from exc
    if not isinstance(data, dict):
        raise ParseError(f"apollo store is a {type(data).__name__}, expected an object")
    return data


# --- detail page classification --------------------------------------------

def clean_photo_url(url: str) -> str:
    url = url.replace("\\u0026", "&").replace("&amp;", "&")
    url = url.removesuffix("&o=")
    return url.strip()


def _apply_basic_data(out: DetailedProperty, node: dict, graph: dict) -> None:
    name = as_str(node.get("name"))
    if name:
        out.property_name = name
    page_name = as_str(node.get("pageName"))
    if page_name:
        out.page_name = page_name
    type_id = as_int(node.get("accommodationTypeId"))
    # a type resolved from the Property node is more specific; never overwrite it
    if type_id is not None and out.accommodation_type is None:
        out.accommodation_type = f"Type-{type_id}"

    loc = as_dict(node.get("location")) or {}
    lat, lon = as_float(loc.get("latitude")), as_float(loc.get("longitude"))
    if lat is not None:
        out.latitude = lat
    if lon is not None:
        out.longitude = lon
    addr = as_str(loc.get("formattedAddress"))
    if addr:
        out.address = addr


def _apply_text(out: DetailedProperty, node: dict, graph: dict) -> None:
    text = as_str(node.get("text"))
    if text and not out.description:
        out.description = text


def _apply_photo(out: DetailedProperty, node: dict, graph: dict) -> None:
    url = as_str(get_path(node, PHOTO_RESOURCE_KEY, "absoluteUrl"))
    if url is None:
        # other size variants, in case the max size was not requested
        for key, val in node.items():
            if key.startswith("resource("):
                url = as_str(get_path(val, "absoluteUrl"))
                if url:
                    break
    if url:
        out.photos.append(clean_photo_url(url))


def _apply_base_facility(out: DetailedProperty, node: dict, graph: dict) -> None:
    for inst in as_list(node.get("instances")) or []:
        title = as_str(get_path(inst, "title"))
        if title:
            out.facilities.append(title)


def _apply_facility_highlight(out: DetailedProperty, node: dict, graph: dict) -> None:
    title = as_str(node.get("title"))
    if title:
        out.facilities.append(title)


def _apply_property(out: DetailedProperty, node: dict, graph: dict) -> None:
    ref, target = resolve_ref(graph, node.get("accommodationType"))
    if ref is not None:
        # ref looks like: PropertyType:{"type":"CAMPING"}
        typ = as_str(target.get("type")) if target is not None else ref_field(ref, "type")
        if typ:
            out.accommodation_type = string.capwords(typ.lower())

    for q in as_list(get_path(node, "reviews", "questions")) or []:
        name = as_str(get_path(q, "name"))
        if name:
            out.reviews.append(Review(name=name, score=as_float(get_path(q, "score"))))


NodeHandler = Callable[[DetailedProperty, dict, dict], None]

_NODE_HANDLERS: tuple[tuple[str, NodeHandler], ...] = (
    ("BasicPropertyData", _apply_basic_data),
    ("TextWithTranslationTag", _apply_text),
    ("AccommodationPhoto", _apply_photo),
    ("BaseFacility", _apply_base_facility),
    ("GenericFacilityHighlight", _apply_facility_highlight),
    ("Property", _apply_property),
)
_HANDLER_BY_PREFIX = dict(_NODE_HANDLERS)


def classify_detail(
    graph: dict,
    default_description: Optional[str] = None,
    default_rating: Optional[str] = None,
    default_count: Optional[int] = None,
    *,
    default_name: str = "",
    default_page_name: str = "",
) -> DetailedProperty:
    """
    Build a DetailedProperty from a detail page graph.

    Missing nodes or fields leave the defaults in place; nothing here raises on
    absent data. The listing's description wins over any text found in the graph,
    while its name and page name are only used when BasicPropertyData lacks them.
    """
    out = DetailedProperty(
        property_name=default_name or "",
        page_name=default_page_name or "",
        description=default_description or None,
        reviews_ratings=default_rating or None,
        reviews_count=default_count,
    )
    for key, val in graph.items():
        if ":" not in key:
            continue
        handler = _HANDLER_BY_PREFIX.get(type_prefix(key))
        node = as_dict(val)
        if handler is None or node is None:
            continue
        handler(out, node, graph)
    return out


# --- search results page ---------------------------------------------------

def _summary_from_result(item: dict) -> Optional[SummaryProperty]:
    name = as_str(get_path(item, "displayName", "text"))
    if not name:
        return None
    basic = as_dict(item.get("basicPropertyData")) or {}
    total = as_float(get_path(basic, "reviews", "totalScore"))
    return SummaryProperty(
        property_name=name,
        page_name=as_str(basic.get("pageName")) or "",
        address=as_str(get_path(basic, "location", "address")),
        description=as_str(get_path(item, "description", "text")),
        reviews_ratings=f"{total:.1f}" if total is not None else None,
        reviews_count=as_int(get_path(basic, "reviews", "reviewsCount")),
    )


def parse_summary(graph: dict, key_order: Optional[KeyOrder] = None) -> list[SummaryProperty]:
    """
    Turn a search results graph into SummaryProperty rows.
    Raises NotFoundError when ROOT_QUERY, the searchQueries entry or the
    results collection is missing. Rows without a display name are dropped.
    """
    root = as_dict(graph.get(ROOT_QUERY))
    if root is None:
        raise NotFoundError("ROOT_QUERY not found in apollo store")
    if not any(k.startswith("searchQueries") for k in root):
        raise NotFoundError("no searchQueries key found")

    try:
        results = find_collection(root, "results", key_order=key_order)
    except NotFoundError:
        log.debug("ROOT_QUERY keys: %s", ", ".join(root.keys()))
        raise

    out: list[SummaryProperty] = []
    for raw in results:
        item: Any = raw
        ref, target = resolve_ref(graph, raw)
        if ref is not None:
            item = target
        if not isinstance(item, dict):
            continue
        row = _summary_from_result(item)
        if row is not None:
            out.append(row)
    return out
