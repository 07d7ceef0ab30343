from typing import Dict, Iterable
from urllib.parse import quote, urlencode

BASE_URL = "https://www.booking.com"


def build_search_url(
    dest_id: str,
    dest_type: str = "city",
    accommodation_type_ids: Iterable[int] | None = None,
    debug: bool = False,
) -> str:
    """
    Build a search results URL for a destination id (e.g. "-2335204" for Almaty).
    accommodation_type_ids become the `ht_id` filters joined into one `nflt` param.
    """
    params: Dict[str, str] = {
        "dest_id": str(dest_id),
        "dest_type": dest_type,
    }
    ids = list(accommodation_type_ids or [])
    if ids:
        params["nflt"] = ";".join(f"ht_id={i}" for i in ids)

    url = f"{BASE_URL}/searchresults.html?" + urlencode(params)
    if debug:
        print(f"[filters] build_search_url → {url}")
    return url


def build_detail_url(page_name: str, country: str = "kz") -> str:
    """Detail page for a property slug, e.g. 'guesthouse-aisha' → /hotel/kz/guesthouse-aisha.html."""
    slug = page_name.strip()
    if not slug:
        raise ValueError("page_name is required to build a detail URL")
    return f"{BASE_URL}/hotel/{country.strip().lower()}/{quote(slug)}.html"
