"""Resolve place names to coordinates.

Well-known places are answered from a built-in table (accent-insensitive exact
match); anything else goes to Open-Meteo's geocoding API, with whole-word
partial table matches as the fallback. Lookups that find nothing raise LookupError.
"""
from __future__ import annotations

import re
import unicodedata
from typing import Dict, List, Tuple

import requests
import requests_cache

from routecast.config import settings
from routecast.domain import Coordinate
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="geocoding")

session = requests_cache.CachedSession(
    settings.http_cache_path,
    expire_after=24 * 3600,
    allowable_codes=(200,),
)

KNOWN_PLACES: Dict[str, Tuple[float, float]] = {
    "praha": (50.0755, 14.4378),
    "prague": (50.0755, 14.4378),
    "brno": (49.1951, 16.6068),
    "ostrava": (49.8209, 18.2625),
    "plzen": (49.7384, 13.3736),
    "liberec": (50.7663, 15.0543),
    "olomouc": (49.5938, 17.2509),
    "hradec kralove": (50.2103, 15.8327),
    "ceske budejovice": (48.9847, 14.4747),
    "pardubice": (50.0343, 15.7812),
    "usti nad labem": (50.6607, 14.0323),
    "jihlava": (49.3961, 15.5911),
    "karlovy vary": (50.2329, 12.8710),
    "zlin": (49.2167, 17.6667),
    "kladno": (50.1427, 14.1027),
    "opava": (49.9386, 17.9026),
    "frydek-mistek": (49.6835, 18.3487),
    "wien": (48.2082, 16.3738),
    "vienna": (48.2082, 16.3738),
    "bratislava": (48.1486, 17.1077),
    "dresden": (51.0504, 13.7373),
}


def normalize_place_name(name: str) -> str:
    """Lower-case, trim and strip diacritics ("Plzeň" -> "plzen")."""
    decomposed = unicodedata.normalize("NFKD", name.strip().lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _tokens(text: str) -> List[str]:
    return re.findall(r"[a-z0-9]+", text)


def lookup_known_place(name: str, *, partial: bool = False) -> Coordinate | None:
    """Return a coordinate from the built-in table, or None.

    With `partial`, a known name also matches when its words appear as a
    whole-word run inside `name` ("Brno-střed" -> Brno, but not "Brnov").
    """
    key = normalize_place_name(name)
    if not key:
        return None
    if key in KNOWN_PLACES:
        lat, lon = KNOWN_PLACES[key]
        return Coordinate(latitude=lat, longitude=lon)
    if not partial:
        return None
    words = _tokens(key)
    for known, (lat, lon) in KNOWN_PLACES.items():
        known_words = _tokens(known)
        n = len(known_words)
        if any(words[i:i + n] == known_words for i in range(len(words) - n + 1)):
            return Coordinate(latitude=lat, longitude=lon)
    return None


def _remote_geocode(name: str, timeout: float) -> Coordinate:
    resp = session.get(
        settings.geocoding_url,
        params={"name": name.strip(), "count": 1, "format": "json"},
        timeout=timeout,
    )
    resp.raise_for_status()
    results = resp.json().get("results") or []
    if not results:
        raise LookupError(f"Place not found: {name}")
    top = results[0]
    logger.info("Geocoded place", extra={"place": name, "match": top.get("name")})
    return Coordinate(latitude=top["latitude"], longitude=top["longitude"])


def geocode(name: str, *, timeout: float = 10.0) -> Coordinate:
    """Resolve a place name to a coordinate, raising LookupError when unknown.

    Exact table hits skip the network. Partial table matches are used only
    when the geocoding API finds nothing or cannot be reached, so "Vienna,
    Virginia" goes to the API rather than to Vienna, Austria.
    """
    known = lookup_known_place(name)
    if known is not None:
        logger.debug("Resolved place from built-in table", extra={"place": name})
        return known

    try:
        return _remote_geocode(name, timeout)
    except (LookupError, requests.RequestException) as exc:
        fallback = lookup_known_place(name, partial=True)
        if fallback is None:
            raise
        logger.warning("Geocoding API missed; using partial table match", extra={"place": name, "error": str(exc)})
        return fallback
