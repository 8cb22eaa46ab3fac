"""Polling booth locator over the bundled LAC 97-Kottayam station list.

Records are loaded once on first access and are read-only afterwards.
Search combines an exact station-number lookup with additive scoring over
title, landmark, tags, the Malayalam area name and booth content.
"""

import json
import logging
import math
import re
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel

from config import settings
from models import BoothRecord, GenerationResult, Locale, ScoredBooth, Source

logger = logging.getLogger(__name__)

DEFAULT_DATA_PATH = Path(__file__).parent / "data" / "booths.json"

BOOTH_SOURCE = Source(
    title="Election Commission of India — Official Booth List LAC 97-Kottayam",
    url="https://kottayam.nic.in/en/election/",
    last_updated="2026-02-01",
    excerpt="Official polling station data from District 10-Kottayam, LAC 97.",
)


class ScoreWeights(BaseModel):
    """Additive search weights. Changing them changes observable rankings."""

    title_exact: float = 10.0
    title_token: float = 3.0
    landmark_exact: float = 8.0
    landmark_token: float = 2.0
    tag_exact: float = 7.0
    tag_token: float = 2.0
    area_localized: float = 9.0
    content_token: float = 0.5


DEFAULT_WEIGHTS = ScoreWeights()

_STATION_PATTERNS = (
    re.compile(r"(?:booth|station|polling\s*station)\s*(?:number\s*(?:is\s*)?)?(\d+)"),
    re.compile(r"(?:number|no\.?|#)\s*(?:is\s*)?(\d+)"),
    re.compile(r"^(\d{1,3})$"),
)

_BOOTH_KEYWORDS = (
    re.compile(r"\b(booth|polling\s*station)\b", re.IGNORECASE),
    re.compile(r"ബൂത്ത്|പോളിങ്\s*സ്റ്റേഷൻ"),
    re.compile(r"\bwhere\s+(do\s+)?i\s+vote\b", re.IGNORECASE),
    re.compile(r"എവിടെ\s*വോട്ട്"),
    re.compile(r"^\s*\d{1,3}\s*$"),
)

_COORDS_RE = re.compile(r"([\d.]+)\s*N,?\s*([\d.]+)\s*E")
_LANDMARK_RE = re.compile(r"landmark:\s*([^.]+)", re.IGNORECASE)

EARTH_RADIUS_KM = 6371.0


# ── Loading ──────────────────────────────────────────────────────


def _parse_coordinates(content: str) -> tuple[float, float]:
    """Pull "9.6384 N, 76.5367 E" style coordinates out of the content text."""
    match = _COORDS_RE.search(content)
    if not match:
        return 0.0, 0.0
    try:
        return float(match.group(1)), float(match.group(2))
    except ValueError:
        return 0.0, 0.0


def _parse_landmark(content: str) -> str:
    match = _LANDMARK_RE.search(content)
    return match.group(1).strip() if match else ""


def _to_record(raw: dict) -> BoothRecord:
    tags = raw.get("tags") or []
    content = raw.get("content", "")
    lat, lng = _parse_coordinates(content)
    area = tags[3] if len(tags) > 3 and isinstance(tags[3], str) else ""

    return BoothRecord(
        id=raw["id"],
        station_number=int(tags[0]),
        title=raw.get("title", ""),
        content=content,
        content_localized=raw.get("content_ml", ""),
        landmark=_parse_landmark(content),
        area_localized=area,
        lat=lat,
        lng=lng,
        tags=tuple(str(t) for t in tags),
        source=raw.get("source", ""),
        source_url=raw.get("source_url", ""),
    )


@lru_cache(maxsize=4)
def load_booths(path: str | None = None) -> tuple[BoothRecord, ...]:
    """Load and parse the booth dataset. Cached per path after the first call."""
    data_path = Path(path or settings.BOOTH_DATA_PATH or DEFAULT_DATA_PATH)
    with data_path.open(encoding="utf-8") as f:
        raw_records = json.load(f)

    booths = tuple(_to_record(raw) for raw in raw_records)
    logger.info("Loaded %d booth records from %s", len(booths), data_path)
    return booths


def get_all_booths() -> tuple[BoothRecord, ...]:
    return load_booths()


# ── Search ───────────────────────────────────────────────────────


def station_number_in(query: str) -> int | None:
    """Return the station number named by the query, if any."""
    lowered = query.lower().strip()
    for pattern in _STATION_PATTERNS:
        match = pattern.search(lowered)
        if match:
            return int(match.group(1))
    return None


def search_booths(
    query: str,
    max_results: int = 5,
    booths: tuple[BoothRecord, ...] | list[BoothRecord] | None = None,
    weights: ScoreWeights = DEFAULT_WEIGHTS,
) -> list[BoothRecord]:
    """Return up to max_results booths relevant to a free-text query.

    An exact station-number hit short-circuits scoring entirely so numeric
    lookups are never diluted by fuzzy matches.
    """
    corpus = get_all_booths() if booths is None else booths
    lowered = query.lower().strip()
    if not lowered or max_results <= 0:
        return []

    number = station_number_in(query)
    if number is not None:
        exact = [b for b in corpus if b.station_number == number]
        if exact:
            return exact[:max_results]

    terms = [t for t in lowered.split() if len(t) > 2]
    scored = [ScoredBooth(booth=b, score=score_booth(b, query, lowered, terms, weights)) for b in corpus]

    # sorted() is stable, so ties keep dataset order
    ranked = sorted(scored, key=lambda s: s.score, reverse=True)
    return [s.booth for s in ranked if s.score > 0][:max_results]


def score_booth(
    booth: BoothRecord,
    original_query: str,
    lowered: str,
    terms: list[str],
    weights: ScoreWeights = DEFAULT_WEIGHTS,
) -> float:
    score = 0.0
    title = booth.title.lower()
    landmark = booth.landmark.lower()
    content = booth.content.lower()

    if lowered in title:
        score += weights.title_exact
    score += weights.title_token * sum(1 for t in terms if t in title)

    if lowered in landmark:
        score += weights.landmark_exact
    score += weights.landmark_token * sum(1 for t in terms if t in landmark)

    for tag in (t.lower() for t in booth.tags):
        if lowered in tag:
            score += weights.tag_exact
        score += weights.tag_token * sum(1 for t in terms if t in tag)

    # Malayalam script: compare against the query as typed
    if booth.area_localized and booth.area_localized in original_query:
        score += weights.area_localized

    # Plain term frequency; content fields are roughly uniform in length
    for term in terms:
        score += weights.content_token * content.count(term)

    return score


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def search_nearest_booths(
    lat: float,
    lng: float,
    max_results: int = 5,
    max_distance_km: float = 10.0,
    booths: tuple[BoothRecord, ...] | list[BoothRecord] | None = None,
) -> list[tuple[BoothRecord, float]]:
    """Booths within max_distance_km of a point, nearest first, with distances."""
    corpus = get_all_booths() if booths is None else booths
    with_distance = [
        (b, haversine_km(lat, lng, b.lat, b.lng))
        for b in corpus
        if b.lat or b.lng
    ]
    nearby = [(b, d) for b, d in with_distance if d <= max_distance_km]
    nearby.sort(key=lambda pair: pair[1])
    return nearby[: max(0, max_results)]


def is_booth_query(text: str) -> bool:
    return any(p.search(text) for p in _BOOTH_KEYWORDS)


# ── Rendering ────────────────────────────────────────────────────


def _coord(value: float) -> str:
    return f"{value:f}".rstrip("0").rstrip(".")


def get_directions_url(lat: float, lng: float) -> str:
    return f"https://www.google.com/maps/dir/?api=1&destination={_coord(lat)},{_coord(lng)}"


def format_booth_result(booth: BoothRecord, locale: Locale, distance_km: float | None = None) -> str:
    maps_url = get_directions_url(booth.lat, booth.lng)
    gps = f"{_coord(booth.lat)}°N, {_coord(booth.lng)}°E"

    if locale == "ml":
        lines = [
            f"**പോളിംഗ് സ്റ്റേഷൻ {booth.station_number}** — {booth.title}",
            f"- **ലാൻഡ്‌മാർക്ക്:** {booth.landmark}",
            f"- **GPS:** {gps}",
        ]
        if distance_km is not None:
            lines.append(f"- **ദൂരം:** {distance_km:.1f} കി.മീ")
        lines.append(f"- [Google Maps-ൽ വഴി കാണുക]({maps_url})")
    else:
        lines = [
            f"**Polling Station {booth.station_number}** — {booth.title}",
            f"- **Landmark:** {booth.landmark}",
            f"- **GPS:** {gps}",
        ]
        if distance_km is not None:
            lines.append(f"- **Distance:** {distance_km:.1f} km")
        lines.append(f"- [Get Directions]({maps_url})")
    return "\n".join(lines)


def booth_answer(query: str, locale: Locale, max_results: int = 3) -> GenerationResult | None:
    """Answer a booth question straight from the dataset, or None to defer to RAG."""
    results = search_booths(query, max_results)
    if results:
        if len(results) == 1:
            header = (
                f"📍 **പോളിങ് സ്റ്റേഷൻ {results[0].station_number} വിവരങ്ങൾ:**"
                if locale == "ml"
                else f"📍 **Polling Station {results[0].station_number} Details:**"
            )
        else:
            header = (
                f"📍 **{len(results)} പോളിങ് സ്റ്റേഷനുകൾ കണ്ടെത്തി:**"
                if locale == "ml"
                else f"📍 **{len(results)} matching polling stations found:**"
            )
        footer = (
            "LAC 97-Kottayam, District 10-Kottayam. സ്ഥിരീകരണത്തിന് "
            "[electoralsearch.eci.gov.in](https://electoralsearch.eci.gov.in/) സന്ദർശിക്കുക."
            if locale == "ml"
            else "LAC 97-Kottayam, District 10-Kottayam. For verification, visit "
            "[electoralsearch.eci.gov.in](https://electoralsearch.eci.gov.in/)."
        )
        cards = "\n\n---\n\n".join(format_booth_result(b, locale) for b in results)
        return GenerationResult(
            text=f"{header}\n\n{cards}\n\n{footer}",
            confidence=0.95,
            sources=[BOOTH_SOURCE],
            escalate=False,
            model="booth-locator",
        )

    number = station_number_in(query)
    if number is not None:
        text = (
            f"😔 ബൂത്ത് നമ്പർ {number} ഞങ്ങളുടെ LAC 97-Kottayam ഡാറ്റയിൽ കണ്ടെത്താനായില്ല. "
            "ദയവായി പരിശോധിച്ച് വീണ്ടും ശ്രമിക്കുക. 📞 ഹെൽപ്‌ലൈൻ: 1950"
            if locale == "ml"
            else f"😔 Booth number {number} was not found in our LAC 97-Kottayam data. "
            "Please verify and try again. 📞 Helpline: 1950"
        )
        return GenerationResult(
            text=text, confidence=0.9, sources=[BOOTH_SOURCE], escalate=False, model="booth-locator"
        )

    return None


def nearest_booth_answer(lat: float, lng: float, locale: Locale, max_results: int = 3) -> GenerationResult | None:
    """Answer "where do I vote" from the caller's coordinates, or None if nothing is nearby."""
    nearby = search_nearest_booths(lat, lng, max_results)
    if not nearby:
        return None

    header = (
        f"📍 **അടുത്തുള്ള {len(nearby)} പോളിങ് സ്റ്റേഷനുകൾ:**"
        if locale == "ml"
        else f"📍 **{len(nearby)} nearest polling stations:**"
    )
    cards = "\n\n---\n\n".join(format_booth_result(b, locale, distance_km=d) for b, d in nearby)
    return GenerationResult(
        text=f"{header}\n\n{cards}",
        confidence=0.9,
        sources=[BOOTH_SOURCE],
        escalate=False,
        model="booth-locator",
    )
