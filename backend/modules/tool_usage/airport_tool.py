"""
modules/tool_usage/airport_tool.py
-----------------------------------
Airport lookup for long-haul route legs.

Lookup is an ordered chain of named strategies; the first one that yields an
airport wins and the outcome is tagged with its name:

  cache     -- in-process memo of earlier lookups (rounded coordinate + radius)
  external  -- airport catalogue
                 Stub mode (USE_STUB_AIRPORTS=true)  -- built-in catalogue below
                 Live mode (USE_STUB_AIRPORTS=false) -- OpenFlights airports.dat over HTTP
  fallback  -- nearest known major airport within AIRPORT_FALLBACK_MAX_KM

Airport.source keeps the strategy that first produced the airport; only the
lookup itself reports "cache" on a memo hit.

Among candidates within the search radius, the nearest one whose capability
score reaches AIRPORT_MIN_CAPABILITY is chosen (ties by IATA code).

Capability score (0-100):
  commercial service   0-30
  international        0-25
  accessibility        0-25  (by distance from the query point)
  infrastructure size  0-20  (+5 for a valid 3-letter IATA code)
"""

from __future__ import annotations

import csv
import io
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

import requests

import config
from modules.optimization.errors import ExternalDependencyError
from modules.tool_usage.distance_tool import haversine_km
from schemas.trip import Airport

logger = logging.getLogger(__name__)


# ── Known major airports (fallback strategy) ──────────────────────────────────
# code -> (name, lat, lon)
_MAJOR_AIRPORTS: dict[str, tuple[str, float, float]] = {
    "NRT": ("Narita International Airport",           35.7647, 140.3864),
    "HND": ("Tokyo Haneda Airport",                   35.5523, 139.7800),
    "KIX": ("Kansai International Airport",           34.4273, 135.2444),
    "JFK": ("John F. Kennedy International Airport",  40.6398, -73.7789),
    "LAX": ("Los Angeles International Airport",      33.9425, -118.4081),
    "LHR": ("London Heathrow Airport",                51.4706, -0.461941),
    "CDG": ("Paris Charles de Gaulle Airport",        49.0128, 2.5500),
    "ICN": ("Incheon International Airport",          37.4691, 126.4510),
}

# ── Stub catalogue (external strategy in stub mode) ───────────────────────────
# code -> (name, lat, lon, commercial, international, size)
_STUB_CATALOGUE: dict[str, tuple[str, float, float, bool, bool, str]] = {
    "NRT": ("Narita International Airport",          35.7647, 140.3864, True,  True,  "large"),
    "HND": ("Tokyo Haneda Airport",                  35.5523, 139.7800, True,  True,  "large"),
    "FSZ": ("Mt. Fuji Shizuoka Airport",             34.7960, 138.1890, True,  True,  "small"),
    "MMJ": ("Shinshu Matsumoto Airport",             36.1668, 137.9230, True,  False, "small"),
    "NGO": ("Chubu Centrair International Airport",  34.8584, 136.8050, True,  True,  "large"),
    "ITM": ("Osaka Itami Airport",                   34.7855, 135.4380, True,  False, "medium"),
    "KIX": ("Kansai International Airport",          34.4273, 135.2444, True,  True,  "large"),
    "CTS": ("New Chitose Airport",                   42.7752, 141.6920, True,  True,  "large"),
    "FUK": ("Fukuoka Airport",                       33.5859, 130.4510, True,  True,  "large"),
    "OKA": ("Naha Airport",                          26.1958, 127.6460, True,  True,  "medium"),
    "ICN": ("Incheon International Airport",         37.4691, 126.4510, True,  True,  "large"),
    "GMP": ("Gimpo International Airport",           37.5583, 126.7910, True,  True,  "medium"),
    "JFK": ("John F. Kennedy International Airport", 40.6398, -73.7789, True,  True,  "large"),
    "LGA": ("LaGuardia Airport",                     40.7772, -73.8726, True,  False, "large"),
    "LAX": ("Los Angeles International Airport",     33.9425, -118.4081, True, True,  "large"),
    "SFO": ("San Francisco International Airport",   37.6190, -122.3750, True, True,  "large"),
    "LHR": ("London Heathrow Airport",               51.4706, -0.461941, True, True,  "large"),
    "LGW": ("London Gatwick Airport",                51.1481, -0.190278, True, True,  "large"),
    "CDG": ("Paris Charles de Gaulle Airport",       49.0128, 2.5500,   True,  True,  "large"),
    "ORY": ("Paris Orly Airport",                    48.7233, 2.3794,   True,  True,  "large"),
    "NCE": ("Nice Cote d'Azur Airport",              43.6584, 7.2159,   True,  True,  "medium"),
}


# ── Capability scoring ─────────────────────────────────────────────────────────

def _accessibility_points(distance_km: float) -> float:
    if distance_km <= 10:
        return 25.0
    if distance_km <= 25:
        return 20.0
    if distance_km <= 50:
        return 15.0
    if distance_km <= 100:
        return 10.0
    return 5.0


def capability_breakdown(airport: Airport, distance_km: float) -> dict[str, float]:
    """Per-factor capability points for *airport* seen from *distance_km* away."""
    if airport.is_commercial:
        commercial = 30.0
    else:
        commercial = 15.0 if airport.size in ("large", "medium") else 5.0

    if airport.is_international:
        international = 25.0
    else:
        international = 10.0 if airport.is_commercial else 0.0

    size = {"large": 20.0, "medium": 15.0, "small": 10.0}.get(airport.size, 5.0)
    code = airport.code or ""
    if len(code) == 3 and code.isalpha():
        size += 5.0

    return {
        "commercial":    commercial,
        "international": international,
        "accessibility": _accessibility_points(distance_km),
        "size":          size,
    }


def capability_score(airport: Airport, distance_km: float) -> float:
    """Weighted composite capability in [0, 100]."""
    return min(100.0, sum(capability_breakdown(airport, distance_km).values()))


def capability_rating(score: float) -> str:
    if score >= 80:
        return "excellent"
    if score >= 60:
        return "good"
    if score >= 40:
        return "fair"
    return "poor"


def describe_airport(airport: Airport) -> dict:
    """Plain-dict summary of a chosen airport for route legs."""
    return {
        "code":              airport.code,
        "name":              airport.name,
        "distance_km":       round(airport.distance_km, 3),
        "capability_score":  round(airport.capability_score, 1),
        "capability_rating": capability_rating(airport.capability_score),
        "capability":        capability_breakdown(airport, airport.distance_km),
        "source":            airport.source,
    }


# ── Lookup outcome ─────────────────────────────────────────────────────────────

@dataclass
class AirportLookup:
    """
    Result of one lookup through the strategy chain.

    airport is None when no strategy produced an airport; ``failures`` then
    holds the strategy names that raised, with their error messages.
    """
    airport: Optional[Airport]
    source: Optional[str]
    failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.airport is not None


# ── AirportTool ────────────────────────────────────────────────────────────────

class AirportTool:
    """Strategy-chain airport finder. One instance can be shared across runs."""

    def __init__(
        self,
        search_radius_km: Optional[float] = None,
        min_capability: Optional[float] = None,
        use_stub: Optional[bool] = None,
        catalogue_loader: Optional[Callable[[], list[Airport]]] = None,
    ) -> None:
        self.search_radius_km = (
            config.AIRPORT_SEARCH_RADIUS_KM if search_radius_km is None else search_radius_km
        )
        self.min_capability = (
            config.AIRPORT_MIN_CAPABILITY if min_capability is None else min_capability
        )
        self.use_stub = config.USE_STUB_AIRPORTS if use_stub is None else use_stub
        self._catalogue_loader = catalogue_loader
        self._catalogue: Optional[list[Airport]] = None
        self._lock = threading.Lock()
        self._memo: dict[tuple[float, float, float], Airport] = {}
        self.strategies: list[tuple[str, Callable[[float, float], Optional[Airport]]]] = [
            ("cache",    self._from_cache),
            ("external", self._from_catalogue),
            ("fallback", self._from_major_airports),
        ]

    # ── public API ────────────────────────────────────────────────────────

    def find_nearest(self, lat: float, lon: float) -> AirportLookup:
        """Walk the strategy chain and return the first airport found."""
        failures: list[tuple[str, str]] = []
        for name, strategy in self.strategies:
            try:
                airport = strategy(lat, lon)
            except ExternalDependencyError as exc:
                logger.warning("Airport strategy %r failed near (%.4f, %.4f): %s",
                               name, lat, lon, exc.message)
                failures.append((name, exc.message))
                continue
            if airport is None:
                continue
            if name != "cache":
                airport = replace(airport, source=name)
                with self._lock:
                    self._memo[self._memo_key(lat, lon)] = airport
            return AirportLookup(airport=airport, source=name, failures=failures)

        logger.warning("No airport found near (%.4f, %.4f) within %.0f km",
                       lat, lon, self.search_radius_km)
        return AirportLookup(airport=None, source=None, failures=failures)

    def clear_cache(self) -> None:
        with self._lock:
            self._memo.clear()

    def candidates(self, lat: float, lon: float, catalogue: list[Airport]) -> list[Airport]:
        """Airports of *catalogue* within the search radius, scored and sorted by distance."""
        scored: list[Airport] = []
        for ap in catalogue:
            d = haversine_km(lat, lon, ap.lat, ap.lon)
            if d > self.search_radius_km:
                continue
            scored.append(replace(
                ap,
                distance_km=round(d, 3),
                capability_score=capability_score(ap, d),
            ))
        scored.sort(key=lambda a: (a.distance_km, a.code))
        return scored

    # ── strategies ────────────────────────────────────────────────────────

    def _memo_key(self, lat: float, lon: float) -> tuple[float, float, float]:
        return (round(lat, 3), round(lon, 3), self.search_radius_km)

    def _from_cache(self, lat: float, lon: float) -> Optional[Airport]:
        with self._lock:
            return self._memo.get(self._memo_key(lat, lon))

    def _from_catalogue(self, lat: float, lon: float) -> Optional[Airport]:
        for ap in self.candidates(lat, lon, self._load_catalogue()):
            if ap.capability_score >= self.min_capability:
                return ap
        return None

    def _from_major_airports(self, lat: float, lon: float) -> Optional[Airport]:
        best: Optional[Airport] = None
        for code, (name, a_lat, a_lon) in sorted(_MAJOR_AIRPORTS.items()):
            d = haversine_km(lat, lon, a_lat, a_lon)
            if d > config.AIRPORT_FALLBACK_MAX_KM:
                continue
            if best is None or d < best.distance_km:
                ap = Airport(code=code, name=name, lat=a_lat, lon=a_lon,
                             is_commercial=True, is_international=True, size="large")
                best = replace(ap, distance_km=round(d, 3), capability_score=capability_score(ap, d))
        return best

    # ── catalogue loading ─────────────────────────────────────────────────

    def _load_catalogue(self) -> list[Airport]:
        with self._lock:
            if self._catalogue is not None:
                return self._catalogue
        if self._catalogue_loader is not None:
            catalogue = self._catalogue_loader()
        elif self.use_stub:
            catalogue = _stub_catalogue()
        else:
            catalogue = fetch_openflights()
        with self._lock:
            self._catalogue = catalogue
        return catalogue


def _stub_catalogue() -> list[Airport]:
    return [
        Airport(code=code, name=name, lat=lat, lon=lon,
                is_commercial=commercial, is_international=intl, size=size)
        for code, (name, lat, lon, commercial, intl, size) in _STUB_CATALOGUE.items()
    ]


# ── OpenFlights live catalogue ────────────────────────────────────────────────

def parse_openflights(text: str) -> list[Airport]:
    """
    Parse OpenFlights airports.dat rows:
      id, name, city, country, IATA, ICAO, lat, lon, altitude, tz, dst, tzdb, type, source

    Rows without an IATA code are treated as non-commercial. OpenFlights carries
    no size column: international airports are classed large, other IATA
    airports medium, the rest small.
    """
    airports: list[Airport] = []
    for row in csv.reader(io.StringIO(text)):
        if len(row) < 8:
            continue
        try:
            lat, lon = float(row[6]), float(row[7])
        except ValueError:
            continue
        kind = row[12] if len(row) > 12 else "airport"
        if kind != "airport":
            continue
        name = row[1]
        iata = row[4] if row[4] not in ("", "\\N") else ""
        international = "international" in name.lower()
        commercial = bool(iata)
        size = "large" if international and commercial else ("medium" if commercial else "small")
        airports.append(Airport(
            code=iata or row[5],
            name=name,
            lat=lat,
            lon=lon,
            is_commercial=commercial,
            is_international=international,
            size=size,
        ))
    return airports


def fetch_openflights(url: Optional[str] = None) -> list[Airport]:
    """Download and parse the OpenFlights airport catalogue."""
    url = url or config.OPENFLIGHTS_URL
    try:
        resp = requests.get(url, timeout=config.AIRPORT_REQUEST_TIMEOUT)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise ExternalDependencyError(
            f"airport catalogue unavailable: {exc}",
            code="ERROR_AIRPORT_LOOKUP_FAILED",
        ) from exc
    airports = parse_openflights(resp.text)
    logger.info("Loaded %d airports from %s", len(airports), url)
    return airports
