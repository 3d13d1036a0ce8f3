import math
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

EARTH_RADIUS_KM = 6371.0

T = TypeVar("T")
CoordsGetter = Callable[[Any], Tuple[Optional[float], Optional[float]]]


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def _attribute_coords(candidate: Any) -> Tuple[Optional[float], Optional[float]]:
    return getattr(candidate, "latitude", None), getattr(candidate, "longitude", None)


def _usable(value: Optional[float]) -> bool:
    return value is not None and not math.isnan(value)


def rank_within_radius(
    origin: Sequence[float],
    radius_km: float,
    candidates: Iterable[T],
    coords: CoordsGetter = _attribute_coords,
) -> List[Tuple[T, float]]:
    """Return ``(candidate, distance_km)`` pairs inside the radius, nearest first.

    Candidates without coordinates are skipped. ``sorted`` is stable, so equal
    distances keep their input order.
    """
    origin_lat, origin_lon = float(origin[0]), float(origin[1])
    ranked: List[Tuple[T, float]] = []
    for candidate in candidates:
        lat, lon = coords(candidate)
        if not (_usable(lat) and _usable(lon)):
            continue
        distance = haversine_km(origin_lat, origin_lon, float(lat), float(lon))
        if distance <= radius_km:
            ranked.append((candidate, distance))
    return sorted(ranked, key=lambda pair: pair[1])


def within_radius(
    origin: Sequence[float],
    radius_km: float,
    candidates: Iterable[T],
    coords: CoordsGetter = _attribute_coords,
) -> List[T]:
    return [candidate for candidate, _ in rank_within_radius(origin, radius_km, candidates, coords)]
