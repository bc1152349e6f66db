"""
Best-effort search for vehicles around a point.

Servers differ in which vehicle endpoints they support, so the search runs
in tiers and stops at the first tier that yields at least one located
vehicle:

1. trips-for-location for the requested box.
2. Routes near the point, then trips-for-route for each of them in parallel.
3. Agencies centred near the point, then vehicles-for-agency for each in
   parallel, filtered back down to the box.

Nothing here raises; failures are logged and the search returns what it has.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from .models import TripForLocation

if TYPE_CHECKING:
    from .client import OBAClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

METERS_PER_DEGREE = 111000.0
MIN_ROUTE_SEARCH_RADIUS = 5000.0  # meters
AGENCY_CENTER_MAX_DEGREES = 0.5
AGENCY_SPAN_BUFFER = 1.5

LocationProvider = Callable[[], Optional[Tuple[float, float]]]


class VehicleAccumulator:
    """Collects TripForLocation records, keeping the first record per vehicle."""

    def __init__(self):
        self.vehicles: List[TripForLocation] = []
        self._seen = set()
        self.has_any_location = False

    def add(self, trips: Iterable[TripForLocation], keep: Optional[Callable[[TripForLocation], bool]] = None) -> int:
        """
        Add records not seen before.

        Args:
            trips: Candidate records.
            keep: Optional filter applied to new records.

        Returns:
            Number of records added.
        """
        added = 0
        for trip in trips:
            key = trip.dedup_key
            if not key or key in self._seen:
                continue
            if keep is not None and not keep(trip):
                continue
            self._seen.add(key)
            self.vehicles.append(trip)
            added += 1
            if trip.has_location:
                self.has_any_location = True
        return added

    @property
    def satisfied(self) -> bool:
        return bool(self.vehicles) and self.has_any_location


def fan_out(
    name: str,
    keys: Sequence[str],
    fetch: Callable[[str], List[T]],
    max_workers: int = 8,
) -> List[T]:
    """
    Run ``fetch`` for every key concurrently and concatenate the results.

    Every child runs to completion; a failing child is logged and contributes
    nothing. Results are merged in key order.
    """
    if not keys:
        return []

    results: Dict[str, List[T]] = {}
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(keys)))) as executor:
        futures = [(key, executor.submit(fetch, key)) for key in keys]
        for key, future in futures:
            try:
                results[key] = future.result()
            except Exception as e:
                logger.warning(f"{name} failed for {key}: {e}")
                results[key] = []

    merged: List[T] = []
    for key in keys:
        merged.extend(results.get(key, []))
    return merged


def fetch_vehicles_reliably(
    client: "OBAClient",
    latitude: float,
    longitude: float,
    lat_span: float,
    lon_span: float,
    max_workers: int = 8,
) -> List[TripForLocation]:
    """
    Vehicles in a bounding box, de-duplicated by vehicle id (trip id when absent).

    Args:
        client: Client used for every request.
        latitude: Box centre latitude.
        longitude: Box centre longitude.
        lat_span: Box height in degrees.
        lon_span: Box width in degrees.
        max_workers: Thread bound for the per-route and per-agency fan-outs.

    Returns:
        Whatever the tiers produced; earlier tiers win for duplicate vehicles.
        Empty when every tier failed.
    """
    found = VehicleAccumulator()

    # Tier 1
    try:
        found.add(client.fetch_trips_for_location(latitude, longitude, lat_span, lon_span))
    except Exception as e:
        logger.error(f"trips-for-location failed: {e}")
    if found.satisfied:
        logger.debug(f"trips-for-location returned {len(found.vehicles)} vehicles")
        return found.vehicles

    # Tier 2
    logger.debug("No located vehicles from trips-for-location, searching nearby routes")
    radius = max(max(lat_span, lon_span) * METERS_PER_DEGREE, MIN_ROUTE_SEARCH_RADIUS)
    try:
        routes = client.search_routes(latitude, longitude, radius)
        route_ids = list(dict.fromkeys(r.id for r in routes if r.id))
        found.add(fan_out("trips-for-route", route_ids, client.fetch_trips_for_route, max_workers))
    except Exception as e:
        logger.error(f"Route-based vehicle search failed: {e}")
    if found.satisfied:
        logger.debug(f"Route-based search returned {len(found.vehicles)} vehicles")
        return found.vehicles

    # Tier 3
    logger.debug("No located vehicles from nearby routes, searching nearby agencies")

    def in_box(trip: TripForLocation) -> bool:
        if not trip.has_location:
            return True
        return (
            abs(trip.latitude - latitude) <= lat_span * AGENCY_SPAN_BUFFER
            and abs(trip.longitude - longitude) <= lon_span * AGENCY_SPAN_BUFFER
        )

    try:
        agencies = client.fetch_agencies_with_coverage()
        agency_ids = [
            a.agency_id
            for a in agencies
            if abs(a.center_latitude - latitude) < AGENCY_CENTER_MAX_DEGREES
            and abs(a.center_longitude - longitude) < AGENCY_CENTER_MAX_DEGREES
        ]
        found.add(
            fan_out("vehicles-for-agency", agency_ids, client.fetch_vehicles_for_agency, max_workers),
            keep=in_box,
        )
    except Exception as e:
        logger.error(f"Agency-based vehicle search failed: {e}")

    logger.debug(f"Vehicle search finished with {len(found.vehicles)} vehicles")
    return found.vehicles


def fetch_vehicles_near(
    client: "OBAClient",
    location_provider: LocationProvider,
    span: float = 0.02,
) -> List[TripForLocation]:
    """
    Vehicles around wherever ``location_provider`` says the user is.

    Args:
        client: Client used for every request.
        location_provider: Returns (lat, lon), or None when no fix is available.
        span: Box size in degrees, used for both axes.
    """
    location = location_provider()
    if location is None:
        logger.info("No location available, skipping vehicle search")
        return []
    latitude, longitude = location
    return fetch_vehicles_reliably(client, latitude, longitude, span, span, client.max_workers)
