"""
Conversion from raw response models to domain models.

Nothing in here raises. Missing critical identifiers are replaced with a
placeholder ("unknown", or "" where the id is only used for display) and
logged, so one inconsistent record never takes down a whole response.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from .models import (
    AgencyCoverage,
    Arrival,
    ArrivalsResult,
    NearbyStopsResult,
    Position,
    Route,
    RouteDirection,
    ScheduleStatus,
    Stop,
    StopSchedule,
    StopScheduleStopTime,
    StopTime,
    TripDetails,
    TripExtendedDetails,
    TripForLocation,
    TripSchedule,
    TripStatus,
    Vehicle,
    VehicleTripStatus,
)
from .raw_models import (
    RawAgencyWithCoverage,
    RawArrival,
    RawArrivalsResponse,
    RawLatLon,
    RawReferences,
    RawRoute,
    RawScheduleForRoute,
    RawStop,
    RawStopSchedule,
    RawStopsForLocationResponse,
    RawStopsForRoute,
    RawTrip,
    RawTripExtendedDetails,
    RawTripRecord,
    RawTripSchedule,
    RawTripStatus,
    RawVehicleStatus,
)

logger = logging.getLogger(__name__)

UNKNOWN_ID = "unknown"
UNKNOWN_NAME = "Unknown"
EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def _require(value: Optional[str], placeholder: str, what: str) -> str:
    if value:
        return value
    logger.warning(f"Missing {what}, using {placeholder!r}")
    return placeholder


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    return value if value else None


# ---------------------------------------------------------------------------
# Stops and routes
# ---------------------------------------------------------------------------

def to_domain_stop(raw: RawStop, route_names: Optional[str] = None) -> Stop:
    """
    Build a Stop, substituting "unknown"/"Unknown"/0.0 for missing basics.

    Args:
        raw: Decoded stop record.
        route_names: Optional comma-joined summary of serving routes.
    """
    if raw.lat is None or raw.lon is None:
        logger.warning(f"Stop {raw.id!r} has no coordinates, using 0.0")
    return Stop(
        id=_require(raw.id, UNKNOWN_ID, "stop id"),
        name=raw.name if raw.name is not None else UNKNOWN_NAME,
        latitude=raw.lat if raw.lat is not None else 0.0,
        longitude=raw.lon if raw.lon is not None else 0.0,
        code=raw.code,
        direction=_blank_to_none(raw.direction),
        route_names=route_names,
        location_type=raw.location_type,
    )


def _agency_names(references: Optional[RawReferences]) -> Dict[str, str]:
    if references is None:
        return {}
    return {a.id: a.name for a in references.agencies if a.id and a.name}


def to_domain_route(raw: RawRoute, references: Optional[RawReferences] = None) -> Route:
    """Long name falls back to description; agency name comes from references.agencies."""
    long_name = raw.long_name if raw.long_name else raw.description
    return Route(
        id=_require(raw.id, UNKNOWN_ID, "route id"),
        short_name=raw.short_name,
        long_name=long_name,
        agency_name=_agency_names(references).get(raw.agency_id or ""),
    )


def to_domain_routes(raws: Iterable[RawRoute], references: Optional[RawReferences] = None) -> List[Route]:
    return [to_domain_route(r, references) for r in raws]


def _route_label(route: RawRoute) -> Optional[str]:
    return route.short_name or route.long_name or None


def routes_serving_stop(stop: Optional[RawStop], references: RawReferences) -> List[Route]:
    """
    Routes for a stop: embedded ``stop.routes`` first, then the reference table.

    When the stop lists ``routeIds`` the reference table is narrowed to them.
    """
    if stop is not None and stop.routes:
        return to_domain_routes(stop.routes, references)
    routes = references.routes
    if stop is not None and stop.route_ids:
        wanted = set(stop.route_ids)
        routes = [r for r in routes if r.id in wanted]
    return to_domain_routes(routes, references)


def stop_id_to_route_names(stops: Sequence[RawStop], references: RawReferences) -> Dict[str, str]:
    """Map each stop id to the comma-joined labels of the routes it lists."""
    labels = {r.id: _route_label(r) for r in references.routes if r.id}
    mapping: Dict[str, str] = {}
    for stop in stops:
        if not stop.id:
            continue
        names = [labels[rid] for rid in stop.route_ids if labels.get(rid)]
        if names:
            mapping[stop.id] = ", ".join(names)
    return mapping


def to_domain_nearby_stops(response: RawStopsForLocationResponse) -> NearbyStopsResult:
    route_names = stop_id_to_route_names(response.stops, response.references)
    stops = tuple(
        to_domain_stop(s, route_names.get(s.id or "")) for s in response.stops
    )
    return NearbyStopsResult(stops=stops, stop_id_to_route_names=route_names)


def to_domain_directions(data: RawStopsForRoute) -> List[RouteDirection]:
    """
    Directions of a route, each with its stops in travel order.

    Stop ids absent from the reference table are dropped, and so are
    directions left with no stops.
    """
    stop_by_id = {s.id: to_domain_stop(s) for s in data.references.stops if s.id}
    groupings = data.stop_groupings or (data.entry.stop_groupings if data.entry else [])

    directions: List[RouteDirection] = []
    for grouping in groupings:
        for index, group in enumerate(grouping.stop_groups):
            stops = tuple(stop_by_id[sid] for sid in group.stop_ids if sid in stop_by_id)
            if not stops:
                continue
            directions.append(
                RouteDirection(
                    id=group.id or str(index),
                    name=group.name or UNKNOWN_NAME,
                    stops=stops,
                )
            )
    return directions


def polyline_points(data: RawStopsForRoute) -> str:
    """Concatenated encoded polylines, top-level first, then from the stop groups."""
    points = "".join(p.points for p in data.polylines if p.points)
    if points:
        return points
    if data.entry is not None:
        points = "".join(p.points for p in data.entry.polylines if p.points)
        if points:
            return points
    groupings = data.stop_groupings or (data.entry.stop_groupings if data.entry else [])
    return "".join(
        p.points
        for grouping in groupings
        for group in grouping.stop_groups
        for p in group.polylines
        if p.points
    )


def first_shape_id(data: RawScheduleForRoute) -> Optional[str]:
    """First shape id among the schedule's trips, falling back to references.trips."""
    trips: List[RawTrip] = list(data.entry.trips) if data.entry else []
    trips += data.trips
    trips += data.references.trips
    return next((t.shape_id for t in trips if t.shape_id), None)


# ---------------------------------------------------------------------------
# Arrivals
# ---------------------------------------------------------------------------

def to_domain_arrival(
    raw: RawArrival,
    now: datetime,
    references: Optional[RawReferences] = None,
) -> Arrival:
    """
    Build an Arrival relative to ``now``.

    The best available time (predicted arrival, predicted departure,
    scheduled arrival, scheduled departure) gives minutes-from-now, truncated
    toward zero. Deviation is measured against the scheduled departure.
    """
    best = (
        raw.predicted_arrival_time
        or raw.predicted_departure_time
        or raw.scheduled_arrival_time
        or raw.scheduled_departure_time
        or now
    )
    scheduled = raw.scheduled_departure_time or raw.scheduled_arrival_time or now
    minutes = int((best - now).total_seconds() / 60)
    deviation = (best - scheduled).total_seconds() / 60
    predicted = bool(raw.predicted)

    stop_id = _require(raw.stop_id, "", "arrival stop id")
    trip_id = _require(raw.trip_id, "", "arrival trip id")
    route_id = _require(raw.route_id, "", "arrival route id")

    short_name = raw.route_short_name
    headsign = raw.trip_headsign
    if references is not None and (not short_name or not headsign):
        route = next((r for r in references.routes if r.id == route_id), None)
        trip = next((t for t in references.trips if t.id == trip_id), None)
        if not short_name:
            short_name = (route and _route_label(route)) or (trip and trip.route_short_name) or short_name
        if not headsign and trip is not None:
            headsign = trip.trip_headsign

    return Arrival(
        id=raw.id or Arrival.composite_id(stop_id, trip_id, route_id),
        stop_id=stop_id,
        route_id=route_id,
        trip_id=trip_id,
        minutes_from_now=minutes,
        is_predicted=predicted,
        schedule_status=ScheduleStatus.from_deviation(deviation, predicted),
        vehicle_id=_blank_to_none(raw.vehicle_id),
        route_short_name=short_name,
        headsign=headsign,
        service_date=raw.service_date,
        stop_sequence=raw.stop_sequence,
    )


def dedupe_arrivals(arrivals: Iterable[Arrival]) -> List[Arrival]:
    """
    Merge duplicate (stop, trip, route) arrivals, keeping the first position.

    Terminals often report a trip's arrival and departure as two records;
    a real-time record replaces a scheduled-only one.
    """
    merged: Dict[str, Arrival] = {}
    for arrival in arrivals:
        key = Arrival.composite_id(arrival.stop_id, arrival.trip_id, arrival.route_id)
        existing = merged.get(key)
        if existing is None or (arrival.is_predicted and not existing.is_predicted):
            merged[key] = arrival
    return list(merged.values())


def to_domain_arrivals(
    raws: Iterable[RawArrival],
    now: datetime,
    references: Optional[RawReferences] = None,
) -> List[Arrival]:
    return dedupe_arrivals(to_domain_arrival(r, now, references) for r in raws)


def to_domain_arrivals_result(response: RawArrivalsResponse, now: datetime) -> ArrivalsResult:
    stop = response.stop
    return ArrivalsResult(
        arrivals=tuple(to_domain_arrivals(response.arrivals, now, response.references)),
        routes=tuple(routes_serving_stop(stop, response.references)),
        stop_name=stop.name if stop else None,
        stop_code=stop.code if stop else None,
        stop_direction=_blank_to_none(stop.direction) if stop else None,
    )


# ---------------------------------------------------------------------------
# Vehicles and trips
# ---------------------------------------------------------------------------

def _position(raw: Optional[RawLatLon]) -> Optional[Position]:
    if raw is None or raw.lat is None or raw.lon is None:
        return None
    return Position(lat=raw.lat, lon=raw.lon)


def to_domain_trip_status(raw: RawTripStatus) -> TripStatus:
    return TripStatus(
        active_trip_id=raw.active_trip_id,
        block_trip_sequence=raw.block_trip_sequence,
        service_date=raw.service_date,
        schedule_deviation=raw.schedule_deviation,
        vehicle_id=_blank_to_none(raw.vehicle_id),
        closest_stop=raw.closest_stop,
        next_stop=raw.next_stop,
        last_location_update_time=raw.last_location_update_time,
        last_update_time=raw.last_update_time,
        position=_position(raw.position),
        orientation=raw.orientation,
        predicted=raw.predicted,
    )


def to_domain_vehicle(raw: RawVehicleStatus, references: Optional[RawReferences] = None) -> Vehicle:
    """Build a Vehicle; location falls back to the trip status position."""
    position = _position(raw.location)
    if position is None and raw.trip_status is not None:
        position = _position(raw.trip_status.position)
    trip_id = raw.trip_id or (raw.trip_status.active_trip_id if raw.trip_status else None)

    short_name = raw.route_short_name
    headsign = raw.trip_headsign
    if references is not None and trip_id and (not short_name or not headsign):
        trip = next((t for t in references.trips if t.id == trip_id), None)
        if trip is not None:
            headsign = headsign or trip.trip_headsign
            if not short_name:
                route = next((r for r in references.routes if r.id == trip.route_id), None)
                short_name = trip.route_short_name or (route and _route_label(route)) or short_name

    return Vehicle(
        id=_require(raw.vehicle_id, UNKNOWN_ID, "vehicle id"),
        last_update_time=raw.last_update_time,
        last_location_update_time=raw.last_location_update_time,
        latitude=position.lat if position else None,
        longitude=position.lon if position else None,
        phase=raw.phase or (raw.trip_status.phase if raw.trip_status else None),
        status=raw.status,
        trip_id=trip_id,
        route_short_name=short_name,
        trip_headsign=headsign,
    )


def to_domain_trip_for_location(raw: RawTripRecord, references: RawReferences) -> TripForLocation:
    """
    Flatten one trips-for-location style record.

    Inline fields win over the nested status object; the route id may only be
    known through ``references.trips`` and the short name through
    ``references.routes``.
    """
    status = raw.status
    position = _position(raw.location)
    if position is None and status is not None:
        position = _position(status.position)

    trip_id = raw.trip_id or (status.active_trip_id if status else None)
    trip_ref = next((t for t in references.trips if trip_id and t.id == trip_id), None)

    route_id = raw.route_id or (trip_ref.route_id if trip_ref else None)
    short_name = raw.route_short_name or (trip_ref.route_short_name if trip_ref else None)
    if not short_name and route_id:
        route = next((r for r in references.routes if r.id == route_id), None)
        if route is not None:
            short_name = _route_label(route)

    vehicle_id = raw.vehicle_id or (status.vehicle_id if status else None) or ""
    return TripForLocation(
        id=_require(trip_id, "", "trip id on trip-for-location record"),
        vehicle_id=vehicle_id,
        latitude=position.lat if position else None,
        longitude=position.lon if position else None,
        orientation=raw.orientation if raw.orientation is not None else (status.orientation if status else None),
        route_id=route_id,
        route_short_name=short_name,
        trip_headsign=raw.trip_headsign or (trip_ref.trip_headsign if trip_ref else None),
        last_update_time=raw.last_update_time or (status.last_update_time if status else None),
        schedule_deviation=(
            raw.schedule_deviation if raw.schedule_deviation is not None
            else (status.schedule_deviation if status else None)
        ),
        predicted=raw.predicted if raw.predicted is not None else (status.predicted if status else None),
    )


def to_domain_trips_for_location(raws: Iterable[RawTripRecord], references: RawReferences) -> List[TripForLocation]:
    return [to_domain_trip_for_location(r, references) for r in raws]


def to_domain_trip(raw: RawTrip) -> TripDetails:
    return TripDetails(
        id=_require(raw.id, UNKNOWN_ID, "trip id"),
        route_id=_require(raw.route_id, UNKNOWN_ID, "trip route id"),
        service_id=_require(raw.service_id, UNKNOWN_ID, "trip service id"),
        headsign=raw.trip_headsign,
        shape_id=raw.shape_id,
        direction_id=raw.direction_id,
        block_id=raw.block_id,
    )


def to_domain_trip_schedule(raw: RawTripSchedule, references: RawReferences) -> TripSchedule:
    """Stop times get the stop's name as headsign fallback and its coordinates."""
    stops = {s.id: s for s in references.stops if s.id}
    stop_times = []
    for st in raw.stop_times:
        ref = stops.get(st.stop_id or "")
        stop_times.append(
            StopTime(
                stop_id=st.stop_id,
                arrival_time=st.arrival_time,
                departure_time=st.departure_time,
                stop_headsign=st.stop_headsign or (ref.name if ref else None),
                distance_along_trip=st.distance_along_trip,
                historical_occupancy=st.historical_occupancy,
                latitude=ref.lat if ref else None,
                longitude=ref.lon if ref else None,
            )
        )
    return TripSchedule(
        stop_times=tuple(stop_times),
        time_zone=raw.time_zone,
        previous_trip_id=raw.previous_trip_id,
        next_trip_id=raw.next_trip_id,
        frequency=raw.frequency,
    )


def to_domain_trip_extended_details(raw: RawTripExtendedDetails, references: RawReferences) -> TripExtendedDetails:
    return TripExtendedDetails(
        trip_id=raw.trip_id,
        service_date=raw.service_date,
        frequency=raw.frequency,
        status=to_domain_trip_status(raw.status) if raw.status else None,
        schedule=to_domain_trip_schedule(raw.schedule, references) if raw.schedule else None,
    )


def to_domain_vehicle_trip_status(raw: RawTripExtendedDetails, references: RawReferences) -> VehicleTripStatus:
    details = to_domain_trip_extended_details(raw, references)
    return VehicleTripStatus(
        trip_id=details.trip_id,
        service_date=details.service_date,
        status=details.status,
        schedule=details.schedule,
    )


# ---------------------------------------------------------------------------
# Schedules and agencies
# ---------------------------------------------------------------------------

def to_domain_stop_schedule(raw: RawStopSchedule) -> StopSchedule:
    """Flatten every route/direction timetable into one list ordered by arrival."""
    stop_times = []
    for route_schedule in raw.stop_route_schedules:
        for direction in route_schedule.stop_route_direction_schedules:
            for st in direction.schedule_stop_times:
                stop_times.append(
                    StopScheduleStopTime(
                        trip_id=_require(st.trip_id, UNKNOWN_ID, "scheduled trip id"),
                        arrival_time=st.arrival_time or EPOCH,
                        departure_time=st.departure_time or EPOCH,
                        stop_headsign=st.stop_headsign or direction.trip_headsign or None,
                        route_id=route_schedule.route_id,
                    )
                )
    stop_times.sort(key=lambda st: st.arrival_time)
    return StopSchedule(
        stop_id=_require(raw.stop_id, UNKNOWN_ID, "schedule stop id"),
        date=raw.date or EPOCH,
        stop_times=tuple(stop_times),
    )


def to_domain_agency(raw: RawAgencyWithCoverage, references: Optional[RawReferences] = None) -> AgencyCoverage:
    agency_id = raw.agency_id or (raw.agency.id if raw.agency else None)
    name = raw.agency.name if raw.agency else None
    return AgencyCoverage(
        agency_id=_require(agency_id, UNKNOWN_ID, "agency id"),
        center_latitude=raw.lat if raw.lat is not None else 0.0,
        center_longitude=raw.lon if raw.lon is not None else 0.0,
        name=name or _agency_names(references).get(agency_id or ""),
    )


def to_domain_agencies(raws: Iterable[RawAgencyWithCoverage], references: Optional[RawReferences] = None) -> List[AgencyCoverage]:
    return [to_domain_agency(r, references) for r in raws]
