"""
Decode-only models for OneBusAway JSON responses.

Deployments disagree on field names, on number-vs-string encodings and on
where the payload sits inside the envelope (``data.entry``, ``data.list``,
directly under ``data`` or bare at the top level). Every field below accepts
the known spellings through ``AliasChoices`` and every response type lists
the wrapper paths it accepts, tried in order until one validates.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Annotated, Any, List, Optional, Sequence, Tuple, TypeVar

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Path = Tuple[str, ...]
_MISSING = object()

# Keys that mark a node as an envelope or wrapper rather than an entity.
WRAPPER_KEYS = frozenset({"data", "entry", "list"})


# ---------------------------------------------------------------------------
# Lenient scalar types
# ---------------------------------------------------------------------------

def _to_str(value: Any) -> Any:
    """Numbers become strings ("code": 12345 -> "12345"); containers become None."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, (dict, list)):
        return None
    return value


def _to_int(value: Any) -> Any:
    """Floats and numeric strings are rounded; infinities and garbage become None."""
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return None
    if isinstance(value, float):
        return int(round(value)) if math.isfinite(value) else None
    return value


def _from_millis(value: Any) -> Any:
    """Milliseconds since the epoch -> aware UTC datetime. Zero means "no value"."""
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if value <= 0 or (isinstance(value, float) and not math.isfinite(value)):
            return None
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.warning(f"Ignoring out-of-range timestamp {value}")
            return None
    return value


def _none_to_list(value: Any) -> Any:
    return [] if value is None else value


def _dict_or_none(value: Any) -> Any:
    # "status" is an object in trip payloads but a plain string in vehicle ones.
    return value if isinstance(value, dict) else None


def _group_name(value: Any) -> Any:
    if isinstance(value, dict):
        names = value.get("names")
        first = names[0] if isinstance(names, list) and names else None
        return _to_str(value.get("name") or first)
    return _to_str(value)


LenientStr = Annotated[Optional[str], BeforeValidator(_to_str)]
StrId = Annotated[str, BeforeValidator(_to_str)]
LenientInt = Annotated[Optional[int], BeforeValidator(_to_int)]
EpochMillis = Annotated[Optional[datetime], BeforeValidator(_from_millis)]
RequiredEpochMillis = Annotated[datetime, BeforeValidator(_from_millis)]
LenientList = Annotated[List[T], BeforeValidator(_none_to_list)]


def alias(*names: str, default: Any = None) -> Any:
    return Field(default, validation_alias=AliasChoices(*names))


def list_alias(*names: str) -> Any:
    return Field(default_factory=list, validation_alias=AliasChoices(*names))


class RawModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

class RawAgency(RawModel):
    id: LenientStr = alias("id", "agencyId")
    name: Optional[str] = None


class RawRoute(RawModel):
    id: LenientStr = alias("id", "routeId")
    short_name: LenientStr = alias("shortName", "short_name", "routeShortName")
    long_name: Optional[str] = alias("longName", "long_name", "routeLongName")
    description: Optional[str] = alias("description", "desc")
    agency_id: LenientStr = alias("agencyId", "agency_id")


class RawStop(RawModel):
    id: LenientStr = alias("id", "stopId")
    name: Optional[str] = None
    lat: Optional[float] = alias("lat", "latitude")
    lon: Optional[float] = alias("lon", "lng", "longitude")
    code: LenientStr = None
    direction: Optional[str] = None
    route_ids: LenientList[StrId] = list_alias("routeIds", "routeIDs", "route_ids")
    location_type: LenientInt = alias("locationType", "location_type")
    routes: LenientList[RawRoute] = list_alias("routes")


class RawTrip(RawModel):
    """A trip as served by trip/{id}.json and by ``references.trips``."""
    id: LenientStr = alias("id", "tripId")
    route_id: LenientStr = alias("routeId", "routeID", "route_id")
    trip_headsign: Optional[str] = alias("tripHeadsign", "headsign")
    service_id: LenientStr = alias("serviceId", "serviceID")
    shape_id: LenientStr = alias("shapeId", "shapeID")
    direction_id: LenientStr = alias("directionId", "directionID")
    block_id: LenientStr = alias("blockId", "blockID")
    route_short_name: LenientStr = alias("routeShortName")


class RawReferences(RawModel):
    agencies: LenientList[RawAgency] = list_alias("agencies")
    routes: LenientList[RawRoute] = list_alias("routes")
    stops: LenientList[RawStop] = list_alias("stops")
    trips: LenientList[RawTrip] = list_alias("trips")


class RawLatLon(RawModel):
    lat: Optional[float] = alias("lat", "latitude")
    lon: Optional[float] = alias("lon", "lng", "longitude")


class RawArrival(RawModel):
    id: LenientStr = None
    stop_id: LenientStr = alias("stopId", "stopID", "stop_id")
    route_id: LenientStr = alias("routeId", "routeID", "route_id")
    trip_id: LenientStr = alias("tripId", "tripID", "trip_id")
    route_short_name: LenientStr = alias("routeShortName", "route_short_name")
    trip_headsign: Optional[str] = alias("tripHeadsign", "headsign")
    vehicle_id: LenientStr = alias("vehicleId", "vehicleID", "vehicle_id")
    predicted: Optional[bool] = None
    predicted_arrival_time: EpochMillis = alias("predictedArrivalTime")
    predicted_departure_time: EpochMillis = alias("predictedDepartureTime")
    scheduled_arrival_time: EpochMillis = alias("scheduledArrivalTime")
    scheduled_departure_time: EpochMillis = alias("scheduledDepartureTime")
    service_date: EpochMillis = alias("serviceDate")
    stop_sequence: LenientInt = alias("stopSequence")


class RawTripStatus(RawModel):
    active_trip_id: LenientStr = alias("activeTripId", "activeTripID")
    block_trip_sequence: LenientInt = alias("blockTripSequence")
    service_date: EpochMillis = alias("serviceDate")
    schedule_deviation: LenientInt = alias("scheduleDeviation")
    vehicle_id: LenientStr = alias("vehicleId", "vehicleID")
    closest_stop: LenientStr = alias("closestStop")
    next_stop: LenientStr = alias("nextStop")
    last_location_update_time: EpochMillis = alias("lastLocationUpdateTime")
    last_update_time: EpochMillis = alias("lastUpdateTime")
    position: Optional[RawLatLon] = alias("position", "location", "lastKnownLocation")
    orientation: Optional[float] = alias("orientation", "lastKnownOrientation")
    predicted: Optional[bool] = None
    phase: Optional[str] = None


StatusObject = Annotated[Optional[RawTripStatus], BeforeValidator(_dict_or_none)]


class RawVehicleStatus(RawModel):
    vehicle_id: LenientStr = alias("vehicleId", "vehicleID", "id")
    last_update_time: EpochMillis = alias("lastUpdateTime")
    last_location_update_time: EpochMillis = alias("lastLocationUpdateTime")
    location: Optional[RawLatLon] = alias("location", "position")
    phase: LenientStr = None
    status: LenientStr = None
    trip_id: LenientStr = alias("tripId", "tripID")
    route_short_name: LenientStr = alias("routeShortName")
    trip_headsign: Optional[str] = alias("tripHeadsign")
    trip_status: StatusObject = alias("tripStatus")


class RawTripRecord(RawModel):
    """
    One row of trips-for-location, trips-for-route or vehicles-for-agency.

    Rows are either flat (vehicle fields inline) or nest them under
    ``status``/``tripStatus``.
    """
    trip_id: LenientStr = alias("tripId", "tripID")
    vehicle_id: LenientStr = alias("vehicleId", "vehicleID")
    last_update_time: EpochMillis = alias("lastUpdateTime")
    location: Optional[RawLatLon] = alias("location", "position")
    orientation: Optional[float] = None
    route_id: LenientStr = alias("routeId", "routeID")
    route_short_name: LenientStr = alias("routeShortName")
    trip_headsign: Optional[str] = alias("tripHeadsign")
    schedule_deviation: LenientInt = alias("scheduleDeviation")
    predicted: Optional[bool] = None
    status: StatusObject = alias("tripStatus", "status")


class RawPolyline(RawModel):
    points: Optional[str] = None
    length: LenientInt = None
    levels: Optional[str] = None


class RawStopGroup(RawModel):
    id: LenientStr = None
    name: Annotated[Optional[str], BeforeValidator(_group_name)] = None
    stop_ids: LenientList[StrId] = list_alias("stopIds", "stopIDs")
    polylines: LenientList[RawPolyline] = list_alias("polylines")


class RawStopGrouping(RawModel):
    type: Optional[str] = None
    ordered: Optional[bool] = None
    stop_groups: LenientList[RawStopGroup] = list_alias("stopGroups")


class RawStopsForRouteEntry(RawModel):
    route_id: LenientStr = alias("routeId")
    stop_ids: LenientList[StrId] = list_alias("stopIds", "stopIDs")
    stop_groupings: LenientList[RawStopGrouping] = list_alias("stopGroupings")
    polylines: LenientList[RawPolyline] = list_alias("polylines")


class RawStopsForRoute(RawModel):
    """The ``data`` object of stops-for-route; groupings sit inline or under ``entry``."""
    polylines: LenientList[RawPolyline] = list_alias("polylines")
    stop_groupings: LenientList[RawStopGrouping] = list_alias("stopGroupings")
    entry: Optional[RawStopsForRouteEntry] = None
    references: RawReferences = Field(default_factory=RawReferences)


class RawShape(RawModel):
    points: str
    length: LenientInt = None
    levels: Optional[str] = None


class RawScheduleForRouteEntry(RawModel):
    route_id: LenientStr = alias("routeId")
    trips: LenientList[RawTrip] = list_alias("trips")


class RawScheduleForRoute(RawModel):
    trips: LenientList[RawTrip] = list_alias("trips")
    entry: Optional[RawScheduleForRouteEntry] = None
    references: RawReferences = Field(default_factory=RawReferences)


class RawScheduleStopTime(RawModel):
    trip_id: LenientStr = alias("tripId")
    arrival_time: EpochMillis = alias("arrivalTime")
    departure_time: EpochMillis = alias("departureTime")
    stop_headsign: Optional[str] = alias("stopHeadsign")
    service_id: LenientStr = alias("serviceId")


class RawStopRouteDirectionSchedule(RawModel):
    trip_headsign: Optional[str] = alias("tripHeadsign")
    schedule_stop_times: LenientList[RawScheduleStopTime] = list_alias("scheduleStopTimes")


class RawStopRouteSchedule(RawModel):
    route_id: LenientStr = alias("routeId")
    stop_route_direction_schedules: LenientList[RawStopRouteDirectionSchedule] = list_alias(
        "stopRouteDirectionSchedules"
    )


class RawStopSchedule(RawModel):
    stop_id: LenientStr = alias("stopId")
    date: EpochMillis = None
    stop_route_schedules: LenientList[RawStopRouteSchedule] = list_alias("stopRouteSchedules")


class RawAgencyWithCoverage(RawModel):
    agency_id: LenientStr = alias("agencyId")
    agency: Optional[RawAgency] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    lat_span: Optional[float] = alias("latSpan")
    lon_span: Optional[float] = alias("lonSpan")


class RawStopTime(RawModel):
    stop_id: LenientStr = alias("stopId")
    arrival_time: LenientInt = alias("arrivalTime")
    departure_time: LenientInt = alias("departureTime")
    stop_headsign: Optional[str] = alias("stopHeadsign")
    distance_along_trip: Optional[float] = alias("distanceAlongTrip")
    historical_occupancy: LenientStr = alias("historicalOccupancy")


class RawTripSchedule(RawModel):
    time_zone: Optional[str] = alias("timeZone")
    stop_times: LenientList[RawStopTime] = list_alias("stopTimes")
    previous_trip_id: LenientStr = alias("previousTripId")
    next_trip_id: LenientStr = alias("nextTripId")
    frequency: LenientStr = None


class RawTripExtendedDetails(RawModel):
    trip_id: LenientStr = alias("tripId", "id")
    service_date: EpochMillis = alias("serviceDate")
    frequency: LenientStr = None
    status: StatusObject = alias("status", "tripStatus")
    schedule: Optional[RawTripSchedule] = None


# ---------------------------------------------------------------------------
# Wrapper resolution
# ---------------------------------------------------------------------------

class NoMatchingShape(ValueError):
    """None of the known wrapper paths held a payload of the expected shape."""


def dig(payload: Any, path: Path) -> Any:
    node = payload
    for key in path:
        if not isinstance(node, dict) or key not in node:
            return _MISSING
        node = node[key]
    return node


def _format_path(path: Path) -> str:
    return ".".join(path) or "<top level>"


def decode_first(payload: Any, target: Any, paths: Sequence[Path], single: bool = False) -> Any:
    """
    Validate the first node along ``paths`` that matches ``target``.

    Args:
        payload: Parsed JSON body.
        target: A model class or any type pydantic can validate.
        paths: Candidate key paths, highest priority first; ``()`` is the top level.
        single: When True the target is a single entity: a non-empty JSON array
            stands for its first element and wrapper objects are skipped.

    Raises:
        NoMatchingShape: If no path validates.
    """
    adapter = TypeAdapter(target)
    failures = []
    for path in paths:
        node = dig(payload, path)
        if node is _MISSING or node is None:
            continue
        if single and isinstance(node, list):
            if not node:
                continue
            node = node[0]
        if single and isinstance(node, dict) and WRAPPER_KEYS & node.keys():
            continue
        try:
            return adapter.validate_python(node)
        except ValidationError as exc:
            failures.append(f"{_format_path(path)}: {exc.error_count()} error(s)")
    tried = ", ".join(_format_path(p) for p in paths)
    detail = "; ".join(failures) if failures else "no candidate present"
    raise NoMatchingShape(f"expected {getattr(target, '__name__', target)} at one of [{tried}] ({detail})")


def decode_optional(payload: Any, target: Any, paths: Sequence[Path], default: Any = None, single: bool = False) -> Any:
    """Like decode_first, but a missing or unparsable substructure becomes ``default``."""
    try:
        return decode_first(payload, target, paths, single=single)
    except NoMatchingShape as exc:
        if any(dig(payload, p) not in (_MISSING, None) for p in paths):
            logger.warning(f"Ignoring unparsable substructure: {exc}")
        return default


REFERENCES_PATHS: Tuple[Path, ...] = (("data", "references"), ("references",))


def decode_references(payload: Any) -> RawReferences:
    return decode_optional(payload, RawReferences, REFERENCES_PATHS, default=RawReferences())


# ---------------------------------------------------------------------------
# Per-endpoint responses
# ---------------------------------------------------------------------------

STOP_PATHS: Tuple[Path, ...] = (
    ("data", "entry"),
    ("data", "list"),
    ("data", "stop"),
    ("data",),
    (),
)

ARRIVAL_LIST_PATHS: Tuple[Path, ...] = (
    ("data", "entry", "arrivalsAndDepartures"),
    ("data", "arrivalsAndDepartures"),
    ("data", "list"),
    ("data", "entry"),
    ("data",),
    (),
)

ARRIVAL_STOP_PATHS: Tuple[Path, ...] = (
    ("data", "entry", "stop"),
    ("data", "stop"),
)

ARRIVAL_STOP_ID_PATHS: Tuple[Path, ...] = (
    ("data", "entry", "stopId"),
    ("data", "stopId"),
)

SINGLE_ENTRY_PATHS: Tuple[Path, ...] = (
    ("data", "entry"),
    ("data", "list"),
    ("data",),
    (),
)

ROUTE_LIST_PATHS: Tuple[Path, ...] = (
    ("data", "list"),
    ("data", "routes"),
    ("data", "entry", "routes"),
    ("data",),
    (),
)

STOP_LIST_PATHS: Tuple[Path, ...] = (
    ("data", "list"),
    ("data", "stops"),
    ("data",),
    (),
)

TRIP_LIST_PATHS: Tuple[Path, ...] = (
    ("data", "list"),
    ("data", "vehicles"),
    ("data", "trips"),
    ("data",),
    (),
)

AGENCY_LIST_PATHS: Tuple[Path, ...] = (
    ("data", "list"),
    ("data",),
    (),
)

TRIP_DETAILS_PATHS: Tuple[Path, ...] = (
    ("data", "entry"),
    ("data", "tripDetails"),
)

CURRENT_TIME_PATHS: Tuple[Path, ...] = (
    ("currentTime",),
    ("data", "entry", "time"),
    ("data", "time"),
)

DATA_PATHS: Tuple[Path, ...] = (("data",),)


class RawStopResponse(RawModel):
    stop: RawStop
    references: RawReferences = Field(default_factory=RawReferences)

    @classmethod
    def from_payload(cls, payload: Any) -> "RawStopResponse":
        return cls(
            stop=decode_first(payload, RawStop, STOP_PATHS, single=True),
            references=decode_references(payload),
        )


class RawArrivalsResponse(RawModel):
    arrivals: List[RawArrival] = Field(default_factory=list)
    stop: Optional[RawStop] = None
    references: RawReferences = Field(default_factory=RawReferences)

    @classmethod
    def from_payload(cls, payload: Any) -> "RawArrivalsResponse":
        references = decode_references(payload)
        stop = decode_optional(payload, RawStop, ARRIVAL_STOP_PATHS)
        if stop is None:
            # Standard servers only name the stop; its body is in the references table.
            stop_id = next(
                (dig(payload, p) for p in ARRIVAL_STOP_ID_PATHS if dig(payload, p) not in (_MISSING, None)),
                None,
            )
            stop = next((s for s in references.stops if stop_id is not None and s.id == str(stop_id)), None)
        return cls(
            arrivals=decode_first(payload, List[RawArrival], ARRIVAL_LIST_PATHS),
            stop=stop,
            references=references,
        )


class RawArrivalResponse(RawModel):
    arrival: RawArrival
    references: RawReferences = Field(default_factory=RawReferences)

    @classmethod
    def from_payload(cls, payload: Any) -> "RawArrivalResponse":
        return cls(
            arrival=decode_first(payload, RawArrival, SINGLE_ENTRY_PATHS, single=True),
            references=decode_references(payload),
        )


class RawRoutesResponse(RawModel):
    routes: List[RawRoute] = Field(default_factory=list)
    references: RawReferences = Field(default_factory=RawReferences)

    @classmethod
    def from_payload(cls, payload: Any) -> "RawRoutesResponse":
        return cls(
            routes=decode_first(payload, List[RawRoute], ROUTE_LIST_PATHS),
            references=decode_references(payload),
        )


class RawStopsForLocationResponse(RawModel):
    stops: List[RawStop] = Field(default_factory=list)
    references: RawReferences = Field(default_factory=RawReferences)

    @classmethod
    def from_payload(cls, payload: Any) -> "RawStopsForLocationResponse":
        return cls(
            stops=decode_first(payload, List[RawStop], STOP_LIST_PATHS),
            references=decode_references(payload),
        )


class RawTripsResponse(RawModel):
    trips: List[RawTripRecord] = Field(default_factory=list)
    references: RawReferences = Field(default_factory=RawReferences)

    @classmethod
    def from_payload(cls, payload: Any) -> "RawTripsResponse":
        return cls(
            trips=decode_first(payload, List[RawTripRecord], TRIP_LIST_PATHS),
            references=decode_references(payload),
        )


class RawVehicleResponse(RawModel):
    vehicle: RawVehicleStatus
    references: RawReferences = Field(default_factory=RawReferences)

    @classmethod
    def from_payload(cls, payload: Any) -> "RawVehicleResponse":
        return cls(
            vehicle=decode_first(payload, RawVehicleStatus, SINGLE_ENTRY_PATHS, single=True),
            references=decode_references(payload),
        )


class RawTripResponse(RawModel):
    trip: RawTrip
    references: RawReferences = Field(default_factory=RawReferences)

    @classmethod
    def from_payload(cls, payload: Any) -> "RawTripResponse":
        return cls(
            trip=decode_first(payload, RawTrip, SINGLE_ENTRY_PATHS, single=True),
            references=decode_references(payload),
        )


class RawTripDetailsResponse(RawModel):
    details: Optional[RawTripExtendedDetails] = None
    references: RawReferences = Field(default_factory=RawReferences)

    @classmethod
    def from_payload(cls, payload: Any) -> "RawTripDetailsResponse":
        return cls(
            details=decode_optional(payload, RawTripExtendedDetails, TRIP_DETAILS_PATHS),
            references=decode_references(payload),
        )

    @classmethod
    def from_any_wrapper(cls, payload: Any) -> "RawTripDetailsResponse":
        """trip-for-vehicle: the details may sit under any of the usual wrappers."""
        return cls(
            details=decode_first(payload, RawTripExtendedDetails, SINGLE_ENTRY_PATHS, single=True),
            references=decode_references(payload),
        )


class RawStopsForRouteResponse(RawModel):
    data: RawStopsForRoute = Field(default_factory=RawStopsForRoute)

    @classmethod
    def from_payload(cls, payload: Any) -> "RawStopsForRouteResponse":
        data = decode_optional(payload, RawStopsForRoute, DATA_PATHS)
        if data is None:
            logger.warning("stops-for-route response had no usable data object, using empty data")
            data = RawStopsForRoute()
        return cls(data=data)


class RawShapeResponse(RawModel):
    shape: RawShape

    @classmethod
    def from_payload(cls, payload: Any) -> "RawShapeResponse":
        return cls(shape=decode_first(payload, RawShape, SINGLE_ENTRY_PATHS, single=True))


class RawScheduleForRouteResponse(RawModel):
    data: RawScheduleForRoute

    @classmethod
    def from_payload(cls, payload: Any) -> "RawScheduleForRouteResponse":
        return cls(data=decode_first(payload, RawScheduleForRoute, DATA_PATHS))


class RawStopScheduleResponse(RawModel):
    schedule: RawStopSchedule

    @classmethod
    def from_payload(cls, payload: Any) -> "RawStopScheduleResponse":
        return cls(schedule=decode_first(payload, RawStopSchedule, SINGLE_ENTRY_PATHS, single=True))


class RawAgenciesResponse(RawModel):
    agencies: List[RawAgencyWithCoverage] = Field(default_factory=list)
    references: RawReferences = Field(default_factory=RawReferences)

    @classmethod
    def from_payload(cls, payload: Any) -> "RawAgenciesResponse":
        agencies = decode_optional(payload, List[RawAgencyWithCoverage], AGENCY_LIST_PATHS)
        if agencies is None:
            logger.warning("agencies-with-coverage response had no usable list, using empty list")
            agencies = []
        return cls(agencies=agencies, references=decode_references(payload))


class RawCurrentTimeResponse(RawModel):
    current_time: datetime

    @classmethod
    def from_payload(cls, payload: Any) -> "RawCurrentTimeResponse":
        return cls(current_time=decode_first(payload, RequiredEpochMillis, CURRENT_TIME_PATHS))