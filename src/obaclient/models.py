"""Domain models returned by the OneBusAway client."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

# Minutes either side of the schedule that still count as on time.
ON_TIME_THRESHOLD_MINUTES = 1.5


class ScheduleStatus(str, Enum):
    """Coarse schedule adherence for an arrival."""
    UNKNOWN = "unknown"
    EARLY = "early"
    ON_TIME = "onTime"
    DELAYED = "delayed"

    @classmethod
    def from_deviation(cls, deviation_minutes: float, predicted: bool) -> "ScheduleStatus":
        """Classify a signed deviation; scheduled-only arrivals are always UNKNOWN."""
        if not predicted:
            return cls.UNKNOWN
        if deviation_minutes < -ON_TIME_THRESHOLD_MINUTES:
            return cls.EARLY
        if deviation_minutes < ON_TIME_THRESHOLD_MINUTES:
            return cls.ON_TIME
        return cls.DELAYED


_STATUS_LABELS = {
    ScheduleStatus.EARLY: "Early",
    ScheduleStatus.ON_TIME: "On time",
    ScheduleStatus.DELAYED: "Delayed",
}


@dataclass(frozen=True)
class Stop:
    """Represents a transit stop."""
    id: str
    name: str
    latitude: float
    longitude: float
    code: Optional[str] = None
    direction: Optional[str] = None  # Cardinal direction, e.g. "N"
    route_names: Optional[str] = None  # "10, 12, 49"
    location_type: Optional[int] = None

    @property
    def coordinate(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(frozen=True)
class Route:
    """Represents a transit route (e.g. "10", "RapidRide B")."""
    id: str
    short_name: Optional[str] = None
    long_name: Optional[str] = None
    agency_name: Optional[str] = None


@dataclass(frozen=True)
class RouteDirection:
    """One direction of travel with its stops in travel order."""
    id: str
    name: Optional[str] = None
    stops: Tuple[Stop, ...] = ()


@dataclass(frozen=True)
class Arrival:
    """A predicted or scheduled arrival at a stop."""
    id: str
    stop_id: str
    route_id: str
    trip_id: str
    minutes_from_now: int
    is_predicted: bool
    schedule_status: ScheduleStatus = ScheduleStatus.UNKNOWN
    vehicle_id: Optional[str] = None
    route_short_name: Optional[str] = None
    headsign: Optional[str] = None
    service_date: Optional[datetime] = None
    stop_sequence: Optional[int] = None

    @staticmethod
    def composite_id(stop_id: str, trip_id: str, route_id: str) -> str:
        return f"stop={stop_id},trip={trip_id},route={route_id}"

    @property
    def schedule_status_label(self) -> Optional[str]:
        """Human-friendly status text, None when the status is unknown."""
        return _STATUS_LABELS.get(self.schedule_status)


@dataclass(frozen=True)
class ArrivalsResult:
    """Arrivals for a stop plus whatever stop identity the server supplied."""
    arrivals: Tuple[Arrival, ...] = ()
    routes: Tuple[Route, ...] = ()
    stop_name: Optional[str] = None
    stop_code: Optional[str] = None
    stop_direction: Optional[str] = None


@dataclass(frozen=True)
class NearbyStopsResult:
    stops: Tuple[Stop, ...] = ()
    stop_id_to_route_names: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Vehicle:
    """A vehicle in service."""
    id: str
    last_update_time: Optional[datetime] = None
    last_location_update_time: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phase: Optional[str] = None
    status: Optional[str] = None
    trip_id: Optional[str] = None
    route_short_name: Optional[str] = None
    trip_headsign: Optional[str] = None


@dataclass(frozen=True)
class TripForLocation:
    """
    Flattened vehicle-on-trip record.

    Every "vehicles near X" operation returns this shape, whichever endpoint
    produced the data.
    """
    id: str  # trip id
    vehicle_id: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    orientation: Optional[float] = None
    route_id: Optional[str] = None
    route_short_name: Optional[str] = None
    trip_headsign: Optional[str] = None
    last_update_time: Optional[datetime] = None
    schedule_deviation: Optional[int] = None  # seconds
    predicted: Optional[bool] = None

    @property
    def dedup_key(self) -> str:
        """Vehicle id, or trip id for records without a vehicle."""
        return self.vehicle_id or self.id

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @classmethod
    def from_arrival(cls, arrival: Arrival) -> "TripForLocation":
        return cls(
            id=arrival.trip_id,
            vehicle_id=arrival.vehicle_id or "",
            route_id=arrival.route_id,
            route_short_name=arrival.route_short_name,
            trip_headsign=arrival.headsign,
            predicted=arrival.is_predicted,
        )

    @classmethod
    def from_vehicle(cls, vehicle: Vehicle) -> "TripForLocation":
        return cls(
            id=vehicle.trip_id or "",
            vehicle_id=vehicle.id,
            latitude=vehicle.latitude,
            longitude=vehicle.longitude,
            route_short_name=vehicle.route_short_name,
            trip_headsign=vehicle.trip_headsign,
            last_update_time=vehicle.last_update_time,
        )


@dataclass(frozen=True)
class TripDetails:
    """Static description of a trip."""
    id: str
    route_id: str
    service_id: str
    headsign: Optional[str] = None
    shape_id: Optional[str] = None
    direction_id: Optional[str] = None
    block_id: Optional[str] = None


@dataclass(frozen=True)
class Position:
    lat: float
    lon: float


@dataclass(frozen=True)
class TripStatus:
    """Real-time status of the vehicle serving a trip."""
    active_trip_id: Optional[str] = None
    block_trip_sequence: Optional[int] = None
    service_date: Optional[datetime] = None
    schedule_deviation: Optional[int] = None  # seconds
    vehicle_id: Optional[str] = None
    closest_stop: Optional[str] = None
    next_stop: Optional[str] = None
    last_location_update_time: Optional[datetime] = None
    last_update_time: Optional[datetime] = None
    position: Optional[Position] = None
    orientation: Optional[float] = None
    predicted: Optional[bool] = None


@dataclass(frozen=True)
class StopTime:
    """A scheduled stop on a trip; times are seconds from the service date."""
    stop_id: Optional[str] = None
    arrival_time: Optional[int] = None
    departure_time: Optional[int] = None
    stop_headsign: Optional[str] = None
    distance_along_trip: Optional[float] = None
    historical_occupancy: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass(frozen=True)
class TripSchedule:
    stop_times: Tuple[StopTime, ...] = ()
    time_zone: Optional[str] = None
    previous_trip_id: Optional[str] = None
    next_trip_id: Optional[str] = None
    frequency: Optional[str] = None


@dataclass(frozen=True)
class TripExtendedDetails:
    """Response of the trip-details endpoint."""
    trip_id: Optional[str] = None
    service_date: Optional[datetime] = None
    frequency: Optional[str] = None
    status: Optional[TripStatus] = None
    schedule: Optional[TripSchedule] = None


@dataclass(frozen=True)
class VehicleTripStatus:
    """Response of the trip-for-vehicle endpoint."""
    trip_id: Optional[str] = None
    service_date: Optional[datetime] = None
    status: Optional[TripStatus] = None
    schedule: Optional[TripSchedule] = None


@dataclass(frozen=True)
class StopScheduleStopTime:
    trip_id: str
    arrival_time: datetime
    departure_time: datetime
    stop_headsign: Optional[str] = None
    route_id: Optional[str] = None


@dataclass(frozen=True)
class StopSchedule:
    """Full-day timetable for a stop."""
    stop_id: str
    date: datetime
    stop_times: Tuple[StopScheduleStopTime, ...] = ()


@dataclass(frozen=True)
class AgencyRegionBound:
    lat: float
    lon: float
    lat_span: float
    lon_span: float


@dataclass(frozen=True)
class AgencyCoverage:
    """An agency and the approximate centre of its service area."""
    agency_id: str
    center_latitude: float
    center_longitude: float
    name: Optional[str] = None

    @property
    def region_bound(self) -> AgencyRegionBound:
        return AgencyRegionBound(
            lat=self.center_latitude,
            lon=self.center_longitude,
            lat_span=0.5,
            lon_span=0.5,
        )


@dataclass(frozen=True)
class StopProblemReport:
    stop_id: str
    code: str  # e.g. "stop_name_wrong"
    comment: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    horizontal_accuracy: Optional[float] = None


@dataclass(frozen=True)
class TripProblemReport:
    trip_id: str
    service_date: datetime
    code: str  # e.g. "vehicle_never_came"
    user_on_vehicle: bool = False
    vehicle_id: Optional[str] = None
    stop_id: Optional[str] = None
    comment: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    horizontal_accuracy: Optional[float] = None
