"""OneBusAway transit data client."""

from .client import OBAClient
from .config import ClientSettings
from .errors import (
    BadServerResponseError,
    DecodingError,
    InvalidURLError,
    NotFoundError,
    OBAAPIError,
    OtherError,
)
from .models import (
    AgencyCoverage,
    Arrival,
    ArrivalsResult,
    NearbyStopsResult,
    Route,
    RouteDirection,
    ScheduleStatus,
    Stop,
    StopSchedule,
    TripDetails,
    TripExtendedDetails,
    TripForLocation,
    Vehicle,
)
from .polyline import decode_polyline, encode_polyline
from .vehicles import fetch_vehicles_near, fetch_vehicles_reliably

__version__ = "0.1.0"
__all__ = [
    "OBAClient",
    "ClientSettings",
    "OBAAPIError",
    "InvalidURLError",
    "NotFoundError",
    "BadServerResponseError",
    "DecodingError",
    "OtherError",
    "AgencyCoverage",
    "Arrival",
    "ArrivalsResult",
    "NearbyStopsResult",
    "Route",
    "RouteDirection",
    "ScheduleStatus",
    "Stop",
    "StopSchedule",
    "TripDetails",
    "TripExtendedDetails",
    "TripForLocation",
    "Vehicle",
    "decode_polyline",
    "encode_polyline",
    "fetch_vehicles_near",
    "fetch_vehicles_reliably",
]
