"""OneBusAway REST client: one method per logical capability."""

import logging
from datetime import date, datetime, timezone
from typing import List, Optional, Tuple, Union

import requests

from . import normalize
from .cascade import Attempt, Cascade
from .config import ClientSettings
from .errors import BadServerResponseError, DecodingError, NotFoundError
from .models import (
    AgencyCoverage,
    Arrival,
    ArrivalsResult,
    NearbyStopsResult,
    Route,
    RouteDirection,
    Stop,
    StopProblemReport,
    StopSchedule,
    TripDetails,
    TripExtendedDetails,
    TripForLocation,
    TripProblemReport,
    Vehicle,
    VehicleTripStatus,
)
from .polyline import decode_polyline
from .raw_models import (
    RawAgenciesResponse,
    RawArrivalResponse,
    RawArrivalsResponse,
    RawCurrentTimeResponse,
    RawRoutesResponse,
    RawScheduleForRouteResponse,
    RawShapeResponse,
    RawStopResponse,
    RawStopScheduleResponse,
    RawStopsForLocationResponse,
    RawStopsForRouteResponse,
    RawTripDetailsResponse,
    RawTripResponse,
    RawTripsResponse,
    RawVehicleResponse,
)
from .transport import Transport

logger = logging.getLogger(__name__)

NEARBY_STOPS_SPAN = 0.05  # degrees, roughly 5 km
DEFAULT_STOP_RADIUS = 1000.0  # meters
DEFAULT_TRIPS_SPAN = 0.01  # degrees


def to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _location_params(
    latitude: Optional[float],
    longitude: Optional[float],
    accuracy: Optional[float],
) -> dict:
    """userLat/userLon only as a pair; accuracy only alongside a location."""
    if latitude is None or longitude is None:
        return {}
    params = {"userLat": latitude, "userLon": longitude}
    if accuracy is not None:
        params["userLocationAccuracy"] = accuracy
    return params


class OBAClient:
    """
    Typed access to a OneBusAway server.

    Operations that servers implement inconsistently (arrivals, routes for a
    stop, stops for a route, shapes, route schedules) are cascades: the REST
    path form first, then a query-parameter form, then donor endpoints that
    happen to carry the same data. Every other operation is a single call.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        minutes_before_arrivals: int = 5,
        minutes_after_arrivals: int = 125,
        timeout: float = 10.0,
        max_workers: int = 8,
        session: Optional[requests.Session] = None,
    ):
        self.transport = Transport(base_url, api_key=api_key, timeout=timeout, session=session)
        self.minutes_before_arrivals = minutes_before_arrivals
        self.minutes_after_arrivals = minutes_after_arrivals
        self.max_workers = max_workers

    @classmethod
    def from_settings(
        cls,
        settings: Optional[ClientSettings] = None,
        session: Optional[requests.Session] = None,
    ) -> "OBAClient":
        """Build a client from ClientSettings (environment/.env when omitted)."""
        settings = settings or ClientSettings()
        return cls(
            settings.base_url,
            api_key=settings.api_key,
            minutes_before_arrivals=settings.minutes_before_arrivals,
            minutes_after_arrivals=settings.minutes_after_arrivals,
            timeout=settings.timeout,
            max_workers=settings.max_workers,
            session=session,
        )

    def _arrival_window(self) -> dict:
        return {
            "minutesBefore": self.minutes_before_arrivals,
            "minutesAfter": self.minutes_after_arrivals,
        }

    # ------------------------------------------------------------------
    # Stops
    # ------------------------------------------------------------------

    def _stop_response(self, stop_id: str) -> RawStopResponse:
        url = self.transport.url("stop/{}.json", None, stop_id)
        return self.transport.get(url, RawStopResponse.from_payload)

    def fetch_stop(self, stop_id: str) -> Stop:
        return normalize.to_domain_stop(self._stop_response(stop_id).stop)

    def fetch_nearby_stops(self, latitude: float, longitude: float, radius: float = DEFAULT_STOP_RADIUS) -> NearbyStopsResult:
        """
        Stops around a point.

        Args:
            latitude: Centre latitude.
            longitude: Centre longitude.
            radius: Search radius in meters; non-positive values mean 1000.
        """
        url = self.transport.url(
            "stops-for-location.json",
            {
                "lat": latitude,
                "lon": longitude,
                "latSpan": NEARBY_STOPS_SPAN,
                "lonSpan": NEARBY_STOPS_SPAN,
                "radius": radius if radius > 0 else DEFAULT_STOP_RADIUS,
            },
        )
        response = self.transport.get(url, RawStopsForLocationResponse.from_payload)
        return normalize.to_domain_nearby_stops(response)

    def search_stops(self, query: str, latitude: float, longitude: float, radius: float) -> NearbyStopsResult:
        url = self.transport.url(
            "stops-for-location.json",
            {"lat": latitude, "lon": longitude, "radius": radius, "query": query},
        )
        response = self.transport.get(url, RawStopsForLocationResponse.from_payload)
        return normalize.to_domain_nearby_stops(response)

    def fetch_schedule_for_stop(self, stop_id: str, day: Optional[Union[date, datetime]] = None) -> StopSchedule:
        """Full-day timetable; ``day`` defaults to the server's today."""
        params = {"date": day.strftime("%Y-%m-%d")} if day is not None else None
        url = self.transport.url("schedule-for-stop/{}.json", params, stop_id)
        response = self.transport.get(url, RawStopScheduleResponse.from_payload)
        return normalize.to_domain_stop_schedule(response.schedule)

    # ------------------------------------------------------------------
    # Arrivals
    # ------------------------------------------------------------------

    def _arrivals_response(self, stop_id: str, as_query: bool = False) -> RawArrivalsResponse:
        if as_query:
            params = {"stopId": stop_id, **self._arrival_window()}
            url = self.transport.url("arrivals-and-departures-for-stop.json", params)
        else:
            url = self.transport.url("arrivals-and-departures-for-stop/{}.json", self._arrival_window(), stop_id)
        return self.transport.get(url, RawArrivalsResponse.from_payload)

    def fetch_arrivals(self, stop_id: str, now: Optional[datetime] = None) -> ArrivalsResult:
        """
        Upcoming arrivals at a stop, plus the stop's identity and routes.

        Falls back to the ``stopId`` query form, then to stop/{id}.json which
        yields no arrivals but still names the stop and its routes.

        Args:
            stop_id: OneBusAway stop id, e.g. "1_75403".
            now: Reference time for minutes-from-now (defaults to the current time).
        """
        now = now or datetime.now(timezone.utc)

        def from_stop_donor() -> ArrivalsResult:
            response = self._stop_response(stop_id)
            stop = response.stop
            return ArrivalsResult(
                arrivals=(),
                routes=tuple(normalize.routes_serving_stop(stop, response.references)),
                stop_name=stop.name,
                stop_code=stop.code,
                stop_direction=stop.direction or None,
            )

        return Cascade(
            f"arrivals for stop {stop_id}",
            [
                Attempt("path form", lambda: normalize.to_domain_arrivals_result(self._arrivals_response(stop_id), now)),
                Attempt(
                    "query form",
                    lambda: normalize.to_domain_arrivals_result(self._arrivals_response(stop_id, as_query=True), now),
                ),
                Attempt("stop donor", from_stop_donor),
            ],
        ).run()

    def fetch_arrival_departure_at_stop(
        self,
        stop_id: str,
        trip_id: str,
        service_date: datetime,
        vehicle_id: Optional[str] = None,
        stop_sequence: int = 0,
        now: Optional[datetime] = None,
    ) -> Arrival:
        """A single arrival for one trip at one stop."""
        params = {
            "tripId": trip_id,
            "serviceDate": to_millis(service_date),
            "vehicleId": vehicle_id or None,
            "stopSequence": stop_sequence if stop_sequence > 0 else None,
        }
        url = self.transport.url("arrival-and-departure-for-stop/{}.json", params, stop_id)
        response = self.transport.get(url, RawArrivalResponse.from_payload)
        return normalize.to_domain_arrival(response.arrival, now or datetime.now(timezone.utc), response.references)

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    def fetch_routes_for_stop(self, stop_id: str) -> List[Route]:
        """
        Routes serving a stop.

        Cascade: routes-for-stop path form, ``stopId`` query form, the stop
        record, then the stop's arrivals response. Donors that yield no routes
        count as failures.
        """
        def direct(as_query: bool) -> List[Route]:
            if as_query:
                url = self.transport.url("routes-for-stop.json", {"stopId": stop_id})
            else:
                url = self.transport.url("routes-for-stop/{}.json", None, stop_id)
            response = self.transport.get(url, RawRoutesResponse.from_payload)
            return normalize.to_domain_routes(response.routes, response.references)

        def stop_donor() -> List[Route]:
            response = self._stop_response(stop_id)
            routes = normalize.routes_serving_stop(response.stop, response.references)
            if not routes:
                raise NotFoundError(self.transport.url("stop/{}.json", None, stop_id))
            return routes

        def arrivals_donor() -> List[Route]:
            response = self._arrivals_response(stop_id)
            routes = normalize.routes_serving_stop(response.stop, response.references)
            if not routes:
                raise NotFoundError(
                    self.transport.url("arrivals-and-departures-for-stop/{}.json", None, stop_id)
                )
            return routes

        return Cascade(
            f"routes for stop {stop_id}",
            [
                Attempt("path form", lambda: direct(False)),
                Attempt("query form", lambda: direct(True)),
                Attempt("stop donor", stop_donor),
                Attempt("arrivals donor", arrivals_donor),
            ],
        ).run()

    def search_routes(self, latitude: float, longitude: float, radius: float, query: Optional[str] = None) -> List[Route]:
        """Routes near a point; a blank ``query`` is not sent."""
        params = {"lat": latitude, "lon": longitude, "radius": radius}
        if query and query.strip():
            params["query"] = query
        url = self.transport.url("routes-for-location.json", params)
        response = self.transport.get(url, RawRoutesResponse.from_payload)
        return normalize.to_domain_routes(response.routes, response.references)

    def _stops_for_route(self, route_id: str, include_polylines: bool, as_query: bool = False) -> RawStopsForRouteResponse:
        if as_query:
            params = {"routeId": route_id, "includePolylines": include_polylines}
            url = self.transport.url("stops-for-route.json", params)
        else:
            url = self.transport.url("stops-for-route/{}.json", {"includePolylines": include_polylines}, route_id)
        return self.transport.get(url, RawStopsForRouteResponse.from_payload)

    def fetch_stops_for_route(self, route_id: str) -> List[RouteDirection]:
        return Cascade(
            f"stops for route {route_id}",
            [
                Attempt("path form", lambda: normalize.to_domain_directions(self._stops_for_route(route_id, False).data)),
                Attempt(
                    "query form",
                    lambda: normalize.to_domain_directions(self._stops_for_route(route_id, False, as_query=True).data),
                ),
            ],
        ).run()

    # ------------------------------------------------------------------
    # Shapes
    # ------------------------------------------------------------------

    def fetch_shape_id_for_route(self, route_id: str) -> Optional[str]:
        """
        First shape id from the route's schedule.

        Servers without schedule-for-route get the route id back as a pseudo
        shape id, which fetch_shape resolves through stops-for-route. Transport
        failures still propagate.
        """
        def schedule(as_query: bool) -> Optional[str]:
            if as_query:
                url = self.transport.url("schedule-for-route.json", {"routeId": route_id})
            else:
                url = self.transport.url("schedule-for-route/{}.json", None, route_id)
            response = self.transport.get(url, RawScheduleForRouteResponse.from_payload)
            return normalize.first_shape_id(response.data)

        try:
            return Cascade(
                f"schedule for route {route_id}",
                [
                    Attempt("path form", lambda: schedule(False)),
                    Attempt("query form", lambda: schedule(True)),
                ],
            ).run()
        except (NotFoundError, BadServerResponseError, DecodingError) as e:
            logger.warning(f"schedule-for-route unavailable for {route_id} ({e}), using route id as shape id")
            return route_id

    def fetch_shape(self, shape_id: str) -> str:
        """
        Encoded polyline for a shape.

        Falls back to stops-for-route with polylines, treating ``shape_id`` as
        a route id and joining every polyline found.
        """
        def shape() -> str:
            url = self.transport.url("shape/{}.json", None, shape_id)
            return self.transport.get(url, RawShapeResponse.from_payload).shape.points

        def stops_for_route_donor() -> str:
            points = normalize.polyline_points(self._stops_for_route(shape_id, True).data)
            if not points:
                raise NotFoundError(self.transport.url("stops-for-route/{}.json", None, shape_id))
            return points

        return Cascade(
            f"shape {shape_id}",
            [
                Attempt("shape endpoint", shape),
                Attempt("stops-for-route donor", stops_for_route_donor),
            ],
        ).run()

    def fetch_route_polyline(self, route_id: str) -> List[Tuple[float, float]]:
        """Decoded geometry of a route: shape-id resolution, shape fetch, decode."""
        shape_id = self.fetch_shape_id_for_route(route_id) or route_id
        return decode_polyline(self.fetch_shape(shape_id))

    # ------------------------------------------------------------------
    # Trips and vehicles
    # ------------------------------------------------------------------

    def fetch_trips_for_location(
        self,
        latitude: float,
        longitude: float,
        lat_span: float,
        lon_span: float,
    ) -> List[TripForLocation]:
        url = self.transport.url(
            "trips-for-location.json",
            {
                "lat": latitude,
                "lon": longitude,
                "latSpan": lat_span if lat_span > 0 else DEFAULT_TRIPS_SPAN,
                "lonSpan": lon_span if lon_span > 0 else DEFAULT_TRIPS_SPAN,
                "includeStatus": True,
            },
        )
        response = self.transport.get(url, RawTripsResponse.from_payload)
        return normalize.to_domain_trips_for_location(response.trips, response.references)

    def fetch_trips_for_route(self, route_id: str) -> List[TripForLocation]:
        url = self.transport.url("trips-for-route/{}.json", {"includeStatus": True}, route_id)
        response = self.transport.get(url, RawTripsResponse.from_payload)
        return normalize.to_domain_trips_for_location(response.trips, response.references)

    def fetch_vehicles_for_agency(self, agency_id: str) -> List[TripForLocation]:
        url = self.transport.url("vehicles-for-agency/{}.json", None, agency_id)
        response = self.transport.get(url, RawTripsResponse.from_payload)
        return normalize.to_domain_trips_for_location(response.trips, response.references)

    def fetch_vehicle(self, vehicle_id: str) -> Vehicle:
        url = self.transport.url("vehicle/{}.json", None, vehicle_id)
        response = self.transport.get(url, RawVehicleResponse.from_payload)
        return normalize.to_domain_vehicle(response.vehicle, response.references)

    def fetch_trip(self, trip_id: str) -> TripDetails:
        url = self.transport.url("trip/{}.json", None, trip_id)
        return normalize.to_domain_trip(self.transport.get(url, RawTripResponse.from_payload).trip)

    def fetch_trip_for_vehicle(self, vehicle_id: str) -> VehicleTripStatus:
        url = self.transport.url("trip-for-vehicle/{}.json", None, vehicle_id)
        response = self.transport.get(url, RawTripDetailsResponse.from_any_wrapper)
        return normalize.to_domain_vehicle_trip_status(response.details, response.references)

    def fetch_trip_details(self, trip_id: str) -> TripExtendedDetails:
        """
        Schedule and real-time status of a trip.

        Raises:
            BadServerResponseError: With status 200 when the body holds neither
                ``data.entry`` nor ``data.tripDetails``.
        """
        url = self.transport.url("trip-details/{}.json", None, trip_id)
        response = self.transport.get(url, RawTripDetailsResponse.from_payload)
        if response.details is None:
            raise BadServerResponseError(200, url)
        return normalize.to_domain_trip_extended_details(response.details, response.references)

    def fetch_vehicles_reliably(
        self,
        latitude: float,
        longitude: float,
        lat_span: float,
        lon_span: float,
    ) -> List[TripForLocation]:
        """See vehicles.fetch_vehicles_reliably."""
        from .vehicles import fetch_vehicles_reliably

        return fetch_vehicles_reliably(
            self, latitude, longitude, lat_span, lon_span, max_workers=self.max_workers
        )

    # ------------------------------------------------------------------
    # Agencies, time, problem reports
    # ------------------------------------------------------------------

    def fetch_agencies_with_coverage(self) -> List[AgencyCoverage]:
        url = self.transport.url("agencies-with-coverage.json")
        response = self.transport.get(url, RawAgenciesResponse.from_payload)
        return normalize.to_domain_agencies(response.agencies, response.references)

    def fetch_current_time(self) -> datetime:
        url = self.transport.url("current-time.json")
        return self.transport.get(url, RawCurrentTimeResponse.from_payload).current_time

    def submit_stop_problem(self, report: StopProblemReport) -> None:
        params = {"code": report.code}
        if report.comment:
            params["userComment"] = report.comment
        params.update(_location_params(report.latitude, report.longitude, report.horizontal_accuracy))
        self.transport.send(self.transport.url("report-problem-with-stop/{}.json", params, report.stop_id))

    def submit_trip_problem(self, report: TripProblemReport) -> None:
        params = {
            "tripId": report.trip_id,
            "serviceDate": to_millis(report.service_date),
            "code": report.code,
            "userOnVehicle": report.user_on_vehicle,
            "vehicleId": report.vehicle_id or None,
            "stopId": report.stop_id or None,
        }
        if report.comment:
            params["userComment"] = report.comment
        params.update(_location_params(report.latitude, report.longitude, report.horizontal_accuracy))
        self.transport.send(self.transport.url("report-problem-with-trip.json", params))
