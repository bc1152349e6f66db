"""Tests for OBAClient endpoint operations and their fallbacks."""

import os
import unittest
from unittest.mock import patch
from datetime import date, datetime, timezone
import sys
from pathlib import Path

import requests

# Add src to path so we can import obaclient
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from fakes import FakeSession, envelope
from obaclient.client import OBAClient
from obaclient.config import ClientSettings
from obaclient.errors import BadServerResponseError, NotFoundError, OtherError
from obaclient.models import StopProblemReport, TripProblemReport
from obaclient.polyline import encode_polyline
from obaclient.raw_models import RawShapeResponse

BASE = "https://api.example.org"
NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)

STOP_ID = "1_75403"
ROUTE_ID = "1_100"

STOP = {"id": STOP_ID, "name": "Pine St", "lat": 47.61, "lon": -122.33, "code": 75403,
        "direction": "W", "routeIds": [ROUTE_ID]}
ROUTES = [{"id": ROUTE_ID, "shortName": "10", "agencyId": "1"}]
ARRIVAL = {"stopId": STOP_ID, "tripId": "1_t", "routeId": ROUTE_ID, "predicted": True,
           "scheduledDepartureTime": NOW_MS + 300000, "predictedArrivalTime": NOW_MS + 360000}

ARRIVALS_PATH = f"/api/where/arrivals-and-departures-for-stop/{STOP_ID}.json"
ARRIVALS_QUERY_PATH = "/api/where/arrivals-and-departures-for-stop.json"
STOP_PATH = f"/api/where/stop/{STOP_ID}.json"


class ClientTestCase(unittest.TestCase):
    def setUp(self):
        self.session = FakeSession()
        self.client = OBAClient(BASE, api_key="TEST", session=self.session)


class TestStops(ClientTestCase):
    """Test stop lookups."""

    def test_fetch_stop(self):
        self.session.add(STOP_PATH, 200, envelope({"entry": STOP}))
        stop = self.client.fetch_stop(STOP_ID)
        self.assertEqual(stop.code, "75403")
        self.assertEqual(self.session.query()["key"], "TEST")

    def test_nearby_stops_parameters(self):
        self.session.add("/api/where/stops-for-location.json", 200, envelope({
            "list": [STOP], "references": {"routes": ROUTES},
        }))
        result = self.client.fetch_nearby_stops(47.61, -122.33, radius=0)

        query = self.session.query()
        self.assertEqual(query["latSpan"], "0.05")
        self.assertEqual(query["lonSpan"], "0.05")
        self.assertEqual(query["radius"], "1000.0")
        self.assertEqual(result.stop_id_to_route_names, {STOP_ID: "10"})

    def test_search_stops_sends_query(self):
        self.session.add("/api/where/stops-for-location.json", 200, envelope({"list": []}))
        self.client.search_stops("pine", 47.61, -122.33, 500)
        self.assertEqual(self.session.query()["query"], "pine")

    def test_schedule_for_stop_date(self):
        self.session.add(f"/api/where/schedule-for-stop/{STOP_ID}.json", 200, envelope({
            "entry": {"stopId": STOP_ID, "stopRouteSchedules": []},
        }))
        schedule = self.client.fetch_schedule_for_stop(STOP_ID, date(2024, 5, 1))
        self.assertEqual(self.session.query()["date"], "2024-05-01")
        self.assertEqual(schedule.stop_times, ())


class TestArrivals(ClientTestCase):
    """Test the arrivals cascade."""

    def test_path_form(self):
        self.session.add(ARRIVALS_PATH, 200, envelope({
            "entry": {"stopId": STOP_ID, "arrivalsAndDepartures": [ARRIVAL]},
            "references": {"stops": [STOP], "routes": ROUTES},
        }))
        result = self.client.fetch_arrivals(STOP_ID, now=NOW)

        self.assertEqual(len(result.arrivals), 1)
        self.assertEqual(result.arrivals[0].minutes_from_now, 6)
        self.assertEqual(result.stop_name, "Pine St")
        query = self.session.query()
        self.assertEqual(query["minutesBefore"], "5")
        self.assertEqual(query["minutesAfter"], "125")

    def test_query_form_after_path_not_found(self):
        self.session.add(ARRIVALS_QUERY_PATH, 200, envelope({"list": [ARRIVAL]}))
        result = self.client.fetch_arrivals(STOP_ID, now=NOW)

        self.assertEqual(self.session.paths, [ARRIVALS_PATH, ARRIVALS_QUERY_PATH])
        self.assertEqual(self.session.query()["stopId"], STOP_ID)
        self.assertEqual(result.arrivals[0].trip_id, "1_t")

    def test_stop_donor(self):
        self.session.add(STOP_PATH, 200, envelope({"entry": STOP, "references": {"routes": ROUTES}}))
        result = self.client.fetch_arrivals(STOP_ID, now=NOW)

        self.assertEqual(result.arrivals, ())
        self.assertEqual(result.stop_code, "75403")
        self.assertEqual([r.short_name for r in result.routes], ["10"])

    def test_all_failing_raises_path_form_error(self):
        self.session.add(ARRIVALS_QUERY_PATH, 500, "")
        self.session.add(STOP_PATH, 200, "null")

        with self.assertRaises(NotFoundError) as ctx:
            self.client.fetch_arrivals(STOP_ID, now=NOW)
        self.assertIn(ARRIVALS_PATH, ctx.exception.url)

    def test_single_arrival_parameters(self):
        self.session.add(f"/api/where/arrival-and-departure-for-stop/{STOP_ID}.json", 200,
                         envelope({"entry": ARRIVAL}))
        service_date = datetime(2024, 5, 1, tzinfo=timezone.utc)
        arrival = self.client.fetch_arrival_departure_at_stop(STOP_ID, "1_t", service_date, now=NOW)

        query = self.session.query()
        self.assertEqual(query["tripId"], "1_t")
        self.assertEqual(query["serviceDate"], "1714521600000")
        self.assertNotIn("stopSequence", query)
        self.assertNotIn("vehicleId", query)
        self.assertEqual(arrival.minutes_from_now, 6)


class TestRoutes(ClientTestCase):
    """Test route lookups and the routes-for-stop cascade."""

    def test_routes_for_stop_path_form(self):
        self.session.add(f"/api/where/routes-for-stop/{STOP_ID}.json", 200, envelope({
            "list": ROUTES, "references": {"agencies": [{"id": "1", "name": "Metro"}]},
        }))
        routes = self.client.fetch_routes_for_stop(STOP_ID)
        self.assertEqual(routes[0].agency_name, "Metro")

    def test_routes_for_stop_falls_through_to_arrivals_donor(self):
        self.session.add("/api/where/routes-for-stop.json", 500, "")
        # Stop donor has no routes, so it counts as a failure.
        self.session.add(STOP_PATH, 200, envelope({"entry": {"id": STOP_ID}}))
        self.session.add(ARRIVALS_PATH, 200, envelope({
            "entry": {"stop": {"id": STOP_ID, "routes": ROUTES}, "arrivalsAndDepartures": []},
        }))

        routes = self.client.fetch_routes_for_stop(STOP_ID)

        self.assertEqual([r.id for r in routes], [ROUTE_ID])
        self.assertEqual(
            self.session.paths,
            [f"/api/where/routes-for-stop/{STOP_ID}.json", "/api/where/routes-for-stop.json",
             STOP_PATH, ARRIVALS_PATH],
        )

    def test_search_routes_omits_blank_query(self):
        self.session.add("/api/where/routes-for-location.json", 200, envelope({"list": ROUTES}))
        self.client.search_routes(47.6, -122.3, 5000, query="  ")
        self.assertNotIn("query", self.session.query())

    def test_stops_for_route_query_fallback(self):
        self.session.add("/api/where/stops-for-route.json", 200, envelope({
            "entry": {"stopGroupings": [{"stopGroups": [{"id": "0", "name": {"name": "Out"}, "stopIds": [STOP_ID]}]}]},
            "references": {"stops": [STOP]},
        }))
        directions = self.client.fetch_stops_for_route(ROUTE_ID)

        self.assertEqual(directions[0].stops[0].id, STOP_ID)
        query = self.session.query()
        self.assertEqual(query["routeId"], ROUTE_ID)
        self.assertEqual(query["includePolylines"], "false")


class TestShapes(ClientTestCase):
    """Test shape resolution and the pseudo shape id handoff."""

    POINTS = [(47.6, -122.3), (47.61, -122.31)]

    def test_shape_id_from_schedule(self):
        self.session.add(f"/api/where/schedule-for-route/{ROUTE_ID}.json", 200, envelope({
            "entry": {"trips": [{"id": "t", "shapeId": "1_shape"}]},
        }))
        self.assertEqual(self.client.fetch_shape_id_for_route(ROUTE_ID), "1_shape")

    def test_unsupported_schedule_returns_route_id(self):
        self.assertEqual(self.client.fetch_shape_id_for_route(ROUTE_ID), ROUTE_ID)

    def test_transport_failure_propagates(self):
        self.session.routes[f"/api/where/schedule-for-route/{ROUTE_ID}.json"] = requests.ConnectionError("down")
        with self.assertRaises(OtherError):
            self.client.fetch_shape_id_for_route(ROUTE_ID)

    def test_route_polyline_through_stops_for_route_donor(self):
        self.session.add(f"/api/where/stops-for-route/{ROUTE_ID}.json", 200, envelope({
            "stopGroupings": [{"stopGroups": [{"polylines": [{"points": encode_polyline(self.POINTS)}]}]}],
        }))

        points = self.client.fetch_route_polyline(ROUTE_ID)

        self.assertEqual(len(points), 2)
        self.assertAlmostEqual(points[1][0], 47.61, places=5)
        self.assertEqual(self.session.query()["includePolylines"], "true")
        self.assertIn(f"/api/where/shape/{ROUTE_ID}.json", self.session.paths)

    def test_shape_donor_without_points_raises_shape_error(self):
        self.session.add("/api/where/stops-for-route/1_shape.json", 200, envelope({"polylines": []}))
        with self.assertRaises(NotFoundError) as ctx:
            self.client.fetch_shape("1_shape")
        self.assertIn("/api/where/shape/1_shape.json", ctx.exception.url)


class TestTripsAndVehicles(ClientTestCase):
    """Test trip and vehicle endpoints."""

    def test_trips_for_location_default_spans(self):
        self.session.add("/api/where/trips-for-location.json", 200, envelope({"list": []}))
        self.client.fetch_trips_for_location(47.6, -122.3, 0, -1)

        query = self.session.query()
        self.assertEqual(query["latSpan"], "0.01")
        self.assertEqual(query["lonSpan"], "0.01")
        self.assertEqual(query["includeStatus"], "true")

    def test_vehicles_for_agency(self):
        self.session.add("/api/where/vehicles-for-agency/1.json", 200, envelope({"list": [
            {"vehicleId": "1_v", "tripId": "1_t", "status": "SCHEDULED", "location": {"lat": 1, "lon": 2}},
        ]}))
        trips = self.client.fetch_vehicles_for_agency("1")
        self.assertEqual(trips[0].vehicle_id, "1_v")

    def test_fetch_vehicle(self):
        self.session.add("/api/where/vehicle/1_v.json", 200, envelope({"entry": {
            "vehicleId": "1_v", "tripStatus": {"activeTripId": "1_t", "position": {"lat": 1.5, "lon": 2.5}},
        }}))
        vehicle = self.client.fetch_vehicle("1_v")
        self.assertEqual(vehicle.trip_id, "1_t")
        self.assertEqual(vehicle.latitude, 1.5)

    def test_fetch_trip_placeholders(self):
        self.session.add("/api/where/trip/1_t.json", 200, envelope({"entry": {"id": "1_t"}}))
        trip = self.client.fetch_trip("1_t")
        self.assertEqual(trip.route_id, "unknown")
        self.assertEqual(trip.service_id, "unknown")

    def test_trip_details_without_entry(self):
        self.session.add("/api/where/trip-details/1_t.json", 200, envelope({"references": {}}))
        with self.assertRaises(BadServerResponseError) as ctx:
            self.client.fetch_trip_details("1_t")
        self.assertEqual(ctx.exception.status_code, 200)

    def test_trip_for_vehicle(self):
        self.session.add("/api/where/trip-for-vehicle/1_v.json", 200, envelope({"entry": {
            "tripId": "1_t", "status": {"vehicleId": "1_v", "scheduleDeviation": 45},
        }}))
        status = self.client.fetch_trip_for_vehicle("1_v")
        self.assertEqual(status.trip_id, "1_t")
        self.assertEqual(status.status.schedule_deviation, 45)


class TestUnusualPayloads(ClientTestCase):
    """Test bare entities and out-of-range values arriving over the wire."""

    def test_bare_stop_with_numeric_code(self):
        self.session.add(STOP_PATH, 200, {"id": STOP_ID, "name": "A", "lat": 1.0, "lon": 2.0, "code": 12345})
        stop = self.client.fetch_stop(STOP_ID)
        self.assertEqual(stop.code, "12345")
        self.assertEqual(stop.name, "A")

    def test_bare_stop_with_404_code_is_not_an_envelope(self):
        self.session.add(STOP_PATH, 200, {"id": STOP_ID, "name": "A", "lat": 1.0, "lon": 2.0, "code": 404})
        self.assertEqual(self.client.fetch_stop(STOP_ID).code, "404")

    def test_infinite_schedule_deviation_is_dropped(self):
        self.session.add(
            "/api/where/trips-for-location.json", 200,
            '{"data": {"list": [{"tripId": "1_t", "status": {"vehicleId": "1_v", "scheduleDeviation": 1e400}}]}}',
        )
        trips = self.client.fetch_trips_for_location(47.6, -122.3, 0.01, 0.01)
        self.assertEqual(trips[0].vehicle_id, "1_v")
        self.assertIsNone(trips[0].schedule_deviation)

    def test_out_of_range_timestamp_is_dropped(self):
        self.session.add("/api/where/vehicle/1_v.json", 200, envelope({"entry": {
            "vehicleId": "1_v", "lastUpdateTime": 1e300,
        }}))
        with self.assertLogs("obaclient.raw_models", level="WARNING"):
            vehicle = self.client.fetch_vehicle("1_v")
        self.assertEqual(vehicle.id, "1_v")
        self.assertIsNone(vehicle.last_update_time)

    def test_group_names_as_object(self):
        self.session.add(f"/api/where/stops-for-route/{ROUTE_ID}.json", 200, envelope({
            "entry": {"stopGroupings": [{"stopGroups": [
                {"id": "0", "name": {"names": {"en": "X"}}, "stopIds": [STOP_ID]},
                {"id": "1", "name": {"names": 7}, "stopIds": [STOP_ID]},
            ]}]},
            "references": {"stops": [STOP]},
        }))
        directions = self.client.fetch_stops_for_route(ROUTE_ID)
        self.assertEqual([d.name for d in directions], ["Unknown", "Unknown"])

    def test_decoder_crash_falls_back_to_donor(self):
        encoded = encode_polyline([(47.6, -122.3), (47.61, -122.31)])
        self.session.add("/api/where/shape/1_shape.json", 200, envelope({"entry": {"points": encoded}}))
        self.session.add("/api/where/stops-for-route/1_shape.json", 200, envelope({
            "entry": {"polylines": [{"points": encoded}]},
        }))

        with patch.object(RawShapeResponse, "from_payload", side_effect=KeyError(0)):
            with self.assertLogs("obaclient.cascade", level="WARNING") as logs:
                points = self.client.fetch_shape("1_shape")

        self.assertEqual(points, encoded)
        self.assertIn("Unable to parse response from 1_shape.json", logs.output[0])
        self.assertEqual(
            self.session.paths,
            ["/api/where/shape/1_shape.json", "/api/where/stops-for-route/1_shape.json"],
        )


class TestMisc(ClientTestCase):
    """Test current time, problem reports and settings."""

    def test_current_time_top_level(self):
        self.session.add("/api/where/current-time.json", 200, envelope({"entry": {}}))
        self.assertEqual(
            self.client.fetch_current_time(),
            datetime.fromtimestamp(1700000000, tz=timezone.utc),
        )

    def test_current_time_from_entry(self):
        self.session.add("/api/where/current-time.json", 200, {"data": {"entry": {"time": NOW_MS}}})
        self.assertEqual(self.client.fetch_current_time(), NOW)

    def test_stop_problem_report_minimal(self):
        self.session.add(f"/api/where/report-problem-with-stop/{STOP_ID}.json", 200, "")
        self.client.submit_stop_problem(
            StopProblemReport(stop_id=STOP_ID, code="stop_name_wrong", comment="", latitude=47.6)
        )
        self.assertEqual(self.session.query(), {"key": "TEST", "code": "stop_name_wrong"})

    def test_trip_problem_report_full(self):
        self.session.add("/api/where/report-problem-with-trip.json", 200, "")
        self.client.submit_trip_problem(TripProblemReport(
            trip_id="1_t", service_date=NOW, code="vehicle_never_came", user_on_vehicle=True,
            vehicle_id="1_v", comment="late", latitude=47.6, longitude=-122.3, horizontal_accuracy=10.0,
        ))
        query = self.session.query()
        self.assertEqual(query["serviceDate"], str(NOW_MS))
        self.assertEqual(query["userOnVehicle"], "true")
        self.assertEqual(query["userComment"], "late")
        self.assertEqual(query["userLocationAccuracy"], "10.0")
        self.assertNotIn("stopId", query)

    def test_problem_report_surfaces_http_errors(self):
        with self.assertRaises(NotFoundError):
            self.client.submit_stop_problem(StopProblemReport(stop_id=STOP_ID, code="other"))

    def test_from_settings(self):
        settings = ClientSettings(base_url="https://oba.example.org", api_key="K", timeout=2.0, max_workers=3)
        client = OBAClient.from_settings(settings, session=self.session)

        self.assertEqual(client.transport.base_url, "https://oba.example.org")
        self.assertEqual(client.transport.api_key, "K")
        self.assertEqual(client.transport.timeout, 2.0)
        self.assertEqual(client.max_workers, 3)

    def test_settings_from_environment(self):
        env = {"OBA_BASE_URL": "https://env.example.org", "OBA_API_KEY": "ENVKEY", "OBA_MINUTES_AFTER_ARRIVALS": "60"}
        with patch.dict(os.environ, env):
            settings = ClientSettings(_env_file=None)

        self.assertEqual(settings.base_url, "https://env.example.org")
        self.assertEqual(settings.api_key, "ENVKEY")
        self.assertEqual(settings.minutes_after_arrivals, 60)
        self.assertEqual(settings.minutes_before_arrivals, 5)


if __name__ == "__main__":
    unittest.main()
