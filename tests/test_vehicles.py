"""Tests for the tiered vehicle search."""

import unittest
from unittest.mock import MagicMock, patch
import sys
from pathlib import Path

# Add src to path so we can import obaclient
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from obaclient.errors import BadServerResponseError, NotFoundError, OtherError
from obaclient.models import AgencyCoverage, Route, TripForLocation
from obaclient.vehicles import (
    VehicleAccumulator,
    fan_out,
    fetch_vehicles_near,
    fetch_vehicles_reliably,
)

LAT, LON = 47.6, -122.3
SPAN = 0.02


def trip(trip_id, vehicle_id="", lat=None, lon=None, route="10"):
    return TripForLocation(
        id=trip_id, vehicle_id=vehicle_id, latitude=lat, longitude=lon, route_short_name=route,
    )


def make_client():
    client = MagicMock()
    client.max_workers = 4
    client.fetch_trips_for_location.return_value = []
    client.search_routes.return_value = []
    client.fetch_trips_for_route.return_value = []
    client.fetch_agencies_with_coverage.return_value = []
    client.fetch_vehicles_for_agency.return_value = []
    return client


class TestVehicleAccumulator(unittest.TestCase):
    """Test de-duplication rules."""

    def test_dedupes_by_vehicle_then_trip(self):
        found = VehicleAccumulator()
        added = found.add([
            trip("t1", "v1"),
            trip("t2", "v1"),
            trip("t3"),
            trip("t3"),
            trip("", ""),
        ])
        self.assertEqual(added, 2)
        self.assertEqual([t.id for t in found.vehicles], ["t1", "t3"])
        self.assertFalse(found.satisfied)

    def test_satisfied_needs_a_location(self):
        found = VehicleAccumulator()
        found.add([trip("t1", "v1", LAT, LON)])
        self.assertTrue(found.satisfied)


class TestFanOut(unittest.TestCase):
    """Test concurrent fan-out with partial failures."""

    def test_failures_contribute_nothing(self):
        def fetch(key):
            if key == "bad":
                raise OtherError(ConnectionError("down"))
            return [key + "-1", key + "-2"]

        with self.assertLogs("obaclient.vehicles", level="WARNING"):
            result = fan_out("test", ["a", "bad", "b"], fetch, max_workers=3)

        self.assertEqual(result, ["a-1", "a-2", "b-1", "b-2"])

    def test_no_keys(self):
        self.assertEqual(fan_out("test", [], lambda k: [k]), [])


class TestFetchVehiclesReliably(unittest.TestCase):
    """Test the three search tiers."""

    def test_tier_one_with_locations_stops_early(self):
        client = make_client()
        client.fetch_trips_for_location.return_value = [trip("t1", "v1", LAT, LON)]

        result = fetch_vehicles_reliably(client, LAT, LON, SPAN, SPAN)

        self.assertEqual([t.vehicle_id for t in result], ["v1"])
        client.search_routes.assert_not_called()
        client.fetch_agencies_with_coverage.assert_not_called()

    def test_route_tier_radius_and_dedupe(self):
        client = make_client()
        client.fetch_trips_for_location.return_value = [trip("t1", "v1", route="tier1")]
        client.search_routes.return_value = [Route(id="r1"), Route(id="r2"), Route(id="r1")]
        client.fetch_trips_for_route.side_effect = lambda route_id: {
            "r1": [trip("t1", "v1", LAT, LON, route="tier2"), trip("t2", "v2", LAT, LON)],
            "r2": [trip("t3", "v3", LAT, LON)],
        }[route_id]

        result = fetch_vehicles_reliably(client, LAT, LON, SPAN, SPAN)

        self.assertEqual([t.vehicle_id for t in result], ["v1", "v2", "v3"])
        self.assertEqual(result[0].route_short_name, "tier1")
        client.search_routes.assert_called_once_with(LAT, LON, 5000.0)
        self.assertEqual(client.fetch_trips_for_route.call_count, 2)
        client.fetch_agencies_with_coverage.assert_not_called()

    def test_route_radius_scales_with_span(self):
        client = make_client()
        fetch_vehicles_reliably(client, LAT, LON, 0.1, 0.2)
        client.search_routes.assert_called_once_with(LAT, LON, 0.2 * 111000.0)

    def test_failed_route_child_is_logged_not_fatal(self):
        client = make_client()
        client.search_routes.return_value = [Route(id="r1"), Route(id="r2")]

        def trips_for_route(route_id):
            if route_id == "r2":
                raise NotFoundError("https://x/api/where/trips-for-route/r2.json")
            return [trip("t1", "v1", LAT, LON)]

        client.fetch_trips_for_route.side_effect = trips_for_route

        with self.assertLogs("obaclient.vehicles", level="WARNING"):
            result = fetch_vehicles_reliably(client, LAT, LON, SPAN, SPAN)

        self.assertEqual([t.vehicle_id for t in result], ["v1"])

    def test_agency_tier_filters_agencies_and_box(self):
        client = make_client()
        client.fetch_agencies_with_coverage.return_value = [
            AgencyCoverage(agency_id="near", center_latitude=47.7, center_longitude=-122.1),
            AgencyCoverage(agency_id="far", center_latitude=40.7, center_longitude=-74.0),
        ]
        client.fetch_vehicles_for_agency.return_value = [
            trip("t1", "inside", LAT + 0.01, LON - 0.01),
            trip("t2", "outside", LAT + 1.0, LON),
            trip("t3", "unlocated"),
        ]

        result = fetch_vehicles_reliably(client, LAT, LON, SPAN, SPAN)

        client.fetch_vehicles_for_agency.assert_called_once_with("near")
        self.assertEqual([t.vehicle_id for t in result], ["inside", "unlocated"])

    def test_every_tier_failing_returns_empty(self):
        client = make_client()
        client.fetch_trips_for_location.side_effect = BadServerResponseError(500, "https://x/a.json")
        client.search_routes.side_effect = OtherError(ConnectionError("down"))
        client.fetch_agencies_with_coverage.side_effect = NotFoundError("https://x/b.json")

        with self.assertLogs("obaclient.vehicles", level="ERROR") as logs:
            result = fetch_vehicles_reliably(client, LAT, LON, SPAN, SPAN)

        self.assertEqual(result, [])
        self.assertEqual(len([line for line in logs.output if line.startswith("ERROR")]), 3)

    def test_returns_partial_results_without_locations(self):
        client = make_client()
        client.fetch_trips_for_location.return_value = [trip("t1", "v1")]

        result = fetch_vehicles_reliably(client, LAT, LON, SPAN, SPAN)

        self.assertEqual([t.vehicle_id for t in result], ["v1"])
        client.fetch_agencies_with_coverage.assert_called_once()


class TestFetchVehiclesNear(unittest.TestCase):
    """Test the location-provider entry point."""

    def test_no_location(self):
        client = make_client()
        self.assertEqual(fetch_vehicles_near(client, lambda: None), [])
        client.fetch_trips_for_location.assert_not_called()

    @patch("obaclient.vehicles.fetch_vehicles_reliably")
    def test_uses_provider_location(self, mock_reliably):
        client = make_client()
        mock_reliably.return_value = [trip("t1", "v1", LAT, LON)]

        result = fetch_vehicles_near(client, lambda: (LAT, LON), span=0.05)

        mock_reliably.assert_called_once_with(client, LAT, LON, 0.05, 0.05, 4)
        self.assertEqual(len(result), 1)


if __name__ == "__main__":
    unittest.main()
