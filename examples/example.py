"""Example usage of OBAClient."""

import logging
import sys
from pathlib import Path

# Add src to path so we can import obaclient
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from obaclient import OBAAPIError, NotFoundError, OBAClient

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

# Downtown Seattle
DEFAULT_LOCATION = (47.6062, -122.3321)


def print_stop_arrivals(client: OBAClient, stop_id: str):
    """
    Fetch and display upcoming arrivals for a stop.

    Args:
        client: Configured client.
        stop_id: OneBusAway stop ID (e.g., "1_75403")
    """
    print(f"\n{'='*70}")
    print(f"Arrivals for stop: {stop_id}")
    print(f"{'='*70}\n")

    try:
        result = client.fetch_arrivals(stop_id)
    except NotFoundError:
        print("  Stop not found")
        return
    except OBAAPIError as e:
        logger.error(f"Failed to fetch arrivals: {e}")
        print(f"Error: {e} (try again later)")
        return

    print(f"Stop: {result.stop_name or stop_id} ({result.stop_code or '-'})")
    routes = ", ".join(r.short_name or r.id for r in result.routes)
    print(f"Routes serving this stop: {routes or 'unknown'}\n")

    if not result.arrivals:
        print("  No arrivals found")
    for arrival in result.arrivals:
        status = arrival.schedule_status_label or "Scheduled"
        print(
            f"  {arrival.route_short_name or arrival.route_id:>6}: "
            f"{arrival.minutes_from_now:3d} min → {arrival.headsign or '?'} [{status}]"
        )


def print_nearby_vehicles(client: OBAClient, latitude: float, longitude: float):
    """
    Display vehicles around a point.

    Args:
        client: Configured client.
        latitude: Centre latitude.
        longitude: Centre longitude.
    """
    print(f"\n{'='*70}")
    print(f"Vehicles near {latitude:.4f}, {longitude:.4f}")
    print(f"{'='*70}\n")

    vehicles = client.fetch_vehicles_reliably(latitude, longitude, 0.02, 0.02)
    if not vehicles:
        print("  No vehicles found")
    for vehicle in vehicles:
        where = (
            f"{vehicle.latitude:.5f}, {vehicle.longitude:.5f}"
            if vehicle.has_location
            else "position unknown"
        )
        print(f"  {vehicle.route_short_name or '?':>6} {vehicle.vehicle_id or vehicle.id}: {where}")


if __name__ == "__main__":
    client = OBAClient.from_settings()
    if len(sys.argv) > 1:
        # Command line mode: pass a stop ID as argument
        print_stop_arrivals(client, sys.argv[1])
    else:
        print_nearby_vehicles(client, *DEFAULT_LOCATION)
