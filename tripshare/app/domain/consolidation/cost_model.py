"""
Route distance and vehicle cost model.

Distances are great-circle estimates between the configured locations,
rounded to whole kilometres.
"""

import math
from typing import Optional

from tripshare.app.core.fleet_config import (
    VEHICLE_TIERS, REFERENCE_VEHICLE, find_location, vehicle_for
)
from tripshare.app.models.trip_enums import VehicleType


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometers
    """
    R = 6371.0

    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2)**2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2)**2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return R * c


def route_distance_km(origin: str, destination: str) -> int:
    """
    Distance between two configured locations.

    Returns 0 when either end is not a known location, which makes any
    savings calculation for the route come out as zero.
    """
    start = find_location(origin)
    end = find_location(destination)
    if start is None or end is None:
        return 0
    return round(haversine_distance(start.latitude, start.longitude, end.latitude, end.longitude))


def trip_cost(distance_km: float, vehicle_type: VehicleType) -> float:
    return distance_km * vehicle_for(vehicle_type).cost_per_km


def select_vehicle_tier(passengers: int) -> Optional[VehicleType]:
    """Smallest vehicle that seats ``passengers``, or None if none does."""
    for vehicle_type in VEHICLE_TIERS:
        if passengers <= vehicle_for(vehicle_type).passenger_capacity:
            return vehicle_type
    return None


def baseline_cost(distance_km: float, booking_count: int) -> float:
    """Cost of every trip travelling alone in the reference vehicle."""
    return booking_count * trip_cost(distance_km, REFERENCE_VEHICLE)


def savings_percentage(baseline: float, combined: float) -> float:
    if baseline <= 0:
        return 0.0
    return (baseline - combined) / baseline * 100
