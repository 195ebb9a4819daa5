"""
Fleet and location configuration.

Vehicle tiers, per-km rates and the company's fixed pickup/drop-off sites.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from tripshare.app.models.trip_enums import VehicleType


@dataclass(frozen=True)
class VehicleSpec:
    vehicle_type: VehicleType
    name: str
    seats: int
    cost_per_km: float

    @property
    def passenger_capacity(self) -> int:
        # One seat is reserved for the driver
        return self.seats - 1


@dataclass(frozen=True)
class Location:
    id: str
    name: str
    address: str
    latitude: float
    longitude: float


VEHICLES: Dict[VehicleType, VehicleSpec] = {
    VehicleType.CAR_4: VehicleSpec(VehicleType.CAR_4, "4-seat car", 4, 8000.0),
    VehicleType.CAR_7: VehicleSpec(VehicleType.CAR_7, "7-seat car", 7, 10000.0),
    VehicleType.VAN_16: VehicleSpec(VehicleType.VAN_16, "16-seat van", 16, 15000.0),
}

# Smallest first; consolidation picks the first tier that fits
VEHICLE_TIERS = (VehicleType.CAR_4, VehicleType.CAR_7, VehicleType.VAN_16)

# Rate used to price a single-occupant booking
REFERENCE_VEHICLE = VehicleType.CAR_4

LOCATIONS: Dict[str, Location] = {
    "hcm-office": Location(
        "hcm-office", "HCM Office",
        "76 Le Lai Street, Ben Thanh Ward, District 1, Ho Chi Minh City",
        10.7688, 106.6781,
    ),
    "phan-thiet-factory": Location(
        "phan-thiet-factory", "Phan Thiet Factory",
        "Phan Thiet Industrial Zone, Binh Thuan Province",
        10.9333, 108.1000,
    ),
    "long-an-factory": Location(
        "long-an-factory", "Long An Factory",
        "Long Hau Industrial Park, Can Giuoc, Long An Province",
        10.5356, 106.4142,
    ),
    "tay-ninh-factory": Location(
        "tay-ninh-factory", "Tay Ninh Factory",
        "Trang Bang Industrial Park, Tay Ninh Province",
        11.3100, 106.0983,
    ),
}


def find_location(value: str) -> Optional[Location]:
    """Resolve a location by id or display name (case-insensitive)."""
    if not value:
        return None
    key = value.strip().lower()
    for location in LOCATIONS.values():
        if key in (location.id, location.name.lower()):
            return location
    return None


def vehicle_for(vehicle_type: VehicleType) -> VehicleSpec:
    return VEHICLES[vehicle_type]
