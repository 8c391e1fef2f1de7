"""
Warehouse Selection Service.

Chooses the single location an order ships from: the closest active
location holding full stock for every line, otherwise the closest active
location overall flagged ``stock_available=False`` so the caller falls back
to cross-location reservation.
"""
import math
import uuid
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AddressNotFound, NoWarehouseAvailable
from app.models.customer import CustomerAddress
from app.models.inventory import Inventory
from app.models.location import Location

logger = logging.getLogger(__name__)

# Geographic center of the contiguous US
DEFAULT_COORDINATES = (39.8283, -98.5795)

CITY_COORDINATES: Dict[str, Tuple[float, float]] = {
    "new york": (40.7128, -74.0060),
    "los angeles": (34.0522, -118.2437),
    "chicago": (41.8781, -87.6298),
    "houston": (29.7604, -95.3698),
    "phoenix": (33.4484, -112.0740),
    "philadelphia": (39.9526, -75.1652),
    "san antonio": (29.4241, -98.4936),
    "san diego": (32.7157, -117.1611),
    "dallas": (32.7767, -96.7970),
    "san jose": (37.3382, -121.8863),
    "austin": (30.2672, -97.7431),
    "jacksonville": (30.3322, -81.6557),
    "columbus": (39.9612, -82.9988),
    "charlotte": (35.2271, -80.8431),
    "san francisco": (37.7749, -122.4194),
    "indianapolis": (39.7684, -86.1581),
    "seattle": (47.6062, -122.3321),
    "denver": (39.7392, -104.9903),
    "washington": (38.9072, -77.0369),
    "boston": (42.3601, -71.0589),
    "nashville": (36.1627, -86.7816),
    "detroit": (42.3314, -83.0458),
    "portland": (45.5152, -122.6784),
    "las vegas": (36.1699, -115.1398),
    "baltimore": (39.2904, -76.6122),
    "sacramento": (38.5816, -121.4944),
    "kansas city": (39.0997, -94.5786),
    "atlanta": (33.7490, -84.3880),
    "raleigh": (35.7796, -78.6382),
    "miami": (25.7617, -80.1918),
    "minneapolis": (44.9778, -93.2650),
    "tampa": (27.9506, -82.4572),
    "new orleans": (29.9511, -90.0715),
}


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two points in km."""
    R = 6371  # Earth's radius in km

    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_lat / 2) ** 2 +
        math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return R * c


def resolve_coordinates(
    city: Optional[str],
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
) -> Tuple[float, float]:
    """Stored coordinates, else a known city (exact then partial), else US center."""
    if latitude is not None and longitude is not None:
        return latitude, longitude
    if not city:
        return DEFAULT_COORDINATES

    name = city.strip().lower()
    if name in CITY_COORDINATES:
        return CITY_COORDINATES[name]
    for known, coords in CITY_COORDINATES.items():
        if known in name or name in known:
            return coords
    return DEFAULT_COORDINATES


@dataclass
class StockDetail:
    available: int
    required: int
    sell_when_out_of_stock: bool = False


@dataclass
class WarehouseSelection:
    location: Location
    distance: float
    stock_available: bool
    stock_details: Dict[uuid.UUID, StockDetail] = field(default_factory=dict)


class WarehouseService:
    """Picks the fulfilment location for a set of (variant_id, quantity) lines."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def select_warehouse(
        self,
        shipping_address_id: uuid.UUID,
        items: Sequence[Tuple[uuid.UUID, int]],
    ) -> WarehouseSelection:
        address = await self.db.get(CustomerAddress, shipping_address_id)
        if not address:
            raise AddressNotFound("Shipping address not found")
        return await self.select_for_destination(
            address.city, items, address.latitude, address.longitude
        )

    async def select_for_destination(
        self,
        city: Optional[str],
        items: Sequence[Tuple[uuid.UUID, int]],
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> WarehouseSelection:
        destination = resolve_coordinates(city, latitude, longitude)

        result = await self.db.execute(
            select(Location).where(Location.is_active == True).order_by(Location.code)
        )
        locations = list(result.scalars().all())
        if not locations:
            raise NoWarehouseAvailable("No active warehouses found")

        variant_ids = {variant_id for variant_id, _ in items}
        inv_result = await self.db.execute(
            select(Inventory).where(
                Inventory.location_id.in_([loc.id for loc in locations]),
                Inventory.variant_id.in_(variant_ids),
            )
        )
        stock: Dict[Tuple[uuid.UUID, uuid.UUID], Inventory] = {
            (row.location_id, row.variant_id): row for row in inv_result.scalars().all()
        }

        options: List[WarehouseSelection] = []
        for location in locations:
            origin = resolve_coordinates(location.city, location.latitude, location.longitude)
            distance = haversine_distance(*destination, *origin)

            stock_available = True
            details: Dict[uuid.UUID, StockDetail] = {}
            for variant_id, quantity in items:
                row = stock.get((location.id, variant_id))
                if row is None:
                    stock_available = False
                    details[variant_id] = StockDetail(available=0, required=quantity)
                    continue

                available = max(0, row.available)
                details[variant_id] = StockDetail(
                    available=available,
                    required=quantity,
                    sell_when_out_of_stock=row.sell_when_out_of_stock,
                )
                if available < quantity and not row.sell_when_out_of_stock:
                    stock_available = False

            options.append(WarehouseSelection(location, distance, stock_available, details))

        # Stable sort keeps code order for equal distances
        options.sort(key=lambda o: o.distance)
        with_stock = [o for o in options if o.stock_available]
        selection = with_stock[0] if with_stock else options[0]

        logger.info(
            f"Selected warehouse {selection.location.code} "
            f"({selection.distance:.1f} km, stock_available={selection.stock_available})"
        )
        return selection
