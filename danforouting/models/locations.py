from dataclasses import dataclass, field
from typing import List, Optional

from ..exceptions import InvalidCoordinatesError


@dataclass(frozen=True)
class Coordinate:
    """A WGS84 point"""
    lat: float
    lon: float

    def __post_init__(self):
        if not (-90 <= self.lat <= 90 and -180 <= self.lon <= 180):
            raise InvalidCoordinatesError(f"Invalid coordinates: ({self.lat}, {self.lon})")

    @classmethod
    def from_value(cls, value) -> 'Coordinate':
        """Build a Coordinate from a Coordinate, (lat, lon) pair or {'lat', 'lng'|'lon'} dict"""
        if isinstance(value, Coordinate):
            return value
        try:
            if isinstance(value, dict):
                lon = value.get('lon', value.get('lng'))
                return cls(float(value['lat']), float(lon))
            lat, lon = value
            return cls(float(lat), float(lon))
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidCoordinatesError(f"Cannot read coordinates from {value!r}") from e

    def as_tuple(self):
        return (self.lat, self.lon)


@dataclass
class Location:
    """A named point travellers board or alight at"""
    id: str
    name: str
    coordinate: Coordinate
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: str = 'Nigeria'
    location_type: str = 'stop'
    is_verified: bool = False
    is_active: bool = True
    search_count: int = 0
    route_count: int = 0
    place_id: Optional[str] = None
    transport_modes: List[str] = field(default_factory=list)

    @property
    def lat(self) -> float:
        return self.coordinate.lat

    @property
    def lon(self) -> float:
        return self.coordinate.lon
