from dataclasses import dataclass, field
from typing import List, Optional

from .fares import FareEstimate
from .locations import Coordinate, Location


@dataclass
class Landmark:
    """A recognisable place along a segment; position is optional"""
    name: str
    coordinate: Optional[Coordinate] = None


@dataclass
class IntermediateStop:
    """A stop passed on the way along a segment, ordered with travel direction"""
    name: str
    order: int
    coordinate: Optional[Coordinate] = None
    location_id: Optional[str] = None
    is_optional: bool = False


@dataclass
class RouteSegment:
    """A reusable single-vehicle leg between two locations"""
    id: str
    name: str
    start: Location
    end: Location
    transport_modes: List[str]
    distance_km: float
    duration_min: float
    min_fare: float
    max_fare: float
    instructions: str = ''
    intermediate_stops: List[IntermediateStop] = field(default_factory=list)
    landmarks: List[Landmark] = field(default_factory=list)
    usage_count: int = 0
    is_active: bool = True
    is_verified: bool = False
    city: Optional[str] = None


@dataclass
class RouteStep:
    """One leg of a route"""
    id: str
    order: int
    from_location: Location
    to_location: Location
    transport_mode: str
    instructions: str
    distance_km: float
    duration_min: float
    min_fare: float = 0.0
    max_fare: float = 0.0
    waiting_time_min: float = 0.0
    landmarks: List[Landmark] = field(default_factory=list)
    route_id: Optional[str] = None
    segment_id: Optional[str] = None
    fare: Optional[FareEstimate] = None


@dataclass
class Route:
    """A stored, curated start-to-end route"""
    id: str
    name: str
    start: Location
    end: Location
    steps: List[RouteStep]
    distance_km: float
    duration_min: float
    min_fare: float
    max_fare: float
    transport_modes: List[str] = field(default_factory=list)
    instructions: str = ''
    popularity_score: float = 0.0
    safety_rating: float = 0.0
    is_verified: bool = False
    is_active: bool = True

    def ordered_steps(self) -> List[RouteStep]:
        return sorted(self.steps, key=lambda s: s.order)

    def validate_steps(self) -> bool:
        """Steps must be numbered 1..n without gaps or duplicates"""
        orders = sorted(s.order for s in self.steps)
        return orders == list(range(1, len(orders) + 1))


@dataclass
class RankedRoute:
    """A route candidate returned by the composition engine"""
    name: str
    source: str  # database, reversed, composed, with_walking, external
    start: Location
    end: Location
    steps: List[RouteStep]
    distance_km: float
    duration_min: float
    min_fare: float
    max_fare: float
    confidence: int
    route_id: Optional[str] = None
    is_reversed: bool = False
    requires_walking: bool = False
    is_verified: bool = False
    popularity_score: float = 0.0
    safety_rating: float = 0.0
    notes: List[str] = field(default_factory=list)
    segment_ids: List[str] = field(default_factory=list)

    @property
    def transport_modes(self) -> List[str]:
        modes: List[str] = []
        for step in self.steps:
            if step.transport_mode not in modes:
                modes.append(step.transport_mode)
        return modes


@dataclass
class AlternativeStop:
    """An intermediate stop a traveller may alight at early"""
    name: str
    partial_distance_km: float
    estimated_fare: float
    saving: float
    is_optional: bool = False
    location_id: Optional[str] = None
