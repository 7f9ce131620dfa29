"""
Storage boundary for locations, routes, segments, fares and trips.

``InMemoryRepository`` keeps everything in dicts and can be seeded from
CSV files. Trips are copied in and out so that a stale in-memory object
can never overwrite a newer stored version.
"""

import copy
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from ..exceptions import ConcurrentUpdateError, TripAlreadyActiveError
from ..models.fares import FareFeedback, FareRule, PeakWindow
from ..models.locations import Coordinate, Location
from ..models.route_segments import IntermediateStop, Landmark, Route, RouteSegment
from ..models.trips import ActiveTrip, TripStatus
from ..utils.geo_utils import bounding_box, vectorized_haversine

logger = logging.getLogger(__name__)


class Repository(ABC):
    """Persistence operations the engine relies on"""

    @abstractmethod
    def get_location(self, location_id: str) -> Optional[Location]: ...

    @abstractmethod
    def save_location(self, location: Location) -> Location: ...

    @abstractmethod
    def list_locations(self, active_only: bool = True) -> List[Location]: ...

    @abstractmethod
    def find_locations_within(self, center: Coordinate, radius_m: float,
                              active_only: bool = True) -> List[Tuple[Location, float]]: ...

    @abstractmethod
    def find_location_by_name(self, name: str) -> Optional[Location]: ...

    @abstractmethod
    def get_route(self, route_id: str) -> Optional[Route]: ...

    @abstractmethod
    def find_routes(self, start_id: str, end_id: str, active_only: bool = True) -> List[Route]: ...

    @abstractmethod
    def save_route(self, route: Route) -> Route: ...

    @abstractmethod
    def get_segment(self, segment_id: str) -> Optional[RouteSegment]: ...

    @abstractmethod
    def list_segments(self, active_only: bool = True) -> List[RouteSegment]: ...

    @abstractmethod
    def save_segment(self, segment: RouteSegment) -> RouteSegment: ...

    @abstractmethod
    def list_fare_rules(self, transport_mode: Optional[str] = None) -> List[FareRule]: ...

    @abstractmethod
    def save_fare_rule(self, rule: FareRule) -> FareRule: ...

    @abstractmethod
    def get_feedback(self, feedback_id: str) -> Optional[FareFeedback]: ...

    @abstractmethod
    def list_feedback(self, transport_mode: Optional[str] = None, route_id: Optional[str] = None,
                      segment_id: Optional[str] = None,
                      since: Optional[datetime] = None) -> List[FareFeedback]: ...

    @abstractmethod
    def save_feedback(self, feedback: FareFeedback) -> FareFeedback: ...

    @abstractmethod
    def get_trip(self, trip_id: str) -> Optional[ActiveTrip]: ...

    @abstractmethod
    def find_active_trip(self, user_id: str) -> Optional[ActiveTrip]: ...

    @abstractmethod
    def list_trips(self, user_id: str) -> List[ActiveTrip]: ...

    @abstractmethod
    def save_trip(self, trip: ActiveTrip) -> ActiveTrip:
        """Compare-and-write on ``trip.version``; raises ConcurrentUpdateError when stale"""


class InMemoryRepository(Repository):

    def __init__(self):
        self.locations: Dict[str, Location] = {}
        self.routes: Dict[str, Route] = {}
        self.segments: Dict[str, RouteSegment] = {}
        self.fare_rules: Dict[str, FareRule] = {}
        self.feedback: Dict[str, FareFeedback] = {}
        self.trips: Dict[str, ActiveTrip] = {}

    # Locations

    def get_location(self, location_id):
        return self.locations.get(location_id)

    def save_location(self, location):
        self.locations[location.id] = location
        return location

    def list_locations(self, active_only=True):
        return [l for l in self.locations.values() if l.is_active or not active_only]

    def find_locations_within(self, center, radius_m, active_only=True):
        """Active locations within ``radius_m`` of ``center``, nearest first"""
        min_lat, max_lat, min_lon, max_lon = bounding_box(center, radius_m / 1000)
        candidates = [
            l for l in self.list_locations(active_only)
            if min_lat <= l.lat <= max_lat and min_lon <= l.lon <= max_lon
        ]
        if not candidates:
            return []
        lats = np.array([l.lat for l in candidates])
        lons = np.array([l.lon for l in candidates])
        distances = vectorized_haversine(center.lat, center.lon, lats, lons)
        hits = [(loc, float(d)) for loc, d in zip(candidates, distances) if d <= radius_m]
        return sorted(hits, key=lambda hit: hit[1])

    def find_location_by_name(self, name: str) -> Optional[Location]:
        wanted = name.strip().lower()
        for location in self.list_locations():
            if location.name.lower() == wanted:
                return location
        return None

    # Routes and segments

    def get_route(self, route_id):
        return self.routes.get(route_id)

    def find_routes(self, start_id, end_id, active_only=True):
        return [
            r for r in self.routes.values()
            if r.start.id == start_id and r.end.id == end_id and (r.is_active or not active_only)
        ]

    def save_route(self, route):
        if not route.validate_steps():
            raise ValueError(f"Route {route.id} steps must be numbered 1..n without gaps")
        self.routes[route.id] = route
        return route

    def get_segment(self, segment_id):
        return self.segments.get(segment_id)

    def list_segments(self, active_only=True):
        return [s for s in self.segments.values() if s.is_active or not active_only]

    def save_segment(self, segment):
        self.segments[segment.id] = segment
        return segment

    # Fares

    def list_fare_rules(self, transport_mode=None):
        return [r for r in self.fare_rules.values()
                if transport_mode is None or r.transport_mode == transport_mode]

    def save_fare_rule(self, rule):
        rule.validate()
        self.fare_rules[rule.id] = rule
        return rule

    def get_feedback(self, feedback_id):
        return self.feedback.get(feedback_id)

    def list_feedback(self, transport_mode=None, route_id=None, segment_id=None, since=None):
        out = []
        for fb in self.feedback.values():
            if transport_mode is not None and fb.transport_mode != transport_mode:
                continue
            if route_id is not None and fb.route_id != route_id:
                continue
            if segment_id is not None and fb.segment_id != segment_id:
                continue
            if since is not None and fb.created_at < since:
                continue
            out.append(fb)
        return out

    def save_feedback(self, feedback):
        self.feedback[feedback.id] = feedback
        return feedback

    # Trips

    def get_trip(self, trip_id):
        trip = self.trips.get(trip_id)
        return copy.deepcopy(trip) if trip else None

    def find_active_trip(self, user_id):
        for trip in self.trips.values():
            if trip.user_id == user_id and trip.status == TripStatus.IN_PROGRESS:
                return copy.deepcopy(trip)
        return None

    def list_trips(self, user_id):
        trips = [copy.deepcopy(t) for t in self.trips.values() if t.user_id == user_id]
        return sorted(trips, key=lambda t: t.started_at, reverse=True)

    def save_trip(self, trip):
        stored = self.trips.get(trip.id)
        if stored is None:
            if trip.status == TripStatus.IN_PROGRESS:
                existing = self.find_active_trip(trip.user_id)
                if existing is not None:
                    raise TripAlreadyActiveError(f"User {trip.user_id} already has trip {existing.id} in progress")
        elif stored.version != trip.version:
            raise ConcurrentUpdateError(
                f"Trip {trip.id} was modified concurrently (stored v{stored.version}, got v{trip.version})"
            )
        trip.version += 1
        self.trips[trip.id] = copy.deepcopy(trip)
        return trip

    # Seeding

    @classmethod
    def from_csv_dir(cls, data_dir: str) -> 'InMemoryRepository':
        """Load locations.csv, landmarks.csv, route_segments.csv and fare_rules.csv from ``data_dir``"""
        repo = cls()
        repo._load_locations(os.path.join(data_dir, 'locations.csv'))
        positions = _load_landmark_positions(os.path.join(data_dir, 'landmarks.csv'))
        repo._load_segments(os.path.join(data_dir, 'route_segments.csv'), positions)
        repo._load_fare_rules(os.path.join(data_dir, 'fare_rules.csv'))
        logger.info(f"Loaded {len(repo.locations)} locations, {len(repo.segments)} segments, "
                    f"{len(repo.fare_rules)} fare rules from {data_dir}")
        return repo

    def _load_locations(self, path: str):
        if not os.path.exists(path):
            logger.warning(f"Locations file not found: {path}")
            return
        df = pd.read_csv(path)
        for _, row in df.iterrows():
            if pd.isnull(row['id']) or pd.isnull(row['lat']) or pd.isnull(row['lon']):
                logger.warning(f"Invalid location row: {row.to_dict()}")
                continue
            self.save_location(Location(
                id=str(row['id']),
                name=str(row['name']),
                coordinate=Coordinate(float(row['lat']), float(row['lon'])),
                city=_optional(row.get('city')),
                state=_optional(row.get('state')),
                location_type=_optional(row.get('location_type')) or 'stop',
                is_verified=_flag(row.get('is_verified')),
            ))

    def _load_segments(self, path: str, landmark_positions: Optional[Dict[str, Coordinate]] = None):
        landmark_positions = landmark_positions or {}
        if not os.path.exists(path):
            logger.warning(f"Route segments file not found: {path}")
            return
        df = pd.read_csv(path)
        for _, row in df.iterrows():
            start = self.locations.get(str(row['start_location_id']))
            end = self.locations.get(str(row['end_location_id']))
            if start is None or end is None:
                logger.warning(f"Segment {row['id']} references unknown locations, skipping")
                continue
            stops = []
            for order, stop_id in enumerate(_split(row.get('intermediate_stop_ids')), start=1):
                stop = self.locations.get(stop_id)
                if stop is None:
                    logger.warning(f"Segment {row['id']}: unknown intermediate stop {stop_id}")
                    continue
                stops.append(IntermediateStop(name=stop.name, order=order,
                                              coordinate=stop.coordinate, location_id=stop.id))
            self.save_segment(RouteSegment(
                id=str(row['id']),
                name=str(row['name']),
                start=start,
                end=end,
                transport_modes=_split(row.get('transport_modes')) or ['bus'],
                distance_km=float(row['distance_km']),
                duration_min=float(row['duration_min']),
                min_fare=float(row['min_fare']),
                max_fare=float(row['max_fare']),
                instructions=_optional(row.get('instructions')) or '',
                intermediate_stops=stops,
                landmarks=[Landmark(name, landmark_positions.get(name))
                           for name in _split(row.get('landmarks'))],
                is_verified=_flag(row.get('is_verified')),
                city=start.city,
            ))

    def _load_fare_rules(self, path: str):
        if not os.path.exists(path):
            logger.warning(f"Fare rules file not found: {path}")
            return
        df = pd.read_csv(path)
        for _, row in df.iterrows():
            peaks = []
            for window in _split(row.get('peak_hours')):
                start, end = window.split('-')
                peaks.append(PeakWindow(start.strip(), end.strip()))
            self.save_fare_rule(FareRule(
                id=str(row['id']),
                transport_mode=str(row['transport_mode']),
                base_fare=float(row['base_fare']),
                per_km_rate=_float(row.get('per_km_rate'), 0.0),
                per_minute_rate=_float(row.get('per_minute_rate'), 0.0),
                fare_type=_optional(row.get('fare_type')) or 'distance_based',
                city=_optional(row.get('city')),
                state=_optional(row.get('state')),
                minimum_fare=_float(row.get('minimum_fare')),
                maximum_fare=_float(row.get('maximum_fare')),
                peak_hour_multiplier=_float(row.get('peak_hour_multiplier'), 1.0),
                weekend_multiplier=_float(row.get('weekend_multiplier'), 1.0),
                holiday_multiplier=_float(row.get('holiday_multiplier'), 1.0),
                peak_hours=peaks,
                priority=int(_float(row.get('priority'), 0)),
            ))


def _load_landmark_positions(path: str) -> Dict[str, Coordinate]:
    """Landmark name -> position; landmarks missing here stay name-only"""
    if not os.path.exists(path):
        logger.info(f"No landmark positions at {path}")
        return {}
    df = pd.read_csv(path)
    positions = {}
    for _, row in df.iterrows():
        if pd.isnull(row['name']) or pd.isnull(row['lat']) or pd.isnull(row['lon']):
            logger.warning(f"Invalid landmark row: {row.to_dict()}")
            continue
        positions[str(row['name']).strip()] = Coordinate(float(row['lat']), float(row['lon']))
    return positions


def _optional(value) -> Optional[str]:
    if value is None or pd.isnull(value):
        return None
    return str(value)


def _float(value, default: Optional[float] = None) -> Optional[float]:
    if value is None or pd.isnull(value):
        return default
    return float(value)


def _split(value) -> List[str]:
    """'bus|keke' -> ['bus', 'keke']"""
    text = _optional(value)
    if not text:
        return []
    return [part.strip() for part in text.split('|') if part.strip()]


def _flag(value) -> bool:
    if value is None or pd.isnull(value):
        return False
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes')
    return bool(value)
