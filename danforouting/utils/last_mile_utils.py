from typing import List, Optional, Tuple

from ..exceptions import APIError
from ..models.locations import Coordinate, Location
from ..models.route_segments import Landmark, RouteSegment, RouteStep
from .geo_utils import distance, is_point_near_segment, project_point_onto_segment, travel_minutes

# ------------------------------------------------------
#  Configuration constants
# ------------------------------------------------------
WALKING_FALLBACK_RADIUS_KM = 1.5   # destination must be this close to a segment's path
MAX_WALKING_DISTANCE_M = 2000.0    # longer last legs are rejected
MOTO_THRESHOLD_M = 500.0           # beyond this the last leg is an okada ride
ROADSIDE_RADIUS_M = 300.0          # "near the road" for projected drop-off / boarding points
LANDMARK_RADIUS_M = 500.0          # a roadside drop-off is named after a landmark this close
WALK_SPEED_KMPH = 5.0
OKADA_SPEED_KMPH = 25.0
# Road distance is longer than the straight line
ROAD_DETOUR_FACTOR = 1.3


def _polyline_points(segment: RouteSegment) -> List[Tuple[str, Optional[str], Coordinate]]:
    """(name, location id, coordinate) for start, intermediate stops and end, in travel order"""
    points = [(segment.start.name, segment.start.id, segment.start.coordinate)]
    for stop in sorted(segment.intermediate_stops, key=lambda s: s.order):
        if stop.coordinate is not None:
            points.append((stop.name, stop.location_id, stop.coordinate))
    points.append((segment.end.name, segment.end.id, segment.end.coordinate))
    return points


def passes_near(segment: RouteSegment, point: Coordinate,
                radius_km: float = WALKING_FALLBACK_RADIUS_KM) -> bool:
    """True when ``point`` is within reach of the segment's path"""
    points = _polyline_points(segment)
    if any(distance(point, c) / 1000 <= radius_km for _, _, c in points):
        return True
    return any(
        is_point_near_segment(point, a, b, radius_km)
        for (_, _, a), (_, _, b) in zip(points, points[1:])
    )


def nearest_on_path(segment: RouteSegment, point: Coordinate) -> Tuple[Coordinate, float, int]:
    """Closest point to ``point`` on the segment's stop-to-stop path.

    Returns (coordinate, meters away, index of the leg it lies on).
    """
    points = _polyline_points(segment)
    best = None
    for i, ((_, _, a), (_, _, b)) in enumerate(zip(points, points[1:])):
        projected = project_point_onto_segment(point, a, b)
        d = distance(point, projected)
        if best is None or d < best[1]:
            best = (projected, d, i)
    return best


def drop_off_candidates(segment: RouteSegment, destination: Coordinate,
                        roadside_radius_m: float = ROADSIDE_RADIUS_M) -> List[Tuple[str, Optional[str], Coordinate, float]]:
    """
    Places a traveller could alight from ``segment`` to reach ``destination``.

    Segment end and every intermediate stop with a position, plus the
    destination's projection onto the path when the destination is itself
    beside the road. Each entry is (name, location id, coordinate, fraction
    of the ride covered).
    """
    points = _polyline_points(segment)
    n = len(points) - 1
    candidates = [
        (name, loc_id, coord, i / n)
        for i, (name, loc_id, coord) in enumerate(points) if i > 0
    ]
    projected, d, leg = nearest_on_path(segment, destination)
    if d <= roadside_radius_m:
        a, b = points[leg][2], points[leg + 1][2]
        leg_len = distance(a, b)
        within = distance(a, projected) / leg_len if leg_len else 0.0
        fraction = (leg + within) / n
        if fraction > 0:
            candidates.append((f"Roadside on {segment.name}", None, projected, fraction))
    return candidates


def best_drop_off(segment: RouteSegment, destination: Coordinate,
                  roadside_radius_m: float = ROADSIDE_RADIUS_M):
    """Candidate closest to ``destination`` as (name, id, coordinate, fraction, meters)"""
    best = None
    for name, loc_id, coord, fraction in drop_off_candidates(segment, destination, roadside_radius_m):
        d = distance(coord, destination)
        if best is None or d < best[4]:
            best = (name, loc_id, coord, fraction, d)
    return best


def nearest_landmark(segment: RouteSegment, point: Coordinate) -> Optional[Tuple[Landmark, float]]:
    """Segment landmark closest to ``point`` as (landmark, meters); landmarks without a position are skipped"""
    best = None
    for landmark in segment.landmarks:
        if landmark.coordinate is None:
            continue
        d = distance(point, landmark.coordinate)
        if best is None or d < best[1]:
            best = (landmark, d)
    return best


def last_leg_mode(distance_m: float, moto_threshold_m: float = MOTO_THRESHOLD_M) -> str:
    return 'walk' if distance_m <= moto_threshold_m else 'okada'


def build_last_mile_step(origin: Location, dest: Location, order: int, directions=None,
                         moto_threshold_m: float = MOTO_THRESHOLD_M, logger=None) -> RouteStep:
    """Create the final walk or okada step from the drop-off point to the destination.

    Distance and duration come from the directions provider when one is
    available, otherwise from the straight line with a road detour factor.
    """
    straight_m = distance(origin.coordinate, dest.coordinate)
    mode = last_leg_mode(straight_m, moto_threshold_m)

    distance_km = straight_m * ROAD_DETOUR_FACTOR / 1000
    speed = WALK_SPEED_KMPH if mode == 'walk' else OKADA_SPEED_KMPH
    duration_min = travel_minutes(distance_km, speed)
    source = 'straight_line'
    if directions is not None:
        try:
            result = directions.get_directions(origin.coordinate, dest.coordinate, mode)
        except APIError as e:
            result = None
            if logger:
                logger.warning(f"Directions for last leg unavailable, using straight line: {e}")
        if result is not None and result.distance_m > 0:
            distance_km = result.distance_m / 1000
            duration_min = result.duration_s / 60
            source = 'directions'

    if mode == 'walk':
        instructions = f"Walk from {origin.name} to {dest.name} (about {straight_m:.0f} m)."
    else:
        instructions = (f"Take an okada from {origin.name} to {dest.name} "
                        f"(about {straight_m / 1000:.1f} km).")
    if logger:
        logger.debug(f"Last leg {origin.name} -> {dest.name}: {mode}, {distance_km:.2f} km via {source}")

    return RouteStep(
        id=f"last_mile_{origin.id}_{dest.id}",
        order=order,
        from_location=origin,
        to_location=dest,
        transport_mode=mode,
        instructions=instructions,
        distance_km=round(distance_km, 3),
        duration_min=round(duration_min, 1),
    )
