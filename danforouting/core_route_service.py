"""
Route Composition Engine: finds or synthesizes rideable routes between two
Locations, trying the most trusted strategy first:

1. Stored routes in the requested direction
2. Stored routes in the opposite direction, reversed
3. Chains of up to three stored segments (bounded BFS)
4. A segment that passes near the destination plus a walk or okada leg
5. The external directions provider
"""

import logging
import time
from dataclasses import replace
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from .config import config
from .exceptions import APIError, NoRouteFoundError
from .fare_engine import FareEstimationEngine
from .graph.graph_builder import build_segment_graph
from .logger import logger as danfo_logger
from .models.fares import FareContext, FareEstimate
from .models.locations import Location
from .models.route_segments import AlternativeStop, RankedRoute, Route, RouteSegment, RouteStep
from .providers.directions import DirectionsProvider
from .providers.repository import Repository
from .routing.algorithms import find_segment_chain, find_segment_paths
from .routing.reversal import DISCLOSURE_NOTE, reverse_segment, reverse_steps
from .utils.fare_utils import naira_range, normalize_mode, primary_mode
from .utils.last_mile_utils import (
    LANDMARK_RADIUS_M,
    ROADSIDE_RADIUS_M,
    best_drop_off,
    build_last_mile_step,
    nearest_landmark,
    nearest_on_path,
    passes_near,
)

DIRECT_CONFIDENCE = 95
REVERSED_CONFIDENCE = 92
COMPOSED_CONFIDENCE = 90
COMPOSED_PENALTY_PER_SEGMENT = 5
WALKING_CONFIDENCE = 85
EXTERNAL_CONFIDENCE = 70

DROP_OFF_NOTE = ("**Your Drop-Off Point: {name}**\nTell the driver to stop at {name}. "
                 "This is where you'll walk from to reach your final destination.")


def ranking_key(route):
    """Verified first, then popularity, then safety, then shortest duration"""
    return (not route.is_verified, -route.popularity_score, -route.safety_rating, route.duration_min)


def step_from_segment(segment: RouteSegment, order: int) -> RouteStep:
    return RouteStep(
        id=f"{segment.id}#{order}",
        order=order,
        from_location=segment.start,
        to_location=segment.end,
        transport_mode=primary_mode(segment.transport_modes),
        instructions=segment.instructions or f"Board at {segment.start.name} and alight at {segment.end.name}.",
        distance_km=segment.distance_km,
        duration_min=segment.duration_min,
        min_fare=segment.min_fare,
        max_fare=segment.max_fare,
        landmarks=list(segment.landmarks),
        segment_id=segment.id,
    )


class RouteCompositionEngine:
    """Compose ranked routes from stored routes, segments and external directions"""

    def __init__(self, repository: Repository, fare_engine: FareEstimationEngine,
                 directions: Optional[DirectionsProvider] = None,
                 max_depth: int = config.max_composition_depth,
                 direct_limit: int = config.direct_route_limit,
                 walking_radius_km: float = config.walking_fallback_radius_km,
                 max_walking_m: float = config.max_walking_distance_m,
                 moto_threshold_m: float = config.moto_threshold_m):
        self.repository = repository
        self.fare_engine = fare_engine
        self.directions = directions
        self.max_depth = max_depth
        self.direct_limit = direct_limit
        self.walking_radius_km = walking_radius_km
        self.max_walking_m = max_walking_m
        self.moto_threshold_m = moto_threshold_m
        self.logger = logging.getLogger(__name__)

    def find_routes(self, start: Location, end: Location,
                    context: Optional[FareContext] = None) -> List[RankedRoute]:
        """
        Ranked route candidates from ``start`` to ``end``.

        Strategies run in order and the first one with any result wins.
        Every step carries a fare estimate and every route has min <= max.

        Raises:
            NoRouteFoundError: every strategy came back empty
        """
        if start.id == end.id:
            raise NoRouteFoundError(f"Start and destination are the same location: {start.name}")

        started = time.time()
        context = context or FareContext(city=start.city, state=start.state)
        strategies: List[Tuple[str, Callable]] = [
            ('database', self._direct_routes),
            ('reversed', self._reversed_routes),
            ('composed', self._composed_routes),
            ('with_walking', self._walking_routes),
            ('external', self._external_routes),
        ]
        for name, strategy in strategies:
            routes = strategy(start, end)
            if not routes:
                self.logger.debug(f"Strategy '{name}' found nothing for {start.name} -> {end.name}")
                continue
            routes = [self._attach_fares(route, context) for route in routes]
            danfo_logger.log_route_request(start.name, end.name, name, (time.time() - started) * 1000, True)
            return routes

        danfo_logger.log_route_request(start.name, end.name, 'none', (time.time() - started) * 1000, False)
        raise NoRouteFoundError(f"No route found from {start.name} to {end.name}")

    # Strategy 1 and 2: stored routes

    def _stored(self, start_id: str, end_id: str) -> List[Route]:
        routes = self.repository.find_routes(start_id, end_id)
        routes.sort(key=ranking_key)
        return routes[:self.direct_limit]

    def _direct_routes(self, start: Location, end: Location) -> List[RankedRoute]:
        results = []
        for route in self._stored(start.id, end.id):
            min_fare, max_fare = naira_range(route.min_fare, route.max_fare)
            results.append(RankedRoute(
                name=route.name,
                source='database',
                route_id=route.id,
                start=route.start,
                end=route.end,
                steps=[replace(s, route_id=route.id) for s in route.ordered_steps()],
                distance_km=route.distance_km,
                duration_min=route.duration_min,
                min_fare=min_fare,
                max_fare=max_fare,
                confidence=DIRECT_CONFIDENCE,
                is_verified=route.is_verified,
                popularity_score=route.popularity_score,
                safety_rating=route.safety_rating,
            ))
        return results

    def _reversed_routes(self, start: Location, end: Location) -> List[RankedRoute]:
        results = []
        for route in self._stored(end.id, start.id):
            min_fare, max_fare = naira_range(route.min_fare, route.max_fare)
            results.append(RankedRoute(
                name=f"{route.end.name} to {route.start.name}",
                source='reversed',
                route_id=route.id,
                start=route.end,
                end=route.start,
                steps=[replace(s, route_id=route.id) for s in reverse_steps(route.steps)],
                distance_km=route.distance_km,
                duration_min=route.duration_min,
                min_fare=min_fare,
                max_fare=max_fare,
                confidence=REVERSED_CONFIDENCE,
                is_reversed=True,
                is_verified=route.is_verified,
                popularity_score=route.popularity_score,
                safety_rating=route.safety_rating,
                notes=[DISCLOSURE_NOTE.strip()],
            ))
        if results:
            self.logger.info(f"Using {len(results)} reversed route(s) for {start.name} -> {end.name}")
        return results

    # Strategy 3: segment chains

    def _segment_graph(self):
        return build_segment_graph(self.repository.list_segments(), self.logger)

    def _composed_routes(self, start: Location, end: Location) -> List[RankedRoute]:
        graph = self._segment_graph()
        paths = find_segment_paths(graph, start.id, end.id, max_depth=self.max_depth,
                                   limit=self.direct_limit, logger=self.logger)
        results = [self._compose(path, start, end) for path in paths]
        return sorted(results, key=ranking_key)

    def _compose(self, path: List[RouteSegment], start: Location, end: Location) -> RankedRoute:
        steps = [step_from_segment(segment, order) for order, segment in enumerate(path, start=1)]
        return RankedRoute(
            name=" -> ".join([path[0].start.name] + [s.end.name for s in path]),
            source='composed',
            start=start,
            end=end,
            steps=steps,
            distance_km=round(sum(s.distance_km for s in path), 3),
            duration_min=round(sum(s.duration_min for s in path), 1),
            min_fare=sum(s.min_fare for s in path),
            max_fare=sum(s.max_fare for s in path),
            confidence=COMPOSED_CONFIDENCE - COMPOSED_PENALTY_PER_SEGMENT * (len(path) - 1),
            is_verified=all(s.is_verified for s in path),
            popularity_score=float(min(s.usage_count for s in path)),
            notes=["\n\n".join(step.instructions for step in steps)],
            segment_ids=[s.id for s in path],
        )

    # Strategy 4: ride most of the way, walk or okada the rest

    def _walking_routes(self, start: Location, end: Location) -> List[RankedRoute]:
        graph = self._segment_graph()
        candidates = []
        for segment in self.repository.list_segments():
            if not passes_near(segment, end.coordinate, self.walking_radius_km):
                continue
            boarding = self._boarding(graph, segment, start)
            if boarding is None:
                continue
            lead, board_fraction = boarding
            drop = best_drop_off(segment, end.coordinate)
            if drop is None:
                continue
            name, loc_id, coord, drop_fraction, walk_m = drop
            if walk_m > self.max_walking_m or drop_fraction <= board_fraction:
                continue
            candidates.append((walk_m, len(lead), segment, lead, board_fraction, drop))

        candidates.sort(key=lambda c: (c[0], c[1], c[2].duration_min))
        for walk_m, _, segment, lead, board_fraction, drop in candidates:
            route = self._ride_and_walk(start, end, segment, lead, board_fraction, drop)
            last = route.steps[-1]
            if route.requires_walking and last.distance_km * 1000 > self.max_walking_m:
                self.logger.debug(f"Rejecting {segment.id}: last leg {last.distance_km:.2f} km too long")
                continue
            self.logger.info(f"Ride-and-walk via {segment.name}, {walk_m:.0f} m to {end.name}")
            return [route]
        return []

    def _boarding(self, graph, segment: RouteSegment, start: Location):
        """How the traveller gets onto ``segment``: (lead-in segments, fraction of ride skipped)"""
        if segment.start.id == start.id:
            return [], 0.0
        chain = find_segment_chain(graph, start.id, segment.start.id, max_depth=self.max_depth - 1)
        if chain:
            return chain, 0.0
        projected, meters, leg = nearest_on_path(segment, start.coordinate)
        if meters <= ROADSIDE_RADIUS_M:
            stops = len(segment.intermediate_stops) + 1
            return [('walk_to_road', projected, meters)], leg / stops
        return None

    def _ride_and_walk(self, start: Location, end: Location, segment: RouteSegment, lead,
                       board_fraction: float, drop) -> RankedRoute:
        name, loc_id, coord, drop_fraction, walk_m = drop
        steps: List[RouteStep] = []
        board_at = segment.start

        for item in lead:
            if isinstance(item, RouteSegment):
                steps.append(step_from_segment(item, len(steps) + 1))
            else:
                _, projected, meters = item
                board_at = Location(id=f"roadside_{segment.id}_board", name=f"Roadside on {segment.name}",
                                    coordinate=projected, city=segment.city, location_type='roadside')
                steps.append(build_last_mile_step(start, board_at, len(steps) + 1, self.directions,
                                                  self.moto_threshold_m, self.logger))

        drop_at = self.repository.get_location(loc_id) if loc_id else None
        if drop_at is None:
            landmark = nearest_landmark(segment, coord)
            if landmark is not None and landmark[1] <= LANDMARK_RADIUS_M:
                name = landmark[0].name
            drop_at = Location(id=loc_id or f"roadside_{segment.id}_drop", name=name, coordinate=coord,
                               city=segment.city, location_type='roadside')

        ride_fraction = drop_fraction - board_fraction
        ride_min, ride_max = naira_range(segment.min_fare * ride_fraction, segment.max_fare * ride_fraction)
        ride = step_from_segment(segment, len(steps) + 1)
        ride = replace(
            ride,
            from_location=board_at,
            to_location=drop_at,
            distance_km=round(segment.distance_km * ride_fraction, 3),
            duration_min=round(segment.duration_min * ride_fraction, 1),
            min_fare=ride_min,
            max_fare=ride_max,
            instructions=f"{ride.instructions}\n\n{DROP_OFF_NOTE.format(name=drop_at.name)}",
        )
        steps.append(ride)

        requires_walking = walk_m >= 1.0
        if requires_walking:
            steps.append(build_last_mile_step(drop_at, end, len(steps) + 1, self.directions,
                                              self.moto_threshold_m, self.logger))

        return RankedRoute(
            name=f"{start.name} to {end.name} via {segment.name}",
            source='with_walking',
            start=start,
            end=end,
            steps=steps,
            distance_km=round(sum(s.distance_km for s in steps), 3),
            duration_min=round(sum(s.duration_min for s in steps), 1),
            min_fare=sum(s.min_fare for s in steps),
            max_fare=sum(s.max_fare for s in steps),
            confidence=WALKING_CONFIDENCE,
            requires_walking=requires_walking,
            is_verified=segment.is_verified,
            popularity_score=float(segment.usage_count),
            notes=[f"Alight at {drop_at.name}, about {walk_m:.0f} m from {end.name}."],
            segment_ids=[s.segment_id for s in steps if s.segment_id],
        )

    # Strategy 5: external provider

    def _external_routes(self, start: Location, end: Location) -> List[RankedRoute]:
        if self.directions is None:
            return []
        try:
            result = self.directions.get_directions(start.coordinate, end.coordinate, 'transit')
        except APIError as e:
            self.logger.warning(f"External directions failed for {start.name} -> {end.name}: {e}")
            return []
        if result is None:
            return []

        instructions = "\n".join(s['instructions'] for s in result.steps if s.get('instructions'))
        distance_km = round(result.distance_m / 1000, 3)
        duration_min = round(result.duration_s / 60, 1)
        fare = result.fare or 0.0
        step = RouteStep(
            id=f"external_{start.id}_{end.id}",
            order=1,
            from_location=start,
            to_location=end,
            transport_mode='bus',
            instructions=instructions or f"Follow the suggested transit route from {start.name} to {end.name}.",
            distance_km=distance_km,
            duration_min=duration_min,
            min_fare=fare,
            max_fare=fare,
        )
        return [RankedRoute(
            name='Google Maps Route',
            source='external',
            start=start,
            end=end,
            steps=[step],
            distance_km=distance_km,
            duration_min=duration_min,
            min_fare=fare,
            max_fare=fare,
            confidence=EXTERNAL_CONFIDENCE,
            notes=["Suggested by the external directions provider; local fares may differ."],
        )]

    # Fares

    def _attach_fares(self, route: RankedRoute, context: FareContext) -> RankedRoute:
        when = context.when or datetime.now()
        steps = []
        for step in route.steps:
            mode = normalize_mode(step.transport_mode)
            if mode == 'walk':
                estimate = FareEstimate(amount=0.0, min_fare=0.0, max_fare=0.0, confidence='high')
            else:
                estimate = self.fare_engine.estimate_fare(
                    mode, step.distance_km, step.duration_min,
                    replace(context, when=when, route_id=route.route_id, segment_id=step.segment_id,
                            city=step.from_location.city or context.city),
                )
            min_fare, max_fare = step.min_fare, step.max_fare
            if not max_fare:
                min_fare, max_fare = estimate.min_fare, estimate.max_fare
            min_fare, max_fare = sorted((min_fare, max_fare))
            steps.append(replace(step, transport_mode=mode, fare=estimate, min_fare=min_fare, max_fare=max_fare))

        min_fare, max_fare = route.min_fare, route.max_fare
        if route.source not in ('database', 'reversed') or not max_fare:
            min_fare = sum(s.min_fare for s in steps)
            max_fare = sum(s.max_fare for s in steps)
        min_fare, max_fare = naira_range(min_fare, max_fare)
        return replace(route, steps=steps, min_fare=min_fare, max_fare=max_fare)

    # Segment helpers

    def suggest_alternative_stops(self, segment_id: str) -> List[AlternativeStop]:
        """Cheaper get-off-earlier options along a segment, by distance ratio"""
        segment = self.repository.get_segment(segment_id)
        if segment is None:
            raise NoRouteFoundError(f"Unknown segment: {segment_id}")
        stops = sorted(segment.intermediate_stops, key=lambda s: s.order)
        n = len(stops)
        suggestions = []
        for idx, stop in enumerate(stops):
            fraction = (idx + 1) / (n + 1)
            partial_fare = round(fraction * segment.max_fare, 2)
            suggestions.append(AlternativeStop(
                name=stop.name,
                location_id=stop.location_id,
                partial_distance_km=round(fraction * segment.distance_km, 3),
                estimated_fare=partial_fare,
                saving=round(segment.max_fare - partial_fare, 2),
                is_optional=stop.is_optional,
            ))
        return suggestions

    def find_bidirectional_segment(self, start_id: str, end_id: str) -> Optional[Tuple[RouteSegment, bool]]:
        """A segment from start to end, or a reversed view of one from end to start.

        Returns (segment, is_reversed) or None.
        """
        segments = self.repository.list_segments()
        forward = [s for s in segments if s.start.id == start_id and s.end.id == end_id]
        if forward:
            return max(forward, key=lambda s: (s.is_verified, s.usage_count)), False
        backward = [s for s in segments if s.start.id == end_id and s.end.id == start_id]
        if backward:
            return reverse_segment(max(backward, key=lambda s: (s.is_verified, s.usage_count))), True
        return None

    def record_segment_usage(self, segment_id: str) -> RouteSegment:
        segment = self.repository.get_segment(segment_id)
        if segment is None:
            raise NoRouteFoundError(f"Unknown segment: {segment_id}")
        segment.usage_count += 1
        return self.repository.save_segment(segment)

    def popular_segments(self, city: Optional[str] = None, limit: int = 20) -> List[RouteSegment]:
        segments = [
            s for s in self.repository.list_segments()
            if city is None or (s.city or '').lower() == city.lower()
        ]
        return sorted(segments, key=lambda s: s.usage_count, reverse=True)[:limit]

    def find_routes_passing_through(self, start: Location, end: Location, through: Location,
                                    context: Optional[FareContext] = None) -> RankedRoute:
        """Best route from start to end that stops at ``through`` on the way"""
        first = self.find_routes(start, through, context)[0]
        second = self.find_routes(through, end, context)[0]
        steps = [replace(s, order=i) for i, s in enumerate(first.steps + second.steps, start=1)]
        return RankedRoute(
            name=f"{start.name} to {end.name} via {through.name}",
            source='composed',
            start=start,
            end=end,
            steps=steps,
            distance_km=round(first.distance_km + second.distance_km, 3),
            duration_min=round(first.duration_min + second.duration_min, 1),
            min_fare=first.min_fare + second.min_fare,
            max_fare=first.max_fare + second.max_fare,
            confidence=min(first.confidence, second.confidence) - COMPOSED_PENALTY_PER_SEGMENT,
            is_reversed=first.is_reversed or second.is_reversed,
            requires_walking=first.requires_walking or second.requires_walking,
            notes=first.notes + second.notes,
            segment_ids=first.segment_ids + second.segment_ids,
        )
