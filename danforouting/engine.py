"""
DanfoEngine: the single entry point callers use. Wires the resolver,
composition, fare and trip services to one repository and one set of
external providers.
"""

import logging
from typing import List, Optional

from .config import Config, config as default_config
from .core_route_service import RouteCompositionEngine
from .exceptions import NoRouteFoundError
from .fare_engine import FareEstimationEngine
from .location_resolver import LocationInput, LocationResolver
from .models.fares import FareContext, FareEstimate
from .models.locations import Coordinate
from .models.route_segments import RankedRoute
from .models.trips import ActiveTrip, ProgressUpdate
from .providers.directions import DirectionsProvider, GoogleMapsClient
from .providers.notifications import LoggingNotificationSender, NotificationSender, WebhookNotificationSender
from .providers.repository import InMemoryRepository, Repository
from .trip_tracker import TripTrackingService


class DanfoEngine:
    """Route finding, fare estimation and live trip tracking"""

    def __init__(self, repository: Repository, directions: Optional[DirectionsProvider] = None,
                 notifier: Optional[NotificationSender] = None, config: Config = default_config):
        self.repository = repository
        self.directions = directions
        self.logger = logging.getLogger(__name__)

        self.resolver = LocationResolver(repository, directions, config.location_match_radius_m)
        self.fares = FareEstimationEngine(repository, **config.get_fare_config())
        comp = config.get_composition_config()
        self.composer = RouteCompositionEngine(
            repository, self.fares, directions,
            max_depth=comp['max_depth'],
            direct_limit=comp['direct_limit'],
            walking_radius_km=comp['walking_radius_km'],
            max_walking_m=comp['max_walking_m'],
            moto_threshold_m=comp['moto_threshold_m'],
        )
        self.trips = TripTrackingService(repository, notifier, **config.get_tracking_config())

    @classmethod
    def from_config(cls, config: Config = default_config) -> 'DanfoEngine':
        """Build an engine from environment configuration and the CSV seed data"""
        config.validate()
        repository = InMemoryRepository.from_csv_dir(config.data_dir)
        directions = GoogleMapsClient(config.google_maps_api_key, config.provider_timeout) \
            if config.google_maps_api_key else None
        if config.notification_webhook_url:
            notifier = WebhookNotificationSender(config.notification_webhook_url, config.provider_timeout)
        else:
            notifier = LoggingNotificationSender()
        return cls(repository, directions, notifier, config)

    def find_routes(self, start_input: LocationInput, end_input: LocationInput,
                    context: Optional[FareContext] = None) -> List[RankedRoute]:
        start = self.resolver.resolve(start_input)
        end = self.resolver.resolve(end_input)
        return self.composer.find_routes(start, end, context)

    def estimate_fare(self, mode: str, distance_km: float, context: Optional[FareContext] = None,
                      duration_min: Optional[float] = None) -> FareEstimate:
        return self.fares.estimate_fare(mode, distance_km, duration_min, context)

    def start_trip(self, user_id: str, route_id: str, coordinate: Coordinate,
                   route: Optional[RankedRoute] = None) -> ActiveTrip:
        """Start a trip on a stored route, or on a composed ``route`` the caller got from find_routes"""
        if route is None:
            route = self.repository.get_route(route_id)
            if route is None or not route.is_active:
                raise NoRouteFoundError(f"Route {route_id} not found")
        trip = self.trips.start_trip(user_id, route, coordinate)
        for step in trip.steps:
            if step.segment_id and self.repository.get_segment(step.segment_id):
                self.composer.record_segment_usage(step.segment_id)
        return trip

    def update_trip_location(self, trip_id: str, user_id: str, coordinate: Coordinate) -> ProgressUpdate:
        return self.trips.update_location(trip_id, user_id, coordinate)

    def cancel_trip(self, trip_id: str, user_id: str, reason: Optional[str] = None) -> ActiveTrip:
        return self.trips.cancel_trip(trip_id, user_id, reason)

    def complete_trip(self, trip_id: str, user_id: str) -> ActiveTrip:
        return self.trips.complete_trip(trip_id, user_id)
