"""
Trip Tracking State Machine

Follows a traveller's live position along the steps of a chosen route:
completes steps on arrival, warns when a stop is close, keeps the ETA
current and ends the trip at the final destination.

Every notification is keyed by (step id, kind) and recorded in the same
write as the state change it belongs to, so repeated or retried location
updates never notify twice. Writes are compare-and-set on the trip
version; a lost race is retried against the fresh state.
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from .config import config
from .exceptions import (
    APIError,
    ConcurrentUpdateError,
    InvalidTripStateError,
    NoRouteFoundError,
    TripAlreadyActiveError,
    TripNotFoundError,
)
from .models.locations import Coordinate
from .models.route_segments import RankedRoute, Route
from .models.trips import (
    ActiveTrip,
    LocationFix,
    Notification,
    ProgressUpdate,
    StepProgress,
    StepStatus,
    TripStatus,
)
from .providers.notifications import LoggingNotificationSender, NotificationSender
from .providers.repository import Repository
from .utils.geo_utils import distance, estimate_eta, has_arrived, is_approaching

MAX_WRITE_ATTEMPTS = 3

TRIP_STARTED = 'trip_started'
STEP_COMPLETED = 'step_completed'
APPROACHING = 'approaching'
TRIP_COMPLETED = 'trip_completed'
TRIP_KEY = 'trip'


class TripTrackingService:
    """Start, advance and end a user's live trip"""

    def __init__(self, repository: Repository, notifier: Optional[NotificationSender] = None,
                 arrival_radius_m: float = config.arrival_radius_m,
                 approach_radius_m: float = config.approach_radius_m,
                 average_speed_kmh: float = config.average_speed_kmh):
        self.repository = repository
        self.notifier = notifier or LoggingNotificationSender()
        self.arrival_radius_m = arrival_radius_m
        self.approach_radius_m = approach_radius_m
        self.average_speed_kmh = average_speed_kmh
        self.logger = logging.getLogger(__name__)

    def start_trip(self, user_id: str, route, coordinate: Coordinate,
                   now: Optional[datetime] = None) -> ActiveTrip:
        """
        Start following ``route`` (a stored Route or a RankedRoute) for ``user_id``.

        Raises:
            TripAlreadyActiveError: the user already has a trip in progress
            NoRouteFoundError: the route has no steps
        """
        now = now or datetime.now()
        if self.repository.find_active_trip(user_id) is not None:
            raise TripAlreadyActiveError(f"User {user_id} already has an active trip")

        steps = sorted(route.steps, key=lambda s: s.order)
        if not steps:
            raise NoRouteFoundError(f"Route {route.name} has no steps")

        coordinate = Coordinate.from_value(coordinate)
        progress = [StepProgress(step_id=s.id) for s in steps]
        progress[0].status = StepStatus.ACTIVE
        progress[0].started_at = now
        trip = ActiveTrip(
            id=str(uuid.uuid4()),
            user_id=user_id,
            route_id=route.id if isinstance(route, Route) else route.route_id,
            route_name=route.name,
            steps=steps,
            step_progress=progress,
            started_at=now,
            estimated_arrival=estimate_eta(coordinate, steps[-1].to_location.coordinate,
                                           self.average_speed_kmh, now),
            location_history=[LocationFix(coordinate, now)],
            notifications_sent={(TRIP_KEY, TRIP_STARTED)},
        )
        if isinstance(route, RankedRoute):
            trip.metadata['source'] = route.source
            trip.metadata['requires_walking'] = route.requires_walking
        self.repository.save_trip(trip)
        self.logger.info(f"Trip {trip.id} started for {user_id}: {len(steps)} steps to {trip.destination.name}")

        self._notify(trip, [Notification(
            user_id=user_id,
            title='Trip Started',
            body=f"Your journey to {trip.destination.name} has begun. Safe travels!",
            kind=TRIP_STARTED,
            trip_id=trip.id,
        )])
        return trip

    def update_location(self, trip_id: str, user_id: str, coordinate: Coordinate,
                        timestamp: Optional[datetime] = None,
                        accuracy: Optional[float] = None) -> ProgressUpdate:
        """
        Feed one position fix into the trip.

        Raises:
            TripNotFoundError: unknown trip or owned by someone else
            InvalidTripStateError: trip already completed or cancelled
        """
        coordinate = Coordinate.from_value(coordinate)
        timestamp = timestamp or datetime.now()
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            trip = self._load(trip_id, user_id)
            if trip.status != TripStatus.IN_PROGRESS:
                raise InvalidTripStateError(f"Trip {trip_id} is {trip.status.value}, location updates not accepted")
            update, pending = self._advance(trip, coordinate, timestamp, accuracy)
            try:
                self.repository.save_trip(trip)
            except ConcurrentUpdateError:
                self.logger.warning(f"Trip {trip_id} changed during update (attempt {attempt}), retrying")
                continue
            self._notify(trip, pending)
            return update
        raise ConcurrentUpdateError(f"Trip {trip_id} kept changing, gave up after {MAX_WRITE_ATTEMPTS} attempts")

    def _advance(self, trip: ActiveTrip, coordinate: Coordinate, timestamp: datetime,
                 accuracy: Optional[float]) -> Tuple[ProgressUpdate, List[Notification]]:
        """Apply one fix to ``trip`` in place; returns the update and notifications to send"""
        last = trip.location_history[-1] if trip.location_history else None
        if last is None or last.coordinate != coordinate or last.timestamp != timestamp:
            trip.location_history.append(LocationFix(coordinate, timestamp, accuracy))

        pending: List[Notification] = []
        step = trip.current_step
        target = step.to_location
        step_completed = next_started = False

        if has_arrived(coordinate, target.coordinate, self.arrival_radius_m):
            progress = trip.step_progress[trip.current_step_index]
            if progress.status != StepStatus.COMPLETED:
                progress.status = StepStatus.COMPLETED
                progress.completed_at = timestamp
                step_completed = True

            if trip.is_last_step:
                trip.transition_to(TripStatus.COMPLETED, timestamp)
                if self._mark(trip, TRIP_KEY, TRIP_COMPLETED):
                    pending.append(self._completed_notice(trip))
                self.logger.info(f"Trip {trip.id} completed")
            else:
                trip.current_step_index += 1
                following = trip.current_step
                nxt = trip.step_progress[trip.current_step_index]
                nxt.status = StepStatus.ACTIVE
                nxt.started_at = timestamp
                next_started = True
                if self._mark(trip, step.id, STEP_COMPLETED):
                    pending.append(Notification(
                        user_id=trip.user_id,
                        title='Next Step',
                        body=f"Step {step.order} completed. Now: {following.instructions[:100]}...",
                        kind=STEP_COMPLETED,
                        trip_id=trip.id,
                        data={'step_id': following.id},
                    ))
        elif is_approaching(coordinate, target.coordinate, self.approach_radius_m, self.arrival_radius_m):
            if self._mark(trip, step.id, APPROACHING):
                pending.append(Notification(
                    user_id=trip.user_id,
                    title='Approaching Stop',
                    body=f"You are approaching {target.name}. Get ready to alight.",
                    kind=APPROACHING,
                    trip_id=trip.id,
                    data={'step_id': step.id},
                ))

        if trip.status == TripStatus.IN_PROGRESS:
            trip.estimated_arrival = estimate_eta(coordinate, trip.destination.coordinate,
                                                  self.average_speed_kmh, timestamp)
        else:
            trip.estimated_arrival = timestamp

        update = ProgressUpdate(
            trip_id=trip.id,
            status=trip.status,
            current_step_index=trip.current_step_index,
            current_step_completed=step_completed,
            next_step_started=next_started,
            distance_to_next_waypoint_m=round(distance(coordinate, trip.current_step.to_location.coordinate), 1),
            estimated_arrival=trip.estimated_arrival,
            alerts=[n.body for n in pending],
        )
        return update, pending

    def cancel_trip(self, trip_id: str, user_id: str, reason: Optional[str] = None,
                    now: Optional[datetime] = None) -> ActiveTrip:
        now = now or datetime.now()
        for _ in range(MAX_WRITE_ATTEMPTS):
            trip = self._load(trip_id, user_id)
            trip.transition_to(TripStatus.CANCELLED, now)
            trip.metadata['cancellation_reason'] = reason
            trip.metadata['cancelled_at'] = now.isoformat()
            try:
                self.repository.save_trip(trip)
            except ConcurrentUpdateError:
                continue
            self.logger.info(f"Trip {trip_id} cancelled: {reason or 'no reason given'}")
            return trip
        raise ConcurrentUpdateError(f"Trip {trip_id} kept changing, gave up after {MAX_WRITE_ATTEMPTS} attempts")

    def complete_trip(self, trip_id: str, user_id: str, now: Optional[datetime] = None) -> ActiveTrip:
        """
        End an in-progress trip at the traveller's request, wherever they are.

        Raises:
            TripNotFoundError: unknown trip or owned by someone else
            InvalidTripStateError: trip already completed or cancelled
        """
        now = now or datetime.now()
        for _ in range(MAX_WRITE_ATTEMPTS):
            trip = self._load(trip_id, user_id)
            trip.transition_to(TripStatus.COMPLETED, now)
            trip.estimated_arrival = now
            trip.metadata['completed_manually'] = True
            pending = [self._completed_notice(trip)] if self._mark(trip, TRIP_KEY, TRIP_COMPLETED) else []
            try:
                self.repository.save_trip(trip)
            except ConcurrentUpdateError:
                continue
            self.logger.info(f"Trip {trip_id} completed by {user_id} at step {trip.current_step_index + 1}")
            self._notify(trip, pending)
            return trip
        raise ConcurrentUpdateError(f"Trip {trip_id} kept changing, gave up after {MAX_WRITE_ATTEMPTS} attempts")

    def add_note(self, trip_id: str, user_id: str, note: str) -> ActiveTrip:
        """Attach a note; allowed on finished trips too since only metadata changes"""
        for _ in range(MAX_WRITE_ATTEMPTS):
            trip = self._load(trip_id, user_id)
            trip.metadata.setdefault('notes', []).append(note)
            try:
                return self.repository.save_trip(trip)
            except ConcurrentUpdateError:
                continue
        raise ConcurrentUpdateError(f"Trip {trip_id} kept changing, gave up after {MAX_WRITE_ATTEMPTS} attempts")

    def get_active_trip(self, user_id: str) -> Optional[ActiveTrip]:
        return self.repository.find_active_trip(user_id)

    def trip_history(self, user_id: str, limit: int = 20) -> List[ActiveTrip]:
        return self.repository.list_trips(user_id)[:limit]

    def _load(self, trip_id: str, user_id: str) -> ActiveTrip:
        trip = self.repository.get_trip(trip_id)
        if trip is None or trip.user_id != user_id:
            raise TripNotFoundError(f"Trip {trip_id} not found")
        return trip

    @staticmethod
    def _mark(trip: ActiveTrip, step_id: str, kind: str) -> bool:
        """Record a notification key; False when it was already sent"""
        key = (step_id, kind)
        if key in trip.notifications_sent:
            return False
        trip.notifications_sent.add(key)
        return True

    @staticmethod
    def _completed_notice(trip: ActiveTrip) -> Notification:
        return Notification(
            user_id=trip.user_id,
            title='Trip Completed',
            body=f"You have arrived at {trip.destination.name}. We hope you had a safe journey!",
            kind=TRIP_COMPLETED,
            trip_id=trip.id,
        )

    def _notify(self, trip: ActiveTrip, notifications: List[Notification]):
        for notification in notifications:
            try:
                self.notifier.send_to_user(trip.user_id, notification)
            except APIError as e:
                self.logger.error(f"Failed to send '{notification.kind}' for trip {trip.id}: {e}")
