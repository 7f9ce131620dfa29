from datetime import datetime, timedelta

import pytest

from danforouting.core_route_service import step_from_segment
from danforouting.exceptions import (
    ConcurrentUpdateError,
    InvalidTripStateError,
    NoRouteFoundError,
    TripAlreadyActiveError,
    TripNotFoundError,
)
from danforouting.models.locations import Coordinate
from danforouting.models.route_segments import RankedRoute
from danforouting.models.trips import StepStatus, TripStatus
from danforouting.providers.repository import InMemoryRepository
from danforouting.trip_tracker import TripTrackingService

from conftest import CMS, OSHODI, YABA, RecordingNotifier

T0 = datetime(2024, 3, 6, 12, 0)

NEAR_YABA = Coordinate(YABA[0] + 0.0018, YABA[1])    # ~200 m out
AT_YABA = Coordinate(YABA[0] + 0.0002, YABA[1])      # ~22 m out
AT_CMS = Coordinate(CMS[0] - 0.0001, CMS[1])


def _minutes(n):
    return T0 + timedelta(minutes=n)


def _ranked(start, end, steps):
    return RankedRoute(name=f"{start.name} to {end.name}", source='composed', start=start, end=end, steps=steps,
                       distance_km=sum(s.distance_km for s in steps), duration_min=sum(s.duration_min for s in steps),
                       min_fare=0, max_fare=0, confidence=90)


@pytest.fixture
def tracker(repo, notifier):
    return TripTrackingService(repo, notifier)


@pytest.fixture
def trip(tracker, stored_route):
    return tracker.start_trip('ada', stored_route, Coordinate(*OSHODI), now=T0)


class TestStartTrip:
    def test_initial_state(self, trip, notifier):
        assert trip.status == TripStatus.IN_PROGRESS
        assert trip.current_step_index == 0
        assert trip.route_id == 'r1'
        assert [p.status for p in trip.step_progress] == [StepStatus.ACTIVE, StepStatus.PENDING]
        assert trip.estimated_arrival > T0
        assert notifier.kinds() == ['trip_started']
        assert notifier.sent[0][1].title == 'Trip Started'
        assert notifier.sent[0][1].body == "Your journey to CMS has begun. Safe travels!"

    def test_one_active_trip_per_user(self, tracker, trip, stored_route):
        with pytest.raises(TripAlreadyActiveError):
            tracker.start_trip('ada', stored_route, Coordinate(*OSHODI), now=T0)

    def test_other_users_unaffected(self, tracker, trip, stored_route):
        other = tracker.start_trip('bola', stored_route, Coordinate(*OSHODI), now=T0)
        assert other.id != trip.id

    def test_route_without_steps(self, tracker, repo):
        empty = _ranked(repo.get_location('oshodi'), repo.get_location('cms'), [])
        with pytest.raises(NoRouteFoundError):
            tracker.start_trip('ada', empty, Coordinate(*OSHODI))

    def test_ranked_route_source_recorded(self, tracker, repo):
        oshodi, yaba = repo.get_location('oshodi'), repo.get_location('yaba')
        step = step_from_segment(repo.get_segment('seg_oshodi_yaba'), 1)
        ranked = _ranked(oshodi, yaba, [step])
        trip = tracker.start_trip('ada', ranked, Coordinate(*OSHODI), now=T0)
        assert trip.route_id is None
        assert trip.metadata['source'] == 'composed'


class TestLocationUpdates:
    def test_approaching_notifies_once(self, tracker, trip, notifier):
        first = tracker.update_location(trip.id, 'ada', NEAR_YABA, _minutes(20))
        second = tracker.update_location(trip.id, 'ada', NEAR_YABA, _minutes(21))
        assert notifier.kinds().count('approaching') == 1
        assert first.alerts == ["You are approaching Yaba. Get ready to alight."]
        assert second.alerts == []
        assert not first.current_step_completed

    def test_arrival_advances_step(self, tracker, trip, notifier):
        update = tracker.update_location(trip.id, 'ada', AT_YABA, _minutes(30))
        assert update.current_step_completed
        assert update.next_step_started
        assert update.current_step_index == 1
        assert update.status == TripStatus.IN_PROGRESS
        step_note = notifier.sent[-1][1]
        assert step_note.title == 'Next Step'
        assert step_note.body.startswith("Step 1 completed. Now: From Yaba to CMS")

        stored = tracker.get_active_trip('ada')
        assert [p.status for p in stored.step_progress] == [StepStatus.COMPLETED, StepStatus.ACTIVE]
        assert stored.step_progress[0].completed_at == _minutes(30)

    def test_duplicate_arrival_advances_once(self, tracker, trip, notifier):
        tracker.update_location(trip.id, 'ada', AT_YABA, _minutes(30))
        again = tracker.update_location(trip.id, 'ada', AT_YABA, _minutes(30))
        assert again.current_step_index == 1
        assert not again.current_step_completed
        assert notifier.kinds().count('step_completed') == 1
        assert len(tracker.get_active_trip('ada').location_history) == 2

    def test_final_arrival_completes_trip(self, tracker, trip, notifier):
        tracker.update_location(trip.id, 'ada', AT_YABA, _minutes(30))
        update = tracker.update_location(trip.id, 'ada', AT_CMS, _minutes(60))
        assert update.status == TripStatus.COMPLETED
        assert update.estimated_arrival == _minutes(60)
        assert notifier.kinds()[-1] == 'trip_completed'
        assert notifier.sent[-1][1].title == 'Trip Completed'
        assert tracker.get_active_trip('ada') is None
        finished = tracker.trip_history('ada')[0]
        assert finished.completed_at == _minutes(60)
        assert all(p.status == StepStatus.COMPLETED for p in finished.step_progress)

    def test_no_updates_after_completion(self, tracker, trip):
        tracker.update_location(trip.id, 'ada', AT_YABA, _minutes(30))
        tracker.update_location(trip.id, 'ada', AT_CMS, _minutes(60))
        with pytest.raises(InvalidTripStateError):
            tracker.update_location(trip.id, 'ada', AT_CMS, _minutes(61))
        with pytest.raises(InvalidTripStateError):
            tracker.cancel_trip(trip.id, 'ada')

    def test_eta_tracks_position(self, tracker, trip):
        update = tracker.update_location(trip.id, 'ada', NEAR_YABA, _minutes(20))
        assert update.estimated_arrival > _minutes(20)
        assert update.distance_to_next_waypoint_m == pytest.approx(200, abs=10)

    def test_wrong_user_or_unknown_trip(self, tracker, trip):
        with pytest.raises(TripNotFoundError):
            tracker.update_location(trip.id, 'bola', AT_YABA)
        with pytest.raises(TripNotFoundError):
            tracker.update_location('missing', 'ada', AT_YABA)

    def test_notifier_failure_does_not_block_progress(self, repo, stored_route):
        tracker = TripTrackingService(repo, RecordingNotifier(fail=True))
        trip = tracker.start_trip('ada', stored_route, Coordinate(*OSHODI), now=T0)
        update = tracker.update_location(trip.id, 'ada', AT_YABA, _minutes(30))
        assert update.current_step_index == 1


class RacingRepository(InMemoryRepository):
    """Bumps a stored trip's version right before the next write, once"""

    def __init__(self, source):
        super().__init__()
        self.__dict__.update(source.__dict__)
        self.race_pending = False

    def save_trip(self, trip):
        if self.race_pending and trip.id in self.trips:
            self.race_pending = False
            self.trips[trip.id].version += 1
        return super().save_trip(trip)


class TestConcurrency:
    def test_stale_write_rejected(self, tracker, trip, repo):
        stale = repo.get_trip(trip.id)
        tracker.update_location(trip.id, 'ada', NEAR_YABA, _minutes(20))
        with pytest.raises(ConcurrentUpdateError):
            repo.save_trip(stale)

    def test_lost_race_is_retried_without_double_notify(self, repo, stored_route, notifier):
        racing = RacingRepository(repo)
        tracker = TripTrackingService(racing, notifier)
        trip = tracker.start_trip('ada', stored_route, Coordinate(*OSHODI), now=T0)
        racing.race_pending = True
        update = tracker.update_location(trip.id, 'ada', AT_YABA, _minutes(30))
        assert update.current_step_index == 1
        assert notifier.kinds() == ['trip_started', 'step_completed']


class TestCancelAndHistory:
    def test_cancel(self, tracker, trip):
        cancelled = tracker.cancel_trip(trip.id, 'ada', reason='Bus broke down', now=_minutes(5))
        assert cancelled.status == TripStatus.CANCELLED
        assert cancelled.cancelled_at == _minutes(5)
        assert cancelled.metadata['cancellation_reason'] == 'Bus broke down'
        with pytest.raises(InvalidTripStateError):
            tracker.update_location(trip.id, 'ada', AT_YABA)
        with pytest.raises(InvalidTripStateError):
            tracker.cancel_trip(trip.id, 'ada')

    def test_new_trip_after_cancel(self, tracker, trip, stored_route):
        tracker.cancel_trip(trip.id, 'ada', now=_minutes(5))
        second = tracker.start_trip('ada', stored_route, Coordinate(*OSHODI), now=_minutes(10))
        history = tracker.trip_history('ada')
        assert [t.id for t in history] == [second.id, trip.id]
        assert [t.id for t in tracker.trip_history('ada', limit=1)] == [second.id]

    def test_note_on_finished_trip(self, tracker, trip):
        tracker.cancel_trip(trip.id, 'ada', now=_minutes(5))
        noted = tracker.add_note(trip.id, 'ada', 'Driver was polite')
        assert noted.metadata['notes'] == ['Driver was polite']
        assert noted.status == TripStatus.CANCELLED


class TestManualCompletion:
    def test_complete_mid_trip(self, tracker, trip, notifier):
        done = tracker.complete_trip(trip.id, 'ada', now=_minutes(15))
        assert done.status == TripStatus.COMPLETED
        assert done.completed_at == _minutes(15)
        assert done.estimated_arrival == _minutes(15)
        assert done.metadata['completed_manually']
        assert notifier.kinds() == ['trip_started', 'trip_completed']
        assert notifier.sent[-1][1].body == "You have arrived at CMS. We hope you had a safe journey!"
        assert tracker.get_active_trip('ada') is None

    def test_terminal_trips_rejected(self, tracker, trip, notifier):
        tracker.complete_trip(trip.id, 'ada', now=_minutes(15))
        with pytest.raises(InvalidTripStateError):
            tracker.complete_trip(trip.id, 'ada')
        with pytest.raises(InvalidTripStateError):
            tracker.update_location(trip.id, 'ada', AT_YABA)
        assert notifier.kinds().count('trip_completed') == 1

    def test_cancelled_trip_cannot_complete(self, tracker, trip):
        tracker.cancel_trip(trip.id, 'ada', now=_minutes(5))
        with pytest.raises(InvalidTripStateError):
            tracker.complete_trip(trip.id, 'ada')

    def test_wrong_user(self, tracker, trip):
        with pytest.raises(TripNotFoundError):
            tracker.complete_trip(trip.id, 'bola')

    def test_lost_race_notifies_once(self, repo, stored_route, notifier):
        racing = RacingRepository(repo)
        tracker = TripTrackingService(racing, notifier)
        trip = tracker.start_trip('ada', stored_route, Coordinate(*OSHODI), now=T0)
        racing.race_pending = True
        done = tracker.complete_trip(trip.id, 'ada', now=_minutes(15))
        assert done.status == TripStatus.COMPLETED
        assert notifier.kinds() == ['trip_started', 'trip_completed']
