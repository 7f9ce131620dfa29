import os
from datetime import datetime

import pytest

from danforouting.exceptions import APIError
from danforouting.fare_engine import FareEstimationEngine
from danforouting.models.fares import FareContext
from danforouting.models.locations import Coordinate, Location
from danforouting.models.route_segments import Landmark, Route, RouteStep
from danforouting.providers.directions import DirectionsProvider, DirectionsResult, GeocodeResult
from danforouting.providers.notifications import NotificationSender
from danforouting.providers.repository import InMemoryRepository

DATA_DIR = os.path.join(os.path.dirname(__file__), '..', 'data')

# Handy coordinate aliases (lat, lon)
OSHODI = (6.5535, 3.3436)
YABA = (6.5095, 3.3711)
CMS = (6.4531, 3.3958)
OBALENDE = (6.4478, 3.4103)
YABA_TECH = (6.5170, 3.3720)   # ~840 m north of Yaba bus stop, not a stop itself

# Wednesday noon, outside every seeded peak window
QUIET_TIME = datetime(2024, 3, 6, 12, 0)


def make_location(loc_id, name, lat, lon, city='Lagos', **kwargs):
    return Location(id=loc_id, name=name, coordinate=Coordinate(lat, lon), city=city, state='Lagos', **kwargs)


class FakeDirections(DirectionsProvider):
    """Canned geocoder/directions answers; set ``error`` to make every call fail"""

    def __init__(self, geocode_results=None, reverse_result=None, directions_result=None, error=None):
        self.geocode_results = geocode_results or {}
        self.reverse_result = reverse_result
        self.directions_result = directions_result
        self.error = error
        self.calls = []

    def geocode(self, address):
        self.calls.append(('geocode', address))
        if self.error:
            raise self.error
        return self.geocode_results.get(address)

    def reverse_geocode(self, coordinate):
        self.calls.append(('reverse_geocode', coordinate))
        if self.error:
            raise self.error
        return self.reverse_result

    def get_directions(self, origin, destination, mode='transit'):
        self.calls.append(('directions', mode))
        if self.error:
            raise self.error
        return self.directions_result


class RecordingNotifier(NotificationSender):

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send_to_user(self, user_id, notification):
        if self.fail:
            raise APIError("push gateway down")
        self.sent.append((user_id, notification))

    def kinds(self):
        return [n.kind for _, n in self.sent]


def geocode_result(lat, lon, address, types=None, components=None):
    return GeocodeResult(
        coordinate=Coordinate(lat, lon),
        formatted_address=address,
        place_types=types or [],
        address_components=components or [
            {'long_name': 'Lagos', 'types': ['locality', 'political']},
            {'long_name': 'Lagos State', 'types': ['administrative_area_level_1', 'political']},
            {'long_name': 'Nigeria', 'types': ['country', 'political']},
        ],
    )


@pytest.fixture
def repo():
    return InMemoryRepository.from_csv_dir(DATA_DIR)


@pytest.fixture
def empty_repo():
    return InMemoryRepository()


@pytest.fixture
def fares(repo):
    return FareEstimationEngine(repo)


@pytest.fixture
def quiet_context():
    return FareContext(when=QUIET_TIME, city='Lagos', state='Lagos')


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def stored_route(repo):
    """Oshodi -> Yaba -> CMS, two bus steps"""
    oshodi, yaba, cms = repo.get_location('oshodi'), repo.get_location('yaba'), repo.get_location('cms')
    steps = [
        RouteStep(id='r1_s1', order=1, from_location=oshodi, to_location=yaba, transport_mode='bus',
                  instructions="From Oshodi to Yaba: At the starting point board a Yaba bus.",
                  distance_km=8.5, duration_min=35, min_fare=300, max_fare=500,
                  landmarks=[Landmark('Oshodi Interchange'), Landmark('Tejuosho Market')]),
        RouteStep(id='r1_s2', order=2, from_location=yaba, to_location=cms, transport_mode='bus',
                  instructions="From Yaba to CMS: alight at CMS (destination).",
                  distance_km=7.4, duration_min=30, min_fare=300, max_fare=500),
    ]
    route = Route(id='r1', name='Oshodi to CMS', start=oshodi, end=cms, steps=steps,
                  distance_km=15.9, duration_min=65, min_fare=620, max_fare=980,
                  popularity_score=10, safety_rating=4.0, is_verified=True)
    return repo.save_route(route)


def directions_result(distance_m, duration_s, fare=None):
    return DirectionsResult(distance_m=distance_m, duration_s=duration_s,
                            steps=[{'instructions': 'Take the BRT towards CMS', 'distance_m': distance_m,
                                    'duration_s': duration_s, 'travel_mode': 'transit'}],
                            fare=fare)
