import pytest
import requests

from danforouting.exceptions import APIError, ExternalProviderTimeoutError
from danforouting.models.locations import Coordinate
from danforouting.models.trips import Notification
from danforouting.providers.directions import NIGERIA_BOUNDS, GoogleMapsClient
from danforouting.providers.notifications import WebhookNotificationSender

from conftest import OSHODI, YABA


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, payload=None, error=None, status_code=200):
        self.payload = payload
        self.error = error
        self.status_code = status_code
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, params, timeout))
        if self.error:
            raise self.error
        return FakeResponse(self.payload, self.status_code)


GEOCODE_OK = {
    'status': 'OK',
    'results': [{
        'formatted_address': 'Yaba, Lagos, Nigeria',
        'geometry': {'location': {'lat': 6.5095, 'lng': 3.3711}},
        'types': ['sublocality', 'political'],
        'address_components': [{'long_name': 'Yaba', 'types': ['sublocality']}],
        'place_id': 'abc123',
    }],
}

DIRECTIONS_OK = {
    'status': 'OK',
    'routes': [{
        'overview_polyline': {'points': '_p~iF~ps|U_ulLnnqC_mqNvxq`@'},
        'fare': {'currency': 'NGN', 'value': 700},
        'legs': [{
            'distance': {'value': 8400},
            'duration': {'value': 1800},
            'steps': [{
                'html_instructions': 'Bus towards <b>CMS</b>',
                'distance': {'value': 8400},
                'duration': {'value': 1800},
                'travel_mode': 'TRANSIT',
            }],
        }],
    }],
}


def _client(session):
    return GoogleMapsClient('test-key', timeout=2, session=session)


class TestGoogleMapsClient:
    def test_geocode_biased_to_nigeria(self):
        session = FakeSession(GEOCODE_OK)
        result = _client(session).geocode('Yaba')
        assert result.coordinate == Coordinate(6.5095, 3.3711)
        assert result.place_id == 'abc123'
        url, params, timeout = session.requests[0]
        assert url.endswith('/geocode/json')
        assert params['region'] == 'ng'
        assert params['components'] == 'country:NG'
        assert params['bounds'] == NIGERIA_BOUNDS
        assert params['key'] == 'test-key'
        assert timeout == 2

    def test_zero_results_is_none(self):
        session = FakeSession({'status': 'ZERO_RESULTS', 'results': []})
        assert _client(session).reverse_geocode(Coordinate(*YABA)) is None

    def test_directions(self):
        session = FakeSession(DIRECTIONS_OK)
        result = _client(session).get_directions(Coordinate(*OSHODI), Coordinate(*YABA), mode='bus')
        assert result.distance_m == 8400
        assert result.duration_s == 1800
        assert result.fare == 700
        assert result.steps[0]['instructions'] == 'Bus towards CMS'
        assert result.steps[0]['travel_mode'] == 'transit'
        assert result.path[0] == pytest.approx((38.5, -120.2))
        assert session.requests[0][1]['mode'] == 'transit'

    def test_timeout(self):
        session = FakeSession(error=requests.Timeout("read timed out"))
        with pytest.raises(ExternalProviderTimeoutError):
            _client(session).geocode('Yaba')

    def test_connection_error(self):
        session = FakeSession(error=requests.ConnectionError("refused"))
        with pytest.raises(APIError):
            _client(session).geocode('Yaba')

    def test_http_error(self):
        with pytest.raises(APIError):
            _client(FakeSession({}, status_code=500)).geocode('Yaba')

    def test_denied_status(self):
        session = FakeSession({'status': 'REQUEST_DENIED', 'error_message': 'bad key'})
        with pytest.raises(APIError, match='REQUEST_DENIED'):
            _client(session).geocode('Yaba')

    def test_requires_key(self):
        with pytest.raises(ValueError):
            GoogleMapsClient('')


class TestWebhookNotifications:
    notification = Notification(user_id='ada', title='Trip Started', body='Safe travels!',
                                kind='trip_started', trip_id='t1', data={'step_id': 's1'})

    def test_posts_payload(self, monkeypatch):
        sent = {}

        def fake_post(url, json=None, timeout=None):
            sent.update(url=url, json=json, timeout=timeout)
            return FakeResponse({})

        monkeypatch.setattr(requests, 'post', fake_post)
        WebhookNotificationSender('https://push.example/send', timeout=3).send_to_user('ada', self.notification)
        assert sent['url'] == 'https://push.example/send'
        assert sent['json']['data'] == {'type': 'trip_started', 'trip_id': 't1', 'step_id': 's1'}
        assert sent['timeout'] == 3

    def test_delivery_failure_is_api_error(self, monkeypatch):
        def fake_post(url, json=None, timeout=None):
            raise requests.ConnectionError("gateway down")

        monkeypatch.setattr(requests, 'post', fake_post)
        with pytest.raises(APIError):
            WebhookNotificationSender('https://push.example/send').send_to_user('ada', self.notification)
