import pytest

from app import create_app
from danforouting.engine import DanfoEngine

from conftest import OSHODI, YABA


@pytest.fixture
def client(repo, notifier):
    app = create_app(DanfoEngine(repo, notifier=notifier))
    app.config['TESTING'] = True
    return app.test_client()


def _start(client):
    resp = client.post('/routing/trips', json={
        'user_id': 'ada', 'route_id': 'r1', 'coordinate': {'lat': OSHODI[0], 'lng': OSHODI[1]},
    })
    assert resp.status_code == 201
    return resp.get_json()


def test_index_and_health(client):
    assert client.get('/').status_code == 200
    body = client.get('/routing/health').get_json()
    assert body['status'] == 'healthy'


class TestRoutes:
    def test_find_routes(self, client, stored_route):
        resp = client.post('/routing/routes', json={
            'start': 'oshodi', 'end': 'cms', 'context': {'when': '2024-03-06T12:00:00', 'city': 'Lagos'},
        })
        assert resp.status_code == 200
        best = resp.get_json()['routes'][0]
        assert best['source'] == 'database'
        assert best['confidence'] == 95
        assert best['start']['coordinate'] == {'lat': OSHODI[0], 'lon': OSHODI[1]}
        assert best['steps'][0]['order'] == 1

    def test_missing_end(self, client):
        resp = client.post('/routing/routes', json={'start': 'oshodi'})
        assert resp.status_code == 400

    def test_empty_body(self, client):
        resp = client.post('/routing/routes', data='', content_type='application/json')
        assert resp.status_code == 400
        assert resp.get_json()['error'] == 'No data provided'

    def test_unresolvable_place(self, client):
        resp = client.post('/routing/routes', json={'start': 'oshodi', 'end': 'Atlantis'})
        assert resp.status_code == 404
        assert resp.get_json()['type'] == 'LocationUnresolvedError'

    def test_alternative_stops(self, client):
        body = client.get('/routing/segments/seg_oshodi_yaba/alternatives').get_json()
        assert [a['name'] for a in body['alternatives']] == ['Ojuelegba']
        assert client.get('/routing/segments/nope/alternatives').status_code == 404


def test_fare_estimate(client):
    resp = client.post('/routing/fare', json={
        'mode': 'keke', 'distance_km': 2, 'city': 'Lagos', 'state': 'Lagos', 'when': '2024-03-06T12:00:00',
    })
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['rule_id'] == 'lagos_keke'
    assert body['amount'] == 200
    assert body['currency'] == 'NGN'
    assert body['confidence'] == 'low'


class TestBadInput:
    def test_non_numeric_distance(self, client):
        resp = client.post('/routing/fare', json={'mode': 'bus', 'distance_km': 'abc'})
        assert resp.status_code == 400
        assert resp.get_json()['error'].startswith('Invalid input')

    def test_non_numeric_duration(self, client):
        resp = client.post('/routing/fare', json={'mode': 'bus', 'distance_km': 3, 'duration_min': 'soon'})
        assert resp.status_code == 400

    def test_bad_timestamp(self, client):
        resp = client.post('/routing/fare', json={'mode': 'keke', 'distance_km': 2, 'when': 'tomorrow'})
        assert resp.status_code == 400
        resp = client.post('/routing/routes', json={'start': 'oshodi', 'end': 'cms', 'context': {'when': 'noon'}})
        assert resp.status_code == 400
        assert 'error' in resp.get_json()


class TestTrips:
    def test_start_update_cancel(self, client, stored_route):
        trip = _start(client)
        assert trip['status'] == 'in_progress'
        assert trip['version'] == 1

        update = client.post(f"/routing/trips/{trip['id']}/location",
                             json={'user_id': 'ada', 'lat': YABA[0], 'lng': YABA[1]}).get_json()
        assert update['current_step_index'] == 1
        assert update['current_step_completed']

        cancelled = client.post(f"/routing/trips/{trip['id']}/cancel",
                                json={'user_id': 'ada', 'reason': 'Traffic'}).get_json()
        assert cancelled['status'] == 'cancelled'
        assert cancelled['metadata']['cancellation_reason'] == 'Traffic'

        again = client.post(f"/routing/trips/{trip['id']}/cancel", json={'user_id': 'ada'})
        assert again.status_code == 409

    def test_second_active_trip_conflicts(self, client, stored_route):
        _start(client)
        resp = client.post('/routing/trips', json={
            'user_id': 'ada', 'route_id': 'r1', 'coordinate': {'lat': OSHODI[0], 'lng': OSHODI[1]},
        })
        assert resp.status_code == 409

    def test_unknown_route(self, client):
        resp = client.post('/routing/trips', json={
            'user_id': 'ada', 'route_id': 'nope', 'coordinate': {'lat': OSHODI[0], 'lng': OSHODI[1]},
        })
        assert resp.status_code == 404

    def test_bad_coordinate(self, client, stored_route):
        resp = client.post('/routing/trips', json={'user_id': 'ada', 'route_id': 'r1', 'coordinate': {'lat': 95}})
        assert resp.status_code == 400

    def test_someone_elses_trip(self, client, stored_route):
        trip = _start(client)
        resp = client.post(f"/routing/trips/{trip['id']}/location",
                           json={'user_id': 'bola', 'lat': YABA[0], 'lng': YABA[1]})
        assert resp.status_code == 404

    def test_complete(self, client, stored_route, notifier):
        trip = _start(client)
        done = client.post(f"/routing/trips/{trip['id']}/complete", json={'user_id': 'ada'})
        assert done.status_code == 200
        assert done.get_json()['status'] == 'completed'
        assert notifier.kinds()[-1] == 'trip_completed'

        again = client.post(f"/routing/trips/{trip['id']}/complete", json={'user_id': 'ada'})
        assert again.status_code == 409
        assert again.get_json()['type'] == 'InvalidTripStateError'

    def test_start_composed_route(self, client, repo):
        routes = client.post('/routing/routes', json={
            'start': 'oshodi', 'end': 'yaba', 'context': {'when': '2024-03-06T12:00:00'},
        }).get_json()['routes']
        assert routes[0]['source'] == 'composed'
        resp = client.post('/routing/trips', json={
            'user_id': 'ada', 'route': routes[0], 'coordinate': {'lat': OSHODI[0], 'lng': OSHODI[1]},
        })
        assert resp.status_code == 201
        trip = resp.get_json()
        assert trip['route_id'] is None
        assert trip['metadata']['source'] == 'composed'
        assert trip['steps'][0]['to_location']['id'] == 'yaba'
        assert repo.get_segment('seg_oshodi_yaba').usage_count == 1

    def test_malformed_route_payload(self, client):
        resp = client.post('/routing/trips', json={
            'user_id': 'ada', 'route': {'name': 'somewhere'}, 'coordinate': {'lat': OSHODI[0], 'lng': OSHODI[1]},
        })
        assert resp.status_code == 400
