"""
Danfo Routing Engine - Flask Web API Blueprint
"""

import math
import time
from dataclasses import asdict, fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from flask import Blueprint, jsonify, request

from .engine import DanfoEngine
from .exceptions import DanfoError, InvalidCoordinatesError
from .logger import logger
from .models.fares import FareContext
from .models.locations import Coordinate, Location
from .models.route_segments import Landmark, RankedRoute, RouteStep

routing_bp = Blueprint('routing_bp', __name__)

# Engine instance shared by all requests
engine: Optional[DanfoEngine] = None


def init_engine(instance: Optional[DanfoEngine] = None) -> DanfoEngine:
    global engine
    engine = instance or DanfoEngine.from_config()
    logger.info("Danfo engine initialized")
    return engine


def get_engine() -> DanfoEngine:
    if engine is None:
        return init_engine()
    return engine


def clean_for_json(obj):
    """Recursively turn dataclasses, enums, datetimes, sets and NaN into JSON-safe values"""
    if is_dataclass(obj) and not isinstance(obj, type):
        return clean_for_json(asdict(obj))
    if isinstance(obj, dict):
        return {k: clean_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [clean_for_json(item) for item in obj]
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, float) and (math.isnan(obj) or math.isinf(obj)):
        return None
    return obj


def _error(e: DanfoError):
    logger.warning(f"{request.path}: {type(e).__name__}: {e}")
    return jsonify({'error': str(e), 'type': type(e).__name__}), e.http_status


def _json_body():
    data = request.get_json(silent=True)
    if not data:
        raise InvalidCoordinatesError("No data provided")
    return data


def _bad_input(e: Exception):
    logger.warning(f"{request.path}: invalid input: {e}")
    return jsonify({'error': f'Invalid input: {e}'}), 400


def _from_json(cls, data: dict, **overrides):
    """Build dataclass ``cls`` from a clean_for_json payload, ignoring unknown keys"""
    names = {f.name for f in fields(cls)}
    kwargs = {k: v for k, v in data.items() if k in names}
    kwargs.update(overrides)
    return cls(**kwargs)


def _location_from_json(data: dict) -> Location:
    return _from_json(Location, data, coordinate=Coordinate.from_value(data['coordinate']))


def _landmark_from_json(data: dict) -> Landmark:
    coordinate = data.get('coordinate')
    return _from_json(Landmark, data, coordinate=Coordinate.from_value(coordinate) if coordinate else None)


def _route_from_json(data: dict) -> RankedRoute:
    """Rebuild a route returned by /routing/routes so it can be started as a trip"""
    steps = [
        _from_json(RouteStep, step,
                   from_location=_location_from_json(step['from_location']),
                   to_location=_location_from_json(step['to_location']),
                   landmarks=[_landmark_from_json(l) for l in step.get('landmarks') or []],
                   fare=None)
        for step in data['steps']
    ]
    return _from_json(RankedRoute, data, start=_location_from_json(data['start']),
                      end=_location_from_json(data['end']), steps=steps)


def _fare_context(data: dict) -> FareContext:
    when = data.get('when')
    return FareContext(
        when=datetime.fromisoformat(when) if when else None,
        city=data.get('city'),
        state=data.get('state'),
        is_holiday=bool(data.get('is_holiday', False)),
        weather=data.get('weather'),
        route_id=data.get('route_id'),
        segment_id=data.get('segment_id'),
    )


@routing_bp.route('/routing/health', methods=['GET'])
def health_check():
    """Health check endpoint"""
    return jsonify({
        'status': 'healthy' if engine is not None else 'initializing',
        'message': 'Danfo Routing Engine is running',
        'timestamp': time.time()
    })


@routing_bp.route('/routing/routes', methods=['POST'])
def find_routes():
    """Ranked routes between two places (ids, coordinates or addresses)"""
    try:
        data = _json_body()
        if not data.get('start') or not data.get('end'):
            return jsonify({'error': 'Start and end required'}), 400
        context = _fare_context(data.get('context') or {})
        routes = get_engine().find_routes(data['start'], data['end'], context)
        return jsonify({'routes': clean_for_json(routes)})
    except DanfoError as e:
        return _error(e)
    except (TypeError, ValueError) as e:
        return _bad_input(e)


@routing_bp.route('/routing/fare', methods=['POST'])
def estimate_fare():
    try:
        data = _json_body()
        if not data.get('mode') or data.get('distance_km') is None:
            return jsonify({'error': 'mode and distance_km required'}), 400
        estimate = get_engine().estimate_fare(
            data['mode'], float(data['distance_km']), _fare_context(data),
            duration_min=float(data['duration_min']) if data.get('duration_min') is not None else None,
        )
        return jsonify(clean_for_json(estimate))
    except DanfoError as e:
        return _error(e)
    except (TypeError, ValueError) as e:
        return _bad_input(e)


@routing_bp.route('/routing/trips', methods=['POST'])
def start_trip():
    """Start a trip on a stored route (``route_id``) or on a ``route`` returned by /routing/routes"""
    try:
        data = _json_body()
        if not data.get('user_id') or not (data.get('route_id') or data.get('route')):
            return jsonify({'error': 'user_id and route_id or route required'}), 400
        coordinate = Coordinate.from_value(data.get('coordinate'))
        route = _route_from_json(data['route']) if data.get('route') else None
        trip = get_engine().start_trip(data['user_id'], data.get('route_id'), coordinate, route=route)
        return jsonify(clean_for_json(trip)), 201
    except DanfoError as e:
        return _error(e)
    except (KeyError, TypeError, ValueError) as e:
        return _bad_input(e)


@routing_bp.route('/routing/trips/<trip_id>/location', methods=['POST'])
def update_location(trip_id):
    try:
        data = _json_body()
        coordinate = Coordinate.from_value(data.get('coordinate') or data)
        update = get_engine().update_trip_location(trip_id, data.get('user_id'), coordinate)
        return jsonify(clean_for_json(update))
    except DanfoError as e:
        return _error(e)


@routing_bp.route('/routing/trips/<trip_id>/cancel', methods=['POST'])
def cancel_trip(trip_id):
    try:
        data = _json_body()
        trip = get_engine().cancel_trip(trip_id, data.get('user_id'), data.get('reason'))
        return jsonify(clean_for_json(trip))
    except DanfoError as e:
        return _error(e)


@routing_bp.route('/routing/trips/<trip_id>/complete', methods=['POST'])
def complete_trip(trip_id):
    try:
        data = _json_body()
        trip = get_engine().complete_trip(trip_id, data.get('user_id'))
        return jsonify(clean_for_json(trip))
    except DanfoError as e:
        return _error(e)


@routing_bp.route('/routing/segments/<segment_id>/alternatives', methods=['GET'])
def alternative_stops(segment_id):
    try:
        stops = get_engine().composer.suggest_alternative_stops(segment_id)
        return jsonify({'alternatives': clean_for_json(stops)})
    except DanfoError as e:
        return _error(e)
