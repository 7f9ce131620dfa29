"""
Geocoding and directions providers.

Calls are single-shot with a short timeout; callers decide how to degrade.
"""

import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import polyline
import requests

from ..config import config
from ..exceptions import APIError, ExternalProviderTimeoutError
from ..logger import logger
from ..models.locations import Coordinate

GOOGLE_MAPS_BASE_URL = 'https://maps.googleapis.com/maps/api'
# Bias geocoding towards Nigeria
NIGERIA_BOUNDS = '4.0,2.5|14.0,15.0'

TRAVEL_MODES = {
    'walk': 'walking',
    'okada': 'driving',
    'keke': 'driving',
    'taxi': 'driving',
    'bus': 'transit',
    'transit': 'transit',
}


@dataclass
class GeocodeResult:
    coordinate: Coordinate
    formatted_address: str
    place_types: List[str] = field(default_factory=list)
    address_components: List[Dict] = field(default_factory=list)
    place_id: Optional[str] = None


@dataclass
class DirectionsResult:
    distance_m: float
    duration_s: float
    steps: List[Dict] = field(default_factory=list)
    fare: Optional[float] = None
    path: List[Tuple[float, float]] = field(default_factory=list)


class DirectionsProvider(ABC):
    """Geocoder and directions collaborator"""

    @abstractmethod
    def geocode(self, address: str) -> Optional[GeocodeResult]: ...

    @abstractmethod
    def reverse_geocode(self, coordinate: Coordinate) -> Optional[GeocodeResult]: ...

    @abstractmethod
    def get_directions(self, origin: Coordinate, destination: Coordinate,
                       mode: str = 'transit') -> Optional[DirectionsResult]: ...


class GoogleMapsClient(DirectionsProvider):
    """Google Maps geocoding and directions over HTTP"""

    def __init__(self, api_key: str, timeout: float = config.provider_timeout,
                 base_url: str = GOOGLE_MAPS_BASE_URL, session: Optional[requests.Session] = None):
        if not api_key:
            raise ValueError("Google Maps API key is required")
        self.api_key = api_key
        self.timeout = timeout
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()

    def _get(self, path: str, params: Dict) -> Dict:
        url = f"{self.base_url}/{path}/json"
        started = time.time()
        try:
            resp = self.session.get(url, params={**params, 'key': self.api_key}, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.Timeout as e:
            logger.log_api_call(path, (time.time() - started) * 1000, False)
            raise ExternalProviderTimeoutError(f"{path} timed out after {self.timeout}s") from e
        except (requests.RequestException, ValueError) as e:
            logger.log_api_call(path, (time.time() - started) * 1000, False)
            raise APIError(f"{path} request failed: {e}") from e

        status = data.get('status')
        ok = status in ('OK', 'ZERO_RESULTS')
        logger.log_api_call(path, (time.time() - started) * 1000, ok)
        if not ok:
            raise APIError(f"{path} returned {status}: {data.get('error_message', '')}")
        return data

    def geocode(self, address):
        data = self._get('geocode', {
            'address': address,
            'region': 'ng',
            'components': 'country:NG',
            'bounds': NIGERIA_BOUNDS,
        })
        return _first_geocode_result(data)

    def reverse_geocode(self, coordinate):
        data = self._get('geocode', {'latlng': f"{coordinate.lat},{coordinate.lon}"})
        return _first_geocode_result(data)

    def get_directions(self, origin, destination, mode='transit'):
        data = self._get('directions', {
            'origin': f"{origin.lat},{origin.lon}",
            'destination': f"{destination.lat},{destination.lon}",
            'mode': TRAVEL_MODES.get(mode, 'driving'),
            'region': 'ng',
        })
        routes = data.get('routes') or []
        if not routes:
            return None
        route = routes[0]
        legs = route.get('legs') or []
        if not legs:
            return None
        leg = legs[0]
        steps = [
            {
                'instructions': _strip_html(s.get('html_instructions', '')),
                'distance_m': s.get('distance', {}).get('value', 0),
                'duration_s': s.get('duration', {}).get('value', 0),
                'travel_mode': s.get('travel_mode', '').lower(),
            }
            for s in leg.get('steps', [])
        ]
        points = route.get('overview_polyline', {}).get('points')
        fare = route.get('fare', {}).get('value')
        return DirectionsResult(
            distance_m=float(leg.get('distance', {}).get('value', 0)),
            duration_s=float(leg.get('duration', {}).get('value', 0)),
            steps=steps,
            fare=float(fare) if fare is not None else None,
            path=polyline.decode(points) if points else [],
        )


def _first_geocode_result(data: Dict) -> Optional[GeocodeResult]:
    results = data.get('results') or []
    if not results:
        return None
    result = results[0]
    loc = result.get('geometry', {}).get('location', {})
    if 'lat' not in loc or 'lng' not in loc:
        return None
    return GeocodeResult(
        coordinate=Coordinate(float(loc['lat']), float(loc['lng'])),
        formatted_address=result.get('formatted_address', ''),
        place_types=result.get('types', []),
        address_components=result.get('address_components', []),
        place_id=result.get('place_id'),
    )


def _strip_html(text: str) -> str:
    return re.sub(r'<[^>]+>', '', text).strip()
