"""
Location Resolver: turns ids, coordinates and free-text addresses into
known Locations, creating unverified ones from geocoder results when needed.
"""

import logging
import uuid
from typing import Dict, List, Optional, Union

from .config import config
from .exceptions import APIError, InvalidCoordinatesError, LocationUnresolvedError
from .models.locations import Coordinate, Location
from .providers.directions import DirectionsProvider, GeocodeResult
from .providers.repository import Repository

LocationInput = Union[str, Location, Coordinate, tuple, list, dict]

# Provider place type -> location type tag, first match wins
PLACE_TYPE_TAGS = [
    ('bus_station', 'bus_stop'),
    ('transit_station', 'transport_hub'),
    ('airport', 'airport'),
    ('local_government_office', 'government'),
    ('government', 'government'),
    ('shopping_mall', 'market'),
    ('establishment', 'commercial'),
    ('point_of_interest', 'landmark'),
]

NAME_PLACE_TYPES = ('establishment', 'point_of_interest', 'premise')
NAME_FALLBACK_COMPONENTS = ('route', 'sublocality', 'sublocality_level_1', 'neighborhood')


class LocationResolver:
    """Resolve route endpoints to repository Locations"""

    def __init__(self, repository: Repository, geocoder: Optional[DirectionsProvider] = None,
                 match_radius_m: float = config.location_match_radius_m):
        self.repository = repository
        self.geocoder = geocoder
        self.match_radius_m = match_radius_m
        self.logger = logging.getLogger(__name__)

    def resolve(self, value: LocationInput) -> Location:
        """
        Resolve ``value`` to a Location.

        Accepts a Location, a location id, a coordinate (Coordinate,
        (lat, lon) pair or dict with lat/lng), a dict with ``id`` or
        ``address``, or a free-text address.

        Raises:
            LocationUnresolvedError: nothing known nearby and the geocoder
                failed or returned nothing.
        """
        if isinstance(value, Location):
            location = self._by_id(value.id)
        elif isinstance(value, dict) and value.get('id'):
            location = self._by_id(str(value['id']))
        elif isinstance(value, dict) and value.get('address'):
            location = self._by_address(str(value['address']))
        elif isinstance(value, str):
            known = self.repository.get_location(value)
            location = self._by_id(value) if known else self._by_address(value)
        else:
            try:
                coordinate = Coordinate.from_value(value)
            except InvalidCoordinatesError as e:
                raise LocationUnresolvedError(str(e)) from e
            location = self._by_coordinate(coordinate)

        location.search_count += 1
        self.repository.save_location(location)
        return location

    def _by_id(self, location_id: str) -> Location:
        location = self.repository.get_location(location_id)
        if location is None or not location.is_active:
            raise LocationUnresolvedError(f"Unknown or inactive location: {location_id}")
        return location

    def _by_coordinate(self, coordinate: Coordinate) -> Location:
        nearby = self.repository.find_locations_within(coordinate, self.match_radius_m)
        if nearby:
            location, meters = nearby[0]
            self.logger.debug(f"Matched {coordinate.as_tuple()} to {location.name} ({meters:.0f} m)")
            return location

        result = self._call_geocoder('reverse_geocode', coordinate)
        # Keep the traveller's own point, the geocoder only names it
        return self._create_location(result, coordinate)

    def _by_address(self, address: str) -> Location:
        address = address.strip()
        if not address:
            raise LocationUnresolvedError("Empty address")
        known = self.repository.find_location_by_name(address)
        if known is not None:
            return known

        result = self._call_geocoder('geocode', address)
        nearby = self.repository.find_locations_within(result.coordinate, self.match_radius_m)
        if nearby:
            return nearby[0][0]
        return self._create_location(result, result.coordinate)

    def _call_geocoder(self, method: str, arg) -> GeocodeResult:
        if self.geocoder is None:
            raise LocationUnresolvedError(f"No geocoder configured to resolve {arg!r}")
        try:
            result = getattr(self.geocoder, method)(arg)
        except APIError as e:
            self.logger.warning(f"Geocoder {method} failed for {arg!r}: {e}")
            raise LocationUnresolvedError(f"Could not resolve {arg!r}: {e}") from e
        if result is None:
            raise LocationUnresolvedError(f"No geocoding results for {arg!r}")
        return result

    def _create_location(self, result: GeocodeResult, coordinate: Coordinate) -> Location:
        components = parse_address_components(result.address_components)
        location = Location(
            id=str(uuid.uuid4()),
            name=extract_location_name(result),
            coordinate=coordinate,
            address=result.formatted_address,
            city=components.get('city'),
            state=components.get('state'),
            country=components.get('country') or 'Nigeria',
            location_type=determine_location_type(result.place_types),
            is_verified=False,
            place_id=result.place_id,
            transport_modes=determine_transport_modes(result.place_types),
        )
        self.repository.save_location(location)
        self.logger.info(f"Created unverified location '{location.name}' at {coordinate.as_tuple()}")
        return location

    def verify(self, location_id: str) -> Location:
        location = self._by_id(location_id)
        location.is_verified = True
        return self.repository.save_location(location)

    def deactivate(self, location_id: str) -> Location:
        """Locations are never deleted, only hidden from matching"""
        location = self._by_id(location_id)
        location.is_active = False
        return self.repository.save_location(location)


def parse_address_components(components: List[Dict]) -> Dict[str, str]:
    parsed: Dict[str, str] = {}
    for component in components or []:
        types = component.get('types', [])
        name = component.get('long_name')
        if 'locality' in types:
            parsed['city'] = name
        elif 'administrative_area_level_2' in types and 'city' not in parsed:
            parsed['city'] = name
        elif 'administrative_area_level_1' in types:
            parsed['state'] = name
        elif 'country' in types:
            parsed['country'] = name
    return parsed


def extract_location_name(result: GeocodeResult) -> str:
    if any(t in result.place_types for t in NAME_PLACE_TYPES) and result.address_components:
        return result.address_components[0].get('long_name') or _first_part(result.formatted_address)
    for component in result.address_components:
        if any(t in component.get('types', []) for t in NAME_FALLBACK_COMPONENTS):
            return component.get('long_name')
    return _first_part(result.formatted_address)


def determine_location_type(place_types: List[str]) -> str:
    for place_type, tag in PLACE_TYPE_TAGS:
        if place_type in place_types:
            return tag
    return 'residential'


def determine_transport_modes(place_types: List[str]) -> List[str]:
    modes = []
    if 'bus_station' in place_types or 'transit_station' in place_types:
        modes.append('bus')
    modes.extend(['walk', 'taxi'])
    if 'establishment' in place_types:
        modes.append('keke')
    return modes


def _first_part(address: str) -> str:
    return (address or 'Unnamed location').split(',')[0].strip() or 'Unnamed location'
