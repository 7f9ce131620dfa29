__title__ = 'danforouting'
__version__ = '1.0.0'
__author__ = 'Danfo Routing Team'
__license__ = 'MIT'

__all__ = ['engine', 'core_route_service', 'fare_engine', 'trip_tracker', 'location_resolver', 'config', 'logger', 'exceptions']

# Set default logging handler to avoid "No handler found" warnings.
import logging

logging.getLogger(__name__).addHandler(logging.NullHandler())
