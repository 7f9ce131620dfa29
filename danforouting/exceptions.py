"""
Custom exceptions for the Danfo routing engine
"""


class DanfoError(Exception):
    """Base exception for the Danfo routing engine"""
    http_status = 400


class InvalidCoordinatesError(DanfoError):
    """Raised when coordinates are invalid or out of bounds"""
    pass


class LocationUnresolvedError(DanfoError):
    """Raised when an input cannot be resolved to a known or geocoded location"""
    http_status = 404


class NoRouteFoundError(DanfoError):
    """Raised when every route strategy comes back empty"""
    http_status = 404


class TripAlreadyActiveError(DanfoError):
    """Raised when a user starts a trip while another one is in progress"""
    http_status = 409


class TripNotFoundError(DanfoError):
    """Raised when a trip does not exist or belongs to another user"""
    http_status = 404


class InvalidTripStateError(DanfoError):
    """Raised when a trip is not in a state that allows the requested change"""
    http_status = 409


class ConcurrentUpdateError(DanfoError):
    """Raised when a trip write is based on a stale version"""
    http_status = 409


class FareRuleConfigError(DanfoError):
    """Raised when a fare rule is internally inconsistent"""
    pass


class APIError(DanfoError):
    """Raised when external API calls fail"""
    http_status = 502


class ExternalProviderTimeoutError(APIError):
    """Raised when an external provider does not answer in time"""
    pass
