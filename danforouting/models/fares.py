from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Dict, List, Optional

from ..exceptions import FareRuleConfigError

FARE_TYPES = ('fixed', 'negotiable', 'metered', 'distance_based')
MULTIPLIER_BOUNDS = (0.5, 5.0)


def _hhmm(value: str) -> int:
    """'07:30' -> 730"""
    hours, minutes = value.split(':')
    hours, minutes = int(hours), int(minutes)
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(value)
    return hours * 100 + minutes


@dataclass
class PeakWindow:
    """Daily peak window with inclusive HH:MM bounds"""
    start: str
    end: str

    def contains(self, moment: time) -> bool:
        current = moment.hour * 100 + moment.minute
        return _hhmm(self.start) <= current <= _hhmm(self.end)


@dataclass
class FareRule:
    """Pricing rule for a transport mode, optionally scoped to a city or state"""
    id: str
    transport_mode: str
    base_fare: float
    per_km_rate: float = 0.0
    per_minute_rate: float = 0.0
    fare_type: str = 'distance_based'
    city: Optional[str] = None
    state: Optional[str] = None
    minimum_fare: Optional[float] = None
    maximum_fare: Optional[float] = None
    peak_hour_multiplier: float = 1.0
    weekend_multiplier: float = 1.0
    holiday_multiplier: float = 1.0
    peak_hours: List[PeakWindow] = field(default_factory=list)
    fuel_surcharge: float = 0.0
    fuel_surcharge_percentage: float = 0.0
    additional_charges: Dict[str, float] = field(default_factory=dict)
    discounts: Dict[str, float] = field(default_factory=dict)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    priority: int = 0
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.now)

    def validate(self):
        """Reject internally inconsistent rules at write time"""
        if self.fare_type not in FARE_TYPES:
            raise FareRuleConfigError(f"Unknown fare type: {self.fare_type}")
        for name in ('base_fare', 'per_km_rate', 'per_minute_rate', 'fuel_surcharge', 'fuel_surcharge_percentage'):
            if getattr(self, name) < 0:
                raise FareRuleConfigError(f"{name} cannot be negative")
        if self.minimum_fare is not None and self.minimum_fare < 0:
            raise FareRuleConfigError("minimum_fare cannot be negative")
        if (self.minimum_fare is not None and self.maximum_fare is not None
                and self.maximum_fare < self.minimum_fare):
            raise FareRuleConfigError("Maximum fare must be greater than or equal to minimum fare")
        low, high = MULTIPLIER_BOUNDS
        for name in ('peak_hour_multiplier', 'weekend_multiplier', 'holiday_multiplier'):
            if not low <= getattr(self, name) <= high:
                raise FareRuleConfigError(f"{name} must be between {low} and {high}")
        for window in self.peak_hours:
            try:
                _hhmm(window.start)
                _hhmm(window.end)
            except (ValueError, AttributeError) as e:
                raise FareRuleConfigError(f"Invalid peak window: {window}") from e
        if self.valid_from and self.valid_until and self.valid_until <= self.valid_from:
            raise FareRuleConfigError("valid_until must be after valid_from")

    def is_valid_at(self, moment: datetime) -> bool:
        if not self.is_active:
            return False
        if self.valid_from and moment < self.valid_from:
            return False
        if self.valid_until and moment > self.valid_until:
            return False
        return True

    def is_peak_hour(self, moment: datetime) -> bool:
        return any(w.contains(moment.time()) for w in self.peak_hours)


@dataclass
class FareContext:
    """Conditions a fare is estimated under"""
    when: Optional[datetime] = None
    city: Optional[str] = None
    state: Optional[str] = None
    is_holiday: bool = False
    weather: Optional[str] = None
    route_id: Optional[str] = None
    segment_id: Optional[str] = None


@dataclass
class FareEstimate:
    amount: float
    min_fare: float
    max_fare: float
    confidence: str
    currency: str = 'NGN'
    rule_id: Optional[str] = None
    feedback_count: int = 0
    factors: Dict[str, float] = field(default_factory=dict)


@dataclass
class FareFeedback:
    """A fare a traveller reports having paid"""
    id: str
    transport_mode: str
    amount_paid: float
    route_id: Optional[str] = None
    segment_id: Optional[str] = None
    user_id: Optional[str] = None
    city: Optional[str] = None
    passenger_count: int = 1
    created_at: datetime = field(default_factory=datetime.now)
    is_verified: bool = False
    is_disputed: bool = False
    verification_score: Optional[int] = None
    validation_warnings: List[str] = field(default_factory=list)


@dataclass
class FareValidation:
    warnings: List[str]
    verification_score: int
    is_flagged: bool
    historical_average: Optional[float] = None
    deviation_pct: Optional[float] = None


@dataclass
class HistoricalFare:
    average: float
    minimum: float
    maximum: float
    count: int
