"""
Fare Estimation Engine

Rule-based naira fares for a leg, adjusted for time of day, weekends,
holidays, weather and city, then blended with what travellers report
having paid recently.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from .config import config
from .models.fares import FareContext, FareEstimate, FareFeedback, FareRule, FareValidation, HistoricalFare
from .providers.repository import Repository
from .utils.fare_utils import CITY_MULTIPLIERS, DEFAULT_RATES, WEATHER_MULTIPLIERS, normalize_mode

BAND_RATIO = 0.2
FULL_TRUST_FEEDBACK_COUNT = 10
MIN_FEEDBACK_FOR_DEVIATION = 3
FIXED_FARE_TOLERANCE = 0.1


def confidence_for(feedback_count: int) -> str:
    if feedback_count < 5:
        return 'low'
    if feedback_count < 20:
        return 'medium'
    return 'high'


def blend_weight(feedback_count: int) -> float:
    return min(feedback_count / FULL_TRUST_FEEDBACK_COUNT, 1.0)


def default_rule(mode: str) -> FareRule:
    mode = normalize_mode(mode)
    return FareRule(id=f"default_{mode}", transport_mode=mode, **DEFAULT_RATES[mode])


class FareEstimationEngine:
    """Select fare rules, price legs and keep fare feedback honest"""

    def __init__(self, repository: Repository, history_days: int = config.fare_history_days,
                 deviation_threshold_pct: float = config.fare_deviation_threshold_pct,
                 sanity_ceiling: float = config.fare_sanity_ceiling):
        self.repository = repository
        self.history_days = history_days
        self.deviation_threshold_pct = deviation_threshold_pct
        self.sanity_ceiling = sanity_ceiling
        self.logger = logging.getLogger(__name__)

    def select_rule(self, mode: str, context: Optional[FareContext] = None,
                    when: Optional[datetime] = None) -> FareRule:
        """Highest-priority active rule in scope, newest first on ties; else the mode default"""
        context = context or FareContext()
        when = when or context.when or datetime.now()
        mode = normalize_mode(mode)
        candidates = [
            rule for rule in self.repository.list_fare_rules()
            if normalize_mode(rule.transport_mode) == mode
            and rule.is_valid_at(when)
            and _in_scope(rule.city, context.city)
            and _in_scope(rule.state, context.state)
        ]
        if not candidates:
            return default_rule(mode)
        return max(candidates, key=lambda r: (r.priority, r.created_at))

    def estimate_fare(self, mode: str, distance_km: float, duration_min: Optional[float] = None,
                      context: Optional[FareContext] = None) -> FareEstimate:
        """
        Estimate the fare for one leg.
        Args:
            mode: Transport mode, normalised to bus/taxi/keke/okada/walk
            distance_km: Leg distance in kilometers
            duration_min: Optional leg duration in minutes for per-minute rates
            context: Time, place, weather and route the fare applies to
        Returns:
            FareEstimate with a ±20% band and a confidence tag
        """
        context = context or FareContext()
        when = context.when or datetime.now()
        rule = self.select_rule(mode, context, when)

        conditions = {
            'peak_hour': rule.is_peak_hour(when),
            'weekend': when.weekday() >= 5,
            'holiday': context.is_holiday,
            'weather': WEATHER_MULTIPLIERS.get((context.weather or '').lower(), 1.0),
            'city': 1.0 if rule.city else CITY_MULTIPLIERS.get((context.city or '').lower(), 1.0),
        }
        fare, factors = self._apply_rule(rule, distance_km, duration_min or 0.0, conditions)

        history = self.historical_fare(mode, context.route_id, context.segment_id, when)
        count = history.count if history else 0
        if history:
            w = blend_weight(count)
            fare = fare * (1 - w) + history.average * w
            factors['history_weight'] = w
            fare = _clamp(fare, rule.minimum_fare, rule.maximum_fare)

        low = _clamp(fare * (1 - BAND_RATIO), rule.minimum_fare, rule.maximum_fare)
        high = _clamp(fare * (1 + BAND_RATIO), rule.minimum_fare, rule.maximum_fare)
        estimate = FareEstimate(
            amount=round(fare, 2),
            min_fare=round(min(low, high), 2),
            max_fare=round(max(low, high), 2),
            confidence=confidence_for(count),
            rule_id=rule.id,
            feedback_count=count,
            factors=factors,
        )
        self.logger.debug(f"Fare {normalize_mode(mode)} {distance_km:.2f}km via {rule.id}: "
                          f"{estimate.min_fare}-{estimate.max_fare} ({estimate.confidence})")
        return estimate

    def fare_range(self, rule: FareRule, distance_km: float, duration_min: float = 0.0) -> Tuple[float, float]:
        """Cheapest (no multipliers) and dearest (every rule multiplier) fare a rule allows"""
        calm = {'peak_hour': False, 'weekend': False, 'holiday': False, 'weather': 1.0, 'city': 1.0}
        busy = {'peak_hour': True, 'weekend': True, 'holiday': True, 'weather': 1.0, 'city': 1.0}
        low, _ = self._apply_rule(rule, distance_km, duration_min, calm)
        high, _ = self._apply_rule(rule, distance_km, duration_min, busy)
        return round(min(low, high), 2), round(max(low, high), 2)

    def _apply_rule(self, rule: FareRule, distance_km: float, duration_min: float,
                    conditions: Dict) -> Tuple[float, Dict[str, float]]:
        factors: Dict[str, float] = {}
        fare = rule.base_fare + rule.per_km_rate * distance_km + rule.per_minute_rate * duration_min

        for name, multiplier in (('peak_hour', rule.peak_hour_multiplier),
                                 ('weekend', rule.weekend_multiplier),
                                 ('holiday', rule.holiday_multiplier)):
            if conditions[name] and multiplier != 1.0:
                fare *= multiplier
                factors[name] = multiplier
        for name in ('weather', 'city'):
            if conditions[name] != 1.0:
                fare *= conditions[name]
                factors[name] = conditions[name]

        if rule.fuel_surcharge:
            fare += rule.fuel_surcharge
        if rule.fuel_surcharge_percentage:
            fare *= 1 + rule.fuel_surcharge_percentage / 100

        fare += sum(rule.additional_charges.values())
        for value in rule.discounts.values():
            fare = fare * (1 - value) if value < 1 else fare - value
        fare = max(fare, 0.0)

        return _clamp(fare, rule.minimum_fare, rule.maximum_fare), factors

    # Feedback

    def _trusted_feedback(self, mode: str, route_id: Optional[str], segment_id: Optional[str],
                          when: datetime) -> List[FareFeedback]:
        if not route_id and not segment_id:
            return []
        since = when - timedelta(days=self.history_days)
        feedback = self.repository.list_feedback(route_id=route_id, segment_id=segment_id, since=since)
        return [
            fb for fb in feedback
            if fb.is_verified and not fb.is_disputed
            and normalize_mode(fb.transport_mode) == normalize_mode(mode)
            and fb.created_at <= when
        ]

    def historical_fare(self, mode: str, route_id: Optional[str] = None, segment_id: Optional[str] = None,
                        when: Optional[datetime] = None) -> Optional[HistoricalFare]:
        """Aggregate of verified, undisputed fares paid in the trailing window"""
        amounts = [fb.amount_paid for fb in
                   self._trusted_feedback(mode, route_id, segment_id, when or datetime.now())]
        if not amounts:
            return None
        return HistoricalFare(
            average=sum(amounts) / len(amounts),
            minimum=min(amounts),
            maximum=max(amounts),
            count=len(amounts),
        )

    def validate_feedback(self, feedback: FareFeedback) -> FareValidation:
        """Score a reported fare from 0 to 10; flags lower the score but never reject"""
        warnings = []
        score = 10

        if feedback.amount_paid > self.sanity_ceiling:
            warnings.append(f"Fare exceeds maximum reasonable amount of {self.sanity_ceiling:.0f}")
            score -= 3

        history = self.historical_fare(feedback.transport_mode, feedback.route_id,
                                       feedback.segment_id, feedback.created_at)
        average = deviation = None
        if history and history.count >= MIN_FEEDBACK_FOR_DEVIATION and history.average > 0:
            average = history.average
            deviation = abs(feedback.amount_paid - average) / average * 100
            if deviation > self.deviation_threshold_pct:
                warnings.append(f"Fare deviates {deviation:.0f}% from recent average of {average:.0f}")
                score -= 2

        rule = self.select_rule(feedback.transport_mode, FareContext(city=feedback.city), feedback.created_at)
        if rule.fare_type == 'fixed' and rule.base_fare > 0:
            if abs(feedback.amount_paid - rule.base_fare) / rule.base_fare > FIXED_FARE_TOLERANCE:
                warnings.append(f"Fare conflicts with fixed fare of {rule.base_fare:.0f}")
                score -= 1

        if feedback.passenger_count > 10:
            warnings.append("Unusually high passenger count")
            score -= 1

        return FareValidation(
            warnings=warnings,
            verification_score=max(0, min(10, score)),
            is_flagged=bool(warnings),
            historical_average=average,
            deviation_pct=deviation,
        )

    def submit_feedback(self, feedback: FareFeedback) -> FareValidation:
        validation = self.validate_feedback(feedback)
        feedback.verification_score = validation.verification_score
        feedback.validation_warnings = validation.warnings
        self.repository.save_feedback(feedback)
        if validation.is_flagged:
            self.logger.warning(f"Fare feedback {feedback.id} flagged: {'; '.join(validation.warnings)}")
        return validation

    def verify_feedback(self, feedback_id: str) -> FareFeedback:
        feedback = self._get_feedback(feedback_id)
        if feedback.is_disputed:
            raise ValueError(f"Feedback {feedback_id} is disputed and cannot be verified")
        feedback.is_verified = True
        return self.repository.save_feedback(feedback)

    def dispute_feedback(self, feedback_id: str) -> FareFeedback:
        """Disputed feedback is kept but no longer counts towards history"""
        feedback = self._get_feedback(feedback_id)
        feedback.is_disputed = True
        return self.repository.save_feedback(feedback)

    def _get_feedback(self, feedback_id: str) -> FareFeedback:
        feedback = self.repository.get_feedback(feedback_id)
        if feedback is None:
            raise ValueError(f"Fare feedback not found: {feedback_id}")
        return feedback


def _in_scope(rule_value: Optional[str], wanted: Optional[str]) -> bool:
    if not rule_value:
        return True
    return bool(wanted) and rule_value.strip().lower() == wanted.strip().lower()


def _clamp(value: float, low: Optional[float], high: Optional[float]) -> float:
    if low is not None:
        value = max(value, low)
    if high is not None:
        value = min(value, high)
    return value
