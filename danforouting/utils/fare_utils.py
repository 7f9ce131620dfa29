import math
from typing import Dict, Iterable

NAIRA_STEP = 50

# Default rate table used when no stored FareRule applies (NGN)
DEFAULT_RATES: Dict[str, Dict[str, float]] = {
    'bus':   {'base_fare': 50.0,  'per_km_rate': 25.0},
    'taxi':  {'base_fare': 200.0, 'per_km_rate': 100.0},
    'keke':  {'base_fare': 100.0, 'per_km_rate': 50.0},
    'okada': {'base_fare': 100.0, 'per_km_rate': 30.0},
    'walk':  {'base_fare': 0.0,   'per_km_rate': 0.0},
}

VALID_MODES = tuple(DEFAULT_RATES)

MODE_ALIASES = {
    'walking': 'walk',
    'foot': 'walk',
    'car': 'taxi',
    'cab': 'taxi',
    'danfo': 'bus',
    'brt': 'bus',
    'tricycle': 'keke',
    'keke_napep': 'keke',
    'napep': 'keke',
    'motorcycle': 'okada',
    'bike': 'okada',
    'moto': 'okada',
}

WEATHER_MULTIPLIERS = {
    'rain': 1.3,
    'storm': 1.3,
}

CITY_MULTIPLIERS = {
    'lagos': 1.3,
    'abuja': 1.2,
    'port harcourt': 1.1,
    'kano': 1.0,
    'ibadan': 1.0,
    'kaduna': 0.9,
}


def normalize_mode(mode: str) -> str:
    """
    Map free-form transport mode names onto bus/taxi/keke/okada/walk
    Args:
        mode: Mode as stored or submitted (e.g. 'Tricycle', 'walking')
    Returns:
        Canonical mode; unknown modes default to 'bus'
    """
    if not mode:
        return 'bus'
    cleaned = str(mode).strip().lower()
    cleaned = MODE_ALIASES.get(cleaned, cleaned)
    return cleaned if cleaned in VALID_MODES else 'bus'


def primary_mode(modes: Iterable[str]) -> str:
    for mode in modes or []:
        return normalize_mode(mode)
    return 'bus'


def round_to_nearest_50(amount: float) -> float:
    return float(math.floor(amount / NAIRA_STEP + 0.5) * NAIRA_STEP)


def floor_to_nearest_50(amount: float) -> float:
    return float(math.floor(amount / NAIRA_STEP) * NAIRA_STEP)


def ceil_to_nearest_50(amount: float) -> float:
    return float(math.ceil(amount / NAIRA_STEP) * NAIRA_STEP)


def naira_range(min_fare: float, max_fare: float) -> tuple:
    """Round a fare range outward to whole ₦50 steps, keeping min <= max"""
    low, high = sorted((min_fare, max_fare))
    return floor_to_nearest_50(low), ceil_to_nearest_50(high)


def format_naira(amount: float) -> str:
    return f"₦{amount:,.0f}"
