"""
Configuration management for the Danfo routing engine
"""

import os
from typing import Optional


class Config:
    """Configuration class for the Danfo routing engine"""

    def __init__(self):
        # Seed data (locations.csv, route_segments.csv, fare_rules.csv)
        self.data_dir: str = os.getenv('DATA_DIR', 'data')

        # External providers
        self.google_maps_api_key: Optional[str] = os.getenv('GOOGLE_MAPS_API_KEY')
        self.notification_webhook_url: Optional[str] = os.getenv('NOTIFICATION_WEBHOOK_URL')
        self.provider_timeout: float = float(os.getenv('PROVIDER_TIMEOUT_SECONDS', '5'))

        # Location matching
        self.location_match_radius_m: float = float(os.getenv('LOCATION_MATCH_RADIUS_M', '100'))

        # Route composition
        self.max_composition_depth: int = int(os.getenv('MAX_COMPOSITION_DEPTH', '3'))
        self.direct_route_limit: int = int(os.getenv('DIRECT_ROUTE_LIMIT', '3'))
        self.walking_fallback_radius_km: float = float(os.getenv('WALKING_FALLBACK_RADIUS_KM', '1.5'))
        self.max_walking_distance_m: float = float(os.getenv('MAX_WALKING_DISTANCE_M', '2000'))
        self.moto_threshold_m: float = float(os.getenv('MOTO_THRESHOLD_M', '500'))

        # Trip tracking
        self.arrival_radius_m: float = float(os.getenv('ARRIVAL_RADIUS_M', '50'))
        self.approach_radius_m: float = float(os.getenv('APPROACH_RADIUS_M', '300'))
        self.average_speed_kmh: float = float(os.getenv('AVERAGE_SPEED_KMH', '30'))

        # Fares
        self.fare_history_days: int = int(os.getenv('FARE_HISTORY_DAYS', '30'))
        self.fare_deviation_threshold_pct: float = float(os.getenv('FARE_DEVIATION_THRESHOLD_PCT', '50'))
        self.fare_sanity_ceiling: float = float(os.getenv('FARE_SANITY_CEILING', '50000'))

        # API configuration
        self.host: str = os.getenv('HOST', '0.0.0.0')
        self.port: int = int(os.getenv('PORT', '5000'))
        self.debug: bool = os.getenv('DEBUG', 'False').lower() == 'true'

        # Logging
        self.log_level: str = os.getenv('LOG_LEVEL', 'INFO')
        self.log_file: Optional[str] = os.getenv('LOG_FILE')

    def validate(self):
        """Validate configuration"""
        if self.location_match_radius_m <= 0:
            raise ValueError("Location match radius must be positive")

        if self.arrival_radius_m <= 0 or self.approach_radius_m <= 0:
            raise ValueError("Arrival and approach radii must be positive")

        if self.arrival_radius_m >= self.approach_radius_m:
            raise ValueError("Arrival radius must be smaller than approach radius")

        if self.average_speed_kmh <= 0:
            raise ValueError("Average speed must be positive")

        if self.max_composition_depth < 1:
            raise ValueError("Max composition depth must be at least 1")

        if self.provider_timeout <= 0:
            raise ValueError("Provider timeout must be positive")

    def get_composition_config(self) -> dict:
        """Get configuration for RouteCompositionEngine"""
        return {
            'max_depth': self.max_composition_depth,
            'direct_limit': self.direct_route_limit,
            'walking_radius_km': self.walking_fallback_radius_km,
            'max_walking_m': self.max_walking_distance_m,
            'moto_threshold_m': self.moto_threshold_m,
        }

    def get_tracking_config(self) -> dict:
        """Get configuration for TripTrackingService"""
        return {
            'arrival_radius_m': self.arrival_radius_m,
            'approach_radius_m': self.approach_radius_m,
            'average_speed_kmh': self.average_speed_kmh,
        }

    def get_fare_config(self) -> dict:
        """Get configuration for FareEstimationEngine"""
        return {
            'history_days': self.fare_history_days,
            'deviation_threshold_pct': self.fare_deviation_threshold_pct,
            'sanity_ceiling': self.fare_sanity_ceiling,
        }

    def get_api_config(self) -> dict:
        """Get configuration for Flask API"""
        return {
            'host': self.host,
            'port': self.port,
            'debug': self.debug
        }


# Global configuration instance
config = Config()
