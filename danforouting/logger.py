"""
Logging configuration for the Danfo routing engine
"""

import logging
import os
import sys
from typing import Optional

from .config import config


class DanfoLogger:
    """Centralized logging for the Danfo routing engine"""

    def __init__(self, name: str = "danfo", level: str = config.log_level,
                 log_file: Optional[str] = config.log_file):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

        # Prevent duplicate handlers
        if not self.logger.handlers:
            self._setup_handlers(log_file)

    def _setup_handlers(self, log_file: Optional[str]):
        """Setup console and optional file handlers"""
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        self.logger.addHandler(console_handler)

        if log_file:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
            ))
            self.logger.addHandler(file_handler)

    def info(self, message: str):
        self.logger.info(message)

    def debug(self, message: str):
        self.logger.debug(message)

    def warning(self, message: str):
        self.logger.warning(message)

    def error(self, message: str):
        self.logger.error(message)

    def log_route_request(self, start: str, end: str, strategy: str,
                          duration_ms: float, success: bool):
        """Log route request metrics"""
        self.info(f"Route request: {start} -> {end}, strategy={strategy}, "
                  f"duration={duration_ms:.2f}ms, success={success}")

    def log_api_call(self, api_name: str, duration_ms: float, success: bool):
        """Log external API call metrics"""
        self.info(f"API call: {api_name}, duration={duration_ms:.2f}ms, success={success}")


# Global logger instance
logger = DanfoLogger()
