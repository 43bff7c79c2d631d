"""Visual geolocation matching engine."""

__version__ = "0.3.0"
